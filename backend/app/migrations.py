"""Bring the billing schema up to date before the API serves requests."""

from __future__ import annotations

import errno
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import make_url
from sqlalchemy.engine.reflection import Inspector

from .database import SQLALCHEMY_DATABASE_URL
from .settings import read_int_env

LOGGER = logging.getLogger(__name__)

BACKEND_DIR = Path(__file__).resolve().parent.parent
LOCK_FILENAME = ".alembic-migration.lock"
LOCK_RETRY_DELAY = 0.25
LOCK_TIMEOUT_ENV = "ALEMBIC_MIGRATION_LOCK_TIMEOUT"
DEFAULT_LOCK_TIMEOUT = 30

if os.name == "posix":  # pragma: no cover - platform specific
    import fcntl
else:  # pragma: no cover - platform specific
    import msvcrt

SchemaMatcher = Callable[[Inspector], bool]


def _has_column(inspector: Inspector, table_name: str, column_name: str) -> bool:
    return inspector.has_table(table_name) and column_name in {
        column["name"] for column in inspector.get_columns(table_name)
    }


def _has_index(inspector: Inspector, table_name: str, index_name: str) -> bool:
    return inspector.has_table(table_name) and index_name in {
        index["name"] for index in inspector.get_indexes(table_name)
    }


# Newest first. Each matcher recognises a schema created without Alembic
# (for example through ``Base.metadata.create_all``) at that revision.
KNOWN_SCHEMAS: Sequence[tuple[str, SchemaMatcher]] = (
    (
        "20260101_0001",
        lambda inspector: (
            inspector.has_table("invoices")
            and _has_column(inspector, "invoice_items", "metadata")
            and _has_index(inspector, "invoices", "invoices_client_period_idx")
        ),
    ),
)


def _detect_unversioned_revision(inspector: Inspector) -> Optional[str]:
    for revision, matches in KNOWN_SCHEMAS:
        if matches(inspector):
            return revision
    return None


def _lock_timeout() -> float:
    try:
        timeout = read_int_env(LOCK_TIMEOUT_ENV, DEFAULT_LOCK_TIMEOUT, minimum=1)
    except ValueError:
        LOGGER.warning(
            "Invalid %s; waiting at most %d seconds for the migration lock",
            LOCK_TIMEOUT_ENV,
            DEFAULT_LOCK_TIMEOUT,
        )
        return float(DEFAULT_LOCK_TIMEOUT)
    return float(timeout)


def _lock_is_held_elsewhere(error: OSError) -> bool:
    if isinstance(error, BlockingIOError):
        return True
    if getattr(error, "errno", None) in {errno.EACCES, errno.EAGAIN, errno.EBUSY}:
        return True
    # Windows reports sharing (32) and lock (33) violations instead of errno.
    return getattr(error, "winerror", None) in {32, 33}


def _try_lock(handle) -> None:
    if os.name == "posix":  # pragma: no cover - platform specific
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    else:  # pragma: no cover - platform specific
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)


def _unlock(handle) -> None:
    try:
        if os.name == "posix":  # pragma: no cover - platform specific
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        else:  # pragma: no cover - platform specific
            msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    except OSError:  # pragma: no cover - best effort cleanup
        LOGGER.debug("Migration lock was already released")


@contextmanager
def migration_lock(path: Path, *, timeout: float) -> Iterator[None]:
    """Hold an exclusive file lock so only one worker migrates at a time."""

    path.parent.mkdir(parents=True, exist_ok=True)
    deadline = time.monotonic() + timeout
    with path.open("a+") as handle:
        while True:
            try:
                _try_lock(handle)
                break
            except OSError as error:
                if not _lock_is_held_elsewhere(error):
                    raise
                if time.monotonic() >= deadline:
                    raise TimeoutError("Timed out waiting for the migration lock") from error
                time.sleep(LOCK_RETRY_DELAY)
        LOGGER.debug("Acquired migration lock at %s", path)
        try:
            yield
        finally:
            _unlock(handle)


def alembic_config(database_url: Optional[str] = None) -> Config:
    config = Config(str(BACKEND_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(BACKEND_DIR / "alembic"))
    config.set_main_option(
        "sqlalchemy.url",
        database_url or os.getenv("DATABASE_URL") or SQLALCHEMY_DATABASE_URL,
    )
    return config


def _migrate(config: Config, inspector: Inspector) -> None:
    if inspector.has_table("alembic_version"):
        LOGGER.debug("Schema is versioned; upgrading to head")
        command.upgrade(config, "head")
        return

    tables = [name for name in inspector.get_table_names() if name != "alembic_version"]
    if not tables:
        LOGGER.info("Empty database; creating the billing schema")
        command.upgrade(config, "head")
        return

    revision = _detect_unversioned_revision(inspector)
    if revision is None:
        LOGGER.info(
            "Found %d unversioned tables that match no known schema; running full upgrade",
            len(tables),
        )
        command.upgrade(config, "head")
        return

    LOGGER.info("Unversioned schema matches revision %s; stamping it", revision)
    command.stamp(config, revision)
    if revision != ScriptDirectory.from_config(config).get_current_head():
        command.upgrade(config, "head")


def run_database_migrations(database_url: Optional[str] = None) -> None:
    """Apply pending Alembic revisions, stamping schemas created outside Alembic."""

    config = alembic_config(database_url)
    url = config.get_main_option("sqlalchemy.url")
    LOGGER.info(
        "Running database migrations at %s", make_url(url).render_as_string(hide_password=True)
    )

    with migration_lock(BACKEND_DIR / LOCK_FILENAME, timeout=_lock_timeout()):
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        engine = create_engine(url, connect_args=connect_args)
        try:
            _migrate(config, inspect(engine))
        finally:
            engine.dispose()
