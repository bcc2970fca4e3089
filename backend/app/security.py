"""Staff bearer-token verification for the billing API."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

STAFF_JWT_SECRET_ENV = "STAFF_JWT_SECRET"
ACCESS_TOKEN_EXPIRE_MINUTES_ENV = "ACCESS_TOKEN_EXPIRE_MINUTES"
STAFF_USER_TYPE = "staff"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


class SecurityConfigurationError(RuntimeError):
    """Raised when mandatory security settings are missing or invalid."""


def _read_env_var(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise SecurityConfigurationError(f"Environment variable '{name}' is required")
    return value


@lru_cache(maxsize=1)
def _load_jwt_key() -> bytes:
    raw_secret = _read_env_var(STAFF_JWT_SECRET_ENV)
    try:
        return base64.urlsafe_b64decode(raw_secret)
    except (ValueError, binascii.Error):
        return raw_secret.encode("utf-8")


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _invalid_token(detail: str = "Invalid token") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _encode_jwt(payload: dict[str, Any], key: bytes) -> str:
    header = {"typ": "JWT", "alg": "HS256"}
    header_b64 = _b64url_encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    payload_b64 = _b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{header_b64}.{payload_b64}".encode("ascii")
    signature = hmac.new(key, signing_input, hashlib.sha256).digest()
    signature_b64 = _b64url_encode(signature)
    return f"{header_b64}.{payload_b64}.{signature_b64}"


def _decode_jwt(token: str, key: bytes) -> dict[str, Any]:
    try:
        header_b64, payload_b64, signature_b64 = token.split(".")
        signature = _b64url_decode(signature_b64)
    except (ValueError, binascii.Error) as exc:
        raise _invalid_token() from exc

    signing_input = f"{header_b64}.{payload_b64}".encode("ascii")
    expected_signature = hmac.new(key, signing_input, hashlib.sha256).digest()
    if not hmac.compare_digest(signature, expected_signature):
        raise _invalid_token()

    try:
        payload_data = json.loads(_b64url_decode(payload_b64).decode("utf-8"))
    except (ValueError, binascii.Error) as exc:
        raise _invalid_token() from exc
    if not isinstance(payload_data, dict) or payload_data.get("exp") is None:
        raise _invalid_token()
    exp = int(payload_data["exp"])
    if datetime.now(timezone.utc) >= datetime.fromtimestamp(exp, tz=timezone.utc):
        raise _invalid_token("Token expired")
    return payload_data


def _resolve_access_token_expiry() -> timedelta:
    raw = os.getenv(ACCESS_TOKEN_EXPIRE_MINUTES_ENV)
    if not raw:
        return timedelta(minutes=30)
    try:
        minutes = int(raw)
    except ValueError as exc:
        raise SecurityConfigurationError("ACCESS_TOKEN_EXPIRE_MINUTES must be an integer") from exc
    if minutes <= 0:
        raise SecurityConfigurationError("ACCESS_TOKEN_EXPIRE_MINUTES must be positive")
    return timedelta(minutes=minutes)


@dataclass
class StaffIdentity:
    """Represents an authenticated staff member."""

    user_id: str
    email: Optional[str] = None
    permissions: list[str] = field(default_factory=list)

    @property
    def actor(self) -> str:
        return self.email or self.user_id


def create_access_token(identity: StaffIdentity) -> str:
    key = _load_jwt_key()
    expiry = datetime.now(timezone.utc) + _resolve_access_token_expiry()
    payload: dict[str, Any] = {
        "sub": identity.user_id,
        "email": identity.email,
        "permissions": list(identity.permissions),
        "user_type": STAFF_USER_TYPE,
        "exp": int(expiry.timestamp()),
    }
    return _encode_jwt(payload, key)


def get_current_staff(token: str = Depends(oauth2_scheme)) -> StaffIdentity:
    payload = _decode_jwt(token, _load_jwt_key())
    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise _invalid_token()
    if payload.get("user_type", STAFF_USER_TYPE) != STAFF_USER_TYPE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Staff access required")
    permissions = payload.get("permissions") or []
    return StaffIdentity(
        user_id=user_id,
        email=payload.get("email"),
        permissions=[str(item) for item in permissions] if isinstance(permissions, list) else [],
    )


def require_staff(identity: StaffIdentity = Depends(get_current_staff)) -> StaffIdentity:
    """FastAPI dependency that ensures the request is authenticated as staff."""

    return identity
