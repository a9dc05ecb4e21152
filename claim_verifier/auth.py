"""
Bearer-token authentication.

Tokens are HS256 JWTs with `sub` (user id) and `role`. Issuing happens in an
upstream auth service; `create_access_token` exists for local runs and tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from .exceptions import Unauthorized

REVIEWER_ROLES = frozenset({"VERIFIER", "ADMIN", "SUPER_ADMIN", "PLATFORM_OWNER"})


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str = "USER"

    @property
    def is_reviewer(self) -> bool:
        return self.role.upper() in REVIEWER_ROLES


def create_access_token(
    user_id: str,
    role: str,
    secret_key: str,
    algorithm: str = "HS256",
    expires_hours: int = 24,
) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=expires_hours)
    payload = {"sub": user_id, "role": role, "exp": expire}
    return jwt.encode(payload, secret_key, algorithm=algorithm)


def decode_token(token: str, secret_key: str, algorithm: str = "HS256") -> Principal:
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError as e:
        raise Unauthorized("Invalid or expired token") from e

    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Token has no subject")
    return Principal(user_id=str(user_id), role=str(payload.get("role") or "USER"))
