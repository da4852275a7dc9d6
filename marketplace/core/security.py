"""Security utilities.

Single source of truth for:
- The `Actor` identity handed to the lifecycle services
- JWT token creation/verification

Authentication itself lives outside this service; we only trust bearer
tokens signed with `SECRET_KEY` carrying `sub` and `role` claims.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from marketplace.config import settings
from marketplace.models import ActorRole


@dataclass(frozen=True)
class Actor:
    id: str
    role: ActorRole

    @property
    def is_admin(self) -> bool:
        return self.role == ActorRole.admin


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT access token from a payload dict.

    Expected to include `sub` and `role` in `data`.
    """

    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_access_token_for_actor(actor: Actor, expires_minutes: Optional[int] = None) -> str:
    minutes = expires_minutes or settings.access_token_expire_minutes
    return create_access_token(
        {"sub": actor.id, "role": actor.role.value},
        expires_delta=timedelta(minutes=minutes),
    )


def decode_access_token(token: str) -> Optional[dict]:
    """Decode JWT access token; returns payload or None if invalid."""

    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None


def decode_actor(token: str) -> Optional[Actor]:
    payload = decode_access_token(token)
    if not payload:
        return None
    subject = payload.get("sub")
    raw_role = str(payload.get("role") or "").strip().lower()
    if not subject:
        return None
    try:
        role = ActorRole(raw_role)
    except ValueError:
        return None
    return Actor(id=str(subject), role=role)
