from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from marketplace.config import settings
from marketplace.core.observability import request_id_for
from marketplace.core.security import Actor, decode_actor
from marketplace.models import ActorRole


def _token_url() -> str:
    # Tokens are issued by the external identity provider; the URL only feeds OpenAPI docs.
    if settings.api_prefix:
        prefix = settings.api_prefix.rstrip("/")
        return f"{prefix}/auth/token"
    return "/auth/token"


oauth2_optional = OAuth2PasswordBearer(tokenUrl=_token_url(), auto_error=False)

_TOKEN_OPT_DEP = Depends(oauth2_optional)


def _extract_bearer_from_headers(request: Request) -> Optional[str]:
    # Some hosting layers strip/override the standard Authorization header.
    raw = request.headers.get("authorization") or request.headers.get("x-authorization")
    if not raw:
        return None
    s = str(raw).strip()
    if not s:
        return None
    if s.lower().startswith("bearer "):
        return s.split(" ", 1)[1].strip()
    return s


def get_current_actor(
    request: Request,
    token: Optional[str] = _TOKEN_OPT_DEP,
) -> Actor:
    if not token:
        token = _extract_bearer_from_headers(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    actor = decode_actor(token)
    if actor is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return actor


_CURRENT_ACTOR_DEP = Depends(get_current_actor)


def require_roles(*roles: ActorRole) -> Callable:
    allowed = {ActorRole(r) for r in roles}

    def dependency(actor: Actor = _CURRENT_ACTOR_DEP) -> Actor:
        if allowed and actor.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return actor

    return dependency


def request_id_of(request: Request) -> str:
    return request_id_for(request)
