"""Bearer-token authentication and role checks for API routes.

Tokens are verified by a :class:`TokenVerifier` stored on
``app.state.token_verifier``; the default is :class:`JWTTokenVerifier`
(HS256, claims ``sub``, ``roles``, ``name``, ``email``).  Every verified
caller is upserted into the user directory so officers and admins become
assignable as soon as they have signed in once.

Usage::

    @router.put("/resolve/{complaint_id}")
    async def resolve(principal: Principal = Depends(require_roles(Role.ADMIN))): ...
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Protocol

import structlog
from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from src.models.enums import Role
from src.models.user import Principal
from src.services.errors import AuthenticationError, AuthorizationError

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_bearer = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Token verification
# ---------------------------------------------------------------------------


class TokenVerifier(Protocol):
    def verify(self, token: str) -> Principal: ...


def _parse_roles(raw: object) -> frozenset[Role]:
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, list | tuple):
        return frozenset({Role.USER})
    roles: set[Role] = set()
    for value in raw:
        name = str(value).strip().upper().removeprefix("ROLE_")
        if name in Role.__members__:
            roles.add(Role(name))
    return frozenset(roles or {Role.USER})


class JWTTokenVerifier:
    """HS256 JWT verifier (and issuer, for seeding and tests)."""

    __slots__ = ("_algorithm", "_secret")

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    def verify(self, token: str) -> Principal:
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as exc:
            raise AuthenticationError(f"Invalid token: {exc}") from exc
        subject = payload.get("sub")
        if not subject:
            raise AuthenticationError("Token missing required claims")
        return Principal(
            id=str(subject),
            roles=_parse_roles(payload.get("roles")),
            full_name=str(payload.get("name") or ""),
            email=str(payload.get("email") or ""),
        )

    def issue(self, principal: Principal, expires_in: timedelta = timedelta(hours=8)) -> str:
        now = datetime.now(UTC)
        payload = {
            "sub": principal.id,
            "roles": sorted(r.value for r in principal.roles),
            "name": principal.full_name,
            "email": principal.email,
            "iat": now,
            "exp": now + expires_in,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


async def get_optional_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),  # noqa: B008
) -> Principal | None:
    """Return the caller if a bearer token was sent, else ``None``."""
    if credentials is None:
        return None
    verifier: TokenVerifier = request.app.state.token_verifier
    try:
        principal = verifier.verify(credentials.credentials)
    except AuthenticationError:
        logger.warning("auth.invalid_token", path=request.url.path)
        raise
    await request.app.state.users.upsert(principal.to_user())
    return principal


async def get_principal(
    request: Request,
    principal: Principal | None = Depends(get_optional_principal),  # noqa: B008
) -> Principal:
    """Require an authenticated caller."""
    if principal is None:
        logger.info("auth.missing_token", path=request.url.path)
        raise AuthenticationError("Missing bearer token")
    return principal


def require_roles(*roles: Role) -> Callable[..., Awaitable[Principal]]:
    """Dependency factory: the caller must hold at least one of *roles*."""

    async def _check(principal: Principal = Depends(get_principal)) -> Principal:  # noqa: B008
        if not principal.has_any_role(*roles):
            wanted = " or ".join(r.value for r in roles)
            raise AuthorizationError(f"{wanted} role required")
        return principal

    return _check
