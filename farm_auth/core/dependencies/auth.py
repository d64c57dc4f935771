"""
Authentication dependencies for FastAPI endpoints.

- Reaching the AuthService and CacheStore owned by the application
- Extracting and validating JWT access tokens from requests
- Role-based access control

Example usage:
    from farm_auth.core.dependencies.auth import CurrentIdentity, require_roles

    @router.get("/me")
    async def get_profile(identity: CurrentIdentity):
        return {"user_id": identity.subject}

    @router.get("/admin/stats", dependencies=[Depends(require_roles(UserRole.ADMIN))])
    async def stats():
        ...
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Annotated, Any, Callable

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from farm_auth.core.config import auth_logger
from farm_auth.core.enums import UserRole
from farm_auth.core.exceptions.types import AuthenticationException, ForbiddenException
from farm_auth.core.services.auth import AuthService
from farm_auth.core.services.cache import CacheStore

# Missing credentials are reported through AuthenticationException (401)
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """The caller behind a validated, non-revoked access token."""

    subject: str
    role: UserRole
    token: str
    expires_at: datetime
    claims: dict[str, Any] = field(default_factory=dict)


def get_auth_service(request: Request) -> AuthService:
    """Return the AuthService built during application startup."""
    return request.app.state.auth_service


def get_cache_store(request: Request) -> CacheStore:
    """Return the CacheStore built during application startup."""
    return request.app.state.cache


AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
CacheStoreDep = Annotated[CacheStore, Depends(get_cache_store)]


async def get_access_token(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> str:
    """
    Extract the Bearer token from the Authorization header.

    Raises:
        AuthenticationException: 401 if the header is missing or not a Bearer token.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationException("Not authenticated")
    return credentials.credentials


async def get_current_identity(
    token: Annotated[str, Depends(get_access_token)],
    auth: AuthServiceDep,
) -> AuthenticatedIdentity:
    """
    Validate the access token and return the caller's identity.

    This dependency:
    1. Verifies the token signature, expiry, issuer, audience and type
    2. Rejects tokens on the revocation list
    3. Returns the subject and role carried by the token

    Raises:
        TokenExpiredException: 401 if the token has expired.
        TokenInvalidException: 401 if the token is not a valid access token.
        TokenRevokedException: 401 if the token was revoked.
    """
    claims = await auth.authenticate(token)
    identity = AuthenticatedIdentity(
        subject=claims["sub"],
        role=UserRole(claims["role"]),
        token=token,
        expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        claims=claims,
    )
    auth_logger.debug(f"Authenticated {identity.subject} ({identity.role.value})")
    return identity


CurrentIdentity = Annotated[AuthenticatedIdentity, Depends(get_current_identity)]


def require_roles(*roles: UserRole | str) -> Callable:
    """
    Build a dependency that only lets the given roles through.

    Args:
        *roles: Allowed roles (farmer, agent, admin).

    Returns:
        A FastAPI dependency returning the AuthenticatedIdentity.

    Raises:
        ForbiddenException: 403 if the caller's role is not allowed.

    Example:
        @router.delete("/farms/{id}")
        async def delete_farm(
            identity: Annotated[
                AuthenticatedIdentity,
                Depends(require_roles(UserRole.ADMIN, UserRole.AGENT)),
            ],
        ):
            ...
    """
    allowed = frozenset(UserRole(role) for role in roles)

    async def dependency(identity: CurrentIdentity) -> AuthenticatedIdentity:
        if identity.role not in allowed:
            auth_logger.warning(
                f"Access denied: {identity.subject} has role {identity.role.value}"
            )
            raise ForbiddenException("You do not have permission to perform this action.")
        return identity

    return dependency


__all__ = [
    "bearer_scheme",
    "AuthenticatedIdentity",
    "get_auth_service",
    "get_cache_store",
    "AuthServiceDep",
    "CacheStoreDep",
    "get_access_token",
    "get_current_identity",
    "CurrentIdentity",
    "require_roles",
]
