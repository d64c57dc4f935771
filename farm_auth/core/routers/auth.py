"""
Authentication router for token lifecycle endpoints.

This module provides endpoints for:
- Token refresh
- Logout (token revocation)
- Current identity

All endpoints are prefixed with /auth when mounted in the main app.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from farm_auth.core.config import auth_logger
from farm_auth.core.dependencies.auth import (
    AuthServiceDep,
    CurrentIdentity,
    get_access_token,
)
from farm_auth.core.schemas.auth import (
    CurrentIdentityResponse,
    LogoutRequest,
    MessageResponse,
    RefreshTokenRequest,
    TokenResponse,
)


router = APIRouter()


@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Refresh access token",
    description="""
## Refresh Access Token

Exchange a valid, non-revoked refresh token for a new access token. The
refresh token is returned unchanged.

### Errors

- **401** `TOKEN_EXPIRED`, `TOKEN_INVALID` or `TOKEN_REVOKED`
""",
)
async def refresh_token(
    data: RefreshTokenRequest,
    auth: AuthServiceDep,
) -> TokenResponse:
    pair = await auth.refresh_access_token(data.refresh_token)
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.expires_in,
    )


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Log out",
    description="""
## Log Out

Revokes the access token from the `Authorization` header and, when given,
the refresh token from the body. Revoked tokens are rejected until they
would have expired anyway. Calling it twice is harmless.
""",
)
async def logout(
    token: Annotated[str, Depends(get_access_token)],
    auth: AuthServiceDep,
    data: LogoutRequest | None = None,
) -> MessageResponse:
    await auth.logout(token, data.refresh_token if data else None)
    auth_logger.info("Logout completed")
    return MessageResponse(message="Logged out successfully")


@router.get(
    "/me",
    response_model=CurrentIdentityResponse,
    summary="Current identity",
)
async def me(identity: CurrentIdentity) -> CurrentIdentityResponse:
    return CurrentIdentityResponse(
        user_id=identity.subject,
        role=identity.role,
        expires_at=identity.expires_at,
    )


__all__ = ["router"]
