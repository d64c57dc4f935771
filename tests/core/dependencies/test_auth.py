"""
Test suite for authentication dependencies.

- get_access_token: Bearer extraction
- get_current_identity: Token validation and revocation
- require_roles: Role-based access control
- get_auth_service / get_cache_store: Application state lookup

Run all tests:
    pytest tests/core/dependencies/test_auth.py -v
"""

from datetime import timedelta
from unittest.mock import MagicMock

from fastapi import Depends, FastAPI
from fastapi.security import HTTPAuthorizationCredentials
from httpx import ASGITransport, AsyncClient
import pytest

from farm_auth.core.enums import UserRole
from farm_auth.core.exceptions.types import (
    AuthenticationException,
    ForbiddenException,
    TokenExpiredException,
    TokenRevokedException,
)
from farm_auth.core.services.tokens import Identity


class TestGetAccessToken:
    """Test suite for get_access_token."""

    @pytest.mark.asyncio
    async def test_returns_credentials(self):
        from farm_auth.core.dependencies import get_access_token

        credentials = HTTPAuthorizationCredentials(scheme="Bearer", credentials="abc")

        assert await get_access_token(credentials) == "abc"

    @pytest.mark.asyncio
    async def test_missing_credentials_raise_401(self):
        from farm_auth.core.dependencies import get_access_token

        with pytest.raises(AuthenticationException) as exc_info:
            await get_access_token(None)

        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Not authenticated"


class TestGetCurrentIdentity:
    """Test suite for get_current_identity."""

    @pytest.mark.asyncio
    async def test_valid_token_returns_identity(self, auth_service):
        from farm_auth.core.dependencies import get_current_identity

        pair = auth_service.issue_tokens(Identity(subject="user-1", role=UserRole.ADMIN))

        identity = await get_current_identity(pair.access_token, auth_service)

        assert identity.subject == "user-1"
        assert identity.role is UserRole.ADMIN
        assert identity.token == pair.access_token
        assert identity.expires_at.timestamp() == identity.claims["exp"]

    @pytest.mark.asyncio
    async def test_expired_token(self, auth_service):
        from farm_auth.core.dependencies import get_current_identity

        token = auth_service.tokens.issue_access_token(
            Identity(subject="user-1"), expires_delta=timedelta(seconds=-1)
        )

        with pytest.raises(TokenExpiredException):
            await get_current_identity(token, auth_service)

    @pytest.mark.asyncio
    async def test_revoked_token(self, auth_service):
        from farm_auth.core.dependencies import get_current_identity

        pair = auth_service.issue_tokens(Identity(subject="user-1"))
        await auth_service.revoke_token(pair.access_token)

        with pytest.raises(TokenRevokedException):
            await get_current_identity(pair.access_token, auth_service)


class TestRequireRoles:
    """Test suite for require_roles."""

    @pytest.fixture
    def roles_app(self, auth_service):
        from farm_auth.core.dependencies import get_auth_service, require_roles
        from farm_auth.core.exceptions.handlers import (
            authentication_exception_handler,
            forbidden_exception_handler,
        )

        app = FastAPI()
        app.add_exception_handler(AuthenticationException, authentication_exception_handler)
        app.add_exception_handler(ForbiddenException, forbidden_exception_handler)
        app.dependency_overrides[get_auth_service] = lambda: auth_service

        @app.get(
            "/farms/admin",
            dependencies=[Depends(require_roles(UserRole.ADMIN, "agent"))],
        )
        async def admin_only():
            return {"ok": True}

        return app

    async def _get(self, app, token=None):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            return await ac.get("/farms/admin", headers=headers)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", [UserRole.ADMIN, UserRole.AGENT])
    async def test_allowed_roles(self, roles_app, auth_service, role):
        pair = auth_service.issue_tokens(Identity(subject="user-1", role=role))

        response = await self._get(roles_app, pair.access_token)

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_other_role_forbidden(self, roles_app, auth_service):
        pair = auth_service.issue_tokens(Identity(subject="user-1", role=UserRole.FARMER))

        response = await self._get(roles_app, pair.access_token)

        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_unauthenticated(self, roles_app):
        response = await self._get(roles_app)

        assert response.status_code == 401

    def test_unknown_role_rejected_at_definition(self):
        from farm_auth.core.dependencies import require_roles

        with pytest.raises(ValueError):
            require_roles("superuser")


class TestStateLookups:
    """Test suite for get_auth_service and get_cache_store."""

    def test_reads_app_state(self):
        from farm_auth.core.dependencies import get_auth_service, get_cache_store

        request = MagicMock()
        request.app.state.auth_service = "auth"
        request.app.state.cache = "cache"

        assert get_auth_service(request) == "auth"
        assert get_cache_store(request) == "cache"
