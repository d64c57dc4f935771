"""
Shared dependencies for FastAPI endpoints.
"""

from farm_auth.core.dependencies.auth import (
    AuthenticatedIdentity,
    AuthServiceDep,
    CacheStoreDep,
    CurrentIdentity,
    bearer_scheme,
    get_access_token,
    get_auth_service,
    get_cache_store,
    get_current_identity,
    require_roles,
)

__all__ = [
    "AuthenticatedIdentity",
    "AuthServiceDep",
    "CacheStoreDep",
    "CurrentIdentity",
    "bearer_scheme",
    "get_access_token",
    "get_auth_service",
    "get_cache_store",
    "get_current_identity",
    "require_roles",
]
