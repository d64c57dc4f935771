"""
Routers for the application.

This module exports the FastAPI routers included by the main application.
"""

from farm_auth.core.routers.auth import router as auth_router
from farm_auth.core.routers.otp import router as otp_router

__all__ = ["auth_router", "otp_router"]
