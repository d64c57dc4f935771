"""
Schemas for API request validation and response serialization.
"""

from farm_auth.core.schemas.auth import (
    # Base
    MessageResponse,
    OTPServiceInfo,
    # OTP
    OTPRequest,
    OTPRequestResponse,
    OTPVerifyRequest,
    OTPVerifyResponse,
    # Tokens
    TokenResponse,
    RefreshTokenRequest,
    LogoutRequest,
    CurrentIdentityResponse,
)

__all__ = [
    "MessageResponse",
    "OTPServiceInfo",
    "OTPRequest",
    "OTPRequestResponse",
    "OTPVerifyRequest",
    "OTPVerifyResponse",
    "TokenResponse",
    "RefreshTokenRequest",
    "LogoutRequest",
    "CurrentIdentityResponse",
]
