"""
Authentication schemas for request validation and response serialization.

This module provides Pydantic models for the OTP and token endpoints:
- OTP request, resend and verification
- Token refresh and revocation (logout)
- Current identity
"""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from farm_auth.core.enums import DeliveryChannel, OTPType, UserRole


# =============================================================================
# Type Aliases for Reusable Annotated Types
# =============================================================================

# Email address or phone number; normalized by the OTP service
IdentifierStr = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=3, max_length=254),
    Field(description="Email address or phone number (with or without country code)"),
]

# Digits are checked by the OTP service (INVALID_OTP_FORMAT); non-strings and
# overlong values fail request validation (INVALID_FORMAT)
OTPCodeStr = Annotated[
    str,
    StringConstraints(max_length=32),
    Field(description="Numeric verification code"),
]


# =============================================================================
# Base Schemas
# =============================================================================


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
    success: bool = True


class OTPServiceInfo(BaseModel):
    """Describes the OTP endpoints."""

    service: str = "OTP Service"
    version: str
    endpoints: dict[str, str]
    supported_types: list[OTPType]
    delivery_methods: list[DeliveryChannel]


# =============================================================================
# OTP Schemas
# =============================================================================


class OTPRequest(BaseModel):
    """Request schema for issuing (or re-issuing) an OTP."""

    identifier: IdentifierStr
    type: Annotated[OTPType, Field(description="Purpose of the OTP")] = OTPType.LOGIN
    delivery_method: Annotated[
        DeliveryChannel | None,
        Field(description="Delivery channel; inferred from the identifier if omitted"),
    ] = None


class OTPRequestResponse(BaseModel):
    """Response schema for an issued OTP."""

    message: str = "OTP sent successfully"
    success: bool = True
    identifier: str
    type: OTPType
    delivery_method: DeliveryChannel
    expires_at: datetime
    expires_in: Annotated[int, Field(description="Code lifetime in seconds")]
    resend_after: Annotated[
        int, Field(description="Seconds before another code can be requested")
    ]
    test_mode: bool = False
    otp: Annotated[
        str | None,
        Field(description="The code itself; only returned outside production"),
    ] = None


class OTPVerifyRequest(BaseModel):
    """Request schema for OTP verification."""

    identifier: IdentifierStr
    otp: OTPCodeStr
    type: Annotated[OTPType, Field(description="Purpose of the OTP")] = OTPType.LOGIN


class OTPVerifyResponse(BaseModel):
    """Response schema for a successful OTP verification."""

    message: str = "OTP verified successfully"
    success: bool = True
    identifier: str
    type: OTPType
    verification_token: Annotated[
        str,
        Field(description="Short-lived token proving the identifier was verified"),
    ]
    user_id: str | None = None
    role: UserRole | None = None
    access_token: str | None = None
    refresh_token: str | None = None
    token_type: Literal["bearer"] | None = None
    expires_in: int | None = None


# =============================================================================
# Token Schemas
# =============================================================================


class TokenResponse(BaseModel):
    """Response schema for successful authentication."""

    access_token: Annotated[str, Field(description="Short-lived JWT access token")]
    refresh_token: Annotated[str, Field(description="Long-lived refresh token")]
    token_type: Literal["bearer"] = "bearer"
    expires_in: Annotated[
        int, Field(description="Access token expiration time in seconds")
    ]


class RefreshTokenRequest(BaseModel):
    """Request schema for token refresh."""

    refresh_token: Annotated[str, Field(description="The refresh token to use")]


class LogoutRequest(BaseModel):
    """Request schema for logout; the access token comes from the Authorization header."""

    refresh_token: Annotated[
        str | None, Field(description="Refresh token to revoke as well")
    ] = None


class CurrentIdentityResponse(BaseModel):
    """Claims of the authenticated caller."""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    role: UserRole
    expires_at: datetime


__all__ = [
    "IdentifierStr",
    "OTPCodeStr",
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
