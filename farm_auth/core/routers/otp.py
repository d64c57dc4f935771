"""
OTP router for issuing and verifying one-time passwords.

This module provides endpoints for:
- Service description
- OTP request and resend (rate limited per identifier)
- OTP verification, which logs the caller in for login-like OTP types

All endpoints are prefixed with /otp when mounted in the main app.
"""

from fastapi import APIRouter, Request, status

from farm_auth.core.config import settings
from farm_auth.core.dependencies.auth import AuthServiceDep
from farm_auth.core.enums import DeliveryChannel, OTPType
from farm_auth.core.exceptions.types import OTPVerificationException
from farm_auth.core.schemas.auth import (
    OTPRequest,
    OTPRequestResponse,
    OTPServiceInfo,
    OTPVerifyRequest,
    OTPVerifyResponse,
)
from farm_auth.core.services.otp import OTPRequestResult
from farm_auth.core.utils import get_device_info


router = APIRouter()


# =============================================================================
# Helper Functions
# =============================================================================


def _request_metadata(request: Request) -> dict[str, str | None]:
    """Request context stored alongside the OTP session."""
    user_agent = request.headers.get("User-Agent")
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": user_agent,
        "device": get_device_info(user_agent),
    }


def _build_request_response(
    result: OTPRequestResult, message: str
) -> OTPRequestResponse:
    return OTPRequestResponse(
        message=message,
        identifier=result.identifier,
        type=result.otp_type,
        delivery_method=result.channel,
        expires_at=result.expires_at,
        expires_in=result.expires_in,
        resend_after=result.resend_after,
        test_mode=result.test_mode,
        otp=result.code,
    )


# =============================================================================
# Endpoints
# =============================================================================


@router.get(
    "",
    response_model=OTPServiceInfo,
    summary="Describe the OTP service",
)
async def otp_service_info() -> OTPServiceInfo:
    return OTPServiceInfo(
        version=settings.APP_VERSION,
        endpoints={
            "request": "POST /otp/request",
            "resend": "POST /otp/resend",
            "verify": "POST /otp/verify",
        },
        supported_types=list(OTPType),
        delivery_methods=list(DeliveryChannel),
    )


@router.post(
    "/request",
    response_model=OTPRequestResponse,
    status_code=status.HTTP_200_OK,
    summary="Request an OTP",
    description="""
## Request a One-Time Password

Generates a numeric code for the identifier (email address or phone number)
and hands it to the delivery channel. Any pending code for the same
identifier and type is replaced.

### Lifetimes

| Channel | Code valid for | Next request allowed after |
|---------|----------------|----------------------------|
| email | `OTP_EXPIRY` (600s) | `OTP_RESEND_DELAY` (30s) |
| sms / whatsapp | `PHONE_OTP_EXPIRY` (300s) | `PHONE_OTP_RESEND_DELAY` (60s) |

Outside production the code is echoed back in `otp` for testing.

### Errors

- **400**: Identifier is not a valid email address or phone number
- **429**: A code was requested too recently (`Retry-After` header is set)
- **502**: The code could not be delivered
""",
)
async def request_otp(
    request: Request,
    data: OTPRequest,
    auth: AuthServiceDep,
) -> OTPRequestResponse:
    result = await auth.request_code(
        data.type,
        data.identifier,
        channel=data.delivery_method,
        metadata=_request_metadata(request),
    )
    return _build_request_response(
        result, f"OTP sent successfully via {result.channel.value}"
    )


@router.post(
    "/resend",
    response_model=OTPRequestResponse,
    summary="Resend an OTP",
    description="""
## Resend a One-Time Password

Issues a fresh code, invalidating the previous one. Subject to the same
cooldown as `POST /otp/request`.
""",
)
async def resend_otp(
    request: Request,
    data: OTPRequest,
    auth: AuthServiceDep,
) -> OTPRequestResponse:
    result = await auth.resend_code(
        data.type,
        data.identifier,
        channel=data.delivery_method,
        metadata=_request_metadata(request),
    )
    return _build_request_response(
        result, f"New OTP sent successfully via {result.channel.value}"
    )


@router.post(
    "/verify",
    response_model=OTPVerifyResponse,
    summary="Verify an OTP",
    description="""
## Verify a One-Time Password

A code can be verified successfully exactly once. On success the response
carries a short-lived `verification_token`; for `login`, `phone_login`,
`register` and `2fa` codes it also carries an access/refresh token pair.

### Error Response (400)

```json
{
  "detail": "Invalid OTP.",
  "code": "INVALID_OTP",
  "remaining_attempts": 2
}
```

| `code` | Meaning |
|--------|---------|
| `OTP_NOT_FOUND` | No pending code (expired, already used or never requested) |
| `INVALID_OTP` | Wrong code; `remaining_attempts` tells how many tries are left |
| `MAX_ATTEMPTS_REACHED` | Too many wrong codes; request a new one |
| `INVALID_OTP_FORMAT` | The submitted code is not a numeric code |
""",
)
async def verify_otp(
    data: OTPVerifyRequest,
    auth: AuthServiceDep,
) -> OTPVerifyResponse:
    outcome = await auth.complete_verification(data.type, data.identifier, data.otp)
    result = outcome.result

    if not outcome.valid:
        raise OTPVerificationException(
            result.message,
            code=result.code,
            remaining_attempts=result.remaining_attempts,
        )

    response = OTPVerifyResponse(
        identifier=result.identifier,
        type=result.otp_type,
        verification_token=outcome.verification_token,
    )
    if outcome.tokens is not None:
        response.user_id = outcome.identity.subject
        response.role = outcome.identity.role
        response.access_token = outcome.tokens.access_token
        response.refresh_token = outcome.tokens.refresh_token
        response.token_type = "bearer"
        response.expires_in = outcome.tokens.expires_in
    return response


__all__ = ["router"]
