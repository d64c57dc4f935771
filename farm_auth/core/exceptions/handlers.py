from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from farm_auth.core.config import request_logger
from farm_auth.core.exceptions.types import (
    AppException,
    AuthenticationException,
    ForbiddenException,
    OTPDeliveryException,
    OTPVerificationException,
    RateLimitExceededException,
    ValidationException,
)


async def general_exception_handler(request: Request, exc: AppException):
    """
    Handles general exceptions by returning a JSON response with the error message.

    Args:
        request: The request object.
        exc (AppException): The exception instance.

    Returns:
        JSONResponse: A response containing the error message and the exception's status code.
    """
    request_logger.error(f"GeneralException: {exc}")
    content = {"detail": exc.message, "code": exc.code}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


async def validation_exception_handler(request: Request, exc: ValidationException):
    """
    Handles malformed input (bad identifier, bad code format).

    Returns:
        JSONResponse: A response containing the error message and status code 400.
    """
    request_logger.warning(f"ValidationException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "code": exc.code},
    )


async def request_validation_exception_handler(
    request: Request, exc: RequestValidationError
):
    """
    Handles request bodies and parameters that fail schema validation.

    Wrong types, out-of-range lengths and missing fields are all reported as
    400 ``INVALID_FORMAT`` with one entry per offending field.

    Returns:
        JSONResponse: A response containing the error message and status code 400.
    """
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    request_logger.warning(f"RequestValidationError on {request.url.path}: {errors}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Invalid request format.",
            "code": ValidationException.code,
            "details": errors,
        },
    )


async def otp_verification_exception_handler(
    request: Request, exc: OTPVerificationException
):
    """
    Handles failed OTP verifications by returning a JSON response.

    The body always carries the machine-readable ``code`` (OTP_NOT_FOUND,
    INVALID_OTP, MAX_ATTEMPTS_REACHED or INVALID_OTP_FORMAT) and, for a plain
    mismatch, the number of attempts left.

    Args:
        request: The request object.
        exc (OTPVerificationException): The verification exception instance.

    Returns:
        JSONResponse: A response containing the error message and status code 400.
    """
    request_logger.warning(f"OTPVerificationException[{exc.code}]: {exc}")
    content = {"detail": str(exc), "code": exc.code}
    if exc.remaining_attempts is not None:
        content["remaining_attempts"] = exc.remaining_attempts
    return JSONResponse(status_code=exc.status_code, content=content)


async def otp_delivery_exception_handler(request: Request, exc: OTPDeliveryException):
    request_logger.error(f"OTPDeliveryException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "code": exc.code},
    )


async def authentication_exception_handler(
    request: Request, exc: AuthenticationException
):
    """
    Handles authentication exceptions by returning a JSON response.

    Args:
        request: The request object.
        exc (AuthenticationException): The authentication exception instance.

    Returns:
        JSONResponse: A response containing the error message and status code 401.
    """
    request_logger.warning(f"AuthenticationException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "code": exc.code},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def forbidden_exception_handler(request: Request, exc: ForbiddenException):
    request_logger.warning(f"ForbiddenException: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "code": exc.code},
    )


async def rate_limit_exception_handler(
    request: Request, exc: RateLimitExceededException
):
    """
    Handles rate limit exceeded exceptions by returning a JSON response.

    Args:
        request: The request object.
        exc (RateLimitExceededException): The rate limit exception instance.

    Returns:
        JSONResponse: A response with status code 429 and optional Retry-After header.
    """
    request_logger.warning(f"RateLimitExceededException: {exc}")
    headers = {}
    content = {"detail": str(exc), "code": exc.code}
    if exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)
        content["retry_after"] = exc.retry_after
    return JSONResponse(
        status_code=exc.status_code,
        content=content,
        headers=headers,
    )


exception_schema = {
    status.HTTP_500_INTERNAL_SERVER_ERROR: {
        "description": "Internal Server Error",
        "content": {
            "application/json": {
                "example": {
                    "detail": "Some internal server error message",
                    "code": "APP_ERROR",
                },
            }
        },
    },
    status.HTTP_401_UNAUTHORIZED: {
        "description": "Authentication Error",
        "content": {
            "application/json": {
                "example": {"detail": "Token has expired.", "code": "TOKEN_EXPIRED"},
            }
        },
    },
    status.HTTP_429_TOO_MANY_REQUESTS: {
        "description": "Rate Limit Exceeded",
        "content": {
            "application/json": {
                "example": {
                    "detail": "Please wait 30 seconds before requesting a new code.",
                    "code": "TOO_MANY_REQUESTS",
                    "retry_after": 30,
                },
            }
        },
    },
}


__all__ = [
    "general_exception_handler",
    "validation_exception_handler",
    "request_validation_exception_handler",
    "otp_verification_exception_handler",
    "otp_delivery_exception_handler",
    "authentication_exception_handler",
    "forbidden_exception_handler",
    "rate_limit_exception_handler",
    "exception_schema",
]
