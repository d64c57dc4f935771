from fastapi import status


class AppException(Exception):
    """Base application exception."""

    code: str = "APP_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code or status.HTTP_500_INTERNAL_SERVER_ERROR
        self.details = details
        super().__init__(message)


class ValidationException(AppException):
    """Exception raised for malformed caller input."""

    code = "INVALID_FORMAT"

    def __init__(self, message: str = "Invalid input format."):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class InvalidIdentifierException(ValidationException):
    """Exception raised when an email or phone identifier cannot be normalized."""

    code = "INVALID_IDENTIFIER"

    def __init__(
        self, message: str = "Please provide a valid email or phone number."
    ):
        super().__init__(message)


class RateLimitExceededException(AppException):
    """Exception raised when an OTP is requested before the cooldown elapses."""

    code = "TOO_MANY_REQUESTS"

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again later.",
        retry_after: int | None = None,
    ):
        super().__init__(message, status.HTTP_429_TOO_MANY_REQUESTS)
        self.retry_after = retry_after


class OTPVerificationException(AppException):
    """Exception raised by the HTTP layer for a failed OTP verification."""

    def __init__(
        self,
        message: str = "Invalid OTP.",
        code: str = "INVALID_OTP",
        remaining_attempts: int | None = None,
    ):
        super().__init__(message, status.HTTP_400_BAD_REQUEST)
        self.code = code
        self.remaining_attempts = remaining_attempts


class OTPDeliveryException(AppException):
    """Exception raised when the delivery collaborator fails to send a code."""

    code = "OTP_DELIVERY_FAILED"

    def __init__(self, message: str = "Failed to deliver the verification code."):
        super().__init__(message, status.HTTP_502_BAD_GATEWAY)


class AuthenticationException(AppException):
    """Exception raised for authentication-related errors."""

    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication failed."):
        super().__init__(message, status.HTTP_401_UNAUTHORIZED)


class TokenExpiredException(AuthenticationException):
    """Exception raised when a signed token is past its expiry."""

    code = "TOKEN_EXPIRED"

    def __init__(self, message: str = "Token has expired."):
        super().__init__(message)


class TokenInvalidException(AuthenticationException):
    """Exception raised when a token fails signature or claim validation."""

    code = "TOKEN_INVALID"

    def __init__(self, message: str = "Invalid token."):
        super().__init__(message)


class TokenRevokedException(AuthenticationException):
    """Exception raised when a token is on the revocation list."""

    code = "TOKEN_REVOKED"

    def __init__(self, message: str = "Token has been revoked."):
        super().__init__(message)


class ForbiddenException(AppException):
    """Exception raised when the caller's role is not allowed."""

    code = "FORBIDDEN"

    def __init__(self, message: str = "Forbidden."):
        super().__init__(message, status.HTTP_403_FORBIDDEN)


class SigningConfigurationException(AppException):
    """Exception raised at startup when token signing is misconfigured."""

    code = "SIGNING_MISCONFIGURED"

    def __init__(self, message: str = "Token signing is misconfigured."):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class CacheBackendException(AppException):
    """Exception raised by a cache backend; the cache store recovers from it."""

    code = "CACHE_UNAVAILABLE"

    def __init__(self, message: str = "Cache backend unavailable."):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)


__all__ = [
    "AppException",
    "ValidationException",
    "InvalidIdentifierException",
    "RateLimitExceededException",
    "OTPVerificationException",
    "OTPDeliveryException",
    "AuthenticationException",
    "TokenExpiredException",
    "TokenInvalidException",
    "TokenRevokedException",
    "ForbiddenException",
    "SigningConfigurationException",
    "CacheBackendException",
]
