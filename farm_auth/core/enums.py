from enum import Enum


class OTPType(str, Enum):
    """Purpose of a one-time password."""

    # Email or phone, channel inferred from the identifier
    LOGIN = "login"
    REGISTER = "register"
    RESET_PASSWORD = "reset_password"
    EMAIL_VERIFICATION = "email_verification"

    # Phone only
    PHONE_VERIFICATION = "phone_verification"
    PHONE_LOGIN = "phone_login"
    PHONE_UPDATE = "phone_update"

    # 2FA
    TWO_FACTOR_AUTH = "2fa"

    # General purpose
    VERIFICATION = "verification"


class DeliveryChannel(str, Enum):
    """How an OTP reaches its recipient."""

    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"

    @property
    def is_phone(self) -> bool:
        return self in (DeliveryChannel.SMS, DeliveryChannel.WHATSAPP)


class TokenKind(str, Enum):
    """Class of signed token; each kind has its own signing secret."""

    ACCESS = "access"
    REFRESH = "refresh"
    VERIFICATION = "verification"


class UserRole(str, Enum):
    """Roles carried in access tokens."""

    FARMER = "farmer"
    AGENT = "agent"
    ADMIN = "admin"


class VerificationStatus(str, Enum):
    """Outcome of submitting an OTP code."""

    VALID = "valid"
    NOT_FOUND = "not_found"
    INVALID = "invalid"
    MAX_ATTEMPTS_REACHED = "max_attempts_reached"
    INVALID_FORMAT = "invalid_format"

    @property
    def code(self) -> str | None:
        """Machine-readable error code returned to API clients."""
        return {
            VerificationStatus.NOT_FOUND: "OTP_NOT_FOUND",
            VerificationStatus.INVALID: "INVALID_OTP",
            VerificationStatus.MAX_ATTEMPTS_REACHED: "MAX_ATTEMPTS_REACHED",
            VerificationStatus.INVALID_FORMAT: "INVALID_OTP_FORMAT",
        }.get(self)


class CacheMode(str, Enum):
    """Which backend the cache store is currently serving from."""

    PRIMARY = "primary"
    FALLBACK = "fallback"
