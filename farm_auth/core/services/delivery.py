"""
OTP delivery collaborators.

The session manager hands every generated code to an ``OTPDelivery``.
Real SMS / email / WhatsApp integrations live outside this service; the
default ``LoggingDelivery`` only records that a message would have been sent.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import math

from farm_auth.core.config import otp_logger, settings
from farm_auth.core.enums import DeliveryChannel, OTPType
from farm_auth.core.utils import mask_identifier, mask_otp


OTP_EMAIL_SUBJECTS: dict[OTPType, str] = {
    OTPType.LOGIN: "Your Login Verification Code",
    OTPType.REGISTER: "Welcome! Verify Your Account",
    OTPType.RESET_PASSWORD: "Reset Your Password",
    OTPType.EMAIL_VERIFICATION: "Verify Your Email Address",
    OTPType.PHONE_VERIFICATION: "Verify Your Phone Number",
    OTPType.TWO_FACTOR_AUTH: "Your Two-Factor Authentication Code",
}
DEFAULT_EMAIL_SUBJECT = "Your Verification Code"

OTP_SMS_MESSAGES: dict[OTPType, str] = {
    OTPType.LOGIN: "Your login code is {otp}. Valid for {minutes} minutes.",
    OTPType.REGISTER: "Welcome! Your verification code is {otp}.",
    OTPType.RESET_PASSWORD: "Your password reset code is {otp}.",
    OTPType.EMAIL_VERIFICATION: "Your email verification code is {otp}.",
    OTPType.PHONE_VERIFICATION: "Your phone verification code is {otp}.",
    OTPType.PHONE_LOGIN: "Your login code is {otp}. Valid for {minutes} minutes.",
    OTPType.TWO_FACTOR_AUTH: "Your 2FA code is {otp}.",
}
DEFAULT_SMS_MESSAGE = "Your verification code is {otp}."


@dataclass(frozen=True)
class OTPMessage:
    """A rendered OTP message ready to be handed to a delivery channel."""

    otp_type: OTPType
    channel: DeliveryChannel
    recipient: str
    code: str
    body: str
    subject: str | None = None
    expires_in: int | None = None

    def __repr__(self) -> str:
        return (
            f"OTPMessage(otp_type={self.otp_type.value!r}, "
            f"channel={self.channel.value!r}, "
            f"recipient={mask_identifier(self.recipient)!r}, code='{mask_otp(self.code)}')"
        )


def build_otp_message(
    otp_type: OTPType,
    channel: DeliveryChannel,
    recipient: str,
    code: str,
    expires_in: int,
) -> OTPMessage:
    """
    Render the message text (and email subject) for an OTP.

    Args:
        otp_type: Purpose of the code; selects the message template.
        channel: Delivery channel; only email messages get a subject.
        recipient: Normalized email address or phone number.
        code: The plain OTP code.
        expires_in: Code lifetime in seconds, rendered as whole minutes.

    Returns:
        OTPMessage: The rendered message.
    """
    minutes = max(1, math.ceil(expires_in / 60))
    template = OTP_SMS_MESSAGES.get(otp_type, DEFAULT_SMS_MESSAGE)
    body = template.format(otp=code, minutes=minutes)
    subject = None
    if channel is DeliveryChannel.EMAIL:
        subject = OTP_EMAIL_SUBJECTS.get(otp_type, DEFAULT_EMAIL_SUBJECT)
    return OTPMessage(
        otp_type=otp_type,
        channel=channel,
        recipient=recipient,
        code=code,
        body=body,
        subject=subject,
        expires_in=expires_in,
    )


class OTPDelivery(ABC):
    """
    Abstract base class for OTP delivery collaborators.

    Implementations raise ``OTPDeliveryException`` when a message could not be
    handed to the provider.
    """

    @abstractmethod
    async def send(self, message: OTPMessage) -> None:
        """Deliver a rendered OTP message."""
        pass


class LoggingDelivery(OTPDelivery):
    """
    Delivery stub that writes the message to the OTP log.

    The plain code is only logged in development; elsewhere it is masked.
    """

    def __init__(self, reveal_codes: bool | None = None) -> None:
        if reveal_codes is None:
            reveal_codes = settings.ENVIRONMENT.lower() == "development"
        self._reveal_codes = reveal_codes

    async def send(self, message: OTPMessage) -> None:
        code = message.code if self._reveal_codes else mask_otp(message.code)
        otp_logger.info(
            f"[{message.channel.value}] OTP {code} for {message.otp_type.value} "
            f"queued to {mask_identifier(message.recipient)}"
        )


__all__ = [
    "OTP_EMAIL_SUBJECTS",
    "OTP_SMS_MESSAGES",
    "OTPMessage",
    "build_otp_message",
    "OTPDelivery",
    "LoggingDelivery",
]
