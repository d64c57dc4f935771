"""
Utility functions for the OTP authentication core.

This module provides reusable utility functions including:
- Cryptographically secure OTP code generation
- Constant-time comparison and keyed hashing of OTP codes
- Email / phone identifier detection, normalization and masking
"""

import hashlib
import hmac
import re
import secrets

from farm_auth.core.config import settings, utils_logger
from farm_auth.core.exceptions.types import InvalidIdentifierException


PHONE_REGEX = re.compile(r"^\+?[0-9]{10,15}$")
EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def generate_otp_code(length: int = 6) -> str:
    """
    Generate a numeric One-Time Password (OTP) code of specified length.

    Args:
        length: Length of the OTP code to generate. Default is 6.

    Returns:
        A string representing the numeric OTP code.

    Raises:
        ValueError: If length is smaller than 1.
    """
    if length < 1:
        raise ValueError("OTP length must be at least 1")

    otp = "".join(secrets.choice("0123456789") for _ in range(length))

    utils_logger.debug(f"OTP code of length {length} generated successfully")
    return otp


def secure_equals(a: str | None, b: str | None) -> bool:
    """
    Compare two strings in constant time.

    The byte comparison is delegated to hmac.compare_digest, whose running time
    does not depend on the position of the first differing byte. Lengths are not
    secret, so a length mismatch simply returns False.

    Args:
        a: First value.
        b: Second value.

    Returns:
        bool: True only when both values are strings with identical content.
              Never raises; non-string input returns False.

    Examples:
        >>> secure_equals("123456", "123456")
        True
        >>> secure_equals("123456", "12345")
        False
        >>> secure_equals(None, "123456")
        False
    """
    if not isinstance(a, str) or not isinstance(b, str):
        return False

    a_bytes = a.encode("utf-8")
    b_bytes = b.encode("utf-8")
    if len(a_bytes) != len(b_bytes):
        return False

    return hmac.compare_digest(a_bytes, b_bytes)


def hash_otp_code(code: str, secret: str | None = None) -> str:
    """
    Derive the value stored in the cache for an OTP code.

    Uses HMAC-SHA256 keyed with OTP_HASH_SECRET so that a cache dump does not
    reveal live codes, and so that the short code space cannot be brute forced
    offline without the key.

    Args:
        code: The plain OTP code.
        secret: Optional key override. Defaults to settings.OTP_HASH_SECRET.

    Returns:
        str: Hex encoded HMAC digest (64 characters).
    """
    key = (secret or settings.OTP_HASH_SECRET).encode("utf-8")
    return hmac.new(key, code.encode("utf-8"), hashlib.sha256).hexdigest()


def mask_otp(otp: str) -> str:
    """
    Mask an OTP code for logging purposes, showing only first and last digit.

    Args:
        otp: The OTP code to mask.

    Returns:
        A masked version of the OTP (e.g., "123456" -> "1****6").

    Examples:
        >>> mask_otp("123456")
        '1****6'
        >>> mask_otp("12")
        '**'
    """
    if len(otp) <= 2:
        return "*" * len(otp)

    return f"{otp[0]}{'*' * (len(otp) - 2)}{otp[-1]}"


def is_email(identifier: str | None) -> bool:
    """Return True when the identifier looks like an email address."""
    if not identifier:
        return False
    return bool(EMAIL_REGEX.match(identifier.strip()))


def normalize_phone(phone: str, country_code: str | None = None) -> str:
    """
    Normalize a phone number to E.164-like form ("+" followed by digits).

    Numbers that already carry a leading "+" keep their own country code.
    Otherwise any leading zero is dropped and the default country code is
    prefixed.

    Args:
        phone: Raw phone number, may contain spaces, dashes or parentheses.
        country_code: Country code to prefix. Defaults to settings.DEFAULT_COUNTRY_CODE.

    Returns:
        str: Normalized phone number, e.g. "+919876543210".

    Raises:
        InvalidIdentifierException: If the result is not 10 to 15 digits long.

    Examples:
        >>> normalize_phone("09876543210", "+91")
        '+919876543210'
        >>> normalize_phone("+1 (555) 000-1111")
        '+15550001111'
    """
    if not isinstance(phone, str) or not phone.strip():
        raise InvalidIdentifierException("Please provide a valid phone number.")

    raw = phone.strip()
    digits = re.sub(r"\D", "", raw)

    if raw.startswith("+"):
        normalized = f"+{digits}"
    else:
        digits = digits.lstrip("0")
        code_digits = re.sub(r"\D", "", country_code or settings.DEFAULT_COUNTRY_CODE)
        normalized = f"+{code_digits}{digits}"

    if not PHONE_REGEX.match(normalized):
        utils_logger.warning(
            f"Phone number failed validation: {mask_identifier(normalized)}"
        )
        raise InvalidIdentifierException("Please provide a valid phone number.")

    return normalized


def normalize_identifier(identifier: str, country_code: str | None = None) -> str:
    """
    Normalize an OTP identifier.

    Emails are trimmed and lower-cased; anything else is treated as a phone
    number and passed through normalize_phone.

    Raises:
        InvalidIdentifierException: If the identifier is empty or not a valid
            email / phone number.
    """
    if not isinstance(identifier, str) or not identifier.strip():
        raise InvalidIdentifierException()

    if "@" in identifier:
        if not is_email(identifier):
            raise InvalidIdentifierException("Please provide a valid email address.")
        return identifier.strip().lower()

    return normalize_phone(identifier, country_code)


def mask_identifier(identifier: str | None) -> str:
    """
    Mask an email or phone identifier for logging.

    Examples:
        >>> mask_identifier("farmer@example.com")
        'fa****@example.com'
        >>> mask_identifier("+919876543210")
        '+919*******10'
    """
    if not identifier:
        return ""

    if "@" in identifier:
        local, _, domain = identifier.partition("@")
        visible = local[:2]
        return f"{visible}{'*' * max(len(local) - len(visible), 1)}@{domain}"

    if len(identifier) <= 6:
        return "*" * len(identifier)

    return f"{identifier[:4]}{'*' * (len(identifier) - 6)}{identifier[-2:]}"


def is_test_phone_number(identifier: str, allowlist: list[str] | None = None) -> bool:
    """
    Return True when the identifier is on the test number allowlist.

    Args:
        identifier: Normalized phone number.
        allowlist: Digit strings to match. Defaults to settings.test_phone_numbers.
    """
    if not identifier or "@" in identifier:
        return False
    if allowlist is None:
        allowlist = settings.test_phone_numbers
    digits = re.sub(r"\D", "", identifier)
    return digits in allowlist


def get_device_info(user_agent: str | None) -> str | None:
    """
    Parse user agent string to extract basic device information.

    Only used to annotate OTP session metadata; it is never interpreted by the
    verification logic.

    Args:
        user_agent: User-Agent header string from request

    Returns:
        Parsed device info string or None if user_agent is None

    Examples:
        >>> ua = "Mozilla/5.0 (Linux; Android 13) AppleWebKit/537.36 Chrome/120.0"
        >>> get_device_info(ua)
        'Android / Chrome'
    """
    if not user_agent:
        return None

    device_info_parts = []

    # Detect OS
    if "Windows" in user_agent:
        device_info_parts.append("Windows")
    elif "Android" in user_agent:
        device_info_parts.append("Android")
    elif "iPhone" in user_agent or "iPad" in user_agent:
        device_info_parts.append("iOS")
    elif "Mac OS X" in user_agent or "Macintosh" in user_agent:
        device_info_parts.append("macOS")
    elif "Linux" in user_agent:
        device_info_parts.append("Linux")

    # Detect browser
    if "Edg/" in user_agent:
        device_info_parts.append("Edge")
    elif "Chrome" in user_agent:
        device_info_parts.append("Chrome")
    elif "Firefox" in user_agent:
        device_info_parts.append("Firefox")
    elif "Safari" in user_agent:
        device_info_parts.append("Safari")
    elif "okhttp" in user_agent.lower():
        device_info_parts.append("Mobile App")

    if device_info_parts:
        return " / ".join(device_info_parts)

    return user_agent[:100]


__all__ = [
    "PHONE_REGEX",
    "EMAIL_REGEX",
    "generate_otp_code",
    "secure_equals",
    "hash_otp_code",
    "mask_otp",
    "is_email",
    "normalize_phone",
    "normalize_identifier",
    "mask_identifier",
    "is_test_phone_number",
    "get_device_info",
]
