"""
Test suite for OTP code and identifier utilities.

Run tests:
    pytest tests/core/test_utils.py -v
"""

import statistics
import time
from unittest.mock import patch

import pytest

from farm_auth.core.exceptions.types import InvalidIdentifierException
from farm_auth.core.utils import (
    generate_otp_code,
    get_device_info,
    hash_otp_code,
    is_email,
    is_test_phone_number,
    mask_identifier,
    mask_otp,
    normalize_identifier,
    normalize_phone,
    secure_equals,
)


class TestGenerateOTPCode:
    """Test suite for generate_otp_code."""

    def test_default_length_is_six_digits(self):
        code = generate_otp_code()
        assert len(code) == 6
        assert code.isdigit()

    @pytest.mark.parametrize("length", [4, 8, 10])
    def test_custom_length(self, length):
        code = generate_otp_code(length)
        assert len(code) == length
        assert all(ch in "0123456789" for ch in code)

    def test_uses_secrets_module(self):
        """Codes must come from the OS CSPRNG, not the random module."""
        with patch("farm_auth.core.utils.secrets.choice", return_value="7") as choice:
            assert generate_otp_code(6) == "777777"
        assert choice.call_count == 6

    def test_codes_vary(self):
        codes = {generate_otp_code(6) for _ in range(50)}
        assert len(codes) > 1

    def test_invalid_length_raises(self):
        with pytest.raises(ValueError):
            generate_otp_code(0)


class TestSecureEquals:
    """Test suite for secure_equals."""

    def test_identical_values(self):
        assert secure_equals("123456", "123456") is True

    def test_same_length_mismatch(self):
        assert secure_equals("123456", "123457") is False

    def test_different_length(self):
        assert secure_equals("123456", "12345") is False
        assert secure_equals("", "1") is False

    @pytest.mark.parametrize("a,b", [(None, "123456"), ("123456", None), (123456, "123456")])
    def test_non_string_input_fails_closed(self, a, b):
        assert secure_equals(a, b) is False

    def test_delegates_to_compare_digest(self):
        with patch(
            "farm_auth.core.utils.hmac.compare_digest", return_value=True
        ) as compare:
            assert secure_equals("abc", "abd") is True
        compare.assert_called_once_with(b"abc", b"abd")

    def test_timing_does_not_depend_on_mismatch_position(self):
        """Early and late mismatches take statistically similar time."""
        secret = "a" * 64
        early = "b" + "a" * 63
        late = "a" * 63 + "b"

        def measure(candidate: str) -> float:
            samples = []
            for _ in range(15):
                start = time.perf_counter()
                for _ in range(2000):
                    secure_equals(secret, candidate)
                samples.append(time.perf_counter() - start)
            return statistics.median(samples)

        early_time = measure(early)
        late_time = measure(late)

        ratio = late_time / early_time
        assert 1 / 3 < ratio < 3


class TestHashOTPCode:
    """Test suite for hash_otp_code."""

    def test_is_deterministic_for_same_secret(self):
        assert hash_otp_code("123456", "secret-a") == hash_otp_code("123456", "secret-a")

    def test_depends_on_secret(self):
        assert hash_otp_code("123456", "secret-a") != hash_otp_code("123456", "secret-b")

    def test_does_not_contain_code(self):
        digest = hash_otp_code("123456", "secret-a")
        assert len(digest) == 64
        assert "123456" not in digest


class TestMasking:
    """Test suite for mask_otp and mask_identifier."""

    def test_mask_otp(self):
        assert mask_otp("123456") == "1****6"
        assert mask_otp("1234") == "1**4"
        assert mask_otp("12") == "**"

    def test_mask_email(self):
        assert mask_identifier("farmer@example.com") == "fa****@example.com"

    def test_mask_phone(self):
        assert mask_identifier("+919876543210") == "+919*******10"

    def test_mask_empty(self):
        assert mask_identifier(None) == ""
        assert mask_identifier("") == ""


class TestIdentifiers:
    """Test suite for identifier detection and normalization."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("user@example.com", True),
            ("  user@example.com ", True),
            ("user@example", False),
            ("+919876543210", False),
            ("", False),
            (None, False),
        ],
    )
    def test_is_email(self, value, expected):
        assert is_email(value) is expected

    def test_normalize_phone_adds_country_code(self):
        assert normalize_phone("9876543210", "+91") == "+919876543210"

    def test_normalize_phone_drops_leading_zero(self):
        assert normalize_phone("09876543210", "+91") == "+919876543210"

    def test_normalize_phone_keeps_explicit_country_code(self):
        assert normalize_phone("+1 (555) 000-1111", "+91") == "+15550001111"

    def test_normalize_phone_strips_separators(self):
        assert normalize_phone("98765-43210", "+91") == "+919876543210"

    @pytest.mark.parametrize("value", ["123", "+12", "", "   ", "+1234567890123456"])
    def test_normalize_phone_rejects_invalid(self, value):
        with pytest.raises(InvalidIdentifierException):
            normalize_phone(value, "+91")

    def test_normalize_identifier_lowercases_email(self):
        assert normalize_identifier("  Farmer@Example.COM ") == "farmer@example.com"

    def test_normalize_identifier_phone(self):
        assert normalize_identifier("+15550001111") == "+15550001111"

    @pytest.mark.parametrize("value", ["bad@", "@example.com", "", None])
    def test_normalize_identifier_rejects_invalid(self, value):
        with pytest.raises(InvalidIdentifierException):
            normalize_identifier(value)

    def test_is_test_phone_number(self):
        allowlist = ["15559990000"]
        assert is_test_phone_number("+15559990000", allowlist) is True
        assert is_test_phone_number("+15550001111", allowlist) is False
        assert is_test_phone_number("user@example.com", allowlist) is False


class TestGetDeviceInfo:
    """Test suite for get_device_info."""

    def test_android_chrome(self):
        ua = "Mozilla/5.0 (Linux; Android 13) AppleWebKit/537.36 Chrome/120.0"
        assert get_device_info(ua) == "Android / Chrome"

    def test_windows_edge(self):
        ua = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0 Edg/120.0"
        assert get_device_info(ua) == "Windows / Edge"

    def test_none(self):
        assert get_device_info(None) is None

    def test_unknown_agent_is_truncated(self):
        ua = "x" * 150
        assert get_device_info(ua) == "x" * 100
