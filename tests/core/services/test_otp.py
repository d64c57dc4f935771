"""
Test suite for the OTP session manager.

- Issuing: channel resolution, expiry, resend cooldown, test numbers
- Verification: valid once, invalid with remaining attempts, exhaustion,
  expiry and malformed input
- Delivery failures and cache failures

Run tests:
    pytest tests/core/services/test_otp.py -v
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from farm_auth.core.enums import DeliveryChannel, OTPType, VerificationStatus
from farm_auth.core.exceptions.types import (
    CacheBackendException,
    InvalidIdentifierException,
    OTPDeliveryException,
    RateLimitExceededException,
)
from farm_auth.core.services.cache import CacheStore, MemoryBackend
from farm_auth.core.services.delivery import LoggingDelivery, OTPDelivery
from farm_auth.core.services.otp import OTPSession, OTPSessionManager


PHONE = "+15550001111"
EMAIL = "farmer@example.com"


def wrong_code(code: str) -> str:
    return "000000" if code != "000000" else "111111"


class FailingDelivery(OTPDelivery):
    """Delivery collaborator whose provider is down."""

    def __init__(self):
        self.calls = 0

    async def send(self, message):
        self.calls += 1
        raise OTPDeliveryException("SMS provider unavailable")


# =============================================================================
# Issuing
# =============================================================================


class TestRequestCode:
    """Test suite for OTPSessionManager.request_code."""

    @pytest.mark.asyncio
    async def test_phone_login_expires_in_five_minutes(self, otp_manager, delivery):
        result = await otp_manager.request_code(OTPType.LOGIN, PHONE)

        assert result.channel is DeliveryChannel.SMS
        assert result.expires_in == 300
        assert result.resend_after == 60
        assert result.identifier == PHONE
        assert result.code is not None and len(result.code) == 6
        assert result.test_mode is False

        assert len(delivery.sent) == 1
        message = delivery.sent[0]
        assert message.recipient == PHONE
        assert result.code in message.body
        assert message.subject is None

    @pytest.mark.asyncio
    async def test_email_login_uses_email_channel(self, otp_manager, delivery):
        result = await otp_manager.request_code(OTPType.LOGIN, "  Farmer@Example.com ")

        assert result.channel is DeliveryChannel.EMAIL
        assert result.identifier == EMAIL
        assert result.expires_in == 600
        assert result.resend_after == 30
        assert delivery.sent[0].subject == "Your Login Verification Code"

    @pytest.mark.asyncio
    async def test_expires_at_matches_clock(self, otp_manager, clock):
        result = await otp_manager.request_code(OTPType.LOGIN, PHONE)
        assert result.expires_at.timestamp() == pytest.approx(clock() + 300)

    @pytest.mark.asyncio
    async def test_session_stores_hash_not_code(self, otp_manager, cache_store):
        result = await otp_manager.request_code(OTPType.LOGIN, PHONE)

        stored = await cache_store.get(f"otp:login:{PHONE}")

        assert stored["code_hash"] != result.code
        assert result.code not in str(stored)
        assert stored["max_attempts"] == 3
        assert stored["verified"] is False

    @pytest.mark.asyncio
    async def test_metadata_is_stored(self, otp_manager):
        await otp_manager.request_code(
            OTPType.LOGIN, PHONE, metadata={"ip_address": "10.0.0.1"}
        )
        session = await otp_manager.get_session(OTPType.LOGIN, PHONE)
        assert session.metadata == {"ip_address": "10.0.0.1"}

    @pytest.mark.asyncio
    async def test_accepts_type_value_string(self, otp_manager):
        result = await otp_manager.request_code("2fa", PHONE)
        assert result.otp_type is OTPType.TWO_FACTOR_AUTH

    @pytest.mark.asyncio
    async def test_unsupported_type_raises(self, otp_manager):
        with pytest.raises(InvalidIdentifierException):
            await otp_manager.request_code("not-a-type", PHONE)

    @pytest.mark.asyncio
    async def test_invalid_identifier_raises(self, otp_manager, delivery):
        with pytest.raises(InvalidIdentifierException):
            await otp_manager.request_code(OTPType.LOGIN, "12")
        assert len(delivery.sent) == 0

    @pytest.mark.asyncio
    async def test_production_does_not_return_code(
        self, cache_store, delivery, test_settings, clock
    ):
        config = test_settings.model_copy(update={"ENVIRONMENT": "production"})
        manager = OTPSessionManager(cache_store, delivery, config=config, clock=clock)

        result = await manager.request_code(OTPType.LOGIN, PHONE)

        assert result.code is None
        assert len(delivery.sent) == 1


class TestChannelResolution:
    """Test suite for OTPSessionManager.resolve_channel."""

    def test_email_verification_requires_email(self, otp_manager):
        with pytest.raises(InvalidIdentifierException):
            otp_manager.resolve_channel(OTPType.EMAIL_VERIFICATION, PHONE)

    @pytest.mark.parametrize(
        "otp_type",
        [OTPType.PHONE_LOGIN, OTPType.PHONE_VERIFICATION, OTPType.PHONE_UPDATE],
    )
    def test_phone_types_reject_email(self, otp_manager, otp_type):
        with pytest.raises(InvalidIdentifierException):
            otp_manager.resolve_channel(otp_type, EMAIL)

    def test_whatsapp_for_phone(self, otp_manager):
        channel = otp_manager.resolve_channel(
            OTPType.LOGIN, PHONE, DeliveryChannel.WHATSAPP
        )
        assert channel is DeliveryChannel.WHATSAPP

    def test_whatsapp_for_email_rejected(self, otp_manager):
        with pytest.raises(InvalidIdentifierException):
            otp_manager.resolve_channel(OTPType.LOGIN, EMAIL, DeliveryChannel.WHATSAPP)

    def test_email_for_phone_rejected(self, otp_manager):
        with pytest.raises(InvalidIdentifierException):
            otp_manager.resolve_channel(OTPType.LOGIN, PHONE, DeliveryChannel.EMAIL)

    def test_inferred_channels(self, otp_manager):
        assert otp_manager.resolve_channel(OTPType.LOGIN, EMAIL) is DeliveryChannel.EMAIL
        assert otp_manager.resolve_channel(OTPType.LOGIN, PHONE) is DeliveryChannel.SMS


class TestResendCooldown:
    """Test suite for the resend gate."""

    @pytest.mark.asyncio
    async def test_email_request_within_cooldown_is_rejected(self, otp_manager, clock):
        await otp_manager.request_code(OTPType.LOGIN, EMAIL)

        with pytest.raises(RateLimitExceededException) as exc_info:
            await otp_manager.request_code(OTPType.LOGIN, EMAIL)
        assert exc_info.value.retry_after == 30

        clock.advance(10)
        with pytest.raises(RateLimitExceededException) as exc_info:
            await otp_manager.resend_code(OTPType.LOGIN, EMAIL)
        assert exc_info.value.retry_after == 20

        clock.advance(20)
        result = await otp_manager.resend_code(OTPType.LOGIN, EMAIL)
        assert result.identifier == EMAIL

    @pytest.mark.asyncio
    async def test_phone_cooldown_is_longer(self, otp_manager, clock):
        await otp_manager.request_code(OTPType.LOGIN, PHONE)

        clock.advance(30)
        with pytest.raises(RateLimitExceededException) as exc_info:
            await otp_manager.request_code(OTPType.LOGIN, PHONE)
        assert exc_info.value.retry_after == 30

    @pytest.mark.asyncio
    async def test_cooldown_is_per_type(self, otp_manager):
        await otp_manager.request_code(OTPType.LOGIN, EMAIL)
        result = await otp_manager.request_code(OTPType.EMAIL_VERIFICATION, EMAIL)
        assert result.otp_type is OTPType.EMAIL_VERIFICATION

    @pytest.mark.asyncio
    async def test_rejected_request_keeps_existing_code(self, otp_manager):
        first = await otp_manager.request_code(OTPType.LOGIN, EMAIL)
        with pytest.raises(RateLimitExceededException):
            await otp_manager.request_code(OTPType.LOGIN, EMAIL)

        result = await otp_manager.verify_code(OTPType.LOGIN, EMAIL, first.code)
        assert result.status is VerificationStatus.VALID

    @pytest.mark.asyncio
    async def test_resend_replaces_code_and_resets_attempts(self, otp_manager, clock):
        with patch(
            "farm_auth.core.services.otp.generate_otp_code",
            side_effect=["111111", "222222"],
        ):
            await otp_manager.request_code(OTPType.LOGIN, EMAIL)
            await otp_manager.verify_code(OTPType.LOGIN, EMAIL, "999999")
            clock.advance(30)
            await otp_manager.resend_code(OTPType.LOGIN, EMAIL)

        session = await otp_manager.get_session(OTPType.LOGIN, EMAIL)
        assert session.attempts == 0
        assert session.metadata == {"resend": True}

        old = await otp_manager.verify_code(OTPType.LOGIN, EMAIL, "111111")
        assert old.status is VerificationStatus.INVALID

        new = await otp_manager.verify_code(OTPType.LOGIN, EMAIL, "222222")
        assert new.status is VerificationStatus.VALID


class TestTestNumbers:
    """Test suite for allowlisted test phone numbers."""

    @pytest.mark.asyncio
    async def test_delivery_is_skipped(self, otp_manager, delivery):
        result = await otp_manager.request_code(OTPType.LOGIN, "+15559990000")

        assert result.test_mode is True
        assert result.code is not None
        assert len(delivery.sent) == 0

        verified = await otp_manager.verify_code(
            OTPType.LOGIN, "+15559990000", result.code
        )
        assert verified.valid


class TestDeliveryFailure:
    """Test suite for delivery collaborator failures."""

    @pytest.mark.asyncio
    async def test_failure_clears_session_and_gate(
        self, cache_store, test_settings, clock
    ):
        failing = FailingDelivery()
        manager = OTPSessionManager(
            cache_store, failing, config=test_settings, clock=clock
        )

        with pytest.raises(OTPDeliveryException):
            await manager.request_code(OTPType.LOGIN, PHONE)

        assert failing.calls == 1
        assert await manager.get_session(OTPType.LOGIN, PHONE) is None

        # Retry is allowed immediately
        working = OTPSessionManager(
            cache_store, LoggingDelivery(False), config=test_settings, clock=clock
        )
        result = await working.request_code(OTPType.LOGIN, PHONE)
        assert result.code is not None


# =============================================================================
# Verification
# =============================================================================


class TestVerifyCode:
    """Test suite for OTPSessionManager.verify_code."""

    @pytest.mark.asyncio
    async def test_valid_code(self, otp_manager):
        issued = await otp_manager.request_code(OTPType.LOGIN, PHONE)

        result = await otp_manager.verify_code(OTPType.LOGIN, PHONE, issued.code)

        assert result.status is VerificationStatus.VALID
        assert result.valid is True
        assert result.code is None
        assert result.identifier == PHONE

    @pytest.mark.asyncio
    async def test_identifier_is_normalized_on_verify(self, otp_manager):
        issued = await otp_manager.request_code(OTPType.LOGIN, "+1 555 000 1111")
        result = await otp_manager.verify_code(OTPType.LOGIN, PHONE, issued.code)
        assert result.valid

    @pytest.mark.asyncio
    async def test_valid_only_once(self, otp_manager):
        issued = await otp_manager.request_code(OTPType.LOGIN, PHONE)

        first = await otp_manager.verify_code(OTPType.LOGIN, PHONE, issued.code)
        second = await otp_manager.verify_code(OTPType.LOGIN, PHONE, issued.code)

        assert first.status is VerificationStatus.VALID
        assert second.status is VerificationStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_concurrent_verifications_yield_single_valid(self, otp_manager):
        issued = await otp_manager.request_code(OTPType.LOGIN, PHONE)

        results = await asyncio.gather(
            *(
                otp_manager.verify_code(OTPType.LOGIN, PHONE, issued.code)
                for _ in range(10)
            )
        )

        statuses = [r.status for r in results]
        assert statuses.count(VerificationStatus.VALID) == 1
        assert statuses.count(VerificationStatus.NOT_FOUND) == 9

    @pytest.mark.asyncio
    async def test_wrong_code_reports_remaining_attempts(self, otp_manager):
        issued = await otp_manager.request_code(OTPType.LOGIN, PHONE)
        bad = wrong_code(issued.code)

        first = await otp_manager.verify_code(OTPType.LOGIN, PHONE, bad)
        second = await otp_manager.verify_code(OTPType.LOGIN, PHONE, bad)

        assert first.status is VerificationStatus.INVALID
        assert first.remaining_attempts == 2
        assert first.code == "INVALID_OTP"
        assert second.remaining_attempts == 1

    @pytest.mark.asyncio
    async def test_three_wrong_codes_exhaust_session(self, otp_manager):
        issued = await otp_manager.request_code(OTPType.LOGIN, PHONE)
        bad = wrong_code(issued.code)

        results = [
            await otp_manager.verify_code(OTPType.LOGIN, PHONE, bad) for _ in range(3)
        ]

        assert [r.status for r in results] == [
            VerificationStatus.INVALID,
            VerificationStatus.INVALID,
            VerificationStatus.MAX_ATTEMPTS_REACHED,
        ]
        assert results[-1].remaining_attempts == 0

        # Even the correct code is rejected once exhausted
        after = await otp_manager.verify_code(OTPType.LOGIN, PHONE, issued.code)
        assert after.status is VerificationStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_correct_code_after_failed_attempt(self, otp_manager):
        issued = await otp_manager.request_code(OTPType.LOGIN, PHONE)
        await otp_manager.verify_code(OTPType.LOGIN, PHONE, wrong_code(issued.code))

        result = await otp_manager.verify_code(OTPType.LOGIN, PHONE, issued.code)

        assert result.status is VerificationStatus.VALID

    @pytest.mark.asyncio
    async def test_expired_code_is_not_found(self, otp_manager, clock):
        issued = await otp_manager.request_code(OTPType.LOGIN, PHONE)

        clock.advance(301)
        result = await otp_manager.verify_code(OTPType.LOGIN, PHONE, issued.code)

        assert result.status is VerificationStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_never_requested_is_not_found(self, otp_manager):
        result = await otp_manager.verify_code(OTPType.LOGIN, PHONE, "123456")
        assert result.status is VerificationStatus.NOT_FOUND
        assert result.code == "OTP_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_code_is_bound_to_type(self, otp_manager):
        issued = await otp_manager.request_code(OTPType.LOGIN, PHONE)
        result = await otp_manager.verify_code(OTPType.REGISTER, PHONE, issued.code)
        assert result.status is VerificationStatus.NOT_FOUND

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["12ab56", "", "123", None, 123456, "1" * 13])
    async def test_malformed_code_does_not_consume_attempt(self, otp_manager, code):
        await otp_manager.request_code(OTPType.LOGIN, PHONE)

        result = await otp_manager.verify_code(OTPType.LOGIN, PHONE, code)

        assert result.status is VerificationStatus.INVALID_FORMAT
        session = await otp_manager.get_session(OTPType.LOGIN, PHONE)
        assert session.attempts == 0

    @pytest.mark.asyncio
    async def test_malformed_identifier_or_type(self, otp_manager):
        bad_identifier = await otp_manager.verify_code(OTPType.LOGIN, "nope", "123456")
        bad_type = await otp_manager.verify_code("nope", PHONE, "123456")

        assert bad_identifier.status is VerificationStatus.INVALID_FORMAT
        assert bad_type.status is VerificationStatus.INVALID_FORMAT

    @pytest.mark.asyncio
    async def test_cache_failure_fails_closed(self, otp_manager, cache_store):
        issued = await otp_manager.request_code(OTPType.LOGIN, PHONE)

        with patch.object(
            cache_store, "get", AsyncMock(side_effect=CacheBackendException())
        ):
            result = await otp_manager.verify_code(OTPType.LOGIN, PHONE, issued.code)

        assert result.status is VerificationStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_corrupt_session_is_discarded(self, otp_manager, cache_store):
        key = OTPSessionManager.session_key(OTPType.LOGIN, PHONE)
        await cache_store.set(key, {"unexpected": True}, ttl=60)

        result = await otp_manager.verify_code(OTPType.LOGIN, PHONE, "123456")

        assert result.status is VerificationStatus.NOT_FOUND
        assert await cache_store.get(key) is None


class TestPrimaryCacheOutage:
    """Sessions touched while the primary cache is down stay consistent."""

    @pytest.fixture
    def manager(self, failing_primary, delivery, test_settings, clock):
        store = CacheStore(primary=failing_primary, fallback=MemoryBackend(clock=clock))
        return OTPSessionManager(store, delivery, config=test_settings, clock=clock)

    @pytest.mark.asyncio
    async def test_code_used_during_outage_stays_used(
        self, manager, failing_primary, clock
    ):
        issued = await manager.request_code(OTPType.LOGIN, PHONE)

        failing_primary.down = True
        first = await manager.verify_code(OTPType.LOGIN, PHONE, issued.code)

        failing_primary.down = False
        clock.advance(31)
        second = await manager.verify_code(OTPType.LOGIN, PHONE, issued.code)

        assert first.status is VerificationStatus.VALID
        assert second.status is VerificationStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_attempts_made_during_outage_still_count(
        self, manager, failing_primary, clock
    ):
        issued = await manager.request_code(OTPType.LOGIN, PHONE)
        bad = wrong_code(issued.code)

        failing_primary.down = True
        first = await manager.verify_code(OTPType.LOGIN, PHONE, bad)
        second = await manager.verify_code(OTPType.LOGIN, PHONE, bad)

        failing_primary.down = False
        clock.advance(31)
        third = await manager.verify_code(OTPType.LOGIN, PHONE, bad)

        assert [first.remaining_attempts, second.remaining_attempts] == [2, 1]
        assert third.status is VerificationStatus.MAX_ATTEMPTS_REACHED


class TestSessionInspection:
    """Test suite for get_session, is_verified and invalidate."""

    @pytest.mark.asyncio
    async def test_is_verified_within_residual_window(
        self, otp_manager, test_settings, clock
    ):
        issued = await otp_manager.request_code(OTPType.LOGIN, PHONE)
        assert await otp_manager.is_verified(OTPType.LOGIN, PHONE) is False

        await otp_manager.verify_code(OTPType.LOGIN, PHONE, issued.code)
        assert await otp_manager.is_verified(OTPType.LOGIN, PHONE) is True

        clock.advance(test_settings.OTP_VERIFIED_TTL)
        assert await otp_manager.is_verified(OTPType.LOGIN, PHONE) is False

    @pytest.mark.asyncio
    async def test_get_session_reports_attempts(self, otp_manager):
        issued = await otp_manager.request_code(OTPType.LOGIN, PHONE)
        await otp_manager.verify_code(OTPType.LOGIN, PHONE, wrong_code(issued.code))

        session = await otp_manager.get_session(OTPType.LOGIN, PHONE)

        assert isinstance(session, OTPSession)
        assert session.attempts == 1
        assert session.remaining_attempts == 2

    @pytest.mark.asyncio
    async def test_invalidate(self, otp_manager):
        issued = await otp_manager.request_code(OTPType.LOGIN, PHONE)

        await otp_manager.invalidate(OTPType.LOGIN, PHONE)

        assert await otp_manager.get_session(OTPType.LOGIN, PHONE) is None
        result = await otp_manager.verify_code(OTPType.LOGIN, PHONE, issued.code)
        assert result.status is VerificationStatus.NOT_FOUND

    def test_session_round_trip_excludes_attempts(self):
        session = OTPSession(
            otp_type=OTPType.LOGIN,
            identifier=PHONE,
            code_hash="abc",
            channel=DeliveryChannel.SMS,
            created_at=1.0,
            expires_at=301.0,
            max_attempts=3,
            attempts=2,
        )

        data = session.to_dict()

        assert "attempts" not in data
        assert data["otp_type"] == "login"
        restored = OTPSession.from_dict(data)
        assert restored.attempts == 0
        assert restored.channel is DeliveryChannel.SMS
