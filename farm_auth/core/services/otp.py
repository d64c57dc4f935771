"""
OTP session management.

One pending verification is kept per ``(type, identifier)`` pair:

    otp:{type}:{identifier}                 session record (hashed code, expiry)
    otp:{type}:{identifier}:last_request    resend gate, TTL = resend cooldown
    otp:{type}:{identifier}:attempts        failed attempt counter (atomic incr)
    otp:{type}:{identifier}:consumed        set-if-absent claim of a success

Session states: pending -> verified | exhausted | expired. Verified,
exhausted and expired are terminal; a terminal session always reads as
"not found".
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
import math
import re
import time
from typing import Any, Callable

from farm_auth.core.config import Settings, otp_logger, settings
from farm_auth.core.enums import DeliveryChannel, OTPType, VerificationStatus
from farm_auth.core.exceptions.types import (
    CacheBackendException,
    InvalidIdentifierException,
    OTPDeliveryException,
    RateLimitExceededException,
)
from farm_auth.core.services.cache import CacheStore
from farm_auth.core.services.delivery import (
    LoggingDelivery,
    OTPDelivery,
    build_otp_message,
)
from farm_auth.core.utils import (
    generate_otp_code,
    hash_otp_code,
    is_email,
    is_test_phone_number,
    mask_identifier,
    normalize_identifier,
    secure_equals,
)


CODE_FORMAT = re.compile(r"[0-9]{4,12}")


# =============================================================================
# Policy
# =============================================================================


@dataclass(frozen=True)
class OTPPolicy:
    """
    Delivery policy for an OTP type.

    Attributes:
        channel: The channel the type is bound to, or None when the channel is
            inferred from the identifier (email address -> email, otherwise sms).
    """

    channel: DeliveryChannel | None = None


OTP_POLICIES: dict[OTPType, OTPPolicy] = {
    OTPType.LOGIN: OTPPolicy(),
    OTPType.REGISTER: OTPPolicy(),
    OTPType.RESET_PASSWORD: OTPPolicy(),
    OTPType.EMAIL_VERIFICATION: OTPPolicy(channel=DeliveryChannel.EMAIL),
    OTPType.PHONE_VERIFICATION: OTPPolicy(channel=DeliveryChannel.SMS),
    OTPType.PHONE_LOGIN: OTPPolicy(channel=DeliveryChannel.SMS),
    OTPType.PHONE_UPDATE: OTPPolicy(channel=DeliveryChannel.SMS),
    OTPType.TWO_FACTOR_AUTH: OTPPolicy(),
    OTPType.VERIFICATION: OTPPolicy(),
}


# =============================================================================
# Records and results
# =============================================================================


@dataclass
class OTPSession:
    """A pending or recently verified OTP, as stored in the cache."""

    otp_type: OTPType
    identifier: str
    code_hash: str
    channel: DeliveryChannel
    created_at: float
    expires_at: float
    max_attempts: int
    verified: bool = False
    verified_at: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    # Tracked under its own key; filled in when the session is loaded
    attempts: int = 0

    @property
    def remaining_attempts(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("attempts")
        data["otp_type"] = self.otp_type.value
        data["channel"] = self.channel.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OTPSession":
        """
        Rebuild a session from its cached form.

        Raises:
            KeyError, TypeError, ValueError: If the record is malformed.
        """
        return cls(
            otp_type=OTPType(data["otp_type"]),
            identifier=str(data["identifier"]),
            code_hash=str(data["code_hash"]),
            channel=DeliveryChannel(data["channel"]),
            created_at=float(data["created_at"]),
            expires_at=float(data["expires_at"]),
            max_attempts=int(data["max_attempts"]),
            verified=bool(data.get("verified", False)),
            verified_at=data.get("verified_at"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class OTPRequestResult:
    """
    Outcome of issuing an OTP.

    ``code`` is only populated outside production, for test visibility.
    """

    otp_type: OTPType
    identifier: str
    channel: DeliveryChannel
    expires_at: datetime
    expires_in: int
    resend_after: int
    code: str | None = None
    test_mode: bool = False


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of submitting an OTP code. Never raised, always returned."""

    status: VerificationStatus
    otp_type: OTPType | None = None
    identifier: str | None = None
    remaining_attempts: int | None = None

    @property
    def valid(self) -> bool:
        return self.status is VerificationStatus.VALID

    @property
    def code(self) -> str | None:
        return self.status.code

    @property
    def message(self) -> str:
        return {
            VerificationStatus.VALID: "OTP verified successfully.",
            VerificationStatus.NOT_FOUND: "OTP not found or expired. Please request a new one.",
            VerificationStatus.INVALID: "Invalid OTP.",
            VerificationStatus.MAX_ATTEMPTS_REACHED: "Maximum verification attempts reached. Please request a new OTP.",
            VerificationStatus.INVALID_FORMAT: "Invalid OTP format.",
        }[self.status]


# =============================================================================
# Session manager
# =============================================================================


class OTPSessionManager:
    """
    Issues and verifies one-time passwords.

    Args:
        cache: Cache store holding sessions, gates and counters.
        delivery: Collaborator that sends the code. Defaults to LoggingDelivery.
        config: Settings providing lengths, TTLs and limits.
        clock: Wall-clock source in epoch seconds.

    Example:
        >>> manager = OTPSessionManager(cache)
        >>> issued = await manager.request_code(OTPType.LOGIN, "+15550001111")
        >>> result = await manager.verify_code(OTPType.LOGIN, "+15550001111", issued.code)
        >>> result.valid
        True
    """

    def __init__(
        self,
        cache: CacheStore,
        delivery: OTPDelivery | None = None,
        config: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._cache = cache
        self._delivery = delivery or LoggingDelivery()
        self._config = config or settings
        self._clock = clock

    # -------------------------------------------------------------------------
    # Keys and policy
    # -------------------------------------------------------------------------

    @staticmethod
    def session_key(otp_type: OTPType | str, identifier: str) -> str:
        return f"otp:{OTPType(otp_type).value}:{identifier}"

    @classmethod
    def resend_gate_key(cls, otp_type: OTPType | str, identifier: str) -> str:
        return f"{cls.session_key(otp_type, identifier)}:last_request"

    @classmethod
    def attempts_key(cls, otp_type: OTPType | str, identifier: str) -> str:
        return f"{cls.session_key(otp_type, identifier)}:attempts"

    @classmethod
    def consumed_key(cls, otp_type: OTPType | str, identifier: str) -> str:
        return f"{cls.session_key(otp_type, identifier)}:consumed"

    def normalize(self, identifier: str) -> str:
        return normalize_identifier(identifier, self._config.DEFAULT_COUNTRY_CODE)

    def resolve_channel(
        self,
        otp_type: OTPType,
        identifier: str,
        requested: DeliveryChannel | None = None,
    ) -> DeliveryChannel:
        """
        Work out the delivery channel for an OTP.

        Args:
            otp_type: Purpose of the code.
            identifier: Normalized email address or phone number.
            requested: Channel asked for by the caller, if any.

        Returns:
            DeliveryChannel: The effective channel.

        Raises:
            InvalidIdentifierException: If the identifier cannot be reached
                through the type's bound channel or the requested one.
        """
        policy = OTP_POLICIES[otp_type]
        email = is_email(identifier)

        if policy.channel is DeliveryChannel.EMAIL and not email:
            raise InvalidIdentifierException(
                f"OTP type '{otp_type.value}' requires an email address."
            )
        if policy.channel is not None and policy.channel.is_phone and email:
            raise InvalidIdentifierException(
                f"OTP type '{otp_type.value}' requires a phone number."
            )

        if email:
            if requested not in (None, DeliveryChannel.EMAIL):
                raise InvalidIdentifierException(
                    f"Cannot deliver to an email address via {requested.value}."
                )
            return DeliveryChannel.EMAIL

        if requested is DeliveryChannel.EMAIL:
            raise InvalidIdentifierException(
                "Cannot deliver an email to a phone number."
            )
        return requested or policy.channel or DeliveryChannel.SMS

    def expiry_for(self, channel: DeliveryChannel) -> int:
        if channel.is_phone:
            return self._config.PHONE_OTP_EXPIRY
        return self._config.OTP_EXPIRY

    def resend_delay_for(self, channel: DeliveryChannel) -> int:
        if channel.is_phone:
            return self._config.PHONE_OTP_RESEND_DELAY
        return self._config.OTP_RESEND_DELAY

    # -------------------------------------------------------------------------
    # Issuing
    # -------------------------------------------------------------------------

    async def request_code(
        self,
        otp_type: OTPType | str,
        identifier: str,
        channel: DeliveryChannel | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> OTPRequestResult:
        """
        Generate, store and deliver a new OTP.

        Any live session for the same ``(type, identifier)`` is replaced and
        its attempt counter reset.

        Args:
            otp_type: Purpose of the code.
            identifier: Email address or phone number (normalized here).
            channel: Requested delivery channel (email, sms or whatsapp).
            metadata: Opaque request context (ip, user agent) stored with the session.

        Returns:
            OTPRequestResult: Expiry details, plus the code outside production.

        Raises:
            InvalidIdentifierException: If the identifier or type is not valid.
            RateLimitExceededException: If the resend cooldown has not elapsed.
            OTPDeliveryException: If the delivery collaborator failed.
        """
        try:
            otp_type = OTPType(otp_type)
        except ValueError as e:
            raise InvalidIdentifierException(f"Unsupported OTP type: {otp_type}") from e

        identifier = self.normalize(identifier)
        channel = self.resolve_channel(otp_type, identifier, channel)
        ttl = self.expiry_for(channel)
        cooldown = self.resend_delay_for(channel)
        masked = mask_identifier(identifier)
        now = self._clock()

        gate_key = self.resend_gate_key(otp_type, identifier)
        if not await self._cache.add(gate_key, now, ttl=cooldown):
            retry_after = await self._retry_after(gate_key, cooldown, now)
            otp_logger.warning(
                f"OTP {otp_type.value} for {masked} requested during cooldown, "
                f"retry after {retry_after}s"
            )
            raise RateLimitExceededException(
                f"Please wait {retry_after} seconds before requesting a new code.",
                retry_after=retry_after,
            )

        code = generate_otp_code(self._config.OTP_LENGTH)
        session = OTPSession(
            otp_type=otp_type,
            identifier=identifier,
            code_hash=hash_otp_code(code, self._config.OTP_HASH_SECRET),
            channel=channel,
            created_at=now,
            expires_at=now + ttl,
            max_attempts=self._config.OTP_ATTEMPTS_LIMIT,
            metadata=dict(metadata or {}),
        )

        key = self.session_key(otp_type, identifier)
        await self._cache.delete(self.attempts_key(otp_type, identifier))
        await self._cache.delete(self.consumed_key(otp_type, identifier))
        await self._cache.set(key, session.to_dict(), ttl=ttl)

        test_mode = is_test_phone_number(identifier, self._config.test_phone_numbers)
        if test_mode:
            otp_logger.info(f"Test number {masked}: skipping OTP delivery")
        else:
            message = build_otp_message(otp_type, channel, identifier, code, ttl)
            try:
                await self._delivery.send(message)
            except OTPDeliveryException:
                otp_logger.error(
                    f"OTP delivery via {channel.value} to {masked} failed"
                )
                # Nothing reached the user, so let them ask again right away
                await self._cache.delete(key)
                await self._cache.delete(gate_key)
                raise

        otp_logger.info(
            f"OTP {otp_type.value} issued for {masked} via {channel.value}, "
            f"expires in {ttl}s"
        )
        return OTPRequestResult(
            otp_type=otp_type,
            identifier=identifier,
            channel=channel,
            expires_at=datetime.fromtimestamp(session.expires_at, tz=timezone.utc),
            expires_in=ttl,
            resend_after=cooldown,
            code=None if self._config.is_production else code,
            test_mode=test_mode,
        )

    async def resend_code(
        self,
        otp_type: OTPType | str,
        identifier: str,
        channel: DeliveryChannel | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> OTPRequestResult:
        """Issue a fresh code, invalidating the previous one. Same cooldown as request_code."""
        return await self.request_code(
            otp_type,
            identifier,
            channel=channel,
            metadata={**(metadata or {}), "resend": True},
        )

    async def _retry_after(self, gate_key: str, cooldown: int, now: float) -> int:
        remaining = await self._cache.ttl(gate_key)
        if remaining is None:
            last_request = await self._cache.get(gate_key)
            if isinstance(last_request, (int, float)):
                remaining = cooldown - (now - last_request)
            else:
                remaining = cooldown
        return max(1, math.ceil(remaining))

    # -------------------------------------------------------------------------
    # Verifying
    # -------------------------------------------------------------------------

    async def verify_code(
        self,
        otp_type: OTPType | str,
        identifier: str,
        code: Any,
    ) -> VerificationResult:
        """
        Check a submitted code against the live session.

        Malformed input is reported as INVALID_FORMAT without consuming an
        attempt. Cache failures fail closed and read as NOT_FOUND.

        Returns:
            VerificationResult: VALID exactly once per issued code; otherwise
                NOT_FOUND, INVALID (with remaining attempts),
                MAX_ATTEMPTS_REACHED or INVALID_FORMAT.
        """
        try:
            otp_type = OTPType(otp_type)
            identifier = self.normalize(identifier)
        except (ValueError, InvalidIdentifierException):
            return VerificationResult(VerificationStatus.INVALID_FORMAT)

        if not isinstance(code, str) or not CODE_FORMAT.fullmatch(code):
            otp_logger.warning(
                f"Malformed OTP submitted for {mask_identifier(identifier)}"
            )
            return VerificationResult(
                VerificationStatus.INVALID_FORMAT, otp_type, identifier
            )

        try:
            return await self._verify(otp_type, identifier, code)
        except CacheBackendException as e:
            otp_logger.error(
                f"Cache failure while verifying OTP for "
                f"{mask_identifier(identifier)}: {e}"
            )
            return VerificationResult(VerificationStatus.NOT_FOUND, otp_type, identifier)

    async def _verify(
        self, otp_type: OTPType, identifier: str, code: str
    ) -> VerificationResult:
        masked = mask_identifier(identifier)
        key = self.session_key(otp_type, identifier)
        session = await self._load(key)

        if session is None or session.verified:
            otp_logger.info(f"No pending OTP {otp_type.value} for {masked}")
            return VerificationResult(VerificationStatus.NOT_FOUND, otp_type, identifier)

        now = self._clock()
        remaining_ttl = session.expires_at - now
        if remaining_ttl <= 0:
            await self._clear(otp_type, identifier)
            return VerificationResult(VerificationStatus.NOT_FOUND, otp_type, identifier)

        submitted = hash_otp_code(code, self._config.OTP_HASH_SECRET)
        if not secure_equals(submitted, session.code_hash):
            attempts = await self._cache.incr(
                self.attempts_key(otp_type, identifier), ttl=remaining_ttl
            )
            if attempts >= session.max_attempts:
                await self._clear(otp_type, identifier)
                otp_logger.warning(
                    f"OTP {otp_type.value} for {masked} exhausted after {attempts} attempts"
                )
                return VerificationResult(
                    VerificationStatus.MAX_ATTEMPTS_REACHED,
                    otp_type,
                    identifier,
                    remaining_attempts=0,
                )
            otp_logger.info(
                f"Invalid OTP {otp_type.value} for {masked} "
                f"({attempts}/{session.max_attempts})"
            )
            return VerificationResult(
                VerificationStatus.INVALID,
                otp_type,
                identifier,
                remaining_attempts=session.max_attempts - attempts,
            )

        # Only one concurrent caller may observe VALID
        claim_ttl = max(remaining_ttl, self._config.OTP_VERIFIED_TTL)
        if not await self._cache.add(
            self.consumed_key(otp_type, identifier), now, ttl=claim_ttl
        ):
            return VerificationResult(VerificationStatus.NOT_FOUND, otp_type, identifier)

        attempts = await self._cache.get(self.attempts_key(otp_type, identifier))
        if isinstance(attempts, int) and attempts >= session.max_attempts:
            return VerificationResult(VerificationStatus.NOT_FOUND, otp_type, identifier)

        session.verified = True
        session.verified_at = now
        await self._cache.set(key, session.to_dict(), ttl=self._config.OTP_VERIFIED_TTL)
        await self._cache.delete(self.attempts_key(otp_type, identifier))

        otp_logger.info(f"OTP {otp_type.value} verified for {masked}")
        return VerificationResult(VerificationStatus.VALID, otp_type, identifier)

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    async def _load(self, key: str) -> OTPSession | None:
        data = await self._cache.get(key)
        if data is None:
            return None
        try:
            session = OTPSession.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            otp_logger.error(f"Discarding corrupt OTP session at {key}: {e}")
            await self._cache.delete(key)
            return None
        attempts = await self._cache.get(f"{key}:attempts")
        session.attempts = attempts if isinstance(attempts, int) else 0
        return session

    async def _clear(self, otp_type: OTPType, identifier: str) -> None:
        await self._cache.delete(self.session_key(otp_type, identifier))
        await self._cache.delete(self.attempts_key(otp_type, identifier))

    async def get_session(
        self, otp_type: OTPType | str, identifier: str
    ) -> OTPSession | None:
        """Return the live session for ``(type, identifier)``, if any."""
        otp_type = OTPType(otp_type)
        identifier = self.normalize(identifier)
        session = await self._load(self.session_key(otp_type, identifier))
        if session is None:
            return None
        if not session.verified and session.expires_at <= self._clock():
            return None
        return session

    async def is_verified(self, otp_type: OTPType | str, identifier: str) -> bool:
        """True while a verified session is inside its residual window."""
        session = await self.get_session(otp_type, identifier)
        return bool(session and session.verified)

    async def invalidate(self, otp_type: OTPType | str, identifier: str) -> None:
        """Drop the session and its counters. The resend gate is left in place."""
        otp_type = OTPType(otp_type)
        identifier = self.normalize(identifier)
        await self._clear(otp_type, identifier)
        await self._cache.delete(self.consumed_key(otp_type, identifier))
        otp_logger.info(
            f"OTP {otp_type.value} invalidated for {mask_identifier(identifier)}"
        )


__all__ = [
    "OTPPolicy",
    "OTP_POLICIES",
    "OTPSession",
    "OTPRequestResult",
    "VerificationResult",
    "OTPSessionManager",
]
