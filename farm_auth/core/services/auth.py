"""
Authentication Service tying OTP verification to token issuance.

This module provides the facade the HTTP layer talks to:
- OTP request / resend / verification
- Access and refresh token issuance after a successful login OTP
- Token refresh, authentication and revocation (logout)

Example usage:
    from farm_auth.core.services.auth import AuthService

    auth = AuthService.build(cache)

    issued = await auth.request_code(OTPType.LOGIN, "+919876543210")
    outcome = await auth.complete_verification(
        OTPType.LOGIN, "+919876543210", "123456"
    )
    if outcome.valid:
        claims = await auth.authenticate(outcome.tokens.access_token)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
import uuid

from farm_auth.core.config import Settings, auth_logger, settings
from farm_auth.core.enums import DeliveryChannel, OTPType, TokenKind, UserRole
from farm_auth.core.exceptions.types import TokenRevokedException
from farm_auth.core.services.cache import CacheStore
from farm_auth.core.services.delivery import OTPDelivery
from farm_auth.core.services.otp import (
    OTPRequestResult,
    OTPSessionManager,
    VerificationResult,
)
from farm_auth.core.services.revocation import RevocationList
from farm_auth.core.services.tokens import Identity, TokenPair, TokenService
from farm_auth.core.utils import mask_identifier


__all__ = [
    "AuthService",
    "IdentityResolver",
    "DefaultIdentityResolver",
    "VerificationOutcome",
    "TOKEN_ISSUING_TYPES",
]


# OTP types whose successful verification logs the user in
TOKEN_ISSUING_TYPES = frozenset(
    {
        OTPType.LOGIN,
        OTPType.PHONE_LOGIN,
        OTPType.REGISTER,
        OTPType.TWO_FACTOR_AUTH,
    }
)

IDENTITY_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "farm-auth/identity")


class IdentityResolver(ABC):
    """Maps a verified identifier to the principal tokens are issued to."""

    @abstractmethod
    async def resolve(self, identifier: str, otp_type: OTPType) -> Identity:
        pass


class DefaultIdentityResolver(IdentityResolver):
    """
    Derives a stable subject from the identifier itself.

    The same identifier always maps to the same UUID5 subject. Every identity
    gets ``DEFAULT_ROLE``; deployments with a user store plug in their own
    resolver.
    """

    def __init__(self, role: UserRole | str | None = None) -> None:
        self._role = UserRole(role or settings.DEFAULT_ROLE)

    async def resolve(self, identifier: str, otp_type: OTPType) -> Identity:
        subject = str(uuid.uuid5(IDENTITY_NAMESPACE, identifier))
        return Identity(subject=subject, role=self._role)


@dataclass(frozen=True)
class VerificationOutcome:
    """
    Result of a verification handled end to end.

    ``verification_token`` is set whenever the code was valid; ``tokens`` and
    ``identity`` only for login-like OTP types.
    """

    result: VerificationResult
    verification_token: str | None = None
    identity: Identity | None = None
    tokens: TokenPair | None = None

    @property
    def valid(self) -> bool:
        return self.result.valid


class AuthService:
    """
    Centralized authentication service.

    Owns no state of its own: sessions, counters and revoked tokens live in the
    cache store shared by its collaborators.

    Args:
        otp: Session manager issuing and verifying codes.
        tokens: Token issuer.
        revocations: Revocation list consulted on authenticate and refresh.
        identities: Resolver turning a verified identifier into an Identity.
    """

    def __init__(
        self,
        otp: OTPSessionManager,
        tokens: TokenService,
        revocations: RevocationList,
        identities: IdentityResolver | None = None,
    ) -> None:
        self.otp = otp
        self.tokens = tokens
        self.revocations = revocations
        self.identities = identities or DefaultIdentityResolver()

    @classmethod
    def build(
        cls,
        cache: CacheStore,
        config: Settings | None = None,
        delivery: OTPDelivery | None = None,
        identities: IdentityResolver | None = None,
    ) -> "AuthService":
        """
        Wire every component on top of one cache store.

        Raises:
            SigningConfigurationException: If token signing is misconfigured.
        """
        config = config or settings
        tokens = TokenService(config)
        service = cls(
            otp=OTPSessionManager(cache, delivery=delivery, config=config),
            tokens=tokens,
            revocations=RevocationList(cache, tokens),
            identities=identities or DefaultIdentityResolver(config.DEFAULT_ROLE),
        )
        auth_logger.info("AuthService initialized")
        return service

    # =========================================================================
    # OTP
    # =========================================================================

    async def request_code(
        self,
        otp_type: OTPType | str,
        identifier: str,
        channel: DeliveryChannel | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> OTPRequestResult:
        return await self.otp.request_code(
            otp_type, identifier, channel=channel, metadata=metadata
        )

    async def resend_code(
        self,
        otp_type: OTPType | str,
        identifier: str,
        channel: DeliveryChannel | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> OTPRequestResult:
        return await self.otp.resend_code(
            otp_type, identifier, channel=channel, metadata=metadata
        )

    async def verify_code(
        self, otp_type: OTPType | str, identifier: str, code: Any
    ) -> VerificationResult:
        return await self.otp.verify_code(otp_type, identifier, code)

    async def complete_verification(
        self, otp_type: OTPType | str, identifier: str, code: Any
    ) -> VerificationOutcome:
        """
        Verify a code and mint whatever the OTP type entitles the caller to.

        Returns:
            VerificationOutcome: The verification result, plus a verification
                token on success and a token pair for login-like types.
        """
        result = await self.otp.verify_code(otp_type, identifier, code)
        if not result.valid:
            return VerificationOutcome(result=result)

        verification_token = self.tokens.issue_verification_token(
            result.identifier, result.otp_type
        )
        if result.otp_type not in TOKEN_ISSUING_TYPES:
            return VerificationOutcome(
                result=result, verification_token=verification_token
            )

        identity = await self.identities.resolve(result.identifier, result.otp_type)
        auth_logger.info(
            f"Login via {result.otp_type.value} OTP for {mask_identifier(result.identifier)}"
        )
        return VerificationOutcome(
            result=result,
            verification_token=verification_token,
            identity=identity,
            tokens=self.issue_tokens(identity),
        )

    # =========================================================================
    # Tokens
    # =========================================================================

    def issue_tokens(self, identity: Identity) -> TokenPair:
        return self.tokens.issue(identity)

    async def authenticate(self, access_token: str | None) -> dict[str, Any]:
        """
        Validate an access token and make sure it has not been revoked.

        Returns:
            dict[str, Any]: The token claims.

        Raises:
            TokenExpiredException: If the token is expired.
            TokenInvalidException: If the token is not a valid access token.
            TokenRevokedException: If the token was revoked (logged out).
        """
        claims = self.tokens.verify(access_token, TokenKind.ACCESS)
        if await self.revocations.is_revoked(access_token):
            auth_logger.warning(f"Revoked access token used by {claims['sub']}")
            raise TokenRevokedException()
        return claims

    async def refresh_access_token(self, refresh_token: str | None) -> TokenPair:
        """
        Exchange a refresh token for a new access token.

        The refresh token itself is returned unchanged.

        Raises:
            TokenExpiredException, TokenInvalidException, TokenRevokedException
        """
        claims = self.tokens.verify(refresh_token, TokenKind.REFRESH)
        if await self.revocations.is_revoked(refresh_token):
            auth_logger.warning(f"Revoked refresh token used by {claims['sub']}")
            raise TokenRevokedException()

        identity = Identity(subject=claims["sub"], role=UserRole(claims["role"]))
        auth_logger.info(f"Access token refreshed for {identity.subject}")
        return TokenPair(
            access_token=self.tokens.issue_access_token(identity),
            refresh_token=refresh_token,
            expires_in=self.tokens.access_token_ttl,
        )

    async def revoke_token(self, token: str | None) -> None:
        """Revoke a token. Always succeeds, whatever the token's state."""
        await self.revocations.revoke(token)

    async def logout(
        self, access_token: str | None, refresh_token: str | None = None
    ) -> None:
        await self.revoke_token(access_token)
        if refresh_token:
            await self.revoke_token(refresh_token)
