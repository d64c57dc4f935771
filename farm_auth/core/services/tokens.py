"""
Signed token issuance and verification.

Access, refresh and OTP-verification tokens are HMAC-signed JWTs, each kind
with its own secret so that leaking one secret does not compromise the other
kinds. Every token carries ``iss``, ``aud``, ``iat``, ``exp``, ``jti`` and a
``type`` claim; all of them are validated on decode.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
import uuid

import jwt

from farm_auth.core.config import Settings, settings, token_logger
from farm_auth.core.enums import OTPType, TokenKind, UserRole
from farm_auth.core.exceptions.types import (
    SigningConfigurationException,
    TokenExpiredException,
    TokenInvalidException,
)


SUPPORTED_ALGORITHMS = ("HS256", "HS384", "HS512")
PLACEHOLDER_PREFIXES = ("change-me", "your_")
MIN_SECRET_LENGTH = 32


@dataclass(frozen=True)
class Identity:
    """A verified principal: who the tokens are issued to."""

    subject: str
    role: UserRole = UserRole.FARMER


@dataclass(frozen=True)
class TokenPair:
    """Access/refresh pair returned after a successful login."""

    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


def validate_signing_config(config: Settings) -> None:
    """
    Check token signing settings. Called once at startup.

    Raises:
        SigningConfigurationException: If the algorithm is unsupported, a secret
            is empty, two kinds share a secret, or (in production) a secret is
            a placeholder or shorter than 32 characters.
    """
    if config.JWT_ALGORITHM not in SUPPORTED_ALGORITHMS:
        raise SigningConfigurationException(
            f"Unsupported JWT algorithm: {config.JWT_ALGORITHM}"
        )

    secrets_by_kind = {
        TokenKind.ACCESS: config.JWT_ACCESS_SECRET,
        TokenKind.REFRESH: config.JWT_REFRESH_SECRET,
        TokenKind.VERIFICATION: config.JWT_VERIFICATION_SECRET,
    }

    for kind, secret in secrets_by_kind.items():
        if not secret or not secret.strip():
            raise SigningConfigurationException(
                f"JWT secret for {kind.value} tokens is empty"
            )

    if len(set(secrets_by_kind.values())) != len(secrets_by_kind):
        raise SigningConfigurationException(
            "Access, refresh and verification tokens must use distinct secrets"
        )

    for kind, secret in secrets_by_kind.items():
        placeholder = secret.startswith(PLACEHOLDER_PREFIXES)
        if config.is_production and (placeholder or len(secret) < MIN_SECRET_LENGTH):
            raise SigningConfigurationException(
                f"JWT secret for {kind.value} tokens is a placeholder or too short"
            )
        if placeholder:
            token_logger.warning(
                f"JWT secret for {kind.value} tokens is a placeholder; "
                "run `python manage.py ensure-secrets`"
            )


class TokenService:
    """
    Mints and validates signed tokens.

    Args:
        config: Settings providing secrets, algorithm, issuer, audience and lifetimes.

    Raises:
        SigningConfigurationException: On construction, if signing is misconfigured.

    Example:
        >>> tokens = TokenService()
        >>> pair = tokens.issue(Identity(subject="user-1", role=UserRole.AGENT))
        >>> tokens.verify(pair.access_token, TokenKind.ACCESS)["role"]
        'agent'
    """

    def __init__(self, config: Settings | None = None) -> None:
        self._config = config or settings
        validate_signing_config(self._config)
        self._secrets = {
            TokenKind.ACCESS: self._config.JWT_ACCESS_SECRET,
            TokenKind.REFRESH: self._config.JWT_REFRESH_SECRET,
            TokenKind.VERIFICATION: self._config.JWT_VERIFICATION_SECRET,
        }
        self._lifetimes = {
            TokenKind.ACCESS: timedelta(
                minutes=self._config.ACCESS_TOKEN_EXPIRE_MINUTES
            ),
            TokenKind.REFRESH: timedelta(days=self._config.REFRESH_TOKEN_EXPIRE_DAYS),
            TokenKind.VERIFICATION: timedelta(
                minutes=self._config.VERIFICATION_TOKEN_EXPIRE_MINUTES
            ),
        }

    @property
    def access_token_ttl(self) -> int:
        return int(self._lifetimes[TokenKind.ACCESS].total_seconds())

    @property
    def max_token_ttl(self) -> int:
        """Longest lifetime of any token kind, in seconds."""
        return int(max(self._lifetimes.values()).total_seconds())

    # =========================================================================
    # Issuing
    # =========================================================================

    def _encode(
        self,
        kind: TokenKind,
        claims: dict[str, Any],
        expires_delta: timedelta | None = None,
    ) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            **claims,
            "type": kind.value,
            "iss": self._config.JWT_ISSUER,
            "aud": self._config.JWT_AUDIENCE,
            "iat": now,
            "exp": now + (expires_delta or self._lifetimes[kind]),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(
            payload, self._secrets[kind], algorithm=self._config.JWT_ALGORITHM
        )

    def issue_access_token(
        self, identity: Identity, expires_delta: timedelta | None = None
    ) -> str:
        return self._encode(
            TokenKind.ACCESS,
            {"sub": identity.subject, "role": UserRole(identity.role).value},
            expires_delta,
        )

    def issue_refresh_token(
        self, identity: Identity, expires_delta: timedelta | None = None
    ) -> str:
        return self._encode(
            TokenKind.REFRESH,
            {"sub": identity.subject, "role": UserRole(identity.role).value},
            expires_delta,
        )

    def issue(self, identity: Identity) -> TokenPair:
        """
        Mint an access/refresh token pair for a verified identity.

        Args:
            identity: Subject and role to embed in both tokens.

        Returns:
            TokenPair: Signed tokens and the access token lifetime in seconds.
        """
        pair = TokenPair(
            access_token=self.issue_access_token(identity),
            refresh_token=self.issue_refresh_token(identity),
            expires_in=self.access_token_ttl,
        )
        token_logger.info(
            f"Issued token pair for subject {identity.subject} ({UserRole(identity.role).value})"
        )
        return pair

    def issue_verification_token(
        self,
        identifier: str,
        otp_type: OTPType,
        expires_delta: timedelta | None = None,
    ) -> str:
        """
        Mint a short-lived token proving an OTP was verified for ``identifier``.

        Lets a client finish a multi-step flow (registration, password reset)
        without re-submitting the code.
        """
        return self._encode(
            TokenKind.VERIFICATION,
            {"sub": identifier, "otp_type": OTPType(otp_type).value},
            expires_delta,
        )

    # =========================================================================
    # Verifying
    # =========================================================================

    def verify(self, token: str | None, kind: TokenKind) -> dict[str, Any]:
        """
        Decode and validate a token of the given kind.

        Signature, expiry, issuer, audience and the ``type`` claim are all
        checked; a token signed for another audience or issuer is rejected
        even if its signature is valid.

        Args:
            token: The encoded JWT.
            kind: The kind of token expected.

        Returns:
            dict[str, Any]: The validated claims.

        Raises:
            TokenExpiredException: If the token is past its expiry.
            TokenInvalidException: For any other validation failure.
        """
        kind = TokenKind(kind)
        if not token:
            raise TokenInvalidException("Token is missing.")

        try:
            claims = jwt.decode(
                token,
                self._secrets[kind],
                algorithms=[self._config.JWT_ALGORITHM],
                audience=self._config.JWT_AUDIENCE,
                issuer=self._config.JWT_ISSUER,
                options={"require": ["exp", "iat", "iss", "aud", "sub", "type"]},
            )
        except jwt.ExpiredSignatureError as e:
            token_logger.info(f"{kind.value} token rejected: expired")
            raise TokenExpiredException() from e
        except jwt.InvalidTokenError as e:
            token_logger.warning(
                f"{kind.value} token rejected: {type(e).__name__}"
            )
            raise TokenInvalidException() from e

        if claims.get("type") != kind.value:
            token_logger.warning(
                f"Token of type {claims.get('type')!r} presented as {kind.value}"
            )
            raise TokenInvalidException("Invalid token type.")

        if kind in (TokenKind.ACCESS, TokenKind.REFRESH):
            try:
                UserRole(claims.get("role"))
            except ValueError as e:
                raise TokenInvalidException("Invalid token role.") from e

        return claims

    def verify_verification_token(
        self, token: str | None, otp_type: OTPType | None = None
    ) -> dict[str, Any]:
        """Validate a verification token, optionally pinning its OTP type."""
        claims = self.verify(token, TokenKind.VERIFICATION)
        if otp_type is not None and claims.get("otp_type") != OTPType(otp_type).value:
            raise TokenInvalidException("Verification token issued for another purpose.")
        return claims

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def peek_claims(token: str | None) -> dict[str, Any] | None:
        """
        Read claims without verifying the signature.

        Only for bookkeeping (such as how long to remember a revoked token);
        never for authorization decisions.
        """
        if not token:
            return None
        try:
            return jwt.decode(
                token,
                options={"verify_signature": False, "verify_exp": False, "verify_aud": False},
            )
        except jwt.InvalidTokenError:
            return None

    def remaining_lifetime(self, token: str | None) -> float | None:
        """Seconds until the token expires, or None if undecodable or already expired."""
        claims = self.peek_claims(token)
        if not claims or not isinstance(claims.get("exp"), (int, float)):
            return None
        remaining = claims["exp"] - datetime.now(timezone.utc).timestamp()
        return remaining if remaining > 0 else None

    @staticmethod
    def extract_bearer(authorization: str | None) -> str | None:
        """
        Extract the token from an ``Authorization: Bearer <token>`` header.

        Examples:
            >>> TokenService.extract_bearer("Bearer abc.def.ghi")
            'abc.def.ghi'
            >>> TokenService.extract_bearer("Basic Zm9vOmJhcg==") is None
            True
        """
        if not authorization:
            return None
        scheme, _, token = authorization.strip().partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return None
        return token.strip()


__all__ = [
    "Identity",
    "TokenPair",
    "TokenService",
    "validate_signing_config",
]
