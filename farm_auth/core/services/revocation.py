"""
Revocation list for signed tokens.

A revoked token is remembered under ``revoked:{sha256(token)}`` for as long
as it would otherwise stay valid, capped at the longest token lifetime this
service issues. Only tokens whose signature verifies as an access or refresh
token are recorded, so the list never grows beyond the set of live revoked
tokens. Entries live in the shared ``CacheStore``, so every instance sees
them while Redis is up.
"""

import hashlib
from typing import Any

from farm_auth.core.config import token_logger
from farm_auth.core.enums import TokenKind
from farm_auth.core.exceptions.types import AuthenticationException
from farm_auth.core.services.cache import CacheStore
from farm_auth.core.services.tokens import TokenService


REVOCABLE_KINDS = (TokenKind.ACCESS, TokenKind.REFRESH)


class RevocationList:
    def __init__(self, cache: CacheStore, tokens: TokenService) -> None:
        self._cache = cache
        self._tokens = tokens

    @staticmethod
    def key_for(token: str) -> str:
        digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
        return f"revoked:{digest}"

    def _verified_claims(self, token: str) -> dict[str, Any] | None:
        claimed_type = (self._tokens.peek_claims(token) or {}).get("type")
        kind = next((k for k in REVOCABLE_KINDS if k.value == claimed_type), None)
        if kind is None:
            return None
        try:
            return self._tokens.verify(token, kind)
        except AuthenticationException:
            return None

    async def revoke(self, token: str | None) -> bool:
        """
        Record a token as revoked until it expires.

        Idempotent: revoking an already revoked, expired, forged or
        undecodable token is a no-op.

        Returns:
            bool: True if a new entry was written.
        """
        if not token:
            return False

        claims = self._verified_claims(token)
        remaining = self._tokens.remaining_lifetime(token) if claims else None
        if remaining is None:
            token_logger.debug("Skipping revocation of expired or unverifiable token")
            return False

        remaining = min(remaining, self._tokens.max_token_ttl)
        added = await self._cache.add(
            self.key_for(token),
            {"jti": claims.get("jti"), "type": claims.get("type")},
            ttl=remaining,
        )
        if added:
            token_logger.info(
                f"Revoked {claims['type']} token {claims.get('jti')} "
                f"for {int(remaining)}s"
            )
        return added

    async def is_revoked(self, token: str | None) -> bool:
        if not token:
            return False
        return await self._cache.get(self.key_for(token)) is not None


__all__ = ["RevocationList"]
