from farm_auth.core.services.auth import (
    AuthService,
    DefaultIdentityResolver,
    IdentityResolver,
    VerificationOutcome,
)
from farm_auth.core.services.cache import (
    CacheBackend,
    CacheStore,
    MemoryBackend,
    RedisBackend,
)
from farm_auth.core.services.delivery import LoggingDelivery, OTPDelivery, OTPMessage
from farm_auth.core.services.otp import (
    OTPRequestResult,
    OTPSession,
    OTPSessionManager,
    VerificationResult,
)
from farm_auth.core.services.revocation import RevocationList
from farm_auth.core.services.tokens import Identity, TokenPair, TokenService

__all__ = [
    # Facade
    "AuthService",
    "IdentityResolver",
    "DefaultIdentityResolver",
    "VerificationOutcome",
    # Cache
    "CacheBackend",
    "CacheStore",
    "MemoryBackend",
    "RedisBackend",
    # OTP
    "OTPDelivery",
    "LoggingDelivery",
    "OTPMessage",
    "OTPRequestResult",
    "OTPSession",
    "OTPSessionManager",
    "VerificationResult",
    # Tokens
    "Identity",
    "TokenPair",
    "TokenService",
    "RevocationList",
]
