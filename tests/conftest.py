"""
Pytest configuration and core fixtures.

Every fixture builds isolated, in-process components: a memory-only cache
store driven by a fake clock, the OTP session manager, the token service and
the FastAPI app with its dependencies overridden. No Redis is needed.
"""

import os
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient


def pytest_configure(config):
    """Configure pytest with custom settings."""
    os.environ["ENVIRONMENT"] = "test"
    os.environ["REDIS_ENABLED"] = "false"


class FakeClock:
    """Manually advanced clock usable as both time.time and time.monotonic."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings():
    """Settings with distinct test secrets and the default OTP policy."""
    from farm_auth.core.config import Settings

    return Settings(
        ENVIRONMENT="test",
        REDIS_ENABLED=False,
        OTP_LENGTH=6,
        OTP_EXPIRY=600,
        PHONE_OTP_EXPIRY=300,
        OTP_ATTEMPTS_LIMIT=3,
        OTP_RESEND_DELAY=30,
        PHONE_OTP_RESEND_DELAY=60,
        OTP_VERIFIED_TTL=120,
        OTP_HASH_SECRET="test-otp-hash-secret-0123456789abcdef",
        DEFAULT_COUNTRY_CODE="+91",
        TEST_PHONE_NUMBERS="+15559990000",
        JWT_ACCESS_SECRET="test-access-secret-0123456789abcdefghij",
        JWT_REFRESH_SECRET="test-refresh-secret-0123456789abcdefghi",
        JWT_VERIFICATION_SECRET="test-verification-secret-0123456789abcd",
        JWT_ISSUER="farm-auth-test",
        JWT_AUDIENCE="http://testserver",
        DEFAULT_ROLE="farmer",
    )


@pytest.fixture
def memory_backend(clock):
    from farm_auth.core.services.cache import MemoryBackend

    return MemoryBackend(clock=clock)


@pytest.fixture
def cache_store(memory_backend):
    """Fallback-only cache store (no primary backend)."""
    from farm_auth.core.services.cache import CacheStore

    return CacheStore(primary=None, fallback=memory_backend)


@pytest.fixture
def failing_primary(clock):
    """A memory-backed primary cache that can be switched off with `.down = True`."""
    from farm_auth.core.exceptions.types import CacheBackendException
    from farm_auth.core.services.cache import MemoryBackend

    class FailingBackend(MemoryBackend):
        name = "failing"

        def __init__(self):
            super().__init__(clock=clock)
            self.down = False

        def _check(self):
            if self.down:
                raise CacheBackendException("primary down")

        async def get(self, key):
            self._check()
            return await super().get(key)

        async def set(self, key, value, ttl=None):
            self._check()
            return await super().set(key, value, ttl)

        async def add(self, key, value, ttl=None):
            self._check()
            return await super().add(key, value, ttl)

        async def delete(self, key):
            self._check()
            return await super().delete(key)

        async def incr(self, key, ttl=None):
            self._check()
            return await super().incr(key, ttl)

        async def ttl(self, key):
            self._check()
            return await super().ttl(key)

        async def ping(self):
            self._check()
            return True

    return FailingBackend()


@pytest.fixture
def delivery():
    """Logging delivery that also keeps every message it sends in `.sent`."""
    from farm_auth.core.services.delivery import LoggingDelivery

    class RecordingDelivery(LoggingDelivery):
        def __init__(self):
            super().__init__(reveal_codes=False)
            self.sent = []

        async def send(self, message):
            self.sent.append(message)
            await super().send(message)

    return RecordingDelivery()


@pytest.fixture
def otp_manager(cache_store, delivery, test_settings, clock):
    from farm_auth.core.services.otp import OTPSessionManager

    return OTPSessionManager(
        cache_store, delivery=delivery, config=test_settings, clock=clock
    )


@pytest.fixture
def token_service(test_settings):
    from farm_auth.core.services.tokens import TokenService

    return TokenService(test_settings)


@pytest.fixture
def revocation_list(cache_store, token_service):
    from farm_auth.core.services.revocation import RevocationList

    return RevocationList(cache_store, token_service)


@pytest.fixture
def auth_service(otp_manager, token_service, revocation_list, test_settings):
    from farm_auth.core.services.auth import AuthService, DefaultIdentityResolver

    return AuthService(
        otp=otp_manager,
        tokens=token_service,
        revocations=revocation_list,
        identities=DefaultIdentityResolver(test_settings.DEFAULT_ROLE),
    )


@pytest.fixture
def app(auth_service, cache_store):
    """The FastAPI app wired to the isolated test components."""
    from farm_auth.core.dependencies.auth import get_auth_service, get_cache_store
    from farm_auth.main import app as fastapi_app

    fastapi_app.dependency_overrides[get_auth_service] = lambda: auth_service
    fastapi_app.dependency_overrides[get_cache_store] = lambda: cache_store
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
