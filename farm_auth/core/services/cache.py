"""
Key-value cache with TTL and a process-memory fallback.

This module provides the storage used by the OTP session manager and the
token revocation list. A ``CacheStore`` owns an optional primary backend
(Redis) and an always-available ``MemoryBackend``:

- every write goes to the fallback as well (write-through), so a primary
  outage does not lose recently written state for the life of the process;
- any primary error or timeout degrades the store to the fallback for the
  rest of the process instead of failing the caller;
- values are JSON encoded/decoded here and nowhere else.
"""

from abc import ABC, abstractmethod
import asyncio
import json
import time
from typing import Any, Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from farm_auth.core.config import Settings, cache_logger, settings
from farm_auth.core.enums import CacheMode
from farm_auth.core.exceptions.types import CacheBackendException


# Atomically increment a counter and give it an expiry the first time it is seen.
INCR_WITH_EXPIRY_SCRIPT = """
local value = redis.call('INCR', KEYS[1])
local ttl_ms = tonumber(ARGV[1])
if ttl_ms > 0 and redis.call('PTTL', KEYS[1]) < 0 then
    redis.call('PEXPIRE', KEYS[1], ttl_ms)
end
return value
"""


def _ttl_to_ms(ttl: float | None) -> int:
    if ttl is None:
        return 0
    if ttl <= 0:
        raise ValueError("ttl must be positive")
    return max(1, int(ttl * 1000))


# =============================================================================
# Backend Abstract Base Class
# =============================================================================


class CacheBackend(ABC):
    """
    Abstract base class for cache backends.

    Backends store already-encoded strings. They raise
    ``CacheBackendException`` when the underlying store cannot serve the
    request; recovering from that is the ``CacheStore``'s job.
    """

    name: str = "backend"

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Get a raw value, or None if the key is absent or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        """Set a raw value with an optional TTL in seconds."""
        pass

    @abstractmethod
    async def add(self, key: str, value: str, ttl: float | None = None) -> bool:
        """Set a raw value only if the key does not exist. Returns True if set."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""
        pass

    @abstractmethod
    async def incr(self, key: str, ttl: float | None = None) -> int:
        """
        Atomically increment a counter.

        A missing key starts at 0. ``ttl`` is applied only when the counter
        has no expiry yet, so repeated increments do not extend its life.
        """
        pass

    @abstractmethod
    async def ttl(self, key: str) -> float | None:
        """Remaining lifetime in seconds, or None if absent or without expiry."""
        pass

    @abstractmethod
    async def flush(self, prefix: str = "") -> int:
        """Delete every key starting with ``prefix``. Returns the number deleted."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Check that the backend can serve requests."""
        pass

    async def aclose(self) -> None:
        """Release any resources held by the backend."""
        return None


# =============================================================================
# Memory Backend
# =============================================================================


class MemoryBackend(CacheBackend):
    """
    In-memory cache backend using a dictionary.

    Expired entries are evicted lazily on access. An ``asyncio.Lock`` makes
    read-modify-write operations (``add``, ``incr``) atomic within the event
    loop.

    Note:
        Data is lost on application restart.
        Not shared between processes or instances.
    """

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._store: dict[str, tuple[str, float | None]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._store[key]
            return None
        return entry

    def _expiry(self, ttl: float | None) -> float | None:
        if ttl is None:
            return None
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        return self._clock() + ttl

    async def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry[0] if entry else None

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        expires_at = self._expiry(ttl)
        async with self._lock:
            self._store[key] = (value, expires_at)

    async def add(self, key: str, value: str, ttl: float | None = None) -> bool:
        expires_at = self._expiry(ttl)
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._store[key] = (value, expires_at)
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            existed = self._live(key) is not None
            self._store.pop(key, None)
            return existed

    async def incr(self, key: str, ttl: float | None = None) -> int:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                count, expires_at = 0, self._expiry(ttl)
            else:
                raw, expires_at = entry
                try:
                    count = int(raw)
                except ValueError as e:
                    raise CacheBackendException(
                        f"Value at {key} is not an integer"
                    ) from e
                if expires_at is None:
                    expires_at = self._expiry(ttl)
            count += 1
            self._store[key] = (str(count), expires_at)
            return count

    async def ttl(self, key: str) -> float | None:
        entry = self._live(key)
        if entry is None or entry[1] is None:
            return None
        return max(0.0, entry[1] - self._clock())

    async def flush(self, prefix: str = "") -> int:
        async with self._lock:
            keys = [key for key in self._store if key.startswith(prefix)]
            for key in keys:
                del self._store[key]
            return len(keys)

    async def ping(self) -> bool:
        return True

    def __len__(self) -> int:
        return sum(1 for key in list(self._store) if self._live(key) is not None)


# =============================================================================
# Redis Backend
# =============================================================================


class RedisBackend(CacheBackend):
    """
    Redis-based cache backend.

    Suitable for distributed deployments where every instance must see the
    same OTP sessions and revoked tokens. Every call is bounded by
    ``operation_timeout``; Redis errors and timeouts are raised as
    ``CacheBackendException``.
    """

    name = "redis"

    def __init__(self, client: Redis, operation_timeout: float = 0.5) -> None:
        self._client = client
        self._operation_timeout = operation_timeout
        self._incr_script = client.register_script(INCR_WITH_EXPIRY_SCRIPT)

    @classmethod
    def from_url(
        cls,
        url: str,
        operation_timeout: float = 0.5,
        connect_timeout: float = 5.0,
    ) -> "RedisBackend":
        """
        Create a backend from a Redis URL.

        Args:
            url: The Redis connection URL.
            operation_timeout: Upper bound in seconds for every cache call.
            connect_timeout: Socket connect timeout in seconds.

        Returns:
            RedisBackend: A backend wrapping a new async client.
        """
        client = Redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=False,  # We handle decoding manually
            socket_connect_timeout=connect_timeout,
            socket_timeout=connect_timeout,
        )
        cache_logger.info("Redis cache client created")
        return cls(client, operation_timeout=operation_timeout)

    async def _call(self, operation: str, awaitable, timeout: float | None = None):
        try:
            return await asyncio.wait_for(
                awaitable,
                timeout=self._operation_timeout if timeout is None else timeout,
            )
        except asyncio.TimeoutError as e:
            raise CacheBackendException(f"Redis {operation} timed out") from e
        except (RedisError, OSError) as e:
            raise CacheBackendException(f"Redis {operation} failed: {e}") from e

    async def get(self, key: str) -> str | None:
        value = await self._call("get", self._client.get(key))
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else value

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        px = _ttl_to_ms(ttl) or None
        await self._call("set", self._client.set(key, value, px=px))

    async def add(self, key: str, value: str, ttl: float | None = None) -> bool:
        # SET key value NX PX ttl - atomically set if not exists with expiry
        px = _ttl_to_ms(ttl) or None
        result = await self._call("add", self._client.set(key, value, nx=True, px=px))
        return result is not None and result is not False

    async def delete(self, key: str) -> bool:
        result = await self._call("delete", self._client.delete(key))
        return result > 0

    async def incr(self, key: str, ttl: float | None = None) -> int:
        result = await self._call(
            "incr", self._incr_script(keys=[key], args=[_ttl_to_ms(ttl)])
        )
        return int(result)

    async def ttl(self, key: str) -> float | None:
        result = await self._call("ttl", self._client.pttl(key))
        # -2: key missing, -1: no expiry
        if result is None or result < 0:
            return None
        return result / 1000

    async def flush(self, prefix: str = "") -> int:
        async def _flush() -> int:
            deleted = 0
            batch: list = []
            async for key in self._client.scan_iter(match=f"{prefix}*", count=500):
                batch.append(key)
                if len(batch) >= 500:
                    deleted += await self._client.delete(*batch)
                    batch = []
            if batch:
                deleted += await self._client.delete(*batch)
            return deleted

        # Admin operation; not bounded by the per-request timeout
        return await self._call("flush", _flush(), timeout=60)

    async def ping(self) -> bool:
        result = await self._call("ping", self._client.ping())
        return bool(result)

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
            cache_logger.info("Redis cache client closed successfully")
        except (RedisError, OSError) as e:
            cache_logger.warning(f"Error closing Redis client: {str(e)}")


# =============================================================================
# Cache Store
# =============================================================================


class CacheStore:
    """
    Cache facade used by the rest of the application.

    Serves from the primary backend while it is healthy and from the
    in-process fallback otherwise. The first primary failure (or an exhausted
    connect budget) switches the store to fallback-only mode for the rest of
    the process, and the "fallback-only mode" warning is logged once. The
    primary is not used again until restart, so writes made during an outage
    stay authoritative.

    Example:
        >>> cache = CacheStore.from_settings(settings)
        >>> await cache.connect()
        >>> await cache.set("otp:login:+919876543210", {"attempts": 0}, ttl=300)
        >>> await cache.get("otp:login:+919876543210")
        {'attempts': 0}
    """

    def __init__(
        self,
        primary: CacheBackend | None = None,
        fallback: MemoryBackend | None = None,
        connect_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        self._primary = primary
        self._fallback = fallback or MemoryBackend()
        self._connect_retries = max(1, connect_retries)
        self._retry_delay = retry_delay
        self._mode = CacheMode.PRIMARY if primary is not None else CacheMode.FALLBACK
        self._warned = False

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "CacheStore":
        """Build a store from application settings (Redis primary when enabled)."""
        config = config or settings
        primary = None
        if config.REDIS_ENABLED and config.REDIS_URL:
            primary = RedisBackend.from_url(
                config.REDIS_URL,
                operation_timeout=config.CACHE_OPERATION_TIMEOUT,
                connect_timeout=config.REDIS_CONNECT_TIMEOUT,
            )
        return cls(
            primary=primary,
            connect_retries=config.REDIS_CONNECT_RETRIES,
            retry_delay=config.REDIS_RETRY_DELAY_SECONDS,
        )

    @property
    def mode(self) -> CacheMode:
        return self._mode

    @property
    def fallback(self) -> MemoryBackend:
        return self._fallback

    # -------------------------------------------------------------------------
    # Connection management
    # -------------------------------------------------------------------------

    async def connect(self) -> CacheMode:
        """
        Connect to the primary backend with bounded retry.

        Pings the primary up to ``connect_retries`` times, sleeping
        ``retry_delay`` seconds between attempts. When the budget is exhausted
        the store switches to fallback-only mode. A store that is already in
        fallback-only mode stays there.

        Returns:
            CacheMode: The mode the store ended up in.
        """
        if self._primary is None:
            self._enter_fallback("no primary cache backend configured")
            return self._mode
        if self._mode is CacheMode.FALLBACK:
            return self._mode

        for attempt in range(1, self._connect_retries + 1):
            try:
                if await self._primary.ping():
                    cache_logger.info(
                        f"Connected to {self._primary.name} cache on attempt {attempt}"
                    )
                    return self._mode
            except CacheBackendException as e:
                cache_logger.debug(
                    f"Cache connect attempt {attempt}/{self._connect_retries} failed: {e}"
                )
            if attempt < self._connect_retries:
                await asyncio.sleep(self._retry_delay)

        self._enter_fallback(
            f"{self._primary.name} unreachable after {self._connect_retries} attempts"
        )
        return self._mode

    async def aclose(self) -> None:
        """Close the primary backend connection."""
        if self._primary is not None:
            await self._primary.aclose()

    def _enter_fallback(self, reason: str) -> None:
        self._mode = CacheMode.FALLBACK
        if not self._warned:
            cache_logger.warning(
                f"Cache operating in fallback-only (in-memory) mode: {reason}"
            )
            self._warned = True

    def _primary_available(self) -> bool:
        return self._primary is not None and self._mode is CacheMode.PRIMARY

    async def _run(self, operation: str, key: str, *args):
        """Run an operation on the primary, degrading to the fallback on error."""
        if self._primary_available():
            try:
                return await getattr(self._primary, operation)(key, *args), True
            except CacheBackendException as e:
                cache_logger.error(f"Cache {operation}({key}) failed on primary: {e}")
                self._enter_fallback(str(e))
        return await getattr(self._fallback, operation)(key, *args), False

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    @staticmethod
    def encode(value: Any) -> str:
        return json.dumps(value, separators=(",", ":"), default=str)

    @staticmethod
    def decode(raw: str | None) -> Any:
        if raw is None:
            return None
        return json.loads(raw)

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        """
        Get a decoded value.

        Returns:
            The stored value, or None if absent, expired or not valid JSON.
        """
        raw, _ = await self._run("get", key)
        try:
            return self.decode(raw)
        except ValueError:
            cache_logger.error(f"Cache value at {key} is not valid JSON, ignoring it")
            return None

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value on the primary and, always, on the fallback."""
        raw = self.encode(value)
        _, on_primary = await self._run("set", key, raw, ttl)
        if on_primary:
            await self._fallback.set(key, raw, ttl)

    async def add(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Store a value only if the key is absent. Returns True if stored."""
        raw = self.encode(value)
        added, on_primary = await self._run("add", key, raw, ttl)
        if added and on_primary:
            await self._fallback.set(key, raw, ttl)
        return added

    async def delete(self, key: str) -> bool:
        deleted, on_primary = await self._run("delete", key)
        if on_primary:
            deleted = await self._fallback.delete(key) or deleted
        return deleted

    async def incr(self, key: str, ttl: float | None = None) -> int:
        """Atomically increment a counter, mirroring the result to the fallback."""
        value, on_primary = await self._run("incr", key, ttl)
        if on_primary:
            try:
                remaining = await self._primary.ttl(key) if self._primary else None
            except CacheBackendException:
                remaining = None
            await self._fallback.set(key, str(value), remaining or ttl)
        return value

    async def ttl(self, key: str) -> float | None:
        remaining, _ = await self._run("ttl", key)
        return remaining

    async def flush(self, prefix: str = "") -> int:
        """Delete every key starting with ``prefix`` from both backends."""
        deleted = 0
        if self._primary_available():
            try:
                deleted = await self._primary.flush(prefix)
            except CacheBackendException as e:
                cache_logger.error(f"Cache flush({prefix!r}) failed on primary: {e}")
                self._enter_fallback(str(e))
        deleted = max(deleted, await self._fallback.flush(prefix))
        cache_logger.info(f"Flushed {deleted} cache keys with prefix {prefix!r}")
        return deleted

    async def ping(self) -> bool:
        """Return True when the primary backend answers a ping."""
        if self._primary is None:
            return False
        try:
            return await self._primary.ping()
        except CacheBackendException:
            return False

    def status(self) -> dict[str, Any]:
        """Report which backend is serving requests."""
        return {
            "mode": self._mode.value,
            "primary": self._primary.name if self._primary else None,
            "fallback": self._fallback.name,
        }


__all__ = [
    "CacheBackend",
    "MemoryBackend",
    "RedisBackend",
    "CacheStore",
    "INCR_WITH_EXPIRY_SCRIPT",
]
