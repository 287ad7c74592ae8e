import threading
import time
from datetime import timedelta
from typing import Callable, Protocol, runtime_checkable

import redis.asyncio as redis
from redis.exceptions import RedisError

from replayguard.core.config import Settings
from replayguard.core.exceptions import NonceStoreUnavailableError


@runtime_checkable
class NonceStore(Protocol):
    """
    Time-bounded membership over request fingerprints.

    A key is visible for [insertion, insertion + ttl) and absent
    afterwards, whether or not it has been physically removed yet.
    """

    backend: str

    async def exists(self, key: str) -> bool: ...

    async def store(self, key: str, ttl: timedelta) -> None: ...

    async def add_if_absent(self, key: str, ttl: timedelta) -> bool:
        """
        Insert the key unless it is currently present.
        Returns True when this call inserted it.
        """
        ...

    async def close(self) -> None: ...


# ─────────────────────────────────────────────
# In-process store
# ─────────────────────────────────────────────


class InMemoryNonceStore:
    """
    Process-local nonce store.
    Suitable for single-instance deployments and tests.
    """

    backend = "memory"

    def __init__(
        self,
        sweep_interval_seconds: float = 30,
        clock: Callable[[], float] = time.time,
    ):
        self._entries: dict[str, float] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._sweep_interval = sweep_interval_seconds
        self._last_sweep = clock()

    async def exists(self, key: str) -> bool:
        now = self._clock()

        with self._lock:
            self._maybe_sweep(now)
            expires_at = self._entries.get(key)

        return expires_at is not None and now < expires_at

    async def store(self, key: str, ttl: timedelta) -> None:
        now = self._clock()

        with self._lock:
            self._entries[key] = now + ttl.total_seconds()

    async def add_if_absent(self, key: str, ttl: timedelta) -> bool:
        now = self._clock()

        with self._lock:
            self._maybe_sweep(now)
            expires_at = self._entries.get(key)

            if expires_at is not None and now < expires_at:
                return False

            self._entries[key] = now + ttl.total_seconds()
            return True

    def sweep_expired(self) -> int:
        """
        Force a cleanup pass. Returns the number of entries removed.
        """
        now = self._clock()

        with self._lock:
            return self._sweep(now)

    def reset(self) -> None:
        """
        Test isolation hook.
        Drops every tracked fingerprint.
        """
        with self._lock:
            self._entries.clear()

    async def close(self) -> None:
        self.reset()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _maybe_sweep(self, now: float) -> None:
        # Caller holds the lock.
        if now - self._last_sweep >= self._sweep_interval:
            self._sweep(now)

    def _sweep(self, now: float) -> int:
        expired = [key for key, expires_at in self._entries.items() if expires_at <= now]

        for key in expired:
            del self._entries[key]

        self._last_sweep = now
        return len(expired)


# ─────────────────────────────────────────────
# Remote cache store
# ─────────────────────────────────────────────


class RedisNonceStore:
    """
    Redis-backed nonce store shared by every service instance.
    Expiry is enforced by Redis itself; the stored value is empty.
    """

    backend = "redis"

    def __init__(self, client: redis.Redis, key_prefix: str = "replay:"):
        self._client = client
        self._key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "replay:") -> "RedisNonceStore":
        return cls(redis.from_url(url), key_prefix=key_prefix)

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._client.exists(self._key(key)))
        except (RedisError, OSError) as exc:
            raise NonceStoreUnavailableError(str(exc), self.backend) from exc

    async def store(self, key: str, ttl: timedelta) -> None:
        try:
            await self._client.set(self._key(key), b"", px=_to_millis(ttl))
        except (RedisError, OSError) as exc:
            raise NonceStoreUnavailableError(str(exc), self.backend) from exc

    async def add_if_absent(self, key: str, ttl: timedelta) -> bool:
        # SET NX PX: check and insert in one command.
        try:
            created = await self._client.set(
                self._key(key),
                b"",
                nx=True,
                px=_to_millis(ttl),
            )
        except (RedisError, OSError) as exc:
            raise NonceStoreUnavailableError(str(exc), self.backend) from exc

        return bool(created)

    async def close(self) -> None:
        await self._client.aclose()

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"


def _to_millis(ttl: timedelta) -> int:
    return max(1, int(ttl.total_seconds() * 1000))


def build_nonce_store(settings: Settings) -> NonceStore:
    if settings.NONCE_STORE_BACKEND == "redis":
        return RedisNonceStore.from_url(
            settings.REDIS_URL,
            key_prefix=settings.NONCE_KEY_PREFIX,
        )

    return InMemoryNonceStore(sweep_interval_seconds=settings.SWEEP_INTERVAL_SECONDS)
