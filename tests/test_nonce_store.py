import threading
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from replayguard.core.config import Settings
from replayguard.core.exceptions import NonceStoreUnavailableError
from replayguard.services.nonce_store import (
    InMemoryNonceStore,
    NonceStore,
    RedisNonceStore,
    build_nonce_store,
)
from conftest import reset_guard_store


TTL = timedelta(seconds=600)


# ─────────────────────────────────────────────
# In-process store
# ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_stored_key_exists(clock):
    store = InMemoryNonceStore(clock=clock)

    assert await store.exists("fp") is False

    await store.store("fp", TTL)

    assert await store.exists("fp") is True


@pytest.mark.asyncio
async def test_key_expires_after_ttl(clock):
    store = InMemoryNonceStore(clock=clock)
    await store.store("fp", TTL)

    clock.advance(599)
    assert await store.exists("fp") is True

    clock.advance(1)
    assert await store.exists("fp") is False


@pytest.mark.asyncio
async def test_store_overwrites_expiry(clock):
    store = InMemoryNonceStore(clock=clock)
    await store.store("fp", timedelta(seconds=10))

    clock.advance(5)
    await store.store("fp", timedelta(seconds=10))

    clock.advance(9)
    assert await store.exists("fp") is True


@pytest.mark.asyncio
async def test_add_if_absent_inserts_once(clock):
    store = InMemoryNonceStore(clock=clock)

    assert await store.add_if_absent("fp", TTL) is True
    assert await store.add_if_absent("fp", TTL) is False
    assert await store.exists("fp") is True


@pytest.mark.asyncio
async def test_add_if_absent_succeeds_after_expiry(clock):
    store = InMemoryNonceStore(clock=clock)
    await store.add_if_absent("fp", TTL)

    clock.advance(600)

    assert await store.add_if_absent("fp", TTL) is True


@pytest.mark.asyncio
async def test_expired_entries_are_swept_lazily(clock):
    store = InMemoryNonceStore(sweep_interval_seconds=30, clock=clock)
    await store.store("old", timedelta(seconds=5))
    await store.store("fresh", TTL)

    clock.advance(10)
    await store.exists("fresh")
    # Expired but not yet physically removed: sweep interval not reached.
    assert len(store) == 2
    assert await store.exists("old") is False

    clock.advance(30)
    await store.exists("fresh")
    assert len(store) == 1


def test_sweep_expired_reports_removed(clock):
    store = InMemoryNonceStore(clock=clock)
    store._entries.update({"a": clock.now - 1, "b": clock.now, "c": clock.now + 1})

    assert store.sweep_expired() == 2
    assert len(store) == 1


@pytest.mark.asyncio
async def test_close_drops_entries(clock):
    store = InMemoryNonceStore(clock=clock)
    await store.store("fp", TTL)

    await store.close()

    assert len(store) == 0
    assert await store.exists("fp") is False


def test_in_memory_store_satisfies_protocol():
    assert isinstance(InMemoryNonceStore(), NonceStore)


# ─────────────────────────────────────────────
# Redis store
# ─────────────────────────────────────────────


def make_redis_store(**client_overrides):
    client = AsyncMock()
    for name, value in client_overrides.items():
        setattr(client, name, value)
    return RedisNonceStore(client, key_prefix="test:"), client


@pytest.mark.asyncio
async def test_redis_exists_reads_prefixed_key():
    store, client = make_redis_store(exists=AsyncMock(return_value=1))

    assert await store.exists("fp") is True
    client.exists.assert_awaited_once_with("test:fp")


@pytest.mark.asyncio
async def test_redis_exists_false_when_absent():
    store, _ = make_redis_store(exists=AsyncMock(return_value=0))

    assert await store.exists("fp") is False


@pytest.mark.asyncio
async def test_redis_store_sets_empty_value_with_expiry():
    store, client = make_redis_store()

    await store.store("fp", timedelta(minutes=10))

    client.set.assert_awaited_once_with("test:fp", b"", px=600_000)


@pytest.mark.asyncio
async def test_redis_add_if_absent_uses_nx():
    store, client = make_redis_store(set=AsyncMock(side_effect=[True, None]))

    assert await store.add_if_absent("fp", TTL) is True
    assert await store.add_if_absent("fp", TTL) is False
    client.set.assert_awaited_with("test:fp", b"", nx=True, px=600_000)


@pytest.mark.asyncio
async def test_redis_failure_is_surfaced_as_unavailable():
    store, _ = make_redis_store(
        set=AsyncMock(side_effect=RedisConnectionError("connection refused")),
        exists=AsyncMock(side_effect=RedisConnectionError("connection refused")),
    )

    with pytest.raises(NonceStoreUnavailableError) as excinfo:
        await store.add_if_absent("fp", TTL)
    assert excinfo.value.backend == "redis"

    with pytest.raises(NonceStoreUnavailableError):
        await store.exists("fp")

    with pytest.raises(NonceStoreUnavailableError):
        await store.store("fp", TTL)


@pytest.mark.asyncio
async def test_redis_close_closes_client():
    store, client = make_redis_store()

    await store.close()

    client.aclose.assert_awaited_once()


# ─────────────────────────────────────────────
# Composition
# ─────────────────────────────────────────────


def test_build_nonce_store_defaults_to_memory():
    store = build_nonce_store(Settings(NONCE_STORE_BACKEND="memory"))

    assert isinstance(store, InMemoryNonceStore)


def test_build_nonce_store_selects_redis():
    store = build_nonce_store(
        Settings(NONCE_STORE_BACKEND="redis", REDIS_URL="redis://cache:6379/1", NONCE_KEY_PREFIX="rp:")
    )

    assert isinstance(store, RedisNonceStore)
    assert store._key("fp") == "rp:fp"


def test_len_waits_for_lock_holder(clock):
    store = InMemoryNonceStore(clock=clock)
    counts = []

    store._lock.acquire()
    reader = threading.Thread(target=lambda: counts.append(len(store)))
    reader.start()
    store._entries["fp"] = clock.now + 10
    reader.join(timeout=0.1)

    assert reader.is_alive()

    store._lock.release()
    reader.join(timeout=1)

    assert counts == [1]


def test_reset_helper_skips_redis_store():
    store, client = make_redis_store()

    reset_guard_store(store)

    assert client.method_calls == []
