"""
Tests for the session stores.

Test Coverage:
--------------
1. Memory store: create / load / save / delete, idle expiry, copy semantics
2. Memory store: per-session lock serializes, lock timeout surfaces as SessionStoreError
3. Memory store: expired sessions swept on write, lock entries dropped when unused
4. Redis store: key layout, TTL on write, RedisError mapping, lock acquire/release
5. Backend selection from settings
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError

from bff_gateway.config import Settings
from bff_gateway.errors import SessionStoreError
from bff_gateway.models import SessionData, TokenBundle
from bff_gateway.session.store import (
    MemorySessionStore,
    RedisSessionStore,
    build_session_store,
)


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemorySessionStore(ttl_seconds=60, lock_timeout=0.2, clock=clock)


@pytest.fixture
def mock_redis():
    client = AsyncMock()
    client.lock = Mock()
    return client


# ============================================================================
# Memory store
# ============================================================================

@pytest.mark.asyncio
async def test_create_then_load(store):
    session = await store.create()

    loaded = await store.load(session.session_id)
    assert loaded is not None
    assert loaded.session_id == session.session_id
    assert not loaded.is_authenticated
    assert len(store) == 1


@pytest.mark.asyncio
async def test_session_ids_are_unique(store):
    ids = {(await store.create()).session_id for _ in range(20)}
    assert len(ids) == 20


@pytest.mark.asyncio
async def test_loaded_session_is_a_copy(store):
    session = await store.create()

    loaded = await store.load(session.session_id)
    loaded.oauth_state = "mutated"

    again = await store.load(session.session_id)
    assert again.oauth_state is None


@pytest.mark.asyncio
async def test_session_expires_after_idle_ttl(store, clock):
    session = await store.create()

    clock.now += 61
    assert await store.load(session.session_id) is None
    assert len(store) == 0


@pytest.mark.asyncio
async def test_save_resets_idle_expiry(store, clock):
    session = await store.create()

    clock.now += 50
    await store.save(session)
    clock.now += 50

    assert await store.load(session.session_id) is not None


@pytest.mark.asyncio
async def test_delete_removes_session(store):
    session = await store.create()

    await store.delete(session.session_id)
    await store.delete(session.session_id)

    assert await store.load(session.session_id) is None


@pytest.mark.asyncio
async def test_load_unknown_session_returns_none(store):
    assert await store.load("does-not-exist") is None


@pytest.mark.asyncio
async def test_lock_serializes_same_session(store):
    events = []

    async def worker(name):
        async with store.lock("sid"):
            events.append(f"{name}-in")
            await asyncio.sleep(0.01)
            events.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert events in (
        ["a-in", "a-out", "b-in", "b-out"],
        ["b-in", "b-out", "a-in", "a-out"],
    )


@pytest.mark.asyncio
async def test_locks_of_different_sessions_are_independent(store):
    async with store.lock("one"):
        async with store.lock("two"):
            pass


@pytest.mark.asyncio
async def test_lock_timeout_raises_session_store_error(store):
    async with store.lock("sid"):
        with pytest.raises(SessionStoreError):
            async with store.lock("sid"):
                pass


@pytest.mark.asyncio
async def test_expired_sessions_are_swept_on_write(store, clock):
    for _ in range(100):
        await store.create()
    assert len(store) == 100

    # None of the expired sessions is ever loaded again
    clock.now += 61
    for _ in range(3):
        await store.create()

    assert len(store) == 3


@pytest.mark.asyncio
async def test_sweep_runs_at_most_once_per_interval(store, clock):
    await store.create()
    clock.now = 1_030
    stale = await store.create()
    clock.now = 1_061
    await store.create()
    assert len(store) == 2

    # stale expired at 1090 but the next sweep is due at 1121
    clock.now = 1_100
    await store.create()
    assert len(store) == 3

    clock.now = 1_121
    await store.create()
    assert len(store) == 2
    assert await store.load(stale.session_id) is None


def test_sweep_expired_keeps_live_sessions(clock):
    store = MemorySessionStore(ttl_seconds=600, clock=clock)
    store._sessions["old"] = (clock.now - 1, "{}")
    store._sessions["live"] = (clock.now + 1, "{}")

    assert store.sweep_expired() == 1
    assert list(store._sessions) == ["live"]


@pytest.mark.asyncio
async def test_lock_entry_dropped_after_release(store):
    async with store.lock("sid"):
        assert "sid" in store._locks

    assert store._locks == {}


@pytest.mark.asyncio
async def test_lock_entry_kept_while_tasks_wait(store):
    holder_in = asyncio.Event()
    release = asyncio.Event()

    async def holder():
        async with store.lock("sid"):
            holder_in.set()
            await release.wait()

    async def waiter():
        async with store.lock("sid"):
            pass

    first = asyncio.create_task(holder())
    await holder_in.wait()
    second = asyncio.create_task(waiter())
    await asyncio.sleep(0)

    assert store._locks["sid"].users == 2
    release.set()
    await asyncio.gather(first, second)

    assert store._locks == {}


@pytest.mark.asyncio
async def test_lock_entry_dropped_after_timeout(store):
    async with store.lock("sid"):
        with pytest.raises(SessionStoreError):
            async with store.lock("sid"):
                pass

    assert store._locks == {}


# ============================================================================
# Redis store
# ============================================================================

@pytest.mark.asyncio
async def test_redis_save_sets_value_with_ttl(mock_redis):
    store = RedisSessionStore(mock_redis, ttl_seconds=120)
    session = SessionData(
        session_id="abc",
        tokens=TokenBundle(access_token="at", refresh_token="rt", expires_at=10.0),
    )

    await store.save(session)

    mock_redis.set.assert_awaited_once()
    args, kwargs = mock_redis.set.call_args
    assert args[0] == "bff:session:abc"
    assert kwargs["ex"] == 120
    assert SessionData.model_validate_json(args[1]) == session


@pytest.mark.asyncio
async def test_redis_load_parses_stored_json(mock_redis):
    session = SessionData(session_id="abc", oauth_state="s", pkce_verifier="v")
    mock_redis.get.return_value = session.model_dump_json()
    store = RedisSessionStore(mock_redis, ttl_seconds=120)

    loaded = await store.load("abc")

    mock_redis.get.assert_awaited_once_with("bff:session:abc")
    assert loaded == session


@pytest.mark.asyncio
async def test_redis_load_missing_returns_none(mock_redis):
    mock_redis.get.return_value = None
    store = RedisSessionStore(mock_redis, ttl_seconds=120)

    assert await store.load("abc") is None


@pytest.mark.asyncio
async def test_redis_errors_become_session_store_error(mock_redis):
    mock_redis.get.side_effect = RedisConnectionError("down")
    mock_redis.delete.side_effect = RedisConnectionError("down")
    store = RedisSessionStore(mock_redis, ttl_seconds=120)

    with pytest.raises(SessionStoreError):
        await store.load("abc")
    with pytest.raises(SessionStoreError):
        await store.delete("abc")


@pytest.mark.asyncio
async def test_redis_lock_acquires_and_releases(mock_redis):
    lock = AsyncMock()
    lock.acquire.return_value = True
    mock_redis.lock.return_value = lock
    store = RedisSessionStore(mock_redis, ttl_seconds=120, lock_timeout=7)

    async with store.lock("abc"):
        lock.release.assert_not_awaited()

    mock_redis.lock.assert_called_once_with("bff:lock:abc", timeout=7, blocking_timeout=7)
    lock.release.assert_awaited_once()


@pytest.mark.asyncio
async def test_redis_lock_not_acquired_raises(mock_redis):
    lock = AsyncMock()
    lock.acquire.return_value = False
    mock_redis.lock.return_value = lock
    store = RedisSessionStore(mock_redis, ttl_seconds=120)

    with pytest.raises(SessionStoreError):
        async with store.lock("abc"):
            pytest.fail("lock body must not run")


@pytest.mark.asyncio
async def test_redis_lock_expired_on_release_is_tolerated(mock_redis):
    lock = AsyncMock()
    lock.acquire.return_value = True
    lock.release.side_effect = LockError("expired")
    mock_redis.lock.return_value = lock
    store = RedisSessionStore(mock_redis, ttl_seconds=120)

    async with store.lock("abc"):
        pass


# ============================================================================
# Backend selection
# ============================================================================

def test_build_session_store_defaults_to_memory():
    store = build_session_store(Settings(SESSION_STORE_URL=None))
    assert isinstance(store, MemorySessionStore)
    assert store.backend_name == "memory"


def test_build_session_store_uses_redis_url():
    store = build_session_store(Settings(SESSION_STORE_URL="redis://localhost:6379/0"))
    assert isinstance(store, RedisSessionStore)
    assert store.backend_name == "redis"
