"""
Server-side session storage.

The store exclusively owns every ``SessionData``: callers load a copy,
mutate it and ``save`` it back. Mutations that must not interleave (callback
handling, token refresh) run inside ``lock(session_id)``, which gives mutual
exclusion per session id, across processes when Redis backs the store.
"""

import abc
import asyncio
import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import LockError, RedisError

from ..config import Settings
from ..errors import SessionStoreError
from ..models import SessionData

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


def short_id(session_id: str) -> str:
    """Log-safe prefix of a session id."""
    return session_id[:8]


class SessionStore(abc.ABC):
    """Mapping from opaque session id to ``SessionData`` with per-key locking."""

    backend_name = "abstract"

    def __init__(self, ttl_seconds: int, lock_timeout: float):
        self.ttl_seconds = ttl_seconds
        self.lock_timeout = lock_timeout

    async def create(self) -> SessionData:
        session = SessionData(session_id=new_session_id())
        await self.save(session)
        logger.debug("Created session", extra={"session": short_id(session.session_id)})
        return session

    @abc.abstractmethod
    async def load(self, session_id: str) -> Optional[SessionData]:
        """Return a copy of the session, or None if unknown or expired."""

    @abc.abstractmethod
    async def save(self, session: SessionData) -> None:
        """Persist the session and reset its idle expiry."""

    @abc.abstractmethod
    async def delete(self, session_id: str) -> None:
        ...

    @abc.abstractmethod
    def lock(self, session_id: str):
        """Async context manager serializing mutations of one session."""

    async def close(self) -> None:
        return None


# =============================================================================
# In-memory store
# =============================================================================

class _SessionLock:
    """asyncio.Lock plus the number of tasks holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class MemorySessionStore(SessionStore):
    """
    Process-local store for development and tests.

    Sessions are kept as JSON so a loaded copy never aliases stored state.
    Expired sessions are swept on write at most once per sweep interval, and
    a lock entry lives only while some task holds or waits on it.
    """

    backend_name = "memory"

    SWEEP_INTERVAL_SECONDS = 60.0

    def __init__(
        self,
        ttl_seconds: int,
        lock_timeout: float = 15.0,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(ttl_seconds, lock_timeout)
        self._clock = clock
        self._sessions: Dict[str, Tuple[float, str]] = {}
        self._locks: Dict[str, _SessionLock] = {}
        self._sweep_interval = min(float(ttl_seconds), self.SWEEP_INTERVAL_SECONDS)
        self._next_sweep = clock() + self._sweep_interval

    async def load(self, session_id: str) -> Optional[SessionData]:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None

        expires_at, raw = entry
        if self._clock() >= expires_at:
            self._sessions.pop(session_id, None)
            logger.info("Session expired", extra={"session": short_id(session_id)})
            return None

        return SessionData.model_validate_json(raw)

    async def save(self, session: SessionData) -> None:
        now = self._clock()
        if now >= self._next_sweep:
            self.sweep_expired(now)
        self._sessions[session.session_id] = (
            now + self.ttl_seconds,
            session.model_dump_json(),
        )

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def sweep_expired(self, now: Optional[float] = None) -> int:
        """Drop every expired session; returns how many were removed."""
        now = self._clock() if now is None else now
        expired = [sid for sid, (expires_at, _) in self._sessions.items() if now >= expires_at]
        for sid in expired:
            del self._sessions[sid]
        self._next_sweep = now + self._sweep_interval
        if expired:
            logger.info("Swept expired sessions", extra={"count": len(expired)})
        return len(expired)

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        entry = self._locks.get(session_id)
        if entry is None:
            entry = self._locks[session_id] = _SessionLock()
        entry.users += 1
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=self.lock_timeout)
            except asyncio.TimeoutError as exc:
                raise SessionStoreError("Timed out waiting for session lock") from exc
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(session_id) is entry:
                del self._locks[session_id]

    def __len__(self) -> int:
        return len(self._sessions)


# =============================================================================
# Redis store
# =============================================================================

class RedisSessionStore(SessionStore):
    """
    Shared store for replicated deployments.

    Values live under ``bff:session:<id>`` with a TTL; the per-session lock is
    a redis ``Lock`` under ``bff:lock:<id>`` whose hold time and wait time are
    both bounded by ``lock_timeout``.
    """

    backend_name = "redis"

    SESSION_PREFIX = "bff:session:"
    LOCK_PREFIX = "bff:lock:"

    def __init__(self, client: "redis.Redis", ttl_seconds: int, lock_timeout: float = 15.0):
        super().__init__(ttl_seconds, lock_timeout)
        self.redis = client

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int, lock_timeout: float = 15.0) -> "RedisSessionStore":
        client = redis.from_url(
            url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            health_check_interval=30,
        )
        return cls(client, ttl_seconds, lock_timeout)

    def _session_key(self, session_id: str) -> str:
        return f"{self.SESSION_PREFIX}{session_id}"

    def _lock_key(self, session_id: str) -> str:
        return f"{self.LOCK_PREFIX}{session_id}"

    async def load(self, session_id: str) -> Optional[SessionData]:
        try:
            raw = await self.redis.get(self._session_key(session_id))
        except RedisError as exc:
            logger.error("Redis read failed", extra={"session": short_id(session_id), "error": str(exc)})
            raise SessionStoreError() from exc

        if not raw:
            return None
        return SessionData.model_validate_json(raw)

    async def save(self, session: SessionData) -> None:
        try:
            await self.redis.set(
                self._session_key(session.session_id),
                session.model_dump_json(),
                ex=self.ttl_seconds,
            )
        except RedisError as exc:
            logger.error("Redis write failed", extra={"session": short_id(session.session_id), "error": str(exc)})
            raise SessionStoreError() from exc

    async def delete(self, session_id: str) -> None:
        try:
            await self.redis.delete(self._session_key(session_id))
        except RedisError as exc:
            logger.error("Redis delete failed", extra={"session": short_id(session_id), "error": str(exc)})
            raise SessionStoreError() from exc

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self.redis.lock(
            self._lock_key(session_id),
            timeout=self.lock_timeout,
            blocking_timeout=self.lock_timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as exc:
            raise SessionStoreError() from exc
        if not acquired:
            raise SessionStoreError("Timed out waiting for session lock")

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Hold time exceeded lock_timeout; another holder may already own it.
                logger.warning("Session lock expired before release", extra={"session": short_id(session_id)})

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self.redis.aclose()
        logger.info("Redis session store closed")


def build_session_store(settings: Settings) -> SessionStore:
    """Pick the store backend from configuration."""
    if settings.SESSION_STORE_URL:
        return RedisSessionStore.from_url(
            settings.SESSION_STORE_URL,
            ttl_seconds=settings.SESSION_TTL_SECONDS,
            lock_timeout=settings.SESSION_LOCK_TIMEOUT_SECONDS,
        )
    return MemorySessionStore(
        ttl_seconds=settings.SESSION_TTL_SECONDS,
        lock_timeout=settings.SESSION_LOCK_TIMEOUT_SECONDS,
    )
