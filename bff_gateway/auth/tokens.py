"""
Access token lifecycle.

``ensure_fresh_access_token`` is on the path of every authenticated request.
A token that is still fresh is returned straight from the store without any
network call or lock. Otherwise the refresh runs under the session lock with
a second freshness check, so concurrent requests on one session trigger a
single refresh grant.
"""

import logging
import time
from typing import Callable

from ..errors import Unauthenticated
from ..session.store import SessionStore, short_id
from .idp import IdentityProviderClient

logger = logging.getLogger(__name__)


class TokenLifecycleManager:
    def __init__(
        self,
        store: SessionStore,
        idp: IdentityProviderClient,
        skew_seconds: float = 5,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.idp = idp
        self.skew_seconds = skew_seconds
        self._clock = clock

    async def ensure_fresh_access_token(self, session_id: str) -> str:
        """
        Return a usable access token for the session, refreshing if needed.

        Raises:
            Unauthenticated: The session is unknown or has no token bundle
            RefreshFailed: The refresh grant failed; the previous bundle is
                kept and the caller must ask the user to sign in again
        """
        session = await self.store.load(session_id)
        if session is None or session.tokens is None:
            raise Unauthenticated()

        if session.tokens.is_fresh(self._clock(), self.skew_seconds):
            return session.tokens.access_token

        async with self.store.lock(session_id):
            session = await self.store.load(session_id)
            if session is None or session.tokens is None:
                raise Unauthenticated()

            # Another request may have refreshed while we waited for the lock.
            if session.tokens.is_fresh(self._clock(), self.skew_seconds):
                return session.tokens.access_token

            logger.info("Refreshing access token", extra={"session": short_id(session_id)})
            payload = await self.idp.refresh(session.tokens.refresh_token)

            session.tokens = session.tokens.refreshed(payload, now=self._clock())
            await self.store.save(session)

            logger.info(
                "Access token refreshed",
                extra={"session": short_id(session_id), "expires_at": session.tokens.expires_at},
            )
            return session.tokens.access_token
