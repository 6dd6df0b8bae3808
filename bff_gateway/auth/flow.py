"""
OAuth2 authorization-code flow with PKCE.

Session states::

    UNAUTHENTICATED --initiate_login--> PENDING_CALLBACK --handle_callback--> AUTHENTICATED
                                              |
                                              +-- any callback failure --> UNAUTHENTICATED

The controller keeps no state of its own; everything lives in the session
store and is mutated under the store's per-session lock.
"""

import logging
import secrets
import time
from typing import Callable, NamedTuple, Optional
from urllib.parse import urlencode

from ..config import Settings
from ..errors import InvalidState, TokenExchangeFailed
from ..models import SessionData, TokenBundle
from ..session.store import SessionStore, new_session_id, short_id
from . import pkce
from .idp import IdentityProviderClient

logger = logging.getLogger(__name__)


class LoginRedirect(NamedTuple):
    session_id: str
    url: str


class OAuth2FlowController:
    def __init__(
        self,
        settings: Settings,
        store: SessionStore,
        idp: IdentityProviderClient,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.store = store
        self.idp = idp
        self._clock = clock

    # =========================================================================
    # Login
    # =========================================================================

    async def initiate_login(self, session_id: Optional[str], redirect_uri: str) -> LoginRedirect:
        """
        Start a login for the given (or a new) session.

        Generates a PKCE pair and an independent state, stores both on the
        session and builds the authorization URL. Does not contact the
        identity provider.

        Args:
            session_id: Session from the client's cookie, if any
            redirect_uri: Callback URL registered at the provider

        Returns:
            The session id the cookie must carry and the authorization URL
        """
        session = await self.store.load(session_id) if session_id else None
        if session is None:
            session = await self.store.create()

        pair = pkce.generate()
        state = pkce.generate_state()

        async with self.store.lock(session.session_id):
            current = await self.store.load(session.session_id) or session
            current.oauth_state = state
            current.pkce_verifier = pair.verifier
            await self.store.save(current)

        params = {
            "response_type": "code",
            "client_id": self.settings.IDP_CLIENT_ID,
            "redirect_uri": redirect_uri,
            "code_challenge": pair.challenge,
            "code_challenge_method": pkce.CODE_CHALLENGE_METHOD,
            "scope": self.settings.IDP_SCOPES,
            "state": state,
        }
        url = f"{self.settings.authorize_url}?{urlencode(params)}"

        logger.info("Login initiated", extra={"session": short_id(session.session_id)})
        return LoginRedirect(session_id=session.session_id, url=url)

    # =========================================================================
    # Callback
    # =========================================================================

    async def handle_callback(
        self,
        session_id: Optional[str],
        code: Optional[str],
        state: Optional[str],
        redirect_uri: str,
        error: Optional[str] = None,
    ) -> str:
        """
        Complete the login started by ``initiate_login``.

        The pending state and verifier are removed from the store before
        anything is validated, so they are consumed exactly once whatever the
        outcome and a replayed callback always fails.

        Returns:
            The rotated session id now holding the token bundle

        Raises:
            InvalidState: Missing, unknown, consumed or mismatched state
            TokenExchangeFailed: Provider error, missing code, or failed exchange
        """
        if not session_id:
            raise InvalidState()

        async with self.store.lock(session_id):
            session = await self.store.load(session_id)
            if session is None:
                raise InvalidState()

            expected_state = session.oauth_state
            verifier = session.pkce_verifier
            if expected_state is not None or verifier is not None:
                session.oauth_state = None
                session.pkce_verifier = None
                await self.store.save(session)

        if not state or not expected_state or not verifier:
            logger.warning("Callback without pending state", extra={"session": short_id(session_id)})
            raise InvalidState()

        if not secrets.compare_digest(state.encode("utf-8"), expected_state.encode("utf-8")):
            logger.warning("Callback state mismatch", extra={"session": short_id(session_id)})
            raise InvalidState()

        if error:
            logger.warning("Identity provider returned an error", extra={"idp_error": error})
            raise TokenExchangeFailed(f"Authorization failed: {error}")

        if not code:
            raise TokenExchangeFailed("Missing authorization code")

        payload = await self.idp.exchange_code(code=code, code_verifier=verifier, redirect_uri=redirect_uri)
        bundle = TokenBundle.from_token_response(payload, now=self._clock())

        # The pre-login session id never carries tokens.
        authenticated = SessionData(session_id=new_session_id(), tokens=bundle)
        await self.store.save(authenticated)
        await self.store.delete(session_id)

        logger.info(
            "Login completed",
            extra={"session": short_id(authenticated.session_id), "expires_at": bundle.expires_at},
        )
        return authenticated.session_id

    # =========================================================================
    # Logout
    # =========================================================================

    async def logout(self, session_id: Optional[str]) -> bool:
        """
        Revoke the remote session and destroy the local one.

        A session without tokens is left alone (no-op success). Otherwise the
        local session is deleted whether or not the provider acknowledged the
        revocation; a remote failure is only logged.

        Runs under the session lock, so a refresh in flight finishes first and
        the refresh token revoked here is the current one. A refresh waiting
        behind logout finds no session afterwards.

        Returns:
            True if the provider confirmed the revocation
        """
        if not session_id:
            return False

        async with self.store.lock(session_id):
            session = await self.store.load(session_id)
            if session is None or session.tokens is None:
                return False

            revoked = False
            try:
                revoked = await self.idp.end_session(session.tokens.refresh_token)
            finally:
                await self.store.delete(session_id)

        if not revoked:
            logger.warning("Remote logout failed; local session destroyed", extra={"session": short_id(session_id)})
        else:
            logger.info("Logged out", extra={"session": short_id(session_id)})
        return revoked
