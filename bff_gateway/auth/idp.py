"""
Identity provider client.

Wraps the OAuth2 token and end-session endpoints. Every call uses the shared
``httpx.AsyncClient`` with a bounded timeout and is attempted exactly once:
authorization codes are single use and refresh grants are not idempotent.
Transport and protocol failures are converted to the gateway's typed errors
here, so callers never see raw ``httpx`` exceptions.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..config import Settings
from ..errors import RefreshFailed, TokenExchangeFailed

logger = logging.getLogger(__name__)


FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


class IdentityProviderClient:
    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self.settings = settings
        self.http = http_client
        self.timeout = httpx.Timeout(settings.IDP_TIMEOUT_SECONDS)

    def _client_params(self) -> Dict[str, str]:
        params = {"client_id": self.settings.IDP_CLIENT_ID}
        # Add client secret if available (confidential client)
        if self.settings.IDP_CLIENT_SECRET:
            params["client_secret"] = self.settings.IDP_CLIENT_SECRET
        return params

    async def _post_token(self, form: Dict[str, str]) -> httpx.Response:
        return await self.http.post(
            self.settings.token_url,
            data=form,
            headers=FORM_HEADERS,
            timeout=self.timeout,
        )

    async def exchange_code(self, code: str, code_verifier: str, redirect_uri: str) -> Dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the callback
            code_verifier: PKCE verifier stored in the session at login
            redirect_uri: Redirect URI (must match the one used at login)

        Returns:
            Token response containing at least ``access_token``

        Raises:
            TokenExchangeFailed: On transport failure, non-2xx status or a
                response without an access token
        """
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
            **self._client_params(),
        }

        try:
            response = await self._post_token(form)
        except httpx.HTTPError as e:
            logger.error(f"Token endpoint unreachable during code exchange: {type(e).__name__}")
            raise TokenExchangeFailed("Unable to reach identity provider") from e

        if not response.is_success:
            logger.warning(
                "Code exchange rejected",
                extra={"status_code": response.status_code, "idp_error": _error_code(response)},
            )
            raise TokenExchangeFailed()

        return _token_payload(response, TokenExchangeFailed)

    async def refresh(self, refresh_token: Optional[str]) -> Dict[str, Any]:
        """
        Run a refresh_token grant.

        Raises:
            RefreshFailed: If there is no refresh token, the provider is
                unreachable, or it rejects the grant
        """
        if not refresh_token:
            raise RefreshFailed("No refresh token available")

        form = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            **self._client_params(),
        }

        try:
            response = await self._post_token(form)
        except httpx.HTTPError as e:
            logger.error(f"Token endpoint unreachable during refresh: {type(e).__name__}")
            raise RefreshFailed() from e

        if not response.is_success:
            logger.warning(
                "Refresh grant rejected",
                extra={"status_code": response.status_code, "idp_error": _error_code(response)},
            )
            raise RefreshFailed()

        return _token_payload(response, RefreshFailed)

    async def end_session(self, refresh_token: Optional[str]) -> bool:
        """
        Revoke the remote session.

        Returns:
            True if the provider acknowledged the logout. Failures are logged
            and reported as False; they are never raised.
        """
        if not refresh_token:
            return False

        form = {"refresh_token": refresh_token, **self._client_params()}

        try:
            response = await self.http.post(
                self.settings.end_session_url,
                data=form,
                headers=FORM_HEADERS,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            logger.warning(f"End-session call failed: {type(e).__name__}")
            return False

        if not response.is_success:
            logger.warning("End-session rejected", extra={"status_code": response.status_code})
            return False

        return True


def _error_code(response: httpx.Response) -> Optional[str]:
    """OAuth ``error`` field of a failed response, if it is JSON."""
    if not response.headers.get("content-type", "").startswith("application/json"):
        return None
    try:
        return response.json().get("error")
    except (ValueError, AttributeError):
        return None


def _token_payload(response: httpx.Response, error_cls) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as e:
        raise error_cls("Identity provider returned an invalid token response") from e

    if not isinstance(payload, dict) or not payload.get("access_token"):
        raise error_cls("Token response missing access_token")

    return payload
