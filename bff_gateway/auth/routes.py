"""
Authentication routes for the OAuth2 / OIDC authorization code flow.

- GET  /auth/login    : redirect to the identity provider (PKCE + state)
- GET  /auth/callback : complete the code exchange, redirect to the app
- POST /auth/logout   : revoke the remote session, destroy the local one
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import RedirectResponse

from ..config import Settings
from ..dependencies import (
    get_app_settings,
    get_cookie_signer,
    get_flow_controller,
    get_session_id,
)
from ..session.cookie import SessionCookieSigner
from .flow import OAuth2FlowController

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
)


def _redirect_uri(request: Request, settings: Settings) -> str:
    """Registered callback URL, or this service's own /auth/callback."""
    if settings.BFF_REDIRECT_URI:
        return settings.BFF_REDIRECT_URI
    return str(request.url_for("auth_callback"))


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/login", response_class=RedirectResponse, name="auth_login")
async def login(
    request: Request,
    session_id: Optional[str] = Depends(get_session_id),
    settings: Settings = Depends(get_app_settings),
    flow: OAuth2FlowController = Depends(get_flow_controller),
    cookies: SessionCookieSigner = Depends(get_cookie_signer),
):
    """
    Initiate the login flow by redirecting to the identity provider.

    Creates the server-side session on first contact and binds it to the
    browser through the HTTP-only session cookie.

    Returns:
        RedirectResponse to the provider's authorization endpoint
    """
    redirect = await flow.initiate_login(session_id, _redirect_uri(request, settings))

    response = RedirectResponse(url=redirect.url, status_code=status.HTTP_302_FOUND)
    cookies.set_cookie(response, redirect.session_id)
    return response


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.get("/callback", response_class=RedirectResponse, name="auth_callback")
async def callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from the identity provider"),
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    error: Optional[str] = Query(None, description="Error code if authentication failed"),
    session_id: Optional[str] = Depends(get_session_id),
    settings: Settings = Depends(get_app_settings),
    flow: OAuth2FlowController = Depends(get_flow_controller),
    cookies: SessionCookieSigner = Depends(get_cookie_signer),
):
    """
    Handle the redirect back from the identity provider.

    Query Parameters:
        code: Authorization code
        state: State parameter (must match the session)
        error: Error code if login failed at the provider

    Returns:
        RedirectResponse to the application root with a re-issued cookie

    Raises:
        InvalidState: 400, state missing or mismatched
        TokenExchangeFailed: 502, provider rejected or unreachable
    """
    new_session_id = await flow.handle_callback(
        session_id=session_id,
        code=code,
        state=state,
        redirect_uri=_redirect_uri(request, settings),
        error=error,
    )

    response = RedirectResponse(url=settings.POST_LOGIN_REDIRECT, status_code=status.HTTP_302_FOUND)
    cookies.set_cookie(response, new_session_id)
    return response


# =============================================================================
# Logout Endpoint
# =============================================================================

@auth_router.post("/logout", status_code=status.HTTP_204_NO_CONTENT, response_class=Response)
async def logout(
    session_id: Optional[str] = Depends(get_session_id),
    flow: OAuth2FlowController = Depends(get_flow_controller),
    cookies: SessionCookieSigner = Depends(get_cookie_signer),
):
    """
    Sign out: revoke at the provider, destroy the session, clear the cookie.

    Always answers 204; a failed remote revocation is logged only.
    """
    await flow.logout(session_id)

    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    cookies.clear_cookie(response)
    return response
