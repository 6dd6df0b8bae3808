"""
Session routes.

- GET /session/me : profile of the signed-in user, fetched from the backend
  gateway with the session's bearer token. The browser learns who is signed
  in from this endpoint only; it never sees a token.
"""

import logging

import httpx
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..auth.tokens import TokenLifecycleManager
from ..dependencies import get_app_state, get_token_manager, require_session_id
from ..errors import Unauthenticated, UpstreamUnavailable
from ..models import UserProfile

logger = logging.getLogger(__name__)

session_router = APIRouter(
    prefix="/session",
    tags=["session"],
)


@session_router.get("/me", response_model=UserProfile)
async def me(
    request: Request,
    session_id: str = Depends(require_session_id),
    tokens: TokenLifecycleManager = Depends(get_token_manager),
):
    """
    Return the signed-in user's profile.

    Raises:
        Unauthenticated / RefreshFailed: 401
        UpstreamUnavailable: gateway unreachable or returned a malformed profile
    """
    app_state = get_app_state(request)
    access_token = await tokens.ensure_fresh_access_token(session_id)

    try:
        response = await app_state.gateway_client.get(
            app_state.settings.GATEWAY_PROFILE_PATH,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
    except httpx.TimeoutException as e:
        raise UpstreamUnavailable(
            "Backend service timeout - please try again",
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
        ) from e
    except httpx.HTTPError as e:
        logger.error(f"Profile request failed: {type(e).__name__}")
        raise UpstreamUnavailable() from e

    if response.status_code == status.HTTP_401_UNAUTHORIZED:
        raise Unauthenticated()

    if not response.is_success:
        logger.warning("Profile request rejected", extra={"status_code": response.status_code})
        return JSONResponse(
            status_code=response.status_code,
            content={"error": "PROFILE_UNAVAILABLE", "message": "Failed to fetch profile"},
        )

    try:
        return UserProfile.model_validate(response.json())
    except (ValueError, ValidationError) as e:
        logger.error("Gateway returned a malformed profile")
        raise UpstreamUnavailable(
            "Backend returned an invalid profile",
            status_code=status.HTTP_502_BAD_GATEWAY,
        ) from e
