"""
FastAPI dependencies resolving the components assembled by ``main.create_app``.

Must not import the auth, session or proxy packages: their routers import
this module.
"""

from typing import Optional

from fastapi import HTTPException, Request, status

from .config import Settings
from .errors import Unauthenticated


def get_app_state(request: Request):
    """
    Return the ``AppState`` container from the application.

    Raises:
        HTTPException: 503 if the lifespan has not initialized the components
    """
    app_state = getattr(request.app.state, "app_state", None)
    if app_state is None or app_state.flow is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Gateway not initialized",
        )
    return app_state


def get_app_settings(request: Request) -> Settings:
    return get_app_state(request).settings


def get_cookie_signer(request: Request):
    return get_app_state(request).cookies


def get_flow_controller(request: Request):
    return get_app_state(request).flow


def get_token_manager(request: Request):
    return get_app_state(request).tokens


def get_proxy(request: Request):
    return get_app_state(request).proxy


def get_session_id(request: Request) -> Optional[str]:
    """Session id from a validly signed cookie, or None."""
    signer = get_cookie_signer(request)
    return signer.unsign(request.cookies.get(signer.cookie_name))


def require_session_id(request: Request) -> str:
    session_id = get_session_id(request)
    if not session_id:
        raise Unauthenticated()
    return session_id
