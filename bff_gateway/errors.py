"""
Error taxonomy for the gateway.

Every failure at a network boundary (identity provider, backend gateway,
session store) is converted into one of these types before it can reach a
route; ``main.create_app`` renders them as ``{"error": code, "message": ...}``.
"""

from typing import Optional

from fastapi import status


class BFFError(Exception):
    """Base exception carrying an error code and the HTTP status it maps to."""

    code = "BFF_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Gateway error"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class InvalidState(BFFError):
    """Callback state missing, unknown, already consumed or mismatched."""

    code = "INVALID_STATE"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid state"


class TokenExchangeFailed(BFFError):
    """The identity provider rejected the code exchange or could not be reached."""

    code = "TOKEN_EXCHANGE_FAILED"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Failed to exchange code"


class Unauthenticated(BFFError):
    code = "UNAUTHENTICATED"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class RefreshFailed(Unauthenticated):
    """
    Access token could not be refreshed.

    Subclasses ``Unauthenticated`` so callers and the HTTP surface treat the
    session as needing a new login.
    """

    default_message = "Session expired, please sign in again"


class UpstreamUnavailable(BFFError):
    """The backend gateway could not be reached (distinct from auth failures)."""

    code = "UPSTREAM_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Cannot reach backend service"


class SessionStoreError(BFFError):
    code = "SESSION_STORE_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Session store unavailable"


__all__ = [
    "BFFError",
    "InvalidState",
    "TokenExchangeFailed",
    "Unauthenticated",
    "RefreshFailed",
    "UpstreamUnavailable",
    "SessionStoreError",
]
