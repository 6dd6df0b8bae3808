"""
Data Models Module

This module defines Pydantic models for the server-held session state and
the JSON bodies the gateway returns.

Models are organized by functional area:
- Session models (token bundle, session data)
- Profile models (user profile served by /session/me)
- System models (health, errors)
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


DEFAULT_EXPIRES_IN = 300


# ============================================================================
# Session Models
# ============================================================================

class TokenBundle(BaseModel):
    """Tokens issued by the identity provider for one session."""

    access_token: str = Field(..., description="Opaque access token (never sent to the browser)")
    refresh_token: Optional[str] = Field(None, description="Refresh token, if the provider issued one")
    expires_at: float = Field(..., description="Absolute access token expiry (epoch seconds)")
    id_token: Optional[str] = Field(None, description="OIDC ID token")

    @classmethod
    def from_token_response(cls, payload: Dict[str, Any], now: float) -> "TokenBundle":
        """
        Build a bundle from a successful token endpoint response.

        ``expires_in`` is optional in OAuth2; a missing or malformed value
        falls back to DEFAULT_EXPIRES_IN seconds.
        """
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=now + _expires_in(payload),
            id_token=payload.get("id_token"),
        )

    def refreshed(self, payload: Dict[str, Any], now: float) -> "TokenBundle":
        """
        Return the bundle that replaces this one after a refresh grant.

        The refresh token and ID token are only replaced when the provider
        returned new ones. ``expires_at`` never moves backwards.
        """
        # A new lifetime shorter than what was left keeps the old expiry, so
        # expires_at may overstate the new token's lifetime. A lifetime inside
        # the refresh skew leaves the bundle stale and the next request
        # refreshes again.
        return TokenBundle(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token") or self.refresh_token,
            expires_at=max(self.expires_at, now + _expires_in(payload)),
            id_token=payload.get("id_token") or self.id_token,
        )

    def is_fresh(self, now: float, skew_seconds: float) -> bool:
        return now < self.expires_at - skew_seconds


class SessionData(BaseModel):
    """
    Represents the data stored server-side for a user session.

    Only the (signed) session id is stored in the browser cookie.
    """

    session_id: str = Field(..., description="Opaque session identifier")
    oauth_state: Optional[str] = Field(None, description="Pending anti-CSRF state")
    pkce_verifier: Optional[str] = Field(None, description="Pending PKCE code verifier")
    tokens: Optional[TokenBundle] = Field(None, description="Token bundle once authenticated")
    created_at: float = Field(default_factory=time.time, description="Creation time (epoch seconds)")

    @property
    def is_authenticated(self) -> bool:
        return self.tokens is not None

    @property
    def is_pending_callback(self) -> bool:
        return self.oauth_state is not None


def _expires_in(payload: Dict[str, Any]) -> float:
    try:
        value = float(payload.get("expires_in", DEFAULT_EXPIRES_IN))
    except (TypeError, ValueError):
        return float(DEFAULT_EXPIRES_IN)
    return max(value, 0.0)


# ============================================================================
# Profile Models
# ============================================================================

class UserProfile(BaseModel):
    """Profile of the signed-in user as served by GET /session/me."""

    id: Union[int, str] = Field(..., description="Backend user account id")
    subject: str = Field(..., description="Identity provider subject")
    username: str = Field(..., description="Username")
    email: Optional[str] = Field(None, description="Email address")
    roles: List[str] = Field(default_factory=list, description="Realm roles")


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service health status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    session_store: str = Field(..., description="Session store backend")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Check timestamp")


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="Error type or code")
    message: str = Field(..., description="Human-readable error message")
    detail: Optional[str] = Field(None, description="Additional detail (DEBUG only)")
