"""
Session Cookie Signing
======================

Binds the browser to its server-side session. The cookie carries only a
signed JWT whose ``sid`` claim is the opaque session id; no token value ever
leaves the server. A cookie that fails verification is treated as absent.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError
from starlette.responses import Response

from ..config import Settings

logger = logging.getLogger(__name__)


ALGORITHM = "HS256"
ISSUER = "bff-gateway"


class SessionCookieSigner:
    """Create, verify, set and clear the session cookie."""

    def __init__(self, settings: Settings):
        self._secret = settings.SESSION_SECRET
        self.cookie_name = settings.SESSION_COOKIE_NAME
        self.max_age = settings.SESSION_TTL_SECONDS
        self.secure = settings.SESSION_COOKIE_SECURE
        self.samesite = settings.SESSION_COOKIE_SAMESITE

    def sign(self, session_id: str) -> str:
        """
        Encode a session id as a signed cookie value.

        Args:
            session_id: Opaque session id from the store

        Returns:
            Encoded JWT string
        """
        now = datetime.now(timezone.utc)
        payload = {
            "sid": session_id,
            "iat": now,
            "exp": now + timedelta(seconds=self.max_age),
            "iss": ISSUER,
        }
        return jwt.encode(payload, self._secret, algorithm=ALGORITHM)

    def unsign(self, value: Optional[str]) -> Optional[str]:
        """
        Verify a cookie value and return the session id it carries.

        Returns:
            The session id, or None when the cookie is missing, expired,
            tampered with or signed with another secret.
        """
        if not value:
            return None

        try:
            decoded = jwt.decode(
                value,
                self._secret,
                algorithms=[ALGORITHM],
                issuer=ISSUER,
                options={"require": ["exp", "iat", "sid"]},
            )
        except ExpiredSignatureError:
            logger.info("Session cookie expired")
            return None
        except InvalidTokenError as e:
            logger.warning(f"Rejected session cookie: {e}")
            return None

        session_id = decoded.get("sid")
        return session_id if isinstance(session_id, str) and session_id else None

    def set_cookie(self, response: Response, session_id: str) -> None:
        response.set_cookie(
            key=self.cookie_name,
            value=self.sign(session_id),
            max_age=self.max_age,
            path="/",
            httponly=True,
            secure=self.secure,
            samesite=self.samesite,
        )

    def clear_cookie(self, response: Response) -> None:
        response.delete_cookie(
            key=self.cookie_name,
            path="/",
            httponly=True,
            secure=self.secure,
            samesite=self.samesite,
        )


__all__ = ["SessionCookieSigner", "ALGORITHM", "ISSUER"]
