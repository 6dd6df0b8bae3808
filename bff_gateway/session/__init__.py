"""
Session Package

Server-side session state and the browser cookie that points at it.

Modules:
- store: SessionStore with in-memory and Redis backends, per-session locks
- cookie: signed, HTTP-only session cookie
- routes: /session/me
"""

from .routes import session_router

__all__ = ["session_router"]
