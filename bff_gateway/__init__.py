"""
BFF Gateway
===========

Backend-for-Frontend that runs the OAuth2 authorization code flow with PKCE
on behalf of a browser application, keeps the resulting tokens in a
server-side session, and forwards authenticated calls to the backend API
gateway.

Packages:
    - auth    : login / callback / logout, token exchange and refresh
    - session : session store, signed session cookie, /session/me
    - proxy   : /proxy/* passthrough with bearer injection
"""

__version__ = "1.0.0"
