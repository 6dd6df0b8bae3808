"""
Authentication Package

This package runs the OAuth2 / OIDC authorization code flow with PKCE against
the identity provider and manages the lifetime of the resulting tokens.

Key responsibilities:
- Login redirect with a fresh PKCE verifier and single-use state
- Callback handling: state check, code exchange, session id rotation
- Access token refresh, serialized per session
- Logout with best-effort revocation at the provider

Modules:
- pkce: verifier, challenge and state generation
- idp: token endpoint and end-session calls
- flow: login / callback / logout orchestration
- tokens: freshness check and single-flight refresh
- routes: public endpoints (/auth/login, /auth/callback, /auth/logout)

The authentication flow:
1. Browser calls /auth/login and is redirected to the provider
2. User authenticates at the provider
3. Provider redirects to /auth/callback with code and state
4. Gateway validates state, exchanges the code, stores tokens server-side
5. Browser keeps only the HTTP-only session cookie
"""

from .routes import auth_router

__all__ = [
    "auth_router",
]
