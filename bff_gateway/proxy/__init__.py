"""
Proxy Package
=============

This package forwards browser requests under /proxy/* to the backend API
gateway with the session's access token attached.

Main Components:
----------------
- client.py: AuthenticatedProxy, header filtering and streaming relay
- routes.py: FastAPI catch-all router for every proxied method

Security Features:
------------------
- Bearer token injected server-side, never sent to the browser
- Cookie and Authorization headers from the browser are not forwarded
- Hop-by-hop headers stripped in both directions

Usage:
------
    from bff_gateway.proxy import proxy_router
    app.include_router(proxy_router)
"""

from .routes import proxy_router

__all__ = ["proxy_router"]
