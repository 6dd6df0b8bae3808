"""
Proxy Routes - Backend Request Forwarding
==========================================

Every method under /proxy/* is forwarded to the backend gateway by
``AuthenticatedProxy``; see ``proxy/client.py`` for the security model.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from ..dependencies import get_proxy, get_session_id
from .client import AuthenticatedProxy

logger = logging.getLogger(__name__)

proxy_router = APIRouter(
    prefix="/proxy",
    tags=["proxy"],
)

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@proxy_router.api_route("/{target_path:path}", methods=PROXY_METHODS)
async def proxy_request(
    target_path: str,
    request: Request,
    session_id: Optional[str] = Depends(get_session_id),
    proxy: AuthenticatedProxy = Depends(get_proxy),
):
    """
    Authenticated passthrough to the backend gateway.

    The request body is streamed upstream as it is received and the upstream
    response is streamed back.
    """
    return await proxy.forward(
        session_id=session_id,
        method=request.method,
        target_path=target_path,
        headers=request.headers,
        body=request.stream(),
        query=request.url.query,
    )
