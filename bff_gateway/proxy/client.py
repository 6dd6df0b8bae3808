"""
Authenticated Proxy
===================

Forwards a client request to the backend gateway with the session's access
token injected as a bearer credential, and streams the upstream response
back without buffering it.

Security Model:
---------------
1. The client authenticates with its session cookie only
2. Only an allowlist of client headers is forwarded; the client's cookies
   and any Authorization header are never sent upstream
3. ``Authorization: Bearer <access token>`` is added by the gateway
4. Transport failures surface as ``UpstreamUnavailable``, never as auth errors
"""

import logging
from typing import AsyncIterable, AsyncIterator, Mapping, Optional, Union

import httpx
from fastapi import status
from starlette.responses import StreamingResponse

from ..auth.tokens import TokenLifecycleManager
from ..errors import Unauthenticated, UpstreamUnavailable

logger = logging.getLogger(__name__)


BODILESS_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})

FORWARDED_REQUEST_HEADERS = frozenset({
    "accept",
    "accept-encoding",
    "accept-language",
    "content-type",
    "content-length",
})

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

Body = Union[bytes, AsyncIterable[bytes], None]


def build_upstream_headers(client_headers: Mapping[str, str], access_token: str, has_body: bool) -> dict:
    """
    Build headers for the upstream request.

    Args:
        client_headers: Original request headers
        access_token: Fresh access token for the session
        has_body: Whether a body is forwarded (Content-Length dropped otherwise)

    Returns:
        Headers dict for the gateway request
    """
    headers = {
        key.lower(): value
        for key, value in client_headers.items()
        if key.lower() in FORWARDED_REQUEST_HEADERS
    }
    if not has_body:
        headers.pop("content-length", None)
    # The body is relayed raw, so only ask for encodings the client accepts.
    headers.setdefault("accept-encoding", "identity")

    headers["authorization"] = f"Bearer {access_token}"
    return headers


def filter_response_headers(upstream_headers: httpx.Headers) -> dict:
    return {
        key: value
        for key, value in upstream_headers.items()
        if key.lower() not in HOP_BY_HOP_HEADERS
    }


class AuthenticatedProxy:
    def __init__(self, tokens: TokenLifecycleManager, http_client: httpx.AsyncClient):
        self.tokens = tokens
        self.http = http_client

    async def forward(
        self,
        session_id: Optional[str],
        method: str,
        target_path: str,
        headers: Mapping[str, str],
        body: Body = None,
        query: Optional[str] = None,
    ) -> StreamingResponse:
        """
        Forward one request to the backend gateway.

        Args:
            session_id: Session from the client's cookie
            method: HTTP method, preserved upstream
            target_path: Path below the gateway base URL
            headers: Client request headers (filtered before forwarding)
            body: Request body bytes or stream; ignored for bodiless methods
            query: Raw query string, forwarded unchanged

        Returns:
            StreamingResponse relaying upstream status, headers and body

        Raises:
            Unauthenticated / RefreshFailed: No usable session
            UpstreamUnavailable: Gateway unreachable or timed out
        """
        if not session_id:
            raise Unauthenticated()

        access_token = await self.tokens.ensure_fresh_access_token(session_id)

        method = method.upper()
        has_body = method not in BODILESS_METHODS and body is not None
        url = "/" + target_path.lstrip("/")
        if query:
            url = f"{url}?{query}"

        request = self.http.build_request(
            method,
            url,
            headers=build_upstream_headers(headers, access_token, has_body),
            content=body if has_body else None,
        )

        try:
            upstream = await self.http.send(request, stream=True)
        except httpx.TimeoutException as e:
            logger.error("Backend request timeout", extra={"method": method, "path": target_path})
            raise UpstreamUnavailable(
                "Backend service timeout - please try again",
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Backend network error: {type(e).__name__}", extra={"method": method, "path": target_path})
            raise UpstreamUnavailable() from e

        logger.info(
            "Proxied request",
            extra={"method": method, "path": target_path, "status_code": upstream.status_code},
        )

        return StreamingResponse(
            _relay(upstream),
            status_code=upstream.status_code,
            headers=filter_response_headers(upstream.headers),
        )


async def _relay(upstream: httpx.Response) -> AsyncIterator[bytes]:
    """
    Yield the upstream body as it arrives.

    The upstream response is closed when the stream completes or when the
    client goes away and the sending task is cancelled. An upstream failure
    mid-body is re-raised so the server aborts the connection rather than
    ending a truncated body cleanly.
    """
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        logger.warning(f"Upstream stream interrupted: {type(e).__name__}")
        raise
    finally:
        await upstream.aclose()
