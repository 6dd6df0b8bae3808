"""
Tests for the identity provider client (token and end-session endpoints).

The provider is simulated with ``httpx.MockTransport``; every request the
client sends is captured for assertions.
"""

from urllib.parse import parse_qs

import httpx
import pytest

from bff_gateway.auth.idp import IdentityProviderClient
from bff_gateway.config import Settings
from bff_gateway.errors import RefreshFailed, TokenExchangeFailed


@pytest.fixture
def settings():
    return Settings(
        IDP_BASE_URL="http://idp.test/realms/poc",
        IDP_CLIENT_ID="bff-client",
        IDP_CLIENT_SECRET=None,
    )


def make_client(settings, handler, captured):
    def recording_handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return handler(request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(recording_handler))
    return IdentityProviderClient(settings, http)


def form_of(request: httpx.Request) -> dict:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


# ============================================================================
# Code exchange
# ============================================================================

@pytest.mark.asyncio
async def test_exchange_code_posts_pkce_form(settings):
    captured = []
    idp = make_client(
        settings,
        lambda request: httpx.Response(200, json={"access_token": "at", "refresh_token": "rt", "expires_in": 60}),
        captured,
    )

    payload = await idp.exchange_code("the-code", "the-verifier", "http://bff.test/auth/callback")

    assert payload["access_token"] == "at"
    assert len(captured) == 1
    request = captured[0]
    assert request.method == "POST"
    assert str(request.url) == "http://idp.test/realms/poc/protocol/openid-connect/token"
    assert form_of(request) == {
        "grant_type": "authorization_code",
        "code": "the-code",
        "redirect_uri": "http://bff.test/auth/callback",
        "code_verifier": "the-verifier",
        "client_id": "bff-client",
    }


@pytest.mark.asyncio
async def test_client_secret_sent_when_configured(settings):
    settings = settings.model_copy(update={"IDP_CLIENT_SECRET": "s3cret"})
    captured = []
    idp = make_client(settings, lambda request: httpx.Response(200, json={"access_token": "at"}), captured)

    await idp.exchange_code("c", "v", "http://bff.test/auth/callback")

    assert form_of(captured[0])["client_secret"] == "s3cret"


@pytest.mark.asyncio
async def test_exchange_rejected_raises(settings):
    captured = []
    idp = make_client(
        settings,
        lambda request: httpx.Response(400, json={"error": "invalid_grant"}),
        captured,
    )

    with pytest.raises(TokenExchangeFailed):
        await idp.exchange_code("c", "v", "http://bff.test/auth/callback")
    assert len(captured) == 1


@pytest.mark.asyncio
async def test_exchange_network_error_raises_without_retry(settings):
    captured = []

    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    idp = make_client(settings, handler, captured)

    with pytest.raises(TokenExchangeFailed):
        await idp.exchange_code("c", "v", "http://bff.test/auth/callback")
    assert len(captured) == 1


@pytest.mark.asyncio
async def test_exchange_response_without_access_token_raises(settings):
    idp = make_client(settings, lambda request: httpx.Response(200, json={"token_type": "Bearer"}), [])

    with pytest.raises(TokenExchangeFailed):
        await idp.exchange_code("c", "v", "http://bff.test/auth/callback")


@pytest.mark.asyncio
async def test_exchange_non_json_response_raises(settings):
    idp = make_client(settings, lambda request: httpx.Response(200, text="<html>"), [])

    with pytest.raises(TokenExchangeFailed):
        await idp.exchange_code("c", "v", "http://bff.test/auth/callback")


# ============================================================================
# Refresh
# ============================================================================

@pytest.mark.asyncio
async def test_refresh_posts_refresh_grant(settings):
    captured = []
    idp = make_client(settings, lambda request: httpx.Response(200, json={"access_token": "at2"}), captured)

    payload = await idp.refresh("rt")

    assert payload["access_token"] == "at2"
    assert form_of(captured[0]) == {
        "grant_type": "refresh_token",
        "refresh_token": "rt",
        "client_id": "bff-client",
    }


@pytest.mark.asyncio
async def test_refresh_without_refresh_token_fails_without_call(settings):
    captured = []
    idp = make_client(settings, lambda request: httpx.Response(200, json={"access_token": "x"}), captured)

    with pytest.raises(RefreshFailed):
        await idp.refresh(None)
    assert captured == []


@pytest.mark.asyncio
async def test_refresh_rejected_raises(settings):
    idp = make_client(settings, lambda request: httpx.Response(400, json={"error": "invalid_grant"}), [])

    with pytest.raises(RefreshFailed):
        await idp.refresh("rt")


@pytest.mark.asyncio
async def test_refresh_timeout_raises(settings):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    idp = make_client(settings, handler, [])

    with pytest.raises(RefreshFailed):
        await idp.refresh("rt")


# ============================================================================
# End session
# ============================================================================

@pytest.mark.asyncio
async def test_end_session_posts_refresh_token(settings):
    captured = []
    idp = make_client(settings, lambda request: httpx.Response(204), captured)

    assert await idp.end_session("rt") is True
    assert str(captured[0].url) == "http://idp.test/realms/poc/protocol/openid-connect/logout"
    assert form_of(captured[0]) == {"refresh_token": "rt", "client_id": "bff-client"}


@pytest.mark.asyncio
async def test_end_session_failures_return_false(settings):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    assert await make_client(settings, handler, []).end_session("rt") is False
    assert await make_client(settings, lambda r: httpx.Response(500), []).end_session("rt") is False
    assert await make_client(settings, lambda r: httpx.Response(204), []).end_session(None) is False
