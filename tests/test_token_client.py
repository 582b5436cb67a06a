import base64
import time
import urllib.parse

import httpx
import pytest

from sso.errors import InvalidStateError, RefreshError, TokenExchangeError
from sso.models import ClientAuthScheme, TokenContext
from sso.state_store import AuthorizationStateStore
from sso.token_client import TokenExchangeClient, token_context_from_payload
from tests.sso_helpers import (
    TOKEN_URL,
    FakeProvider,
    add_state,
    build_token_client,
    make_registration,
    token_body,
)


def _form(request: httpx.Request) -> dict:
    return dict(urllib.parse.parse_qsl(request.content.decode()))


@pytest.mark.asyncio
async def test_exchange_code_form_scheme(httpx_mock) -> None:
    httpx_mock.add_response(url=TOKEN_URL, method="POST", json=token_body())
    state_store = AuthorizationStateStore()
    add_state(state_store, "session-1", "s1", age_seconds=10, ttl_seconds=300)
    client = TokenExchangeClient(make_registration(), state_store)

    try:
        token = await client.exchange_code("abc123", "s1", session_id="session-1")
    finally:
        await client.aclose()

    assert token.access_token == "access-1"
    assert token.refresh_token == "refresh-1"
    assert token.expires_at > time.time()
    assert "s1" not in state_store

    form = _form(httpx_mock.get_request())
    assert form == {
        "grant_type": "authorization_code",
        "code": "abc123",
        "redirect_uri": "https://app.example/login/facebook",
        "client_id": "X",
        "client_secret": "shh",
    }


@pytest.mark.asyncio
async def test_exchange_code_expired_state_makes_no_call() -> None:
    provider = FakeProvider(token_responses=[(200, token_body())])
    client, state_store, _ = build_token_client(provider)
    add_state(state_store, "session-1", "s1", age_seconds=301, ttl_seconds=300)

    with pytest.raises(InvalidStateError):
        await client.exchange_code("abc123", "s1", session_id="session-1")

    assert provider.token_requests == []


@pytest.mark.asyncio
async def test_exchange_code_unknown_state_makes_no_call() -> None:
    provider = FakeProvider(token_responses=[(200, token_body())])
    client, state_store, _ = build_token_client(provider)
    add_state(state_store, "session-1", "s1")

    with pytest.raises(InvalidStateError):
        await client.exchange_code("abc123", "forged", session_id="session-1")

    assert provider.token_requests == []


@pytest.mark.asyncio
async def test_exchange_code_query_scheme() -> None:
    provider = FakeProvider(token_responses=[(200, token_body())])
    registration = make_registration(client_auth_scheme=ClientAuthScheme.QUERY)
    client, state_store, _ = build_token_client(provider, registration=registration)
    add_state(state_store, "session-1", "s1")

    await client.exchange_code("abc123", "s1", session_id="session-1")

    request = provider.token_requests[0]
    assert request.url.params["client_id"] == "X"
    assert request.url.params["client_secret"] == "shh"
    assert "client_secret" not in _form(request)
    assert "authorization" not in request.headers


@pytest.mark.asyncio
async def test_exchange_code_basic_scheme() -> None:
    provider = FakeProvider(token_responses=[(200, token_body())])
    registration = make_registration(client_auth_scheme=ClientAuthScheme.BASIC)
    client, state_store, _ = build_token_client(provider, registration=registration)
    add_state(state_store, "session-1", "s1")

    await client.exchange_code("abc123", "s1", session_id="session-1")

    request = provider.token_requests[0]
    scheme, _, credentials = request.headers["authorization"].partition(" ")
    assert scheme == "Basic"
    assert base64.b64decode(credentials).decode() == "X:shh"
    form = _form(request)
    assert "client_id" not in form
    assert "client_secret" not in form
    assert "client_id" not in request.url.params


@pytest.mark.asyncio
async def test_exchange_code_4xx_is_not_retried() -> None:
    provider = FakeProvider(
        token_responses=[(400, {"error": "invalid_grant"}), (200, token_body())]
    )
    client, state_store, sleep = build_token_client(provider)
    add_state(state_store, "session-1", "s1")

    with pytest.raises(TokenExchangeError) as error:
        await client.exchange_code("revoked", "s1", session_id="session-1")

    assert error.value.status_code == 400
    assert len(provider.token_requests) == 1
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_exchange_code_retries_network_failures() -> None:
    provider = FakeProvider(
        token_responses=[
            httpx.ConnectError("connection reset"),
            httpx.ReadTimeout("timed out"),
            (200, token_body()),
        ]
    )
    client, state_store, sleep = build_token_client(provider)
    add_state(state_store, "session-1", "s1")

    token = await client.exchange_code("abc123", "s1", session_id="session-1")

    assert token.access_token == "access-1"
    assert len(provider.token_requests) == 3
    assert len(sleep.calls) == 2
    assert all(_form(request)["code"] == "abc123" for request in provider.token_requests)


@pytest.mark.asyncio
async def test_exchange_code_gives_up_after_bounded_retries() -> None:
    provider = FakeProvider(token_responses=[httpx.ConnectError("down")] * 4)
    client, state_store, sleep = build_token_client(provider, max_retries=3)
    add_state(state_store, "session-1", "s1")

    with pytest.raises(TokenExchangeError, match="unreachable"):
        await client.exchange_code("abc123", "s1", session_id="session-1")

    assert len(provider.token_requests) == 4
    assert len(sleep.calls) == 3


@pytest.mark.asyncio
async def test_exchange_code_error_payload_with_200() -> None:
    provider = FakeProvider(token_responses=[(200, {"error": "invalid_client"})])
    client, state_store, _ = build_token_client(provider)
    add_state(state_store, "session-1", "s1")

    with pytest.raises(TokenExchangeError, match="invalid_client"):
        await client.exchange_code("abc123", "s1", session_id="session-1")


@pytest.mark.asyncio
async def test_exchange_code_accepts_form_encoded_response() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            request=request,
            headers={"content-type": "text/plain"},
            text="access_token=legacy-token&expires=5108",
        )

    state_store = AuthorizationStateStore()
    add_state(state_store, "session-1", "s1")
    client = TokenExchangeClient(
        make_registration(), state_store, transport=httpx.MockTransport(handler)
    )

    token = await client.exchange_code("abc123", "s1", session_id="session-1")

    assert token.access_token == "legacy-token"
    assert token.refresh_token is None
    assert token.expires_at == pytest.approx(time.time() + 5108, abs=5)


@pytest.mark.asyncio
async def test_refresh_success_keeps_refresh_token_when_not_rotated() -> None:
    provider = FakeProvider(token_responses=[(200, token_body("access-2", refresh_token=None))])
    client, _, _ = build_token_client(provider)

    refreshed = await client.refresh(TokenContext("access-1", refresh_token="refresh-1"))

    assert refreshed.access_token == "access-2"
    assert refreshed.refresh_token == "refresh-1"
    form = _form(provider.token_requests[0])
    assert form["grant_type"] == "refresh_token"
    assert form["refresh_token"] == "refresh-1"


@pytest.mark.asyncio
async def test_refresh_without_refresh_token_fails() -> None:
    provider = FakeProvider()
    client, _, _ = build_token_client(provider)

    with pytest.raises(RefreshError):
        await client.refresh(TokenContext("access-1"))

    assert provider.token_requests == []


@pytest.mark.asyncio
async def test_refresh_rejected_by_server() -> None:
    provider = FakeProvider(token_responses=[(401, {"error": "invalid_grant"})])
    client, _, _ = build_token_client(provider)

    with pytest.raises(RefreshError) as error:
        await client.refresh(TokenContext("access-1", refresh_token="revoked"))

    assert error.value.status_code == 401


@pytest.mark.asyncio
async def test_refresh_twice_leaves_original_context_intact() -> None:
    provider = FakeProvider(
        token_responses=[
            (200, token_body("access-2", "refresh-2")),
            (400, {"error": "invalid_grant"}),
        ]
    )
    client, _, _ = build_token_client(provider)
    original = TokenContext("access-1", refresh_token="refresh-1")

    first = await client.refresh(original)
    with pytest.raises(RefreshError):
        await client.refresh(original)

    assert first == TokenContext(
        "access-2",
        token_type="bearer",
        expires_at=first.expires_at,
        refresh_token="refresh-2",
    )
    assert original == TokenContext("access-1", refresh_token="refresh-1")


def test_token_context_from_payload_requires_access_token() -> None:
    with pytest.raises(TokenExchangeError, match="access_token"):
        token_context_from_payload({"token_type": "bearer"})


def test_token_context_from_payload_rejects_bad_expiry() -> None:
    with pytest.raises(TokenExchangeError, match="expires_in"):
        token_context_from_payload({"access_token": "a", "expires_in": "soon"})


def test_token_context_from_payload_without_expiry() -> None:
    token = token_context_from_payload({"access_token": "a"})

    assert token.expires_at is None
    assert token.token_type == "bearer"
