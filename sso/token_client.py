from __future__ import annotations

import asyncio
import time
import urllib.parse

import httpx

from sso.authorize import append_query_params
from sso.constants import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_SECONDS, LOGGER
from sso.errors import RefreshError, TokenExchangeError
from sso.http import build_http_client
from sso.models import ClientAuthScheme, ClientRegistration, TokenContext
from sso.state_store import AuthorizationStateStore


def _parse_expires_in(payload: dict) -> int | None:
    raw = payload.get("expires_in", payload.get("expires"))
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise TokenExchangeError("Token response has a non-numeric expires_in.") from None


def token_context_from_payload(
    payload: dict,
    *,
    previous_refresh_token: str | None = None,
) -> TokenContext:
    access_token = payload.get("access_token")
    token_type = payload.get("token_type") or "bearer"
    refresh_token = payload.get("refresh_token") or previous_refresh_token
    scope = payload.get("scope")

    if not isinstance(access_token, str) or not access_token:
        raise TokenExchangeError("Token response missing access_token.")
    if not isinstance(token_type, str):
        raise TokenExchangeError("Token response token_type must be a string.")
    if scope is not None and not isinstance(scope, str):
        raise TokenExchangeError("Token response scope must be a string.")

    expires_in = _parse_expires_in(payload)
    return TokenContext(
        access_token=access_token,
        token_type=token_type,
        expires_at=None if expires_in is None else time.time() + expires_in,
        refresh_token=refresh_token if isinstance(refresh_token, str) else None,
        scope=scope,
    )


def _decode_token_body(response: httpx.Response) -> dict:
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        payload = response.json()
    else:
        # Older Graph API versions answer with a form-encoded body.
        try:
            payload = response.json()
        except ValueError:
            payload = dict(urllib.parse.parse_qsl(response.text, keep_blank_values=True))
    if not isinstance(payload, dict):
        raise ValueError("expected a key/value document")
    return payload


class TokenExchangeClient:
    """Back-channel calls to the token endpoint of one client registration."""

    def __init__(
        self,
        registration: ClientRegistration,
        state_store: AuthorizationStateStore,
        *,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        sleep=asyncio.sleep,
    ) -> None:
        self.registration = registration
        self.state_store = state_store
        self._http_client = http_client or build_http_client(
            transport=transport,
            timeout=timeout,
            max_retries=max_retries,
            sleep=sleep,
        )

    async def exchange_code(self, code: str, state: str | None, *, session_id: str) -> TokenContext:
        # Raises InvalidStateError before any network traffic.
        authorization_state = self.state_store.consume(session_id, state)
        if not code:
            raise TokenExchangeError("Callback is missing the authorization code.")

        payload = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": authorization_state.redirect_uri,
            },
            error_cls=TokenExchangeError,
        )
        token = token_context_from_payload(payload)
        LOGGER.info("Exchanged authorization code for session %s", session_id)
        return token

    async def refresh(self, token_context: TokenContext) -> TokenContext:
        if not token_context.can_refresh():
            raise RefreshError("No refresh token available; re-authentication required.")

        payload = await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": token_context.refresh_token,
            },
            error_cls=RefreshError,
        )
        try:
            refreshed = token_context_from_payload(
                payload,
                previous_refresh_token=token_context.refresh_token,
            )
        except TokenExchangeError as error:
            raise RefreshError(str(error)) from error
        LOGGER.info("Refreshed access token")
        return refreshed

    async def _token_request(
        self,
        form: dict[str, str],
        *,
        error_cls: type[TokenExchangeError],
    ) -> dict:
        registration = self.registration
        url = registration.token_uri
        data = dict(form)
        auth = None

        if registration.client_auth_scheme is ClientAuthScheme.QUERY:
            url = append_query_params(
                url,
                {
                    "client_id": registration.client_id,
                    "client_secret": registration.client_secret,
                },
            )
        elif registration.client_auth_scheme is ClientAuthScheme.BASIC:
            auth = httpx.BasicAuth(registration.client_id, registration.client_secret)
        else:
            data["client_id"] = registration.client_id
            data["client_secret"] = registration.client_secret

        try:
            response = await self._http_client.post(url, data=data, auth=auth)
        except httpx.TransportError as error:
            raise error_cls(f"Token endpoint unreachable: {error}") from error

        if response.status_code >= 400:
            detail = response.text
            if len(detail) > 500:
                detail = detail[:500] + "...<truncated>"
            LOGGER.warning(
                "Token endpoint rejected %s with status %s: %s",
                form["grant_type"],
                response.status_code,
                detail,
            )
            raise error_cls(
                f"Token request failed with status {response.status_code}: {detail}",
                status_code=response.status_code,
            )

        try:
            payload = _decode_token_body(response)
        except ValueError as error:
            raise error_cls(f"Invalid token response format: {error}") from error

        if payload.get("error"):
            raise error_cls(
                f"Token endpoint returned error {payload.get('error')!r}: "
                f"{payload.get('error_description', 'no description')}",
                status_code=response.status_code,
            )
        return payload

    async def aclose(self) -> None:
        await self._http_client.aclose()
