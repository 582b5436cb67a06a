from __future__ import annotations

import asyncio

import httpx

from sso.constants import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_SECONDS, LOGGER, PRINCIPAL_KEYS
from sso.errors import RefreshError, ResourceAccessError, UnauthenticatedError
from sso.http import build_http_client
from sso.models import (
    ClientRegistration,
    Principal,
    ResourceServerConfig,
    TokenContext,
    TokenPlacement,
)
from sso.token_client import TokenExchangeClient


def extract_principal(payload: dict) -> Principal:
    subject_id = None
    for key in PRINCIPAL_KEYS:
        value = payload.get(key)
        if value is not None and value != "":
            subject_id = str(value)
            break
    if subject_id is None:
        raise ResourceAccessError("User info response has no recognisable subject id.")

    name = payload.get("name")
    display_name = str(name) if name else subject_id
    return Principal(subject_id=subject_id, display_name=display_name, raw_attributes=payload)


class ResourceClient:
    """Reads the user identity document from the resource server."""

    def __init__(
        self,
        registration: ClientRegistration,
        token_client: TokenExchangeClient,
        *,
        http_client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        sleep=asyncio.sleep,
    ) -> None:
        self.registration = registration
        self.token_client = token_client
        self._http_client = http_client or build_http_client(
            transport=transport,
            timeout=timeout,
            max_retries=max_retries,
            sleep=sleep,
        )

    async def fetch_principal(
        self,
        token_context: TokenContext,
        resource_config: ResourceServerConfig,
    ) -> tuple[Principal, TokenContext]:
        """Return the principal and the token that was accepted.

        An expired token with a refresh token is refreshed before the call;
        otherwise a 401 triggers one refresh and one retry. At most one refresh
        happens per call. The returned token replaces the stored context.
        """
        refreshed = False
        if token_context.is_expired() and token_context.can_refresh():
            LOGGER.info("Access token expired; refreshing before the user info call")
            token_context = await self._refresh(token_context, "expired")
            refreshed = True

        response = await self._get(token_context, resource_config)

        if response.status_code == 401:
            if refreshed:
                raise UnauthenticatedError("Access token rejected after refresh.")
            LOGGER.info("User info rejected the access token; attempting one refresh")
            token_context = await self._refresh(token_context, "rejected")

            response = await self._get(token_context, resource_config)
            if response.status_code == 401:
                raise UnauthenticatedError("Access token rejected after refresh.")

        if response.status_code >= 400:
            raise ResourceAccessError(
                f"User info request failed with status {response.status_code}.",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as error:
            raise ResourceAccessError("User info response is not valid JSON.") from error
        if not isinstance(payload, dict):
            raise ResourceAccessError("User info response must be a JSON object.")

        return extract_principal(payload), token_context

    async def _refresh(self, token_context: TokenContext, reason: str) -> TokenContext:
        try:
            return await self.token_client.refresh(token_context)
        except RefreshError as error:
            raise UnauthenticatedError(
                f"Access token {reason} and refresh failed: {error}"
            ) from error

    async def _get(
        self,
        token_context: TokenContext,
        resource_config: ResourceServerConfig,
    ) -> httpx.Response:
        headers: dict[str, str] = {}
        params: dict[str, str] = {}
        if resource_config.token_placement is TokenPlacement.QUERY:
            params[self.registration.token_param_name] = token_context.access_token
        else:
            headers["Authorization"] = f"Bearer {token_context.access_token}"

        try:
            return await self._http_client.get(
                resource_config.user_info_uri,
                headers=headers,
                params=params,
            )
        except httpx.TransportError as error:
            raise ResourceAccessError(f"User info endpoint unreachable: {error}") from error

    async def aclose(self) -> None:
        await self._http_client.aclose()
