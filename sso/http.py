from __future__ import annotations

import asyncio
import logging

import httpx

from sso.constants import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_SECONDS, LOGGER


class RetryTransport(httpx.AsyncBaseTransport):
    """Retries network-level failures only; any HTTP response is returned as is."""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base: float = 0.5,
        sleep=asyncio.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._max_retries = max(0, max_retries)
        self._backoff_base = backoff_base
        self._sleep = sleep
        self._logger = logger or LOGGER

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        body = request.content
        retries = 0

        while True:
            next_request = httpx.Request(
                method=request.method,
                url=request.url,
                headers=request.headers,
                content=body,
                extensions=request.extensions,
            )
            try:
                return await self._transport.handle_async_request(next_request)
            except httpx.TransportError as error:
                if retries >= self._max_retries:
                    raise
                backoff_seconds = self._backoff_base * 2**retries
                self._logger.warning(
                    "Retrying after %s: %s in %ss (%s %s)",
                    type(error).__name__,
                    error,
                    backoff_seconds,
                    request.method,
                    request.url,
                )
                await self._sleep(backoff_seconds)
                retries += 1

    async def aclose(self) -> None:
        await self._transport.aclose()


def build_http_client(
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    max_retries: int = DEFAULT_MAX_RETRIES,
    sleep=asyncio.sleep,
) -> httpx.AsyncClient:
    retry_transport = RetryTransport(
        transport or httpx.AsyncHTTPTransport(),
        max_retries=max_retries,
        sleep=sleep,
    )
    return httpx.AsyncClient(
        timeout=timeout,
        transport=retry_transport,
        headers={"Accept": "application/json"},
    )
