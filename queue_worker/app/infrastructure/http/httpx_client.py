"""Concrete HTTP client implementation using httpx (injected where AbstractHttpClient is needed)."""
from __future__ import annotations

from typing import Any, Mapping

import httpx

from queue_worker.app.ports.http_client import (
    AbstractHttpClient,
    HttpClientError,
    HttpClientTimeoutError,
    HttpResponse,
    RequestTimeout,
)


class _HttpxResponseAdapter:
    """Adapts httpx.Response to the HttpResponse protocol."""

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    @property
    def headers(self) -> dict[str, str]:
        return dict(self._response.headers)

    @property
    def text(self) -> str:
        return self._response.text

    @property
    def status_code(self) -> int:
        return self._response.status_code


class HttpxHttpClient(AbstractHttpClient):
    """AbstractHttpClient implementation using httpx.AsyncClient."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def post_json(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        timeout: RequestTimeout,
        headers: dict[str, str] | None = None,
    ) -> HttpResponse:
        httpx_timeout = httpx.Timeout(
            connect=timeout.connect_seconds,
            read=timeout.read_seconds,
            write=timeout.read_seconds,
            pool=timeout.connect_seconds,
        )
        try:
            response = await self._client.post(
                url,
                json=dict(payload),
                timeout=httpx_timeout,
                headers=headers or {},
            )
            return _HttpxResponseAdapter(response)
        except httpx.TimeoutException as exc:
            raise HttpClientTimeoutError(f"timeout while posting to {url}") from exc
        except httpx.HTTPError as exc:
            raise HttpClientError(f"http post failed for {url}: {exc}") from exc

    async def close(self) -> None:
        await self._client.aclose()
