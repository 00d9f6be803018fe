"""HTTP client port: contract for posting JSON to a downstream service.

Domain code (the order relay) depends on this port; infrastructure (httpx)
implements it.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, runtime_checkable


class HttpClientError(Exception):
    """Base for HTTP client failures (network, protocol)."""


class HttpClientTimeoutError(HttpClientError):
    """Raised when the request times out."""


@runtime_checkable
class HttpResponse(Protocol):
    """Minimal read-only view of an HTTP response."""

    @property
    def headers(self) -> Mapping[str, str]: ...

    @property
    def text(self) -> str: ...

    @property
    def status_code(self) -> int: ...


@dataclass(frozen=True)
class RequestTimeout:
    """Connect and read timeouts in seconds."""

    connect_seconds: float
    read_seconds: float


@runtime_checkable
class AbstractHttpClient(Protocol):
    async def post_json(
        self,
        url: str,
        payload: Mapping[str, Any],
        *,
        timeout: RequestTimeout,
        headers: dict[str, str] | None = None,
    ) -> HttpResponse:
        """POST ``payload`` as JSON. Non-2xx responses are returned, not raised."""
        ...

    async def close(self) -> None: ...
