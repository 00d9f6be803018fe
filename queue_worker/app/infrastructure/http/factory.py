"""HTTP client factory: builds AbstractHttpClient from settings (no provider logic in composition)."""
from __future__ import annotations

import httpx

from queue_worker.app.config.settings import Settings
from queue_worker.app.infrastructure.http.httpx_client import HttpxHttpClient
from queue_worker.app.ports.http_client import AbstractHttpClient


def create_http_client(settings: Settings) -> AbstractHttpClient:
    """Build an HTTP client from settings. Timeouts are applied per-request by the adapter."""
    headers = {"User-Agent": settings.relay_user_agent} if settings.relay_user_agent else None
    return HttpxHttpClient(httpx.AsyncClient(headers=headers))
