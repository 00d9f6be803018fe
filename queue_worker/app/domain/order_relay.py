"""Order relay: forwards a decoded order to a downstream HTTP endpoint.

Uses the HTTP port (AbstractHttpClient); the client is built in the composition
root. Every request carries ``Idempotency-Key: <order_id>`` so the receiver can
collapse the duplicates that at-least-once delivery produces.
"""
from __future__ import annotations

from typing import Any

from loguru import logger

from queue_worker.app.core import SERVICE_NAME
from queue_worker.app.domain.errors import HandleError
from queue_worker.app.domain.models import DecodedOrder
from queue_worker.app.ports.http_client import (
    AbstractHttpClient,
    HttpClientError,
    HttpClientTimeoutError,
    RequestTimeout,
)

RETRYABLE_STATUS_CODES = frozenset({408, 425, 429})


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class OrderRelay:
    def __init__(
        self,
        client: AbstractHttpClient,
        url: str,
        timeout_seconds: float,
        *,
        default_headers: dict[str, str] | None = None,
    ) -> None:
        self._client = client
        self._url = url
        self._timeout = RequestTimeout(connect_seconds=timeout_seconds, read_seconds=timeout_seconds)
        self._default_headers = dict(default_headers) if default_headers else {}

    async def relay(self, order: DecodedOrder) -> None:
        headers = {**self._default_headers, "Idempotency-Key": order.order_id}
        try:
            response = await self._client.post_json(
                self._url,
                order.to_dict(),
                timeout=self._timeout,
                headers=headers,
            )
        except HttpClientTimeoutError as exc:
            raise HandleError.transient(f"relay timed out: {exc}") from exc
        except HttpClientError as exc:
            raise HandleError.transient(f"relay request failed: {exc}") from exc

        status = int(response.status_code)
        if status >= 500 or status in RETRYABLE_STATUS_CODES:
            raise HandleError.transient(f"relay returned {status}")
        if status >= 400:
            raise HandleError.permanent(f"relay rejected order with {status}: {response.text[:200]}")

        logger.debug("relay response for order {}: {}", order.order_id, status)
        _log("order_relayed", order_id=order.order_id, status_code=status)
