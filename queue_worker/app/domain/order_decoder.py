"""Order decoder: turns a raw message body into a DecodedOrder or a DecodeError.

Bodies published through an SNS topic arrive wrapped in a notification
envelope; the order is the JSON string in its ``Message`` field.
"""
from __future__ import annotations

import json
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError, field_validator
from pydantic_core import PydanticCustomError

from queue_worker.app.domain.errors import DecodeError, DecodeErrorKind
from queue_worker.app.domain.models import DecodedOrder

_MISSING_ERROR_TYPES = {"missing", "string_too_short"}


class OrderPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    order_id: StrictStr = Field(min_length=1)
    customer_id: StrictStr = Field(min_length=1)
    amount: Decimal

    @field_validator("order_id", "customer_id", mode="after")
    @classmethod
    def _strip_ids(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise PydanticCustomError("string_too_short", "must not be blank")
        return value

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_must_be_numeric(cls, value: Any) -> Any:
        # bool is an int subclass; "amount": true is a type error, not 1
        if isinstance(value, bool) or not isinstance(value, (int, float, Decimal, str)):
            raise ValueError("amount must be a number or numeric string")
        return value


def _is_sns_notification(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and payload.get("Type") == "Notification"
        and "Message" in payload
        and "TopicArn" in payload
    )


def _loads(text: str, what: str) -> Any:
    try:
        return json.loads(text, parse_float=Decimal)
    except (ValueError, RecursionError) as exc:
        # the int digit limit raises a plain ValueError, deep nesting a RecursionError
        raise DecodeError(DecodeErrorKind.MALFORMED_STRUCTURE, f"{what} is not valid JSON: {exc}") from exc


def _kind_for(exc: ValidationError) -> DecodeErrorKind:
    if any(err["type"] in _MISSING_ERROR_TYPES for err in exc.errors()):
        return DecodeErrorKind.MISSING_FIELD
    return DecodeErrorKind.TYPE_MISMATCH


def _describe(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "body"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


class OrderDecoder:
    """Stateless decoder; safe to share between concurrent message tasks."""

    def __init__(self, *, unwrap_sns_envelope: bool = True) -> None:
        self._unwrap_sns_envelope = unwrap_sns_envelope

    def decode(self, body: str | bytes) -> DecodedOrder:
        if isinstance(body, bytes):
            try:
                body = body.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise DecodeError(DecodeErrorKind.MALFORMED_STRUCTURE, "body is not valid UTF-8") from exc
        if not body.strip():
            raise DecodeError(DecodeErrorKind.MALFORMED_STRUCTURE, "body is empty")

        payload = _loads(body, "body")
        if self._unwrap_sns_envelope and _is_sns_notification(payload):
            inner = payload["Message"]
            if not isinstance(inner, str):
                raise DecodeError(DecodeErrorKind.MALFORMED_STRUCTURE, "SNS Message field is not a string")
            payload = _loads(inner, "SNS Message")

        if not isinstance(payload, dict):
            raise DecodeError(
                DecodeErrorKind.MALFORMED_STRUCTURE,
                f"expected a JSON object, got {type(payload).__name__}",
            )

        try:
            order = OrderPayload.model_validate(payload)
        except ValidationError as exc:
            raise DecodeError(_kind_for(exc), _describe(exc)) from exc

        return DecodedOrder(order_id=order.order_id, customer_id=order.customer_id, amount=order.amount)
