"""
Domain model for order reconciliation.

Orders are persisted as camelCase attribute maps (``orderId``, ``sessionId``,
``providerCallback``...) so the stored documents stay readable by the merchant
front-end; the Python side uses snake_case attributes.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

TWO_PLACES = Decimal("0.01")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    """Lifecycle of a payment order: CREATED -> PENDING -> SUCCESS | FAILED."""

    CREATED = "CREATED"
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.SUCCESS, OrderStatus.FAILED)


class ObservationSource(str, Enum):
    """Where an observation of a payment's state came from."""

    CREATION = "creation"
    WEBHOOK = "webhook"
    POLL = "poll"


class Order(BaseModel):
    """
    One merchant payment transaction tracked end-to-end by ``order_id``.

    ``order_id``, ``amount``, ``items``, ``table`` and ``session_id`` never
    change after creation. ``status`` is written by the reconciliation engine
    only.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    order_id: str
    amount: Decimal
    items: Any = None
    table: Any = None
    session_id: Optional[str] = None
    status: OrderStatus = OrderStatus.CREATED
    provider_order_id: Optional[str] = None
    provider_response: Optional[Any] = None
    provider_callback: Optional[Any] = None
    conflicting_observation: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_status_check_at: Optional[datetime] = None

    @field_validator("amount")
    @classmethod
    def quantize_amount(cls, v: Decimal) -> Decimal:
        """Keep two decimal places, the precision of the major currency unit."""
        return v.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

    @property
    def amount_minor(self) -> int:
        """Amount in the smallest currency unit, as the provider expects it."""
        return int((self.amount * 100).to_integral_value(rounding=ROUND_HALF_UP))

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the attribute map kept in the order store."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> Order:
        return cls.model_validate(record)


class Observation(BaseModel):
    """
    A single report of a payment's state from the provider.

    ``status`` is always one of SUCCESS, FAILED or PENDING: the payload
    mappers are total, so every provider code lands on exactly one of them.
    """

    model_config = ConfigDict(frozen=True)

    order_id: str
    status: OrderStatus
    source: ObservationSource
    provider_code: Optional[str] = None
    payload: Any = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: OrderStatus) -> OrderStatus:
        if v == OrderStatus.CREATED:
            raise ValueError("Observations cannot report CREATED")
        return v

    def audit_entry(self) -> Dict[str, Any]:
        """Compact form stored when this observation disagrees with a terminal state."""
        return {
            "source": self.source.value,
            "status": self.status.value,
            "providerCode": self.provider_code,
            "payload": self.payload,
        }


class Credential(BaseModel):
    """A bearer token and the monotonic time after which it must not be reused."""

    model_config = ConfigDict(frozen=True)

    token: str = Field(min_length=1)
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at
