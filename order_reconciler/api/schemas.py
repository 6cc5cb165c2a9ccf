"""
Pydantic schemas for API request/response models.

Field names are camelCase on the wire to match the merchant front-end.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateOrderRequest(CamelModel):
    """Request schema for creating an order."""

    items: Any = Field(default=None, description="Opaque line items")
    total: Any = Field(default=None, description="Order total, must be a positive number")
    table: Any = Field(default=None, description="Opaque table reference")
    session_id: Optional[str] = Field(default=None, description="Client session identifier")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "examples": [
                {
                    "items": [{"name": "Masala Dosa", "qty": 2, "price": 75}],
                    "total": 150.00,
                    "table": "T4",
                    "sessionId": "sess_9f2c",
                }
            ]
        },
    )


class CreateOrderResponse(CamelModel):
    """Response schema for order creation."""

    success: bool = True
    order_id: str = Field(..., description="Merchant order id")
    checkout_url: str = Field(..., description="Provider page the customer pays on")


class ErrorResponse(CamelModel):
    """Error body; ``error`` echoes the raw provider response for diagnostics."""

    success: bool = False
    message: str
    code: Optional[str] = None
    error: Any = None


class WebhookResponse(CamelModel):
    """Response schema for a processed webhook."""

    status: str = "ok"
    order_id: str
    decision: str
    order_status: str


class OrderStatusResponse(CamelModel):
    """Response schema for an order status poll."""

    status: str = Field(..., description="Canonical persisted status")
    order: Dict[str, Any] = Field(..., description="Stored order record")
    provider_status: Optional[Dict[str, Any]] = Field(
        default=None, description="Fresh provider status, when it could be fetched"
    )


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str
    checks: Optional[Dict[str, Any]] = None
