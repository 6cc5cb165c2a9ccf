"""
API routes for order creation, provider webhooks and status polling.
"""
import time
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from order_reconciler.core.exceptions import (
    AuthError,
    MalformedPayloadError,
    ProviderError,
    SignatureError,
    UnknownOrderError,
    ValidationError,
)

from .dependencies import Services, get_services
from .schemas import (
    CreateOrderRequest,
    CreateOrderResponse,
    ErrorResponse,
    HealthCheckResponse,
    OrderStatusResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
order_router = APIRouter(prefix="/api", tags=["orders"])
monitoring_router = APIRouter(tags=["monitoring"])


def error_response(
    status_code: int,
    message: str,
    code: Optional[str] = None,
    error: Any = None,
) -> JSONResponse:
    body = ErrorResponse(message=message, code=code, error=error)
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


@order_router.post(
    "/create-order",
    response_model=CreateOrderResponse,
    summary="Create an order",
    description="Open a payment at the provider and persist the order as PENDING",
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
)
async def create_order(
    request: CreateOrderRequest,
    services: Services = Depends(get_services),
) -> Any:
    """
    Create a new order.

    Not idempotent: every call opens a fresh provider order.
    """
    start_time = time.time()

    try:
        created = await services.orders.create_order(
            items=request.items,
            total=request.total,
            table=request.table,
            session_id=request.session_id,
        )
    except ValidationError as e:
        return error_response(status.HTTP_400_BAD_REQUEST, str(e), code="VALIDATION_ERROR")
    except AuthError as e:
        return error_response(
            status.HTTP_502_BAD_GATEWAY,
            "Payment provider rejected merchant credentials",
            code="PROVIDER_AUTH_ERROR",
            error=e.raw_response,
        )
    except ProviderError as e:
        return error_response(
            status.HTTP_502_BAD_GATEWAY,
            str(e),
            code="PROVIDER_ERROR",
            error=e.raw_response,
        )

    logger.info(
        "api_order_created",
        order_id=created.order.order_id,
        duration_seconds=time.time() - start_time,
    )
    return CreateOrderResponse(
        order_id=created.order.order_id,
        checkout_url=created.checkout_url,
    ).model_dump(by_alias=True)


@order_router.post(
    "/webhook",
    response_model=WebhookResponse,
    summary="Provider webhook",
    description="Verify and reconcile a payment callback from the provider",
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
    },
)
async def provider_webhook(
    request: Request,
    services: Services = Depends(get_services),
) -> Any:
    """
    Handle a provider payment callback.

    The signature is checked against the exact request bytes, so the body is
    read raw rather than through a schema.
    """
    handler = services.webhooks
    raw_body = await request.body()
    signature = request.headers.get(handler.signature_header)

    try:
        result = await handler.handle(raw_body, signature)
    except SignatureError as e:
        return error_response(status.HTTP_401_UNAUTHORIZED, str(e), code="INVALID_SIGNATURE")
    except MalformedPayloadError as e:
        return error_response(status.HTTP_400_BAD_REQUEST, str(e), code="MALFORMED_PAYLOAD")
    except UnknownOrderError as e:
        logger.warning("webhook_unknown_order", order_id=e.order_id)
        return error_response(status.HTTP_400_BAD_REQUEST, str(e), code="UNKNOWN_ORDER")

    return WebhookResponse(
        order_id=result.order.order_id,
        decision=result.decision.value,
        order_status=result.order.status.value,
    ).model_dump(by_alias=True)


@order_router.get(
    "/order-status",
    response_model=OrderStatusResponse,
    response_model_exclude_none=True,
    summary="Order status",
    description="Return the persisted order status, refreshed from the provider when reachable",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def order_status(
    order_id: Optional[str] = Query(default=None, alias="orderId"),
    services: Services = Depends(get_services),
) -> Any:
    """Get the status of an order."""
    if not order_id:
        return error_response(
            status.HTTP_400_BAD_REQUEST, "orderId is required", code="VALIDATION_ERROR"
        )

    try:
        view = await services.orders.get_order_status(order_id)
    except UnknownOrderError as e:
        return error_response(status.HTTP_404_NOT_FOUND, str(e), code="ORDER_NOT_FOUND")

    return OrderStatusResponse(
        status=view.order.status.value,
        order=view.order.to_record(),
        provider_status=view.provider_status,
    ).model_dump(by_alias=True, exclude_none=True)


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check order store connectivity",
)
async def health(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Health check endpoint."""
    try:
        result = await services.health.check_all()
        return result
    except Exception as e:
        logger.error("health_check_error", error=str(e))
        return {
            "status": "unhealthy",
            "checks": {"error": str(e)},
        }


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
