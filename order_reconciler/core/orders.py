"""
Order service: create orders and answer status polls.

Orchestrates:
1. Input validation (never reaches the state machine when invalid)
2. Provider call with the one-shot credential refresh-and-retry policy
3. Admission of the new order as PENDING through the reconciliation engine
4. Best-effort provider refresh on polls, falling back to the stored status
"""
import asyncio
import math
import secrets
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from order_reconciler.config import Settings
from order_reconciler.core.exceptions import (
    AuthError,
    ProviderError,
    ReconcilerError,
    UnknownOrderError,
    ValidationError,
)
from order_reconciler.core.models import Observation, ObservationSource, Order, TWO_PLACES
from order_reconciler.core.reconciliation import ReconciliationEngine
from order_reconciler.core.store import OrderStore
from order_reconciler.integrations.provider_client import ProviderClient
from order_reconciler.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CreatedOrder:
    """A persisted order and where to send the customer to pay."""

    order: Order
    checkout_url: str


@dataclass(frozen=True)
class OrderStatusView:
    """Answer to a status poll."""

    order: Order
    provider_status: Optional[Dict[str, Any]] = None


class OrderService:
    """Entry point for order creation and status polling."""

    def __init__(
        self,
        store: OrderStore,
        engine: ReconciliationEngine,
        provider: ProviderClient,
        settings: Settings,
    ):
        """
        Initialize order service.

        Args:
            store: Order store adapter (read side)
            engine: Reconciliation engine (all status writes)
            provider: Provider client selected at startup
            settings: Application settings
        """
        self.store = store
        self.engine = engine
        self.provider = provider
        self.settings = settings

    @staticmethod
    def _validate_create_request(items: Any, total: Any) -> Decimal:
        """
        Validate a create-order request.

        Returns:
            Decimal: Order total quantized to two places

        Raises:
            ValidationError: If items are missing or total is not a positive number
        """
        if not items:
            raise ValidationError("Invalid order data: items are required")
        if total is None or isinstance(total, bool):
            raise ValidationError("Invalid order data: total is required")
        if isinstance(total, float) and not math.isfinite(total):
            raise ValidationError("Invalid order data: total must be a finite number")
        try:
            amount = Decimal(str(total)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)
        except (InvalidOperation, ValueError):
            raise ValidationError("Invalid order data: total must be a number")
        if not amount.is_finite() or amount <= 0:
            raise ValidationError("Invalid order data: total must be positive")
        return amount

    def generate_order_id(self) -> str:
        """Merchant-side order id: prefix, epoch millis and a random suffix."""
        return f"{self.settings.order_id_prefix}{int(time.time() * 1000)}{secrets.token_hex(3).upper()}"

    async def _call_provider(
        self, operation: str, call: Callable[..., Awaitable[T]], *args: Any
    ) -> T:
        """
        Run a provider call, retrying exactly once on ``AuthError``.

        The failed attempt has already invalidated the cached credential, so
        the retry performs a fresh token exchange. ``ProviderError`` is never
        retried: a replayed create could open a duplicate order at the provider.
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(AuthError),
            stop=stop_after_attempt(2),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info("provider_auth_retry", operation=operation)
                return await call(*args)
        raise AssertionError("unreachable")

    async def create_order(
        self,
        items: Any,
        total: Any,
        table: Any = None,
        session_id: Optional[str] = None,
    ) -> CreatedOrder:
        """
        Create an order at the provider and persist it as PENDING.

        Args:
            items: Opaque line items
            total: Order total in major currency units
            table: Opaque merchant metadata
            session_id: Client session identifier

        Returns:
            CreatedOrder: Persisted order and checkout URL

        Raises:
            ValidationError: If the request is invalid
            AuthError: If the provider rejected credentials twice
            ProviderError: If the provider failed or answered malformed
        """
        try:
            amount = self._validate_create_request(items, total)
        except ValidationError:
            metrics.record_order_create("validation_error")
            raise

        order = Order(
            order_id=self.generate_order_id(),
            amount=amount,
            items=items,
            table=table,
            session_id=session_id,
        )
        logger.info(
            "order_creation_started",
            order_id=order.order_id,
            amount=str(order.amount),
            amount_minor=order.amount_minor,
        )

        try:
            result = await self._call_provider("create_order", self.provider.create_order, order)
        except AuthError as e:
            metrics.record_order_create("auth_error")
            logger.error("order_creation_auth_failed", order_id=order.order_id, error=str(e))
            raise
        except ProviderError as e:
            metrics.record_order_create("provider_error")
            logger.error(
                "order_creation_provider_failed",
                order_id=order.order_id,
                error=str(e),
                response=e.raw_response,
            )
            raise

        persisted = await self.engine.admit(order, result.raw_response, result.provider_order_id)
        metrics.record_order_create("created")
        logger.info("order_created", order_id=order.order_id, provider_order_id=result.provider_order_id)
        return CreatedOrder(order=persisted, checkout_url=result.checkout_url)

    async def get_order_status(self, order_id: str) -> OrderStatusView:
        """
        Return the persisted status, refreshed from the provider when reachable.

        A failed or slow provider refresh never surfaces as an error; the
        stored order is returned instead.

        Args:
            order_id: Merchant order id

        Returns:
            OrderStatusView: Current order and, if fetched, the provider's raw status

        Raises:
            UnknownOrderError: If the order was never created
        """
        order = await self.store.get(order_id)
        if order is None:
            logger.info("order_status_unknown_order", order_id=order_id)
            raise UnknownOrderError(order_id)

        try:
            status = await asyncio.wait_for(
                self._call_provider("query_status", self.provider.query_status, order_id),
                timeout=self.settings.status_poll_timeout_seconds,
            )
            result = await self.engine.apply(
                Observation(
                    order_id=order_id,
                    status=status.status,
                    source=ObservationSource.POLL,
                    provider_code=status.provider_code,
                    payload=status.raw_response,
                )
            )
        except asyncio.TimeoutError:
            metrics.record_poll_fallback("timeout")
            logger.warning("order_status_refresh_timeout", order_id=order_id)
            return OrderStatusView(order=await self._latest(order))
        except ReconcilerError as e:
            metrics.record_poll_fallback(type(e).__name__)
            logger.warning("order_status_refresh_failed", order_id=order_id, error=str(e))
            return OrderStatusView(order=await self._latest(order))

        return OrderStatusView(order=result.order, provider_status=status.raw_response)

    async def _latest(self, fallback: Order) -> Order:
        # A webhook may have landed while the provider call was in flight.
        return await self.store.get(fallback.order_id) or fallback
