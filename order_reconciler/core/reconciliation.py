"""
Reconciliation engine: the order status state machine.

States: CREATED -> PENDING -> {SUCCESS, FAILED}. SUCCESS and FAILED are
terminal and write-once. The same rules apply whether an observation comes
from the creation response, a webhook or a status poll:

- terminal order, same status observed       -> duplicate (nothing written)
- terminal order, other terminal observed    -> conflict (recorded, status kept)
- terminal order, PENDING observed           -> stale (status kept)
- open order, SUCCESS/FAILED observed        -> applied
- open order, PENDING observed               -> noop (raw payload retained)

Writes are compare-and-set on the status that was read, so a webhook racing
a poll refresh cannot overwrite a terminal status committed in between;
the loser re-reads and re-decides against the new state.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

import structlog

from order_reconciler.core.exceptions import ReconcilerError, UnknownOrderError
from order_reconciler.core.models import (
    Observation,
    ObservationSource,
    Order,
    OrderStatus,
    utcnow,
)
from order_reconciler.core.store import OrderStore
from order_reconciler.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class Decision(str, Enum):
    """What the engine did with an observation."""

    APPLIED = "applied"
    NOOP = "noop"
    DUPLICATE = "duplicate"
    CONFLICT = "conflict"
    STALE = "stale"


def decide(current: OrderStatus, observed: OrderStatus) -> Decision:
    """
    Pure transition rule for (current status, observed status).

    Args:
        current: Status currently persisted
        observed: Canonical status carried by the observation

    Returns:
        Decision: Whether and how the observation changes the order
    """
    if current.is_terminal:
        if observed == current:
            return Decision.DUPLICATE
        if observed.is_terminal:
            return Decision.CONFLICT
        return Decision.STALE
    if observed.is_terminal:
        return Decision.APPLIED
    if current == OrderStatus.CREATED and observed == OrderStatus.PENDING:
        return Decision.APPLIED
    return Decision.NOOP


def evolve(order: Order, observation: Observation, decision: Decision, now: datetime) -> Order:
    """
    Pure state transition: the order as it should look after ``observation``.

    Only status, timestamps and audit fields ever change; merchant data is
    carried over untouched.
    """
    update: Dict[str, Any] = {}

    if decision in (Decision.APPLIED, Decision.NOOP):
        if observation.source == ObservationSource.WEBHOOK:
            update["provider_callback"] = observation.payload
        else:
            update["provider_response"] = observation.payload

    if decision == Decision.APPLIED:
        update["status"] = observation.status
        update["updated_at"] = now
    elif decision == Decision.CONFLICT:
        update["conflicting_observation"] = observation.audit_entry()

    if observation.source == ObservationSource.POLL:
        update["last_status_check_at"] = now

    return order.model_copy(update=update)


def changed_fields(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    return {name: value for name, value in after.items() if before.get(name) != value}


@dataclass(frozen=True)
class ReconciliationResult:
    """The order after reconciliation and how it got there."""

    order: Order
    decision: Decision
    previous_status: OrderStatus
    observation: Observation
    written: bool


class ReconciliationEngine:
    """
    Decides, for a stored order and a new observation, what status to persist.

    This is the only component that writes an order's ``status``.
    """

    def __init__(
        self,
        store: OrderStore,
        max_attempts: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize reconciliation engine.

        Args:
            store: Order store adapter
            max_attempts: Compare-and-set attempts before giving up
            clock: Source of timestamps, injectable for tests
        """
        self.store = store
        self.max_attempts = max_attempts
        self.clock = clock

    async def admit(
        self,
        order: Order,
        raw_response: Any,
        provider_order_id: Optional[str] = None,
    ) -> Order:
        """
        Persist a freshly created order in PENDING.

        Args:
            order: Order as built by the caller (status CREATED)
            raw_response: Provider create-order response, kept for audit
            provider_order_id: Provider-side identifier, if the provider sent one

        Returns:
            Order: The persisted order

        Raises:
            DuplicateOrderError: If the order id already exists
        """
        now = self.clock()
        admitted = order.model_copy(
            update={
                "status": OrderStatus.PENDING,
                "provider_response": raw_response,
                "provider_order_id": provider_order_id,
                "created_at": now,
                "updated_at": now,
            }
        )
        await self.store.create(admitted)
        metrics.record_reconciliation_decision(ObservationSource.CREATION.value, Decision.APPLIED.value)
        logger.info(
            "reconciliation_decision",
            order_id=order.order_id,
            source=ObservationSource.CREATION.value,
            previous_status=order.status.value,
            observed_status=OrderStatus.PENDING.value,
            decision=Decision.APPLIED.value,
        )
        return admitted

    async def apply(self, observation: Observation) -> ReconciliationResult:
        """
        Reconcile one observation against the stored order.

        Applying the same observation any number of times leaves the order in
        the same state as applying it once.

        Args:
            observation: Canonical observation from a webhook or poll

        Returns:
            ReconciliationResult: Resulting order and decision

        Raises:
            UnknownOrderError: If the store has no record of the order
            ReconcilerError: If every compare-and-set attempt lost a race
        """
        order_id = observation.order_id

        for attempt in range(1, self.max_attempts + 1):
            order = await self.store.get(order_id)
            if order is None:
                logger.warning(
                    "reconciliation_unknown_order",
                    order_id=order_id,
                    source=observation.source.value,
                    provider_code=observation.provider_code,
                )
                raise UnknownOrderError(order_id)

            decision = decide(order.status, observation.status)
            updated = evolve(order, observation, decision, self.clock())
            fields = changed_fields(order.to_record(), updated.to_record())

            written = False
            if fields:
                written = await self.store.compare_and_set(order_id, order.status, fields)
                if not written:
                    metrics.record_cas_retry()
                    logger.info(
                        "reconciliation_cas_lost",
                        order_id=order_id,
                        expected_status=order.status.value,
                        attempt=attempt,
                    )
                    continue

            metrics.record_reconciliation_decision(observation.source.value, decision.value)
            log = logger.warning if decision == Decision.CONFLICT else logger.info
            log(
                "reconciliation_decision",
                order_id=order_id,
                source=observation.source.value,
                previous_status=order.status.value,
                observed_status=observation.status.value,
                provider_code=observation.provider_code,
                decision=decision.value,
                status=updated.status.value,
                written=written,
            )
            return ReconciliationResult(
                order=updated,
                decision=decision,
                previous_status=order.status,
                observation=observation,
                written=written,
            )

        logger.error("reconciliation_contended", order_id=order_id, attempts=self.max_attempts)
        raise ReconcilerError(f"Order {order_id} changed on every attempt; giving up")
