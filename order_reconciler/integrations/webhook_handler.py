"""
Provider webhook handler.

Implements:
- Signature verification strictly before anything else touches the payload
- Decoding of every known callback shape into one ``Observation``
- Reconciliation through the engine (idempotent under provider redelivery)
"""
import time

import structlog

from order_reconciler.core.exceptions import (
    MalformedPayloadError,
    SignatureError,
    UnknownOrderError,
)
from order_reconciler.core.reconciliation import ReconciliationEngine, ReconciliationResult
from order_reconciler.integrations.payloads import parse_webhook_body
from order_reconciler.integrations.signature import SignatureVerifier
from order_reconciler.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class WebhookHandler:
    """Verifies, decodes and reconciles provider payment callbacks."""

    def __init__(self, verifier: SignatureVerifier, engine: ReconciliationEngine):
        """
        Initialize webhook handler.

        Args:
            verifier: Signature scheme configured for the provider
            engine: Reconciliation engine
        """
        self.verifier = verifier
        self.engine = engine

    @property
    def signature_header(self) -> str:
        return self.verifier.header_name

    async def handle(self, raw_body: bytes, signature: str | None) -> ReconciliationResult:
        """
        Process one webhook delivery.

        Args:
            raw_body: Exact request body bytes
            signature: Value of the signature header, if any

        Returns:
            ReconciliationResult: Outcome of reconciliation

        Raises:
            SignatureError: If the signature does not match the body
            MalformedPayloadError: If the body cannot be decoded or attributed
            UnknownOrderError: If the referenced order does not exist
        """
        start_time = time.time()

        if not self.verifier.verify(raw_body, signature):
            metrics.record_webhook("invalid_signature", time.time() - start_time)
            logger.warning(
                "webhook_signature_invalid",
                header=self.signature_header,
                signature_present=bool(signature),
            )
            raise SignatureError("Invalid webhook signature")

        try:
            observation = parse_webhook_body(raw_body)
        except MalformedPayloadError as e:
            metrics.record_webhook("malformed", time.time() - start_time)
            logger.warning("webhook_payload_malformed", error=str(e))
            raise

        logger.info(
            "webhook_received",
            order_id=observation.order_id,
            provider_code=observation.provider_code,
            observed_status=observation.status.value,
        )

        try:
            result = await self.engine.apply(observation)
        except UnknownOrderError:
            metrics.record_webhook("unknown_order", time.time() - start_time)
            raise

        metrics.record_webhook("processed", time.time() - start_time)
        return result
