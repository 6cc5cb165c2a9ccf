"""
Health checks for readiness/liveness probes.

Checks:
- Order store connectivity
"""
from typing import Any, Dict

import structlog

from order_reconciler.core.store import OrderStore

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """Health check service for the order reconciler's dependencies."""

    def __init__(self, store: OrderStore) -> None:
        self.store = store

    async def check_store(self) -> Dict[str, Any]:
        """
        Check order store connectivity.

        Raises:
            HealthCheckError: If the store does not answer
        """
        try:
            if not await self.store.ping():
                raise HealthCheckError("Order store ping returned false")
        except HealthCheckError:
            raise
        except Exception as e:
            logger.error("store_health_check_failed", error=str(e))
            raise HealthCheckError(f"Order store health check failed: {e}") from e

        return {
            "status": "healthy",
            "service": "order_store",
            "backend": type(self.store).__name__,
        }

    async def check_all(self) -> Dict[str, Any]:
        """Run all health checks."""
        checks = {}
        all_healthy = True

        try:
            checks["order_store"] = await self.check_store()
        except HealthCheckError as e:
            checks["order_store"] = {
                "status": "unhealthy",
                "service": "order_store",
                "error": str(e),
            }
            all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }
