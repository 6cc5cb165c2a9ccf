"""Service wiring for the API: built once at startup, shared by all requests."""
from dataclasses import dataclass, field
from typing import Optional

import httpx
import structlog
from fastapi import Request

from order_reconciler.config import Settings
from order_reconciler.core.orders import OrderService
from order_reconciler.core.reconciliation import ReconciliationEngine
from order_reconciler.core.store import InMemoryOrderStore, OrderStore, RedisOrderStore
from order_reconciler.integrations.provider_client import (
    ProviderClient,
    build_http_client,
    build_provider_client,
)
from order_reconciler.integrations.signature import SignatureVerifier, build_signature_verifier
from order_reconciler.integrations.webhook_handler import WebhookHandler
from order_reconciler.monitoring.health import HealthCheck

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    """Everything a request handler needs."""

    settings: Settings
    store: OrderStore
    engine: ReconciliationEngine
    provider: ProviderClient
    orders: OrderService
    webhooks: WebhookHandler
    health: HealthCheck
    http: Optional[httpx.AsyncClient] = field(default=None)

    @classmethod
    def assemble(
        cls,
        settings: Settings,
        store: OrderStore,
        provider: ProviderClient,
        verifier: SignatureVerifier,
        http: Optional[httpx.AsyncClient] = None,
    ) -> "Services":
        engine = ReconciliationEngine(store, max_attempts=settings.reconcile_max_attempts)
        return cls(
            settings=settings,
            store=store,
            engine=engine,
            provider=provider,
            orders=OrderService(store, engine, provider, settings),
            webhooks=WebhookHandler(verifier, engine),
            health=HealthCheck(store),
            http=http,
        )

    async def close(self) -> None:
        await self.store.close()
        if self.http is not None:
            await self.http.aclose()


def build_store(settings: Settings) -> OrderStore:
    if settings.order_store_backend == "redis":
        return RedisOrderStore.from_url(
            settings.redis_url,
            key_prefix=settings.order_key_prefix,
            socket_timeout=settings.store_timeout_seconds,
            socket_connect_timeout=settings.store_connect_timeout_seconds,
        )
    return InMemoryOrderStore()


def build_services(settings: Settings) -> Services:
    """
    Build production services from settings.

    Raises:
        ValueError: If the selected provider variant or webhook scheme is misconfigured
    """
    verifier = build_signature_verifier(settings)
    http = build_http_client(settings)
    services = Services.assemble(
        settings=settings,
        store=build_store(settings),
        provider=build_provider_client(settings, http),
        verifier=verifier,
        http=http,
    )
    logger.info(
        "services_initialized",
        store=settings.order_store_backend,
        provider_variant=settings.provider_variant,
        webhook_scheme=settings.webhook_scheme,
    )
    return services


def get_services(request: Request) -> Services:
    return request.app.state.services
