"""
Provider API client.

Implements:
- ``create_order`` and ``query_status`` behind one interface
- Two named integration variants, chosen once at startup:
  ``checkout_v2`` (OAuth bearer) and ``pg_v1`` (salted checksum)
- Credential invalidation when the provider rejects a token
- Error classification into ``AuthError`` and ``ProviderError``

Nothing here retries. ``OrderService`` owns the retry policy, and a request
is never replayed through a different variant.
"""
import base64
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import structlog

from order_reconciler.config import Settings
from order_reconciler.core.credentials import CredentialCache
from order_reconciler.core.exceptions import AuthError, ProviderError
from order_reconciler.core.models import Order, OrderStatus
from order_reconciler.integrations.auth import (
    BearerTokenAuth,
    OAuthTokenExchanger,
    RequestAuth,
    SaltedChecksumAuth,
)
from order_reconciler.integrations.payloads import map_provider_code
from order_reconciler.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CreateOrderResult:
    """Outcome of a successful create-order call."""

    checkout_url: str
    raw_response: Dict[str, Any]
    provider_order_id: Optional[str] = None


@dataclass(frozen=True)
class StatusResult:
    """Outcome of a successful status query, already mapped to the canonical enum."""

    status: OrderStatus
    provider_code: str
    raw_response: Dict[str, Any]


def _dig(data: Any, *path: str) -> Any:
    for key in path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def extract_checkout_url(data: Dict[str, Any]) -> Optional[str]:
    """Find the customer redirect URL in a create-order response."""
    return (
        _dig(data, "data", "instrumentResponse", "redirectInfo", "url")
        or _dig(data, "data", "redirectUrl")
        or data.get("redirectUrl")
    )


class ProviderClient(ABC):
    """
    Adapter issuing create-order and status calls to the payment provider.

    Subclasses only decide URLs, payload shapes and which response fields
    carry the result; transport, authentication and error handling live here.
    """

    name: str

    def __init__(self, http: httpx.AsyncClient, auth: RequestAuth, settings: Settings):
        """
        Initialize provider client.

        Args:
            http: Shared async HTTP client (carries the timeout configuration)
            auth: Strategy producing authentication headers
            settings: Application settings
        """
        self.http = http
        self.auth = auth
        self.settings = settings

    @abstractmethod
    async def create_order(self, order: Order) -> CreateOrderResult:
        """
        Create a payment order at the provider.

        Raises:
            AuthError: If the provider rejects the credentials
            ProviderError: On any other non-2xx or malformed response
        """

    @abstractmethod
    async def query_status(self, order_id: str) -> StatusResult:
        """
        Ask the provider for the current payment state of an order.

        Raises:
            AuthError: If the provider rejects the credentials
            ProviderError: On any other non-2xx or malformed response
        """

    def _pay_payload(self, order: Order, order_id_field: str, default_user: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "merchantId": self.settings.merchant_id,
            order_id_field: order.order_id,
            "merchantUserId": order.session_id or default_user,
            "amount": order.amount_minor,
            "redirectUrl": self.settings.redirect_url(order.order_id),
            "redirectMode": "POST",
            "callbackUrl": self.settings.callback_url,
            "paymentInstrument": {"type": "PAY_PAGE"},
        }
        if self.settings.customer_mobile_number:
            payload["mobileNumber"] = self.settings.customer_mobile_number
        return payload

    async def _send(
        self,
        operation: str,
        method: str,
        url: str,
        path: str,
        body: str = "",
        signed_payload: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send one authenticated request and classify the response.

        Args:
            operation: Metric/log label
            method: HTTP method
            url: Absolute URL
            path: Path as covered by the request signature
            body: Request body ("" for none)
            signed_payload: Part of the body the provider signs, if not the whole body

        Returns:
            Dict[str, Any]: Decoded JSON response

        Raises:
            AuthError: On 401/403 (the credential is invalidated first)
            ProviderError: On transport errors, other non-2xx or non-object bodies
        """
        headers = await self.auth.headers(path, body if signed_payload is None else signed_payload)
        headers["Content-Type"] = "application/json"

        start_time = time.time()
        try:
            response = await self.http.request(
                method, url, content=body.encode("utf-8") if body else None, headers=headers
            )
        except httpx.HTTPError as e:
            metrics.record_provider_call(operation, "transport_error", time.time() - start_time)
            logger.error("provider_request_failed", operation=operation, error=str(e))
            raise ProviderError(f"Provider request failed: {e}") from e

        metrics.record_provider_call(operation, str(response.status_code), time.time() - start_time)
        try:
            data: Any = response.json()
        except ValueError:
            data = response.text

        if response.status_code in (401, 403):
            logger.warning(
                "provider_rejected_credentials",
                operation=operation,
                status_code=response.status_code,
                auth=self.auth.name,
            )
            self.auth.on_unauthorized(headers)
            raise AuthError("Provider rejected credentials", raw_response=data)

        if not 200 <= response.status_code < 300:
            logger.error(
                "provider_error_response",
                operation=operation,
                status_code=response.status_code,
                response=data,
            )
            raise ProviderError(
                f"Provider returned HTTP {response.status_code}",
                raw_response=data,
                status_code=response.status_code,
            )

        if not isinstance(data, dict):
            raise ProviderError("Malformed provider response", raw_response=data)
        return data


class CheckoutV2Client(ProviderClient):
    """OAuth checkout API: JSON bodies, bearer token, ``/pay`` and ``/order/{id}/status``."""

    name = "checkout_v2"

    async def create_order(self, order: Order) -> CreateOrderResult:
        payload = self._pay_payload(
            order, "merchantOrderId", default_user=f"user_{int(time.time() * 1000)}"
        )
        logger.info("initiating_payment", order_id=order.order_id, amount=order.amount_minor)

        path = "/pay"
        data = await self._send(
            "create_order", "POST", f"{self.settings.checkout_base_url}{path}", path,
            body=json.dumps(payload),
        )

        checkout_url = extract_checkout_url(data)
        if not checkout_url:
            raise ProviderError("No checkout URL in response", raw_response=data)
        return CreateOrderResult(
            checkout_url=checkout_url,
            raw_response=data,
            provider_order_id=data.get("orderId") or _dig(data, "data", "orderId"),
        )

    async def query_status(self, order_id: str) -> StatusResult:
        path = f"/order/{order_id}/status"
        data = await self._send(
            "query_status", "GET", f"{self.settings.checkout_base_url}{path}", path
        )

        code = data.get("state") or _dig(data, "data", "state") or data.get("code")
        if not isinstance(code, str):
            raise ProviderError("No status in provider response", raw_response=data)
        return StatusResult(status=map_provider_code(code), provider_code=code, raw_response=data)


class PgV1Client(ProviderClient):
    """Checksum API: base64 ``request`` envelope, ``X-VERIFY`` header, ``/pg/v1/...``."""

    name = "pg_v1"

    async def create_order(self, order: Order) -> CreateOrderResult:
        payload = self._pay_payload(order, "merchantTransactionId", default_user="guest")
        encoded = base64.b64encode(json.dumps(payload).encode("utf-8")).decode("ascii")
        logger.info("initiating_payment", order_id=order.order_id, amount=order.amount_minor)

        path = "/pg/v1/pay"
        data = await self._send(
            "create_order", "POST", f"{self.settings.pg_base_url}{path}", path,
            body=json.dumps({"request": encoded}),
            signed_payload=encoded,
        )

        checkout_url = extract_checkout_url(data)
        if not checkout_url:
            raise ProviderError("No checkout URL in response", raw_response=data)
        return CreateOrderResult(
            checkout_url=checkout_url,
            raw_response=data,
            provider_order_id=_dig(data, "data", "transactionId"),
        )

    async def query_status(self, order_id: str) -> StatusResult:
        path = f"/pg/v1/status/{self.settings.merchant_id}/{order_id}"
        data = await self._send("query_status", "GET", f"{self.settings.pg_base_url}{path}", path)

        code = data.get("code") or _dig(data, "data", "state")
        if not isinstance(code, str):
            raise ProviderError("No status in provider response", raw_response=data)
        return StatusResult(status=map_provider_code(code), provider_code=code, raw_response=data)


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """Create the shared HTTP client used for every provider call."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(
            settings.provider_timeout_seconds, connect=settings.provider_connect_timeout_seconds
        ),
        limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
    )


def build_provider_client(
    settings: Settings,
    http: httpx.AsyncClient,
    credential_cache: Optional[CredentialCache] = None,
) -> ProviderClient:
    """
    Select the provider integration variant from configuration.

    Args:
        settings: Application settings
        http: Shared async HTTP client
        credential_cache: Existing cache to reuse (checkout_v2 only)

    Returns:
        ProviderClient: The single client used for the lifetime of the process

    Raises:
        ValueError: If the selected variant is missing required credentials
    """
    if settings.provider_variant == "pg_v1":
        if not settings.merchant_id or not settings.salt_key:
            raise ValueError("pg_v1 requires MERCHANT_ID and SALT_KEY")
        client: ProviderClient = PgV1Client(
            http,
            SaltedChecksumAuth(settings.merchant_id, settings.salt_key, settings.salt_index),
            settings,
        )
    else:
        if not settings.client_id or not settings.client_secret:
            raise ValueError("checkout_v2 requires CLIENT_ID and CLIENT_SECRET")
        if credential_cache is None:
            credential_cache = CredentialCache(
                OAuthTokenExchanger(
                    http,
                    settings.auth_base_url,
                    settings.client_id,
                    settings.client_secret,
                    settings.client_version,
                ),
                safety_margin_seconds=settings.token_safety_margin_seconds,
                default_ttl_seconds=settings.token_default_ttl_seconds,
            )
        client = CheckoutV2Client(
            http,
            BearerTokenAuth(credential_cache, settings.merchant_id, settings.auth_header_scheme),
            settings,
        )

    logger.info(
        "provider_client_selected",
        variant=client.name,
        auth=client.auth.name,
        provider_env=settings.provider_env,
    )
    return client
