"""
Tests for the provider client variants against a mocked HTTP transport.
"""
import base64
import hashlib
import json
from typing import Any, Callable, Dict, List

import httpx
import pytest

from order_reconciler.core.credentials import CredentialCache, TokenGrant
from order_reconciler.core.exceptions import AuthError, ProviderError
from order_reconciler.core.models import OrderStatus
from order_reconciler.integrations.auth import OAuthTokenExchanger, SaltedChecksumAuth
from order_reconciler.integrations.provider_client import (
    CheckoutV2Client,
    PgV1Client,
    build_provider_client,
)

Handler = Callable[[httpx.Request], httpx.Response]


class Recorder:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self, responses: List[httpx.Response]):
        self.responses = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def mock_http(handler: Handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class StaticTokens:
    """Exchanger handing out tok-1, tok-2, ..."""

    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self) -> TokenGrant:
        self.calls += 1
        return TokenGrant(f"tok-{self.calls}", 3600)


PAY_OK: Dict[str, Any] = {
    "success": True,
    "code": "PAYMENT_INITIATED",
    "data": {
        "merchantTransactionId": "PES1",
        "transactionId": "T2401011200",
        "instrumentResponse": {
            "type": "PAY_PAGE",
            "redirectInfo": {"url": "https://mercury.example.test/transact/abc", "method": "GET"},
        },
    },
}


class TestCheckoutV2Client:
    """Test suite for the OAuth checkout variant."""

    def client(self, test_settings, recorder: Recorder, tokens: StaticTokens) -> CheckoutV2Client:
        return build_provider_client(
            test_settings, mock_http(recorder), credential_cache=CredentialCache(tokens)
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_order_sends_bearer_and_minor_units(
        self, test_settings, make_order
    ) -> None:
        recorder = Recorder(
            [httpx.Response(200, json={"orderId": "OMO1", "state": "PENDING", "redirectUrl": "https://pay.example.test/r"})]
        )
        client = self.client(test_settings, recorder, StaticTokens())

        result = await client.create_order(make_order(amount="150.00"))

        assert result.checkout_url == "https://pay.example.test/r"
        assert result.provider_order_id == "OMO1"

        request = recorder.requests[0]
        assert str(request.url) == "https://checkout.example.test/checkout/v2/pay"
        assert request.headers["Authorization"] == "Bearer tok-1"
        body = json.loads(request.content)
        assert body["amount"] == 15000
        assert body["merchantOrderId"] == "PES1700000000000ABC123"
        assert body["callbackUrl"] == "http://merchant.example.test/api/webhook"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_nested_redirect_url_is_found(self, test_settings, make_order) -> None:
        recorder = Recorder([httpx.Response(200, json=PAY_OK)])
        client = self.client(test_settings, recorder, StaticTokens())

        result = await client.create_order(make_order())

        assert result.checkout_url == "https://mercury.example.test/transact/abc"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_checkout_url_is_provider_error(self, test_settings, make_order) -> None:
        recorder = Recorder([httpx.Response(200, json={"success": True, "data": {}})])
        client = self.client(test_settings, recorder, StaticTokens())

        with pytest.raises(ProviderError) as exc_info:
            await client.create_order(make_order())

        assert exc_info.value.raw_response == {"success": True, "data": {}}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unauthorized_invalidates_token(self, test_settings, make_order) -> None:
        recorder = Recorder(
            [
                httpx.Response(401, json={"code": "UNAUTHORIZED"}),
                httpx.Response(200, json=PAY_OK),
            ]
        )
        tokens = StaticTokens()
        client = self.client(test_settings, recorder, tokens)

        with pytest.raises(AuthError) as exc_info:
            await client.create_order(make_order())
        assert exc_info.value.raw_response == {"code": "UNAUTHORIZED"}

        await client.create_order(make_order())

        assert tokens.calls == 2
        assert recorder.requests[1].headers["Authorization"] == "Bearer tok-2"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_server_error_is_provider_error(self, test_settings, make_order) -> None:
        recorder = Recorder([httpx.Response(500, json={"code": "INTERNAL_SERVER_ERROR"})])
        client = self.client(test_settings, recorder, StaticTokens())

        with pytest.raises(ProviderError) as exc_info:
            await client.create_order(make_order())

        assert exc_info.value.status_code == 500
        assert exc_info.value.raw_response == {"code": "INTERNAL_SERVER_ERROR"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_transport_error_is_provider_error(self, test_settings, make_order) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        client = build_provider_client(
            test_settings, mock_http(handler), credential_cache=CredentialCache(StaticTokens())
        )

        with pytest.raises(ProviderError):
            await client.create_order(make_order())

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_query_status_maps_state(self, test_settings) -> None:
        recorder = Recorder([httpx.Response(200, json={"orderId": "OMO1", "state": "COMPLETED"})])
        client = self.client(test_settings, recorder, StaticTokens())

        result = await client.query_status("PES1")

        assert result.status == OrderStatus.SUCCESS
        assert result.provider_code == "COMPLETED"
        assert recorder.requests[0].url.path == "/checkout/v2/order/PES1/status"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_query_status_without_state_is_provider_error(self, test_settings) -> None:
        recorder = Recorder([httpx.Response(200, json={"orderId": "OMO1"})])
        client = self.client(test_settings, recorder, StaticTokens())

        with pytest.raises(ProviderError):
            await client.query_status("PES1")


class TestPgV1Client:
    """Test suite for the salted-checksum variant."""

    def client(self, test_settings, recorder: Recorder) -> PgV1Client:
        settings = test_settings.model_copy(update={"provider_variant": "pg_v1"})
        return build_provider_client(settings, mock_http(recorder))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_order_signs_base64_envelope(self, test_settings, make_order) -> None:
        recorder = Recorder([httpx.Response(200, json=PAY_OK)])
        client = self.client(test_settings, recorder)

        result = await client.create_order(make_order())

        assert result.checkout_url == "https://mercury.example.test/transact/abc"
        assert result.provider_order_id == "T2401011200"

        request = recorder.requests[0]
        assert str(request.url) == "https://pg.example.test/pg/v1/pay"
        encoded = json.loads(request.content)["request"]
        payload = json.loads(base64.b64decode(encoded))
        assert payload["merchantTransactionId"] == "PES1700000000000ABC123"
        assert payload["amount"] == 15000

        expected = hashlib.sha256((encoded + "/pg/v1/pay" + "test-salt-key").encode()).hexdigest()
        assert request.headers["X-VERIFY"] == f"{expected}###1"
        assert request.headers["X-MERCHANT-ID"] == "MERCHANTUAT"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_query_status_signs_path(self, test_settings) -> None:
        recorder = Recorder(
            [httpx.Response(200, json={"code": "PAYMENT_ERROR", "data": {"state": "FAILED"}})]
        )
        client = self.client(test_settings, recorder)

        result = await client.query_status("PES1")

        assert result.status == OrderStatus.FAILED
        path = "/pg/v1/status/MERCHANTUAT/PES1"
        assert recorder.requests[0].url.path == path
        assert recorder.requests[0].headers["X-VERIFY"] == SaltedChecksumAuth(
            "MERCHANTUAT", "test-salt-key", "1"
        ).checksum(path, "")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejected_checksum_is_auth_error(self, test_settings) -> None:
        recorder = Recorder([httpx.Response(401, json={"code": "AUTHORIZATION_FAILED"})])
        client = self.client(test_settings, recorder)

        with pytest.raises(AuthError):
            await client.query_status("PES1")


class TestBuildProviderClient:
    """Test suite for variant selection."""

    @pytest.mark.unit
    def test_checkout_v2_requires_client_credentials(self, test_settings) -> None:
        settings = test_settings.model_copy(update={"client_secret": ""})

        with pytest.raises(ValueError):
            build_provider_client(settings, mock_http(Recorder([])))

    @pytest.mark.unit
    def test_pg_v1_requires_salt(self, test_settings) -> None:
        settings = test_settings.model_copy(update={"provider_variant": "pg_v1", "salt_key": ""})

        with pytest.raises(ValueError):
            build_provider_client(settings, mock_http(Recorder([])))


class TestOAuthTokenExchanger:
    """Test suite for the client-credentials exchange."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_form_post_and_grant_parsing(self) -> None:
        recorder = Recorder(
            [httpx.Response(200, json={"access_token": "tok-abc", "expires_in": 1800})]
        )
        exchanger = OAuthTokenExchanger(
            mock_http(recorder), "https://auth.example.test", "cid", "secret", "1"
        )

        grant = await exchanger()

        assert grant == TokenGrant("tok-abc", 1800.0)
        request = recorder.requests[0]
        assert str(request.url) == "https://auth.example.test/v1/oauth/token"
        assert b"grant_type=client_credentials" in request.content
        assert b"client_id=cid" in request.content

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_rejected_exchange_is_auth_error(self) -> None:
        recorder = Recorder([httpx.Response(400, json={"code": "INVALID_CLIENT"})])
        exchanger = OAuthTokenExchanger(
            mock_http(recorder), "https://auth.example.test", "cid", "wrong"
        )

        with pytest.raises(AuthError) as exc_info:
            await exchanger()

        assert exc_info.value.raw_response == {"code": "INVALID_CLIENT"}
