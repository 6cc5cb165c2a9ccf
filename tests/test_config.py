"""
Tests for settings and service wiring.
"""
import pytest
from pydantic import ValidationError

from order_reconciler.api.dependencies import build_services, build_store
from order_reconciler.config import Settings
from order_reconciler.core.store import InMemoryOrderStore, RedisOrderStore
from order_reconciler.integrations.provider_client import CheckoutV2Client, PgV1Client
from order_reconciler.monitoring.health import HealthCheck


class TestSettings:
    """Test suite for Settings."""

    @pytest.mark.unit
    def test_sandbox_hosts_by_default(self) -> None:
        settings = Settings(provider_env="sandbox")

        assert "preprod" in settings.checkout_base_url
        assert settings.is_test_mode

    @pytest.mark.unit
    def test_production_hosts(self) -> None:
        settings = Settings(provider_env="production")

        assert settings.checkout_base_url == "https://api.phonepe.com/apis/checkout/v2"
        assert settings.pg_base_url == "https://api.phonepe.com/apis/hermes"
        assert not settings.is_test_mode

    @pytest.mark.unit
    def test_base_url_override_and_trailing_slash(self) -> None:
        settings = Settings(
            provider_checkout_base_url="http://localhost:9000/",
            merchant_base_url="https://shop.example.test/",
        )

        assert settings.checkout_base_url == "http://localhost:9000"
        assert settings.callback_url == "https://shop.example.test/api/webhook"
        assert settings.redirect_url("PES1") == (
            "https://shop.example.test/payment-return.html?orderId=PES1"
        )

    @pytest.mark.unit
    def test_log_level_validated(self) -> None:
        assert Settings(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            Settings(log_level="LOUD")

    @pytest.mark.unit
    def test_negative_token_margin_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(token_safety_margin_seconds=-1)

    @pytest.mark.unit
    def test_allowed_origins_list(self) -> None:
        settings = Settings(allowed_origins="https://a.example, https://b.example")

        assert settings.get_allowed_origins_list() == ["https://a.example", "https://b.example"]


class TestBuildServices:
    """Test suite for startup wiring."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_checkout_v2_wiring(self, test_settings) -> None:
        services = build_services(test_settings)
        try:
            assert isinstance(services.provider, CheckoutV2Client)
            assert isinstance(services.store, InMemoryOrderStore)
            assert services.webhooks.signature_header == "X-Signature"
        finally:
            await services.close()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pg_v1_wiring(self, test_settings) -> None:
        settings = test_settings.model_copy(
            update={"provider_variant": "pg_v1", "webhook_scheme": "salted_hash"}
        )
        services = build_services(settings)
        try:
            assert isinstance(services.provider, PgV1Client)
            assert services.webhooks.signature_header == "X-VERIFY"
        finally:
            await services.close()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_redis_store_commands_are_bounded(self, test_settings) -> None:
        settings = test_settings.model_copy(
            update={
                "order_store_backend": "redis",
                "store_timeout_seconds": 2.5,
                "store_connect_timeout_seconds": 1.5,
            }
        )
        store = build_store(settings)
        try:
            assert isinstance(store, RedisOrderStore)
            kwargs = store.redis.connection_pool.connection_kwargs
            assert kwargs["socket_timeout"] == 2.5
            assert kwargs["socket_connect_timeout"] == 1.5
        finally:
            await store.close()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_redis_store_has_default_timeouts(self) -> None:
        store = RedisOrderStore.from_url("redis://localhost:6379/0")
        try:
            kwargs = store.redis.connection_pool.connection_kwargs
            assert kwargs["socket_timeout"] == Settings().store_timeout_seconds
            assert kwargs["socket_connect_timeout"] == Settings().store_connect_timeout_seconds
        finally:
            await store.close()

    @pytest.mark.unit
    def test_missing_webhook_secret_fails_fast(self, test_settings) -> None:
        settings = test_settings.model_copy(update={"webhook_secret": ""})

        with pytest.raises(ValueError):
            build_services(settings)


class TestHealthCheck:
    """Test suite for HealthCheck."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unreachable_store_is_unhealthy(self, store, mocker) -> None:
        mocker.patch.object(store, "ping", side_effect=ConnectionError("refused"))

        result = await HealthCheck(store).check_all()

        assert result["status"] == "unhealthy"
        assert "refused" in result["checks"]["order_store"]["error"]
