"""Application settings using Pydantic for environment-based configuration."""
from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PROVIDER_HOSTS = {
    "sandbox": {
        "auth": "https://api-preprod.phonepe.com/apis/pg-sandbox",
        "checkout": "https://api-preprod.phonepe.com/apis/pg-sandbox/checkout/v2",
        "pg": "https://api-preprod.phonepe.com/apis/pg-sandbox",
    },
    "production": {
        "auth": "https://api.phonepe.com/apis/identity-manager",
        "checkout": "https://api.phonepe.com/apis/checkout/v2",
        "pg": "https://api.phonepe.com/apis/hermes",
    },
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Provider selection
    provider_variant: Literal["checkout_v2", "pg_v1"] = Field(
        default="checkout_v2",
        description="Provider integration: OAuth checkout v2 or salted-checksum pg v1",
    )
    provider_env: Literal["sandbox", "production"] = Field(
        default="sandbox", description="Provider environment (test vs. live hosts)"
    )
    provider_auth_base_url: Optional[str] = Field(
        default=None, description="Override for the OAuth identity endpoint base URL"
    )
    provider_checkout_base_url: Optional[str] = Field(
        default=None, description="Override for the checkout v2 API base URL"
    )
    provider_pg_base_url: Optional[str] = Field(
        default=None, description="Override for the pg v1 API base URL"
    )

    # Merchant credentials
    client_id: str = Field(default="", description="OAuth client id from the provider dashboard")
    client_secret: str = Field(default="", description="OAuth client secret")
    client_version: str = Field(default="1", description="OAuth client version")
    merchant_id: str = Field(default="", description="Merchant identifier")
    merchant_base_url: str = Field(
        default="http://localhost:4000", description="Public base URL for redirects/callbacks"
    )
    auth_header_scheme: str = Field(
        default="Bearer", description="Authorization scheme prefix for bearer tokens"
    )
    salt_key: str = Field(default="", description="Checksum salt key (pg v1)")
    salt_index: str = Field(default="1", description="Checksum salt index (pg v1)")
    customer_mobile_number: Optional[str] = Field(
        default=None, description="Mobile number sent with pay requests when set"
    )

    # Webhook authentication
    webhook_scheme: Literal["hmac_sha256", "salted_hash"] = Field(
        default="hmac_sha256", description="Webhook signature scheme"
    )
    webhook_secret: str = Field(default="", description="HMAC secret for webhook signatures")

    # Credentials & timeouts
    token_safety_margin_seconds: int = Field(
        default=60, description="Seconds subtracted from token lifetime"
    )
    token_default_ttl_seconds: int = Field(
        default=3600, description="Token lifetime assumed when the provider omits one"
    )
    provider_timeout_seconds: float = Field(default=15.0, description="Provider HTTP timeout")
    provider_connect_timeout_seconds: float = Field(
        default=5.0, description="Provider HTTP connect timeout"
    )
    status_poll_timeout_seconds: float = Field(
        default=5.0, description="Budget for the best-effort provider refresh on polls"
    )

    # Orders
    order_id_prefix: str = Field(default="PES", description="Prefix for merchant order ids")
    order_store_backend: Literal["memory", "redis"] = Field(
        default="memory", description="Order store backend"
    )
    order_key_prefix: str = Field(default="order:", description="Key prefix in the order store")
    reconcile_max_attempts: int = Field(
        default=5, description="Compare-and-set attempts before giving up on a contended order"
    )

    # Redis Configuration
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    store_timeout_seconds: float = Field(
        default=5.0, description="Socket timeout for order store commands"
    )
    store_connect_timeout_seconds: float = Field(
        default=5.0, description="Connect timeout for the order store"
    )

    # Application Configuration
    app_name: str = Field(default="order-reconciler", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    debug: bool = Field(default=False, description="Debug mode")

    # API Configuration
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=4000, description="API port")
    allowed_origins: str = Field(default="*", description="CORS allowed origins (comma-separated)")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator(
        "merchant_base_url",
        "provider_auth_base_url",
        "provider_checkout_base_url",
        "provider_pg_base_url",
    )
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        """Normalize base URLs so paths can be joined with a leading slash."""
        return v.rstrip("/") if v else v

    @field_validator("token_safety_margin_seconds", "token_default_ttl_seconds")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Token timings cannot be negative."""
        if v < 0:
            raise ValueError("Token timings must be non-negative")
        return v

    def get_allowed_origins_list(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def auth_base_url(self) -> str:
        return self.provider_auth_base_url or _PROVIDER_HOSTS[self.provider_env]["auth"]

    @property
    def checkout_base_url(self) -> str:
        return self.provider_checkout_base_url or _PROVIDER_HOSTS[self.provider_env]["checkout"]

    @property
    def pg_base_url(self) -> str:
        return self.provider_pg_base_url or _PROVIDER_HOSTS[self.provider_env]["pg"]

    @property
    def callback_url(self) -> str:
        return f"{self.merchant_base_url}/api/webhook"

    def redirect_url(self, order_id: str) -> str:
        """Return page the customer lands on after paying."""
        return f"{self.merchant_base_url}/payment-return.html?orderId={order_id}"

    @property
    def is_test_mode(self) -> bool:
        """Check if talking to the provider sandbox."""
        return self.provider_env == "sandbox"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
