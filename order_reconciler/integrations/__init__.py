"""External integrations with the payment provider."""
from .provider_client import CheckoutV2Client, PgV1Client, ProviderClient, build_provider_client
from .signature import HmacSha256Verifier, SaltedHashVerifier, SignatureVerifier
from .webhook_handler import WebhookHandler

__all__ = [
    "CheckoutV2Client",
    "HmacSha256Verifier",
    "PgV1Client",
    "ProviderClient",
    "SaltedHashVerifier",
    "SignatureVerifier",
    "WebhookHandler",
    "build_provider_client",
]
