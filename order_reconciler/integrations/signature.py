"""
Webhook signature verification.

Verification runs over the exact bytes the provider signed, never over a
re-serialized object: JSON re-encoding is not guaranteed to be
byte-identical. Digests are compared with ``hmac.compare_digest``.
"""
import hashlib
import hmac
import json
from abc import ABC, abstractmethod
from typing import Optional

from order_reconciler.config import Settings


class SignatureVerifier(ABC):
    """Validates that an inbound webhook originated from the provider."""

    header_name: str

    @abstractmethod
    def verify(self, raw_body: bytes, header_signature: Optional[str]) -> bool:
        """Return True only if ``header_signature`` attests ``raw_body``."""


class HmacSha256Verifier(SignatureVerifier):
    """Hex HMAC-SHA256 of the raw request body, keyed with the webhook secret."""

    header_name = "X-Signature"

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("HMAC webhook verification requires a secret")
        self._secret = secret.encode("utf-8")

    def sign(self, raw_body: bytes) -> str:
        return hmac.new(self._secret, raw_body, hashlib.sha256).hexdigest()

    def verify(self, raw_body: bytes, header_signature: Optional[str]) -> bool:
        if not header_signature:
            return False
        received = header_signature.strip()
        if received.lower().startswith("sha256="):
            received = received[len("sha256="):]
        return hmac.compare_digest(received.lower().encode(), self.sign(raw_body).encode())


class SaltedHashVerifier(SignatureVerifier):
    """
    Salted SHA-256 checksum over a base64 callback envelope.

    The body is ``{"response": "<base64>"}`` and the header is
    ``sha256(<base64> + salt_key) + "###" + salt_index``, computed over the
    base64 string exactly as it was received.
    """

    header_name = "X-VERIFY"

    def __init__(self, salt_key: str, salt_index: str):
        if not salt_key:
            raise ValueError("Salted-hash webhook verification requires a salt key")
        self._salt_key = salt_key
        self._salt_index = str(salt_index)

    def checksum(self, encoded_response: str) -> str:
        digest = hashlib.sha256((encoded_response + self._salt_key).encode("utf-8")).hexdigest()
        return f"{digest}###{self._salt_index}"

    def verify(self, raw_body: bytes, header_signature: Optional[str]) -> bool:
        if not header_signature:
            return False
        try:
            body = json.loads(raw_body)
        except (UnicodeDecodeError, ValueError):
            return False
        encoded = body.get("response") if isinstance(body, dict) else None
        if not isinstance(encoded, str):
            return False
        return hmac.compare_digest(
            header_signature.strip().encode(), self.checksum(encoded).encode()
        )


def build_signature_verifier(settings: Settings) -> SignatureVerifier:
    """Select the verifier for the configured webhook scheme."""
    if settings.webhook_scheme == "salted_hash":
        return SaltedHashVerifier(settings.salt_key, settings.salt_index)
    return HmacSha256Verifier(settings.webhook_secret)
