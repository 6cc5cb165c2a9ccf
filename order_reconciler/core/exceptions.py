"""
Error taxonomy for the order reconciler.

Every failure is scoped to a single request; none of these is fatal to the
process. The API layer maps each class to one HTTP status.
"""
from typing import Any, Optional


class ReconcilerError(Exception):
    """Base exception for order reconciliation errors."""

    pass


class ValidationError(ReconcilerError):
    """Raised when client input is rejected before reaching the state machine."""

    pass


class MalformedPayloadError(ValidationError):
    """Raised when a webhook payload cannot be decoded or attributed to an order."""

    pass


class AuthError(ReconcilerError):
    """Raised when the credential exchange fails or the provider rejects a token."""

    def __init__(self, message: str, raw_response: Optional[Any] = None):
        super().__init__(message)
        self.raw_response = raw_response


class SignatureError(ReconcilerError):
    """Raised when an inbound webhook fails signature verification."""

    pass


class UnknownOrderError(ReconcilerError):
    """Raised when a webhook or poll references an order the store has no record of."""

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class DuplicateOrderError(ReconcilerError):
    """Raised when an order id is created twice."""

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} already exists")
        self.order_id = order_id


class ProviderError(ReconcilerError):
    """
    Raised for any non-2xx or malformed provider response.

    Carries the raw provider payload so callers can echo it for diagnostics.
    """

    def __init__(
        self,
        message: str,
        raw_response: Optional[Any] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.raw_response = raw_response
        self.status_code = status_code
