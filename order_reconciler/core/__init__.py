"""Core order lifecycle: credentials, order store and the reconciliation engine."""
from .credentials import CredentialCache, TokenGrant
from .exceptions import (
    AuthError,
    DuplicateOrderError,
    MalformedPayloadError,
    ProviderError,
    ReconcilerError,
    SignatureError,
    UnknownOrderError,
    ValidationError,
)
from .models import Credential, Observation, ObservationSource, Order, OrderStatus
from .reconciliation import Decision, ReconciliationEngine, ReconciliationResult
from .store import InMemoryOrderStore, OrderStore, RedisOrderStore

__all__ = [
    "AuthError",
    "Credential",
    "CredentialCache",
    "Decision",
    "DuplicateOrderError",
    "InMemoryOrderStore",
    "MalformedPayloadError",
    "Observation",
    "ObservationSource",
    "Order",
    "OrderStatus",
    "OrderStore",
    "ProviderError",
    "ReconciliationEngine",
    "ReconciliationResult",
    "ReconcilerError",
    "RedisOrderStore",
    "SignatureError",
    "TokenGrant",
    "UnknownOrderError",
    "ValidationError",
]
