"""
Process-wide cache for the provider's short-lived bearer credential.

Concurrent callers that find no valid token share a single in-flight
credential exchange (single-flight). A waiter that is cancelled or times out
only stops waiting; the shared exchange keeps running for the other waiters.
"""
import asyncio
import time
from typing import Awaitable, Callable, NamedTuple, Optional

import structlog

from order_reconciler.core.exceptions import AuthError
from order_reconciler.core.models import Credential
from order_reconciler.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class TokenGrant(NamedTuple):
    """Result of one credential exchange."""

    token: str
    expires_in: Optional[float] = None


TokenExchanger = Callable[[], Awaitable[TokenGrant]]


def _consume_exception(task: "asyncio.Task[Credential]") -> None:
    # Every waiter may have gone away; retrieve the error so asyncio does not warn.
    if not task.cancelled():
        task.exception()


class CredentialCache:
    """
    Holds the current provider credential and refreshes it on expiry.

    Only ``get_token`` and ``invalidate`` touch the cached credential.
    """

    def __init__(
        self,
        exchanger: TokenExchanger,
        safety_margin_seconds: float = 60,
        default_ttl_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            exchanger: Coroutine function performing the credential exchange
            safety_margin_seconds: Subtracted from every token lifetime
            default_ttl_seconds: Lifetime assumed when the provider sends none
            clock: Monotonic clock, injectable for tests
        """
        self._exchanger = exchanger
        self._safety_margin = safety_margin_seconds
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._refresh_task: Optional["asyncio.Task[Credential]"] = None
        self._lock = asyncio.Lock()

    @property
    def current(self) -> Optional[Credential]:
        """The cached credential, valid or not."""
        return self._credential

    async def get_token(self) -> str:
        """
        Return a valid bearer token, refreshing it if needed.

        Returns:
            str: Bearer token

        Raises:
            AuthError: If the credential exchange fails
        """
        credential = self._credential
        if credential is not None and credential.is_valid(self._clock()):
            return credential.token

        async with self._lock:
            credential = self._credential
            if credential is not None and credential.is_valid(self._clock()):
                return credential.token
            if self._refresh_task is None:
                self._refresh_task = asyncio.create_task(self._refresh())
                self._refresh_task.add_done_callback(_consume_exception)
            task = self._refresh_task

        credential = await asyncio.shield(task)
        return credential.token

    def invalidate(self, token: Optional[str] = None) -> None:
        """
        Drop the cached credential so the next ``get_token`` refreshes.

        Args:
            token: When given, only invalidate if it is still the cached token.
                A rejection of an already-replaced token is ignored.
        """
        credential = self._credential
        if credential is None:
            return
        if token is not None and credential.token != token:
            logger.info("credential_invalidation_skipped_stale_token")
            return
        self._credential = None
        logger.info("credential_invalidated")

    async def _refresh(self) -> Credential:
        logger.info("credential_exchange_started")
        try:
            try:
                grant = await self._exchanger()
            except AuthError:
                metrics.record_credential_exchange("failure")
                raise
            except Exception as e:
                metrics.record_credential_exchange("failure")
                logger.error("credential_exchange_failed", error=str(e))
                raise AuthError(f"Failed to get access token: {e}") from e

            if not grant.token:
                metrics.record_credential_exchange("failure")
                logger.error("credential_exchange_empty_token")
                raise AuthError("Credential exchange returned no token")

            ttl = grant.expires_in if grant.expires_in is not None else self._default_ttl
            credential = Credential(
                token=grant.token,
                expires_at=self._clock() + ttl - self._safety_margin,
            )
            self._credential = credential
            metrics.record_credential_exchange("success")
            logger.info("credential_exchange_succeeded", expires_in=ttl)
            return credential
        finally:
            self._refresh_task = None
