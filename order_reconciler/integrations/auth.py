"""
Request authentication strategies for the provider API.

Both strategies satisfy one contract: produce the headers needed to
authenticate a request to ``path`` carrying ``body``.

- ``BearerTokenAuth`` attaches an OAuth token from the ``CredentialCache``.
- ``SaltedChecksumAuth`` computes ``X-VERIFY`` from the body, path and salt.
"""
import hashlib
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
import structlog

from order_reconciler.core.credentials import CredentialCache, TokenGrant
from order_reconciler.core.exceptions import AuthError
from order_reconciler.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class RequestAuth(ABC):
    """Produces authentication headers for a provider request."""

    name: str

    @abstractmethod
    async def headers(self, path: str, body: str) -> Dict[str, str]:
        """
        Build authentication headers.

        Args:
            path: Request path as signed by the provider (e.g. ``/pg/v1/pay``)
            body: Exact request body that will be sent ("" for GET)

        Raises:
            AuthError: If no credential can be obtained
        """

    def on_unauthorized(self, sent_headers: Dict[str, str]) -> None:
        """React to the provider rejecting ``sent_headers``."""
        return None


class BearerTokenAuth(RequestAuth):
    """OAuth bearer token taken from the shared credential cache."""

    name = "oauth_bearer"

    def __init__(self, credential_cache: CredentialCache, merchant_id: str, scheme: str = "Bearer"):
        self.credential_cache = credential_cache
        self.merchant_id = merchant_id
        self.scheme = scheme

    async def headers(self, path: str, body: str) -> Dict[str, str]:
        token = await self.credential_cache.get_token()
        headers = {"Authorization": f"{self.scheme} {token}"}
        if self.merchant_id:
            headers["X-MERCHANT-ID"] = self.merchant_id
        return headers

    def on_unauthorized(self, sent_headers: Dict[str, str]) -> None:
        prefix = f"{self.scheme} "
        authorization = sent_headers.get("Authorization", "")
        token = authorization[len(prefix):] if authorization.startswith(prefix) else None
        self.credential_cache.invalidate(token)


class SaltedChecksumAuth(RequestAuth):
    """``X-VERIFY: sha256(body + path + salt_key) + "###" + salt_index``."""

    name = "salted_checksum"

    def __init__(self, merchant_id: str, salt_key: str, salt_index: str):
        self.merchant_id = merchant_id
        self.salt_key = salt_key
        self.salt_index = str(salt_index)

    def checksum(self, path: str, body: str) -> str:
        digest = hashlib.sha256((body + path + self.salt_key).encode("utf-8")).hexdigest()
        return f"{digest}###{self.salt_index}"

    async def headers(self, path: str, body: str) -> Dict[str, str]:
        return {"X-VERIFY": self.checksum(path, body), "X-MERCHANT-ID": self.merchant_id}


class OAuthTokenExchanger:
    """
    Client-credentials exchange against the provider identity endpoint.

    Used as the ``exchanger`` of a ``CredentialCache``.
    """

    TOKEN_PATH = "/v1/oauth/token"

    def __init__(
        self,
        http: httpx.AsyncClient,
        auth_base_url: str,
        client_id: str,
        client_secret: str,
        client_version: str = "1",
    ):
        self.http = http
        self.token_url = f"{auth_base_url}{self.TOKEN_PATH}"
        self.client_id = client_id
        self.client_secret = client_secret
        self.client_version = client_version

    @staticmethod
    def _parse_grant(data: Dict[str, Any]) -> TokenGrant:
        token = data.get("access_token") or data.get("accesstoken")
        expires_in: Optional[float] = data.get("expires_in") or data.get("expiresin")
        if expires_in is None and data.get("expires_at"):
            expires_in = float(data["expires_at"]) - time.time()
        return TokenGrant(token=token or "", expires_in=float(expires_in) if expires_in else None)

    async def __call__(self) -> TokenGrant:
        start_time = time.time()
        try:
            response = await self.http.post(
                self.token_url,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "grant_type": "client_credentials",
                    "client_version": self.client_version,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            metrics.record_provider_call("token", "transport_error", time.time() - start_time)
            logger.error("token_fetch_failed", error=str(e))
            raise AuthError(f"Failed to get access token: {e}") from e

        metrics.record_provider_call("token", str(response.status_code), time.time() - start_time)
        try:
            data = response.json()
        except ValueError:
            data = response.text

        if response.status_code >= 300 or not isinstance(data, dict):
            logger.error("token_fetch_failed", status_code=response.status_code, response=data)
            raise AuthError("Failed to get access token", raw_response=data)

        grant = self._parse_grant(data)
        logger.info("access_token_obtained", expires_in=grant.expires_in)
        return grant
