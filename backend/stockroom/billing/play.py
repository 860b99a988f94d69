"""
Google Play subscription purchase verification.

The mobile app sends the product id and purchase token it received from
the store; the server asks the Play Developer API whether that purchase
is real and when it expires before granting access.

SECURITY: the API token must never be logged.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
from fastapi import status

from stockroom.errors import StockroomError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 5.0


class PurchaseVerificationError(StockroomError):
    """The store could not confirm the purchase."""

    error_code = "purchase_verification_failed"
    http_status = status.HTTP_502_BAD_GATEWAY


@dataclass(frozen=True)
class VerifiedPurchase:
    """Store-confirmed subscription state."""

    product_id: str
    expiry_time_ms: int


class PurchaseVerifier(Protocol):
    def verify(self, package_name: str, product_id: str, purchase_token: str) -> VerifiedPurchase:
        ...


class PlayStoreVerifier:
    """
    PurchaseVerifier backed by the Play Developer API.

    GET {api_url}/applications/{package}/purchases/subscriptions/{product}/tokens/{token}
    returns {"expiryTimeMillis": "..."} for a known purchase.
    """

    def __init__(
        self,
        api_token: str,
        api_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ):
        self._api_token = api_token
        self._api_url = api_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout, connect=connect_timeout)
        self._client = client

    def _get(self, client: httpx.Client, url: str) -> httpx.Response:
        return client.get(url, headers={"Authorization": f"Bearer {self._api_token}"})

    def verify(self, package_name: str, product_id: str, purchase_token: str) -> VerifiedPurchase:
        """
        Confirm a subscription purchase with the store.

        Raises:
            PurchaseVerificationError: Store unreachable, purchase unknown,
                or response without an expiry time
        """
        url = (
            f"{self._api_url}/applications/{package_name}/purchases/subscriptions/"
            f"{product_id}/tokens/{purchase_token}"
        )
        try:
            if self._client is not None:
                response = self._get(self._client, url)
            else:
                with httpx.Client(timeout=self._timeout) as client:
                    response = self._get(client, url)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning("Play purchase rejected", extra={
                "product_id": product_id,
                "status_code": e.response.status_code,
            })
            raise PurchaseVerificationError("Purchase could not be verified")
        except (httpx.RequestError, ValueError) as e:
            logger.error("Play purchase verification failed", extra={
                "product_id": product_id,
                "error": str(e),
            })
            raise PurchaseVerificationError("Purchase could not be verified")

        try:
            expiry_time_ms = int(data["expiryTimeMillis"])
        except (KeyError, TypeError, ValueError):
            raise PurchaseVerificationError("Store response has no expiry time")

        return VerifiedPurchase(product_id=product_id, expiry_time_ms=expiry_time_ms)
