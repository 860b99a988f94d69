"""
Subscription status resolver.

Wraps the pure status derivation with a bounded lookup of the tenant's
billing record. The lookup runs in a worker thread under asyncio.wait_for.
A lookup that misses the deadline is abandoned, not joined. When it times
out or fails the resolver raises BillingUnavailableError and the guard
refuses the request (fail closed).
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from stockroom.billing.errors import BillingUnavailableError
from stockroom.billing.sources import BillingRecordSource
from stockroom.billing.status import (
    BillingRecord,
    SubscriptionStatusResult,
    resolve_subscription_status,
)

logger = logging.getLogger(__name__)

DEFAULT_LOOKUP_TIMEOUT_SECONDS = 2.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ResolvedSubscription:
    """A billing record together with the status derived from it."""

    record: BillingRecord
    result: SubscriptionStatusResult

    @property
    def tenant_id(self) -> str:
        return self.record.tenant_id

    @property
    def access_allowed(self) -> bool:
        return self.result.access_allowed


class SubscriptionStatusResolver:
    """
    Resolves the subscription status of a tenant for the current instant.

    Usage:
        resolver = SubscriptionStatusResolver(SqlBillingRecordSource(factory))
        resolved = await resolver.resolve("tenant_123")
        if resolved is None:
            ...  # no billing record
    """

    def __init__(
        self,
        source: BillingRecordSource,
        timeout_seconds: float = DEFAULT_LOOKUP_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._source = source
        self._timeout = timeout_seconds
        self._clock = clock

    async def resolve(self, tenant_id: str) -> Optional[ResolvedSubscription]:
        """
        Look up and evaluate the tenant's billing record.

        Returns:
            ResolvedSubscription, or None if the tenant has no billing record

        Raises:
            BillingUnavailableError: Lookup timed out or failed
        """
        try:
            record = await asyncio.wait_for(
                asyncio.to_thread(self._source.fetch, tenant_id),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                "Billing record lookup timed out",
                extra={"tenant_id": tenant_id, "timeout_seconds": self._timeout},
            )
            raise BillingUnavailableError(tenant_id, "timeout")
        except Exception as e:
            logger.error(
                "Billing record lookup failed",
                extra={"tenant_id": tenant_id, "error": str(e)},
            )
            raise BillingUnavailableError(tenant_id, type(e).__name__) from e

        if record is None:
            return None

        return ResolvedSubscription(
            record=record,
            result=resolve_subscription_status(record, self._clock()),
        )
