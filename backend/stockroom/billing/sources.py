"""
Where tenant billing records come from.

The subscription resolver only needs "give me the billing record of tenant
X". Two implementations ship:
- SqlBillingRecordSource: reads the tenants table on the control plane
- HttpBillingRecordSource: asks an external billing service over HTTP

Both are synchronous; the resolver runs them in a worker thread under a
timeout. A missing tenant returns None. Any other failure raises.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

import httpx
from sqlalchemy.orm import sessionmaker

from stockroom.billing.status import BillingRecord
from stockroom.models.tenant import Tenant

logger = logging.getLogger(__name__)

DEFAULT_HTTP_TIMEOUT_SECONDS = 2.0


class BillingRecordSource(Protocol):
    """Looks up a tenant's billing record."""

    def fetch(self, tenant_id: str) -> Optional[BillingRecord]:
        ...


class SqlBillingRecordSource:
    """BillingRecordSource backed by the control-plane tenants table."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def fetch(self, tenant_id: str) -> Optional[BillingRecord]:
        session = self._session_factory()
        try:
            tenant = session.query(Tenant).filter(Tenant.id == tenant_id).first()
            if tenant is None:
                return None
            return BillingRecord.from_tenant(tenant)
        finally:
            session.close()


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class HttpBillingRecordSource:
    """
    BillingRecordSource backed by a remote billing service.

    GET {base_url}/tenants/{tenant_id}/billing returns:
        {"trialEnd": "...", "subscriptionActive": true, "currentPeriodEnd": "..."}
    with ISO-8601 timestamps (or null). 404 means the tenant is unknown.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    def _get(self, client: httpx.Client, tenant_id: str) -> Optional[BillingRecord]:
        resp = client.get(f"{self._base_url}/tenants/{tenant_id}/billing")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        data = resp.json()
        return BillingRecord(
            tenant_id=tenant_id,
            trial_end=_parse_timestamp(data.get("trialEnd")),
            subscription_active=bool(data.get("subscriptionActive", False)),
            current_period_end=_parse_timestamp(data.get("currentPeriodEnd")),
        )

    def fetch(self, tenant_id: str) -> Optional[BillingRecord]:
        if self._client is not None:
            return self._get(self._client, tenant_id)

        with httpx.Client(timeout=self._timeout) as client:
            return self._get(client, tenant_id)
