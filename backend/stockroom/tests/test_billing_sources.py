"""
Tests for the remote billing record source.
"""

from datetime import datetime, timezone

import httpx
import pytest

from stockroom.billing.sources import HttpBillingRecordSource


def _source(handler) -> HttpBillingRecordSource:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpBillingRecordSource("https://billing.internal/", client=client)


class TestHttpBillingRecordSource:

    def test_parses_record(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            return httpx.Response(200, json={
                "trialEnd": None,
                "subscriptionActive": True,
                "currentPeriodEnd": "2026-04-01T00:00:00Z",
            })

        record = _source(handler).fetch("tenant_a")

        assert seen["url"] == "https://billing.internal/tenants/tenant_a/billing"
        assert record.tenant_id == "tenant_a"
        assert record.trial_end is None
        assert record.subscription_active is True
        assert record.current_period_end == datetime(2026, 4, 1, tzinfo=timezone.utc)

    def test_naive_timestamp_is_utc(self):
        def handler(request):
            return httpx.Response(200, json={"trialEnd": "2026-04-01T12:00:00"})

        record = _source(handler).fetch("tenant_a")

        assert record.trial_end == datetime(2026, 4, 1, 12, tzinfo=timezone.utc)
        assert record.subscription_active is False

    def test_unknown_tenant_returns_none(self):
        assert _source(lambda request: httpx.Response(404)).fetch("missing") is None

    def test_server_error_raises(self):
        with pytest.raises(httpx.HTTPStatusError):
            _source(lambda request: httpx.Response(500)).fetch("tenant_a")
