"""
Tests for subscription status derivation and the resolver.
"""

import asyncio
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from stockroom.billing.errors import BillingUnavailableError
from stockroom.billing.resolver import SubscriptionStatusResolver
from stockroom.billing.sources import SqlBillingRecordSource
from stockroom.billing.status import (
    BillingRecord,
    SubscriptionStatus,
    resolve_subscription_status,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

offsets = st.integers(min_value=-400 * 86400, max_value=400 * 86400).map(
    lambda s: timedelta(seconds=s)
)
optional_offsets = st.none() | offsets


class TestResolveSubscriptionStatus:

    def test_in_trial(self):
        record = BillingRecord("t1", trial_end=NOW + timedelta(days=5))
        result = resolve_subscription_status(record, NOW)
        assert result.status == SubscriptionStatus.TRIAL
        assert result.access_allowed is True
        assert result.days_left == 5

    def test_trial_over_and_inactive_is_expired(self):
        record = BillingRecord("t1", trial_end=NOW - timedelta(days=1))
        result = resolve_subscription_status(record, NOW)
        assert result.status == SubscriptionStatus.EXPIRED
        assert result.access_allowed is False
        assert result.days_left == 0

    def test_active_subscription(self):
        record = BillingRecord(
            "t1",
            subscription_active=True,
            current_period_end=NOW + timedelta(days=10),
        )
        result = resolve_subscription_status(record, NOW)
        assert result.status == SubscriptionStatus.ACTIVE
        assert result.access_allowed is True
        assert result.days_left == 10

    def test_active_flag_with_lapsed_period_is_expired(self):
        record = BillingRecord(
            "t1",
            subscription_active=True,
            current_period_end=NOW - timedelta(seconds=1),
        )
        result = resolve_subscription_status(record, NOW)
        assert result.status == SubscriptionStatus.EXPIRED
        assert result.access_allowed is False

    def test_period_end_ignored_when_inactive(self):
        record = BillingRecord(
            "t1",
            subscription_active=False,
            current_period_end=NOW + timedelta(days=10),
        )
        result = resolve_subscription_status(record, NOW)
        assert result.status == SubscriptionStatus.EXPIRED
        assert result.days_left == 0

    def test_trial_end_boundary_is_exclusive(self):
        record = BillingRecord("t1", trial_end=NOW)
        result = resolve_subscription_status(record, NOW)
        assert result.status == SubscriptionStatus.EXPIRED
        assert result.access_allowed is False

    def test_trial_takes_precedence_and_days_use_later_end(self):
        record = BillingRecord(
            "t1",
            trial_end=NOW + timedelta(days=3),
            subscription_active=True,
            current_period_end=NOW + timedelta(days=30),
        )
        result = resolve_subscription_status(record, NOW)
        assert result.status == SubscriptionStatus.TRIAL
        assert result.days_left == 30

    def test_partial_day_rounds_down(self):
        record = BillingRecord("t1", trial_end=NOW + timedelta(days=2, hours=23))
        assert resolve_subscription_status(record, NOW).days_left == 2

    def test_no_dates_is_expired(self):
        result = resolve_subscription_status(BillingRecord("t1"), NOW)
        assert result.status == SubscriptionStatus.EXPIRED
        assert result.days_left == 0


class TestStatusProperties:

    @given(trial=optional_offsets, period=optional_offsets, active=st.booleans())
    @settings(max_examples=300, deadline=None)
    def test_days_left_never_negative(self, trial, period, active):
        record = BillingRecord(
            "t1",
            trial_end=NOW + trial if trial is not None else None,
            subscription_active=active,
            current_period_end=NOW + period if period is not None else None,
        )
        assert resolve_subscription_status(record, NOW).days_left >= 0

    @given(trial=offsets.filter(lambda d: d > timedelta(0)), period=optional_offsets, active=st.booleans())
    @settings(max_examples=200, deadline=None)
    def test_future_trial_end_always_trial_and_allowed(self, trial, period, active):
        record = BillingRecord(
            "t1",
            trial_end=NOW + trial,
            subscription_active=active,
            current_period_end=NOW + period if period is not None else None,
        )
        result = resolve_subscription_status(record, NOW)
        assert result.status == SubscriptionStatus.TRIAL
        assert result.access_allowed is True

    @given(trial=optional_offsets.filter(lambda d: d is None or d <= timedelta(0)), period=optional_offsets)
    @settings(max_examples=200, deadline=None)
    def test_past_trial_and_inactive_always_expired(self, trial, period):
        record = BillingRecord(
            "t1",
            trial_end=NOW + trial if trial is not None else None,
            subscription_active=False,
            current_period_end=NOW + period if period is not None else None,
        )
        result = resolve_subscription_status(record, NOW)
        assert result.status == SubscriptionStatus.EXPIRED
        assert result.access_allowed is False

    @given(trial=optional_offsets, period=optional_offsets, active=st.booleans())
    @settings(max_examples=200, deadline=None)
    def test_allowed_iff_status_not_expired(self, trial, period, active):
        record = BillingRecord(
            "t1",
            trial_end=NOW + trial if trial is not None else None,
            subscription_active=active,
            current_period_end=NOW + period if period is not None else None,
        )
        result = resolve_subscription_status(record, NOW)
        assert result.access_allowed == (result.status != SubscriptionStatus.EXPIRED)


class TestSubscriptionStatusResolver:

    def test_resolves_from_sql_source(self, session_factory, make_tenant):
        tenant_id = make_tenant(
            subscription_active=True,
            current_period_end=NOW + timedelta(days=10),
        )
        resolver = SubscriptionStatusResolver(
            SqlBillingRecordSource(session_factory),
            clock=lambda: NOW,
        )

        resolved = asyncio.run(resolver.resolve(tenant_id))

        assert resolved.tenant_id == tenant_id
        assert resolved.result.status == SubscriptionStatus.ACTIVE
        assert resolved.result.days_left == 10
        # SQLite returns naive datetimes; the record is normalized to UTC
        assert resolved.record.current_period_end.tzinfo is not None

    def test_unknown_tenant_returns_none(self, session_factory):
        resolver = SubscriptionStatusResolver(SqlBillingRecordSource(session_factory))
        assert asyncio.run(resolver.resolve("missing")) is None

    def test_source_error_raises_billing_unavailable(self):
        source = Mock()
        source.fetch.side_effect = RuntimeError("connection refused")
        resolver = SubscriptionStatusResolver(source)

        with pytest.raises(BillingUnavailableError) as exc_info:
            asyncio.run(resolver.resolve("t1"))
        assert exc_info.value.reason == "RuntimeError"
        assert exc_info.value.http_status == 503

    def test_timeout_raises_billing_unavailable(self):
        release = threading.Event()

        class SlowSource:
            def fetch(self, tenant_id):
                release.wait(5)
                return None

        resolver = SubscriptionStatusResolver(SlowSource(), timeout_seconds=0.05)

        async def scenario():
            try:
                await resolver.resolve("t1")
            finally:
                release.set()

        with pytest.raises(BillingUnavailableError) as exc_info:
            asyncio.run(scenario())
        assert exc_info.value.reason == "timeout"

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValueError):
            SubscriptionStatusResolver(Mock(), timeout_seconds=0)
