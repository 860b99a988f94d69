"""
Tests for the subscription guard running inside the full middleware stack.
"""

import base64
import hashlib
import hmac
import json
import time
from dataclasses import replace
from datetime import timedelta

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from conftest import TEST_WEBHOOK_SECRET, cookie_header
from stockroom.app import create_app
from stockroom.config.access_policy import AccessPolicy
from stockroom.tenancy.context import get_current_tenant


def _tenant_store():
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


def _login_headers(token_service, username):
    return cookie_header(access_token=token_service.issue(username).access_token)


def _signed(payload: dict):
    body = json.dumps(payload).encode("utf-8")
    digest = hmac.new(TEST_WEBHOOK_SECRET.encode("utf-8"), body, hashlib.sha256).digest()
    return body, base64.b64encode(digest).decode("utf-8")


@pytest.fixture
def expired_user(make_tenant, make_user, now):
    tenant_id = make_tenant(trial_end=now - timedelta(days=1), subscription_active=False)
    return make_user(tenant_id=tenant_id), tenant_id


@pytest.fixture
def active_user(make_tenant, make_user, registry, now):
    tenant_id = make_tenant(
        subscription_active=True,
        current_period_end=now + timedelta(days=10),
    )
    registry.register(tenant_id, _tenant_store())
    return make_user(tenant_id=tenant_id), tenant_id


class TestExpiredTenant:

    def test_expired_tenant_gets_402(self, client, token_service, expired_user):
        username, _ = expired_user

        response = client.get("/workspace/ping", headers=_login_headers(token_service, username))

        assert response.status_code == 402
        assert response.json() == {"error": "payment_required", "message": "subscription_expired"}
        assert response.headers["X-Subscription-Expired"] == "true"

    def test_webhook_reachable_with_expired_tenant(self, client, token_service, expired_user):
        username, tenant_id = expired_user
        body, signature = _signed({"id": "evt_reachable", "type": "subscription.extended", "tenant_id": tenant_id})
        headers = _login_headers(token_service, username)
        headers["X-Billing-Signature"] = signature
        headers["Content-Type"] = "application/json"

        response = client.post("/billing/webhook", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json()["received"] is True

    @pytest.mark.parametrize("path", ["/billing/status", "/users/me", "/status"])
    def test_allowlisted_paths_never_blocked(self, client, token_service, expired_user, path):
        username, _ = expired_user
        response = client.get(path, headers=_login_headers(token_service, username))
        assert response.status_code == 200

    @pytest.mark.parametrize("path", ["/authors", "/status-report", "/users/meetings"])
    def test_lookalike_paths_are_gated(self, client, token_service, expired_user, path):
        username, _ = expired_user
        response = client.get(path, headers=_login_headers(token_service, username))
        assert response.status_code == 402

    def test_billing_status_reports_expired(self, client, token_service, expired_user):
        username, _ = expired_user
        data = client.get("/billing/status", headers=_login_headers(token_service, username)).json()
        assert data["status"] == "EXPIRED"
        assert data["daysLeft"] == 0

    def test_static_get_bypasses_guard(self, client, token_service, expired_user):
        username, _ = expired_user
        response = client.get("/assets/app.js", headers=_login_headers(token_service, username))
        assert response.status_code == 404

    def test_options_bypasses_guard(self, client, token_service, expired_user):
        username, _ = expired_user
        response = client.options("/workspace/ping", headers=_login_headers(token_service, username))
        assert response.status_code != 402

    def test_extension_restores_access(self, client, token_service, expired_user, registry):
        username, tenant_id = expired_user
        registry.register(tenant_id, _tenant_store())
        headers = _login_headers(token_service, username)
        assert client.get("/workspace/ping", headers=headers).status_code == 402

        body, signature = _signed({"id": "evt_restore", "type": "subscription.extended", "tenant_id": tenant_id, "days": 30})
        client.post(
            "/billing/webhook",
            content=body,
            headers={"X-Billing-Signature": signature, "Content-Type": "application/json"},
        )

        assert client.get("/workspace/ping", headers=headers).status_code == 200


class TestActiveTenant:

    def test_request_proceeds_with_tenant_context(self, client, token_service, active_user):
        username, tenant_id = active_user

        response = client.get("/workspace/ping", headers=_login_headers(token_service, username))

        assert response.status_code == 200
        assert response.json() == {"tenantId": tenant_id, "database": True}

    def test_billing_status_active_ten_days(self, client, token_service, active_user):
        username, _ = active_user
        data = client.get("/billing/status", headers=_login_headers(token_service, username)).json()
        assert data["status"] == "ACTIVE"
        assert data["daysLeft"] == 10
        assert data["isAdmin"] is False

    def test_context_set_before_handler_and_reset_after(self, app, token_service, active_user):
        username, tenant_id = active_user
        seen = {}

        async def whoami():
            seen["tenant"] = get_current_tenant()
            return {"ok": True}

        app.add_api_route("/workspace/whoami", whoami, methods=["GET"])
        client = TestClient(app, base_url="https://testserver")

        response = client.get("/workspace/whoami", headers=_login_headers(token_service, username))

        assert response.status_code == 200
        assert seen["tenant"] == tenant_id
        assert get_current_tenant() is None

    def test_subscription_exposed_on_request_state(self, app, token_service, active_user):
        username, _ = active_user
        seen = {}

        async def state(request: Request):
            seen["subscription"] = request.state.subscription
            return {"ok": True}

        app.add_api_route("/workspace/state", state, methods=["GET"])
        client = TestClient(app, base_url="https://testserver")
        client.get("/workspace/state", headers=_login_headers(token_service, username))

        assert seen["subscription"].result.days_left == 10
        assert seen["subscription"].access_allowed is True


class TestBypassAndRouting:

    def test_anonymous_request_not_blocked_by_guard(self, client):
        response = client.get("/workspace/ping")
        assert response.status_code == 401

    def test_user_without_tenant_passes_guard_but_cannot_route(self, client, token_service, make_user):
        username = make_user(tenant_id=None)

        response = client.get("/workspace/ping", headers=_login_headers(token_service, username))

        assert response.status_code == 500
        assert response.json()["error"] == "tenant_context_missing"

    def test_unprovisioned_tenant_gets_500(self, client, token_service, make_tenant, make_user, now):
        tenant_id = make_tenant(trial_end=now + timedelta(days=3))
        username = make_user(tenant_id=tenant_id)

        response = client.get("/workspace/ping", headers=_login_headers(token_service, username))

        assert response.status_code == 500
        assert response.json()["error"] == "tenant_not_provisioned"


class TestBillingUnavailable:

    def _app(self, settings, session_factory, registry, clock, source):
        return create_app(
            settings=replace(settings, billing_lookup_timeout_seconds=0.05),
            session_factory=session_factory,
            registry=registry,
            billing_source=source,
            policy=AccessPolicy(),
            clock=clock,
        )

    def test_resolver_timeout_fails_closed(
        self, settings, session_factory, registry, clock, make_user, make_tenant, now
    ):
        tenant_id = make_tenant(trial_end=now + timedelta(days=3))
        username = make_user(tenant_id=tenant_id)
        class SlowSource:
            def fetch(self, tenant_id):
                time.sleep(0.5)
                return None

        app = self._app(settings, session_factory, registry, clock, SlowSource())
        client = TestClient(app, base_url="https://testserver")

        response = client.get(
            "/workspace/ping",
            headers=_login_headers(app.state.token_service, username),
        )

        assert response.status_code == 503
        assert response.json() == {
            "error": "billing_unavailable",
            "message": "subscription_status_unavailable",
        }
        assert "Retry-After" in response.headers

    def test_resolver_error_fails_closed(
        self, settings, session_factory, registry, clock, make_user, make_tenant, now
    ):
        tenant_id = make_tenant(trial_end=now + timedelta(days=3))
        username = make_user(tenant_id=tenant_id)

        class BrokenSource:
            def fetch(self, tenant_id):
                raise ConnectionError("billing database down")

        app = self._app(settings, session_factory, registry, clock, BrokenSource())
        client = TestClient(app, base_url="https://testserver")

        response = client.get(
            "/workspace/ping",
            headers=_login_headers(app.state.token_service, username),
        )

        assert response.status_code == 503
