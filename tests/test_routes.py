"""
HTTP API tests
"""
import hashlib
import hmac
import json
import pytest
from datetime import datetime, timedelta
from unittest.mock import patch

from adminer.config import config
from adminer.db.models import Job, JobStatus, Organization, WebhookEvent, DispatchStatus
from adminer.services.event_dispatcher import EventDispatcher
from adminer.services.usage_ledger import period_for
from adminer.services.worker_client import WorkerClientError

ADMIN_HEADERS = {"X-Admin-Token": "test-admin-token-for-the-test-suite-only"}


def _billing_request(payload: dict):
    body = json.dumps(payload).encode()
    signature = hmac.new(config.DODO_WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()
    return body, {"X-Dodo-Signature": signature, "Content-Type": "application/json"}


def _worker_request(payload: dict):
    body = json.dumps(payload).encode()
    digest = hmac.new(config.WORKER_WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()
    return body, {"X-Webhook-Signature": f"sha256={digest}", "Content-Type": "application/json"}


class TestJobRoutes:

    def test_create_job_accepted(self, client, make_org, mock_worker):
        make_org("org_1", plan_code="pro")

        response = client.post("/v1/jobs", json={"keyword": "running shoes", "limit": 50}, headers={"X-Org-Id": "org_1"})

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == JobStatus.QUEUED.value
        assert data["used"] == 1
        assert data["limit"] == 500
        assert data["period"] == period_for()
        mock_worker.submit.assert_called_once()

    def test_quota_exceeded_returns_402_with_upgrade_url(self, client, make_org, set_usage, mock_worker):
        make_org("org_1", plan_code="free")
        set_usage("org_1", period_for(), 10)

        response = client.post("/v1/jobs", json={"keyword": "kw", "limit": 5}, headers={"X-Org-Id": "org_1"})

        assert response.status_code == 402
        data = response.json()
        assert data["code"] == "QUOTA_EXCEEDED"
        assert data["details"]["used"] == 10
        assert data["details"]["limit"] == 10
        assert data["details"]["remaining"] == 0
        assert data["details"]["upgrade_url"]
        mock_worker.submit.assert_not_called()

    def test_missing_org_header(self, client):
        response = client.post("/v1/jobs", json={"keyword": "kw", "limit": 5})

        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_ERROR"

    def test_unknown_org(self, client):
        response = client.post("/v1/jobs", json={"keyword": "kw", "limit": 5}, headers={"X-Org-Id": "org_missing"})
        assert response.status_code == 401

    @pytest.mark.parametrize("body", [
        {"keyword": "", "limit": 5},
        {"keyword": "   ", "limit": 5},
        {"keyword": "kw", "limit": 0},
        {"keyword": "kw", "limit": 100000},
        {"keyword": "kw"},
    ])
    def test_invalid_request(self, client, make_org, body):
        make_org("org_1")

        response = client.post("/v1/jobs", json=body, headers={"X-Org-Id": "org_1"})

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_worker_unavailable(self, client, make_org, mock_worker, fetch):
        make_org("org_1", plan_code="pro")
        mock_worker.submit.side_effect = WorkerClientError("timeout")

        response = client.post("/v1/jobs", json={"keyword": "kw", "limit": 5}, headers={"X-Org-Id": "org_1"})

        assert response.status_code == 503
        data = response.json()
        assert data["code"] == "WORKER_UNAVAILABLE"
        assert fetch(Job, data["details"]["job_id"]).status == JobStatus.FAILED.value

    def test_list_and_get_jobs(self, client, make_org):
        make_org("org_1", plan_code="pro")
        make_org("org_2", plan_code="pro")
        created = client.post("/v1/jobs", json={"keyword": "kw", "limit": 5}, headers={"X-Org-Id": "org_1"}).json()

        listing = client.get("/v1/jobs", headers={"X-Org-Id": "org_1"})
        assert listing.status_code == 200
        assert [j["id"] for j in listing.json()["jobs"]] == [created["job_id"]]

        own = client.get(f"/v1/jobs/{created['job_id']}", headers={"X-Org-Id": "org_1"})
        assert own.status_code == 200
        assert own.json()["keyword"] == "kw"

        other = client.get(f"/v1/jobs/{created['job_id']}", headers={"X-Org-Id": "org_2"})
        assert other.status_code == 404

    def test_quota_status(self, client, make_org, set_usage):
        make_org("org_1", plan_code="free")
        set_usage("org_1", period_for(), 4)

        response = client.get("/v1/quota", headers={"X-Org-Id": "org_1"})

        assert response.status_code == 200
        data = response.json()
        assert data["plan"] == "free"
        assert data["used"] == 4
        assert data["limit"] == 10
        assert data["remaining"] == 6
        assert data["upgrade_url"]

        reset_at = datetime.fromisoformat(data["reset_at"].replace("Z", "+00:00"))
        assert reset_at.utcoffset() == timedelta(0)
        assert (reset_at.day, reset_at.hour, reset_at.minute) == (1, 0, 0)

    def test_quota_unknown_org(self, client):
        response = client.get("/v1/quota", headers={"X-Org-Id": "org_missing"})
        assert response.status_code == 401


class TestBillingRoutes:

    def test_bootstrap_free_is_idempotent(self, client, fetch):
        first = client.post("/v1/billing/bootstrap-free", json={"name": "Acme"}, headers={"X-Org-Id": "org_new"})
        second = client.post("/v1/billing/bootstrap-free", headers={"X-Org-Id": "org_new"})

        assert first.status_code == 200
        assert first.json() == {"org_id": "org_new", "plan": "free", "created": True}
        assert second.json() == {"org_id": "org_new", "plan": "free", "created": False}

        org = fetch(Organization, "org_new")
        assert org.name == "Acme"
        assert org.quota_limit == 10

    def test_bootstrap_does_not_touch_paid_org(self, client, make_org, fetch):
        make_org("org_paid", plan_code="pro", quota_limit=500, billing_status="active")

        response = client.post("/v1/billing/bootstrap-free", headers={"X-Org-Id": "org_paid"})

        assert response.json() == {"org_id": "org_paid", "plan": "pro", "created": False}
        assert fetch(Organization, "org_paid").quota_limit == 500


class TestWebhookRoutes:

    def _subscription_payload(self, event_id="evt_123"):
        return {
            "id": event_id,
            "type": "subscription.created",
            "timestamp": "2025-03-01T10:00:00Z",
            "data": {"metadata": {"orgId": "org_1"}, "product": "Pro", "subscriptionId": "sub_1"},
        }

    def test_billing_event_applied(self, client, make_org, fetch):
        make_org("org_1")
        body, headers = _billing_request(self._subscription_payload())

        response = client.post("/v1/webhooks/billing", content=body, headers=headers)

        assert response.status_code == 200
        assert response.json() == {"ok": True, "duplicate": False}
        org = fetch(Organization, "org_1")
        assert org.plan_code == "pro"
        assert org.provider_subscription_id == "sub_1"
        event = fetch(WebhookEvent, "evt_123")
        assert event.payload == body.decode()
        assert event.dispatch_status == DispatchStatus.DISPATCHED.value

    def test_duplicate_delivery(self, client, make_org):
        make_org("org_1")
        body, headers = _billing_request(self._subscription_payload())

        with patch.object(EventDispatcher, "dispatch", autospec=True, return_value=True) as dispatch:
            first = client.post("/v1/webhooks/billing", content=body, headers=headers)
            second = client.post("/v1/webhooks/billing", content=body, headers=headers)

        assert first.json()["duplicate"] is False
        assert second.status_code == 200
        assert second.json()["duplicate"] is True
        assert dispatch.call_count == 1

    def test_invalid_signature(self, client, fetch):
        body, headers = _billing_request(self._subscription_payload())
        headers["X-Dodo-Signature"] = "0" * 64

        response = client.post("/v1/webhooks/billing", content=body, headers=headers)

        assert response.status_code == 401
        assert fetch(WebhookEvent, "evt_123") is None

    def test_missing_signature(self, client):
        response = client.post("/v1/webhooks/worker", json={"eventType": "RUN.SUCCEEDED"})
        assert response.status_code == 401

    def test_malformed_payload_is_acknowledged(self, client):
        body = b"{not json"
        signature = hmac.new(config.DODO_WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()

        response = client.post("/v1/webhooks/billing", content=body, headers={"X-Dodo-Signature": signature})

        assert response.status_code == 200
        assert response.json() == {"ok": True, "error": "malformed_payload"}

    def test_dispatch_failure_still_acknowledged(self, client, make_org, fetch):
        make_org("org_1")
        body, headers = _billing_request(self._subscription_payload())

        with patch.object(EventDispatcher, "dispatch", side_effect=RuntimeError("secret internals")):
            response = client.post("/v1/webhooks/billing", content=body, headers=headers)

        assert response.status_code == 200
        assert "secret internals" not in response.text
        assert fetch(WebhookEvent, "evt_123").dispatch_status == DispatchStatus.FAILED.value

    def test_worker_completion(self, client, make_org, mock_worker, fetch):
        make_org("org_1", plan_code="pro")
        job_id = client.post("/v1/jobs", json={"keyword": "kw", "limit": 5}, headers={"X-Org-Id": "org_1"}).json()["job_id"]
        body, headers = _worker_request({
            "eventType": "RUN.SUCCEEDED",
            "createdAt": "2025-03-01T10:00:00Z",
            "resource": {"id": "run_test_123", "status": "SUCCEEDED"},
        })

        first = client.post(f"/v1/webhooks/worker?jobId={job_id}", content=body, headers=headers)
        second = client.post(f"/v1/webhooks/worker?jobId={job_id}", content=body, headers=headers)

        assert first.json() == {"ok": True, "duplicate": False}
        assert second.json() == {"ok": True, "duplicate": True}
        assert fetch(Job, job_id).status == JobStatus.COMPLETED.value
        assert fetch(WebhookEvent, "run_test_123:RUN.SUCCEEDED") is not None


class TestAdminRoutes:

    def test_requires_token(self, client):
        assert client.get("/v1/admin/webhook-events").status_code == 401
        assert client.get("/v1/admin/webhook-events", headers={"X-Admin-Token": "wrong"}).status_code == 401

    def test_list_webhook_events(self, client, make_org):
        make_org("org_1")
        for i in range(3):
            body, headers = _billing_request(self._payload(f"evt_{i}"))
            client.post("/v1/webhooks/billing", content=body, headers=headers)

        first = client.get("/v1/admin/webhook-events?limit=2", headers=ADMIN_HEADERS)
        assert first.status_code == 200
        page = first.json()
        assert len(page["items"]) == 2
        assert page["next_cursor"]

        second = client.get(
            "/v1/admin/webhook-events",
            params={"limit": 2, "cursor": page["next_cursor"]},
            headers=ADMIN_HEADERS,
        ).json()
        assert len(second["items"]) == 1
        assert second["next_cursor"] is None

        ids = {item["id"] for item in page["items"] + second["items"]}
        assert ids == {"evt_0", "evt_1", "evt_2"}
        for item in page["items"] + second["items"]:
            assert json.loads(item["payload"])["id"] == item["id"]

    def test_invalid_cursor(self, client):
        response = client.get("/v1/admin/webhook-events?cursor=garbage", headers=ADMIN_HEADERS)
        assert response.status_code == 400

    def test_reconcile_dry_run(self, client, make_org, fetch):
        now = datetime.utcnow()
        make_org(
            "org_c", plan_code="pro", billing_status="canceled",
            canceled_at=now - timedelta(days=20), current_period_end=now - timedelta(days=1),
            provider_subscription_id="sub_c",
        )

        response = client.post("/v1/admin/reconcile?dryRun=true", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json() == {"downgraded": 0, "candidates": 1, "dryRun": True}
        assert fetch(Organization, "org_c").plan_code == "pro"

    def test_reconcile_with_time_override(self, client, make_org, fetch):
        make_org(
            "org_c", plan_code="pro", billing_status="active",
            current_period_end=datetime(2025, 3, 1), provider_subscription_id="sub_c",
        )

        early = client.post("/v1/admin/reconcile", params={"now": "2025-02-15T00:00:00Z"}, headers=ADMIN_HEADERS)
        late = client.post("/v1/admin/reconcile", params={"now": "2025-03-02T00:00:00Z"}, headers=ADMIN_HEADERS)

        assert early.json() == {"downgraded": 0, "candidates": 0, "dryRun": False}
        assert late.json() == {"downgraded": 1, "candidates": 1, "dryRun": False}
        assert fetch(Organization, "org_c").plan_code == "free"

    def test_reconcile_feature_flag_off(self, client, monkeypatch):
        monkeypatch.setattr(config, "BILLING_AUTODOWNGRADE_ENABLED", False)

        response = client.post("/v1/admin/reconcile", headers=ADMIN_HEADERS)

        assert response.json() == {"ok": True, "skipped": True, "reason": "feature_flag_off"}

    def _payload(self, event_id):
        return {
            "id": event_id,
            "type": "payment.succeeded",
            "data": {"orgId": "org_1"},
        }


class TestOperationalRoutes:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "ok"}

    def test_health_database_down(self, client):
        with patch("adminer.app.check_database", return_value=False):
            response = client.get("/health")
        assert response.status_code == 503

    def test_metrics(self, client, make_org):
        make_org("org_1", plan_code="pro")
        client.post("/v1/jobs", json={"keyword": "kw", "limit": 5}, headers={"X-Org-Id": "org_1"})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert 'admission_requests_total{outcome="admitted"} 1.0' in response.text

    def test_request_id_header(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
