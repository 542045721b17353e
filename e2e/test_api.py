"""API endpoint tests for the HTTP surface.

Each test swaps main.engine for a fresh in-memory engine with explicit
settings, so nothing depends on the developer's environment.
"""

import asyncio
import hashlib
import hmac
import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

import main
from core.config import Settings
from core.engine import ErrorEngine
from main import app
from schemas.events import ErrorEvent
from store.memory import InMemoryEventStore

client = TestClient(app)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
WEBHOOK_SECRET = "whsec_test"


# ── Helpers ───────────────────────────────────────────────────────────────────

def make_payload(**overrides) -> dict:
    payload = {
        "product": "storefront",
        "error_message": "TypeError: Cannot read properties of undefined",
        "error_type": "client_crash",
        "source": "client",
        "fingerprint": "a1b2c3d4e5f60718",
    }
    payload.update(overrides)
    return payload


def make_signature(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha1).hexdigest()


def make_vercel_body(project: str = "storefront-web", event_type: str = "deployment.succeeded") -> bytes:
    return json.dumps({
        "type": event_type,
        "payload": {
            "project": {"name": project},
            "deployment": {
                "url": "storefront-abc123.vercel.app",
                "readyAt": 1772452800000,
                "meta": {"githubCommitSha": "9f8e7d6c", "githubCommitMessage": "Fix cart total"},
            },
        },
    }).encode()


@pytest.fixture
def engine(monkeypatch):
    settings = Settings(
        store_retry_backoff_seconds=0,
        rate_limit_per_window=5,
        vercel_webhook_secret=WEBHOOK_SECRET,
        vercel_project_map="storefront-web:storefront",
    )
    fresh = ErrorEngine(InMemoryEventStore(), settings=settings, clock=lambda: NOW)
    monkeypatch.setattr(main, "engine", fresh)
    return fresh


# ── Health ────────────────────────────────────────────────────────────────────

def test_health():
    res = client.get("/health")
    assert res.json()["status"] == "ok"


# ── Ingestion ─────────────────────────────────────────────────────────────────

class TestIngestEndpoint:
    def test_accepts_valid_event(self, engine):
        res = client.post("/api/errors", json=make_payload())
        assert res.status_code == 201
        assert res.json()["status"] == "received"
        assert res.json()["id"]

    def test_rejects_missing_field(self, engine):
        payload = make_payload()
        del payload["product"]
        res = client.post("/api/errors", json=payload)
        assert res.status_code == 400
        assert res.json() == {"error": "product is required"}

    def test_rejects_malformed_json(self, engine):
        res = client.post("/api/errors", content=b"{not json", headers={"content-type": "application/json"})
        assert res.status_code == 400
        assert res.json() == {"error": "Invalid JSON body"}

    def test_deeply_nested_body_rejected(self, engine):
        body = b'{"product": "storefront", "metadata": ' + b"[" * 100_000 + b"]" * 100_000 + b"}"
        res = client.post("/api/errors", content=body, headers={"content-type": "application/json"})
        assert res.status_code == 400
        assert res.json() == {"error": "Invalid JSON body"}

    def test_rate_limit_returns_429(self, engine):
        codes = [client.post("/api/errors", json=make_payload()).status_code for _ in range(6)]
        assert codes == [201] * 5 + [429]

    def test_ingest_key_required_when_configured(self, engine):
        engine.settings.errors_ingest_key = "ingest-secret"
        assert client.post("/api/errors", json=make_payload()).status_code == 401
        res = client.post(
            "/api/errors", json=make_payload(), headers={"Authorization": "Bearer ingest-secret"},
        )
        assert res.status_code == 201

    def test_store_failure_returns_503(self, engine, monkeypatch):
        async def down(event):
            raise OSError("connection reset")

        monkeypatch.setattr(engine.store.backend, "append_event", down)
        res = client.post("/api/errors", json=make_payload())
        assert res.status_code == 503


# ── Error groups ──────────────────────────────────────────────────────────────

class TestGroupEndpoints:
    def test_groups_after_refresh(self, engine):
        for _ in range(3):
            client.post("/api/errors", json=make_payload())
        assert client.post("/api/error-groups/refresh").json() == {"ok": True, "groups": 1}

        [group] = client.get("/api/error-groups", params={"product": "storefront"}).json()
        assert group["occurrence_count"] == 3
        assert group["status"] == "active"
        assert client.get("/api/error-groups", params={"product": "admin"}).json() == []

    def test_get_group_and_missing_group(self, engine):
        client.post("/api/errors", json=make_payload())
        client.post("/api/error-groups/refresh")

        res = client.get("/api/error-groups/storefront/a1b2c3d4e5f60718")
        assert res.status_code == 200
        assert res.json()["fingerprint"] == "a1b2c3d4e5f60718"
        assert client.get("/api/error-groups/storefront/missing").status_code == 404

    def test_set_status(self, engine):
        res = client.post("/api/error-groups/status", json={
            "fingerprint": "a1b2c3d4e5f60718", "product": "storefront", "status": "resolved",
        })
        assert res.status_code == 200
        assert res.json()["status"] == "resolved"
        assert res.json()["resolved_at"] is not None

    def test_set_status_rejects_unknown_status(self, engine):
        res = client.post("/api/error-groups/status", json={
            "fingerprint": "a1b2c3d4e5f60718", "product": "storefront", "status": "closed",
        })
        assert res.status_code == 400
        assert res.json()["error"].startswith("status must be one of")

    def test_bulk_status(self, engine):
        items = [{"fingerprint": f"fp-{i}", "product": "storefront"} for i in range(4)]
        res = client.post("/api/error-groups/bulk-status", json={"items": items, "status": "ignored"})
        assert res.json() == {"ok": True, "updated": 4}

    def test_bulk_status_rejects_empty_items(self, engine):
        res = client.post("/api/error-groups/bulk-status", json={"items": [], "status": "ignored"})
        assert res.status_code == 400

    def test_status_rejects_deeply_nested_body(self, engine):
        body = b'{"items": ' + b"[" * 100_000 + b"]" * 100_000 + b"}"
        res = client.post("/api/error-groups/bulk-status", content=body, headers={"content-type": "application/json"})
        assert res.status_code == 400
        assert res.json() == {"error": "Invalid JSON body"}


# ── Spike alerts ──────────────────────────────────────────────────────────────

class TestSpikeEndpoints:
    def _seed(self, engine: ErrorEngine, count: int) -> None:
        for i in range(count):
            asyncio.run(engine.store.append_event(ErrorEvent(
                product="storefront", message="boom", error_type="api_error", source="server",
                fingerprint="fp-a", occurred_at=NOW - timedelta(minutes=i + 1),
            )))

    def test_detect_list_acknowledge(self, engine):
        self._seed(engine, 8)

        detected = client.post("/api/spikes/detect").json()
        assert detected["ok"] is True
        [alert] = detected["alerts"]
        assert alert["current_count"] == 8

        assert client.post("/api/spikes/detect").json()["alerts"] == []
        assert len(client.get("/api/spikes", params={"unacknowledged": "true"}).json()) == 1

        res = client.post(f"/api/spikes/{alert['id']}/acknowledge")
        assert res.json()["alert"]["acknowledged"] is True
        assert client.get("/api/spikes", params={"unacknowledged": "true"}).json() == []

    def test_acknowledge_unknown_alert(self, engine):
        assert client.post("/api/spikes/missing/acknowledge").status_code == 404


# ── Deployments ───────────────────────────────────────────────────────────────

class TestDeploymentEndpoints:
    def test_create_and_correlate(self, engine):
        res = client.post("/api/deployments", json={
            "product": "storefront",
            "deployed_at": (NOW - timedelta(minutes=30)).isoformat(),
            "commit_hash": "abc1234",
        })
        assert res.status_code == 201
        deployment = res.json()
        assert deployment["branch"] == "main"

        correlation = client.get(f"/api/deployments/{deployment['id']}/correlation").json()
        assert len(correlation["buckets"]) == 9
        assert correlation["correlation"]["badge"] == "none"

        [summary] = client.get("/api/deployments", params={"product": "storefront"}).json()
        assert summary["deployment"]["id"] == deployment["id"]

    def test_malformed_deployment_rejected(self, engine):
        res = client.post("/api/deployments", json={"product": "storefront", "commit_hash": "x" * 41})
        assert res.status_code == 400

    def test_unknown_deployment_correlation(self, engine):
        res = client.get("/api/deployments/missing/correlation")
        assert res.status_code == 404
        assert res.json() == {"error": "Deployment not found"}

    def test_invalid_correlation_window(self, engine):
        res = client.post("/api/deployments", json={"product": "storefront", "deployed_at": NOW.isoformat()})
        res = client.get(f"/api/deployments/{res.json()['id']}/correlation", params={"bucket_minutes": 0})
        assert res.status_code == 400

    @pytest.mark.parametrize("params", [
        {"bucket_minutes": 0.00001},
        {"window_hours": 1000, "bucket_minutes": 0.001},
        {"window_hours": 1e12},
    ])
    def test_correlation_window_out_of_range(self, engine, params):
        res = client.post("/api/deployments", json={"product": "storefront", "deployed_at": NOW.isoformat()})
        res = client.get(f"/api/deployments/{res.json()['id']}/correlation", params=params)
        assert res.status_code == 400


# ── Vercel webhook ────────────────────────────────────────────────────────────

class TestVercelWebhook:
    def test_valid_webhook_records_deployment(self, engine):
        body = make_vercel_body()
        res = client.post("/webhooks/vercel", content=body, headers={"x-vercel-signature": make_signature(body)})
        assert res.status_code == 200
        assert res.json() == {"ok": True}

        [summary] = client.get("/api/deployments", params={"product": "storefront", "days": 3650}).json()
        assert summary["deployment"]["commit_hash"] == "9f8e7d6c"
        assert summary["deployment"]["deployed_by"] == "vercel-auto"

    def test_invalid_signature_answers_200_with_error(self, engine):
        body = make_vercel_body()
        res = client.post("/webhooks/vercel", content=body, headers={"x-vercel-signature": "deadbeef"})
        assert res.status_code == 200
        assert res.json() == {"error": "Invalid signature"}

    def test_unmapped_project_is_skipped(self, engine):
        body = make_vercel_body(project="marketing-site")
        res = client.post("/webhooks/vercel", content=body, headers={"x-vercel-signature": make_signature(body)})
        assert res.json() == {"ok": True, "skipped": True}

    def test_deeply_nested_webhook_body_ignored(self, engine):
        body = b'{"payload": ' + b"[" * 100_000 + b"]" * 100_000 + b"}"
        res = client.post("/webhooks/vercel", content=body, headers={"x-vercel-signature": make_signature(body)})
        assert res.status_code == 200
        assert res.json() == {"ok": True}

    def test_missing_secret_discards_webhook(self, engine):
        engine.settings.vercel_webhook_secret = None
        body = make_vercel_body()
        res = client.post("/webhooks/vercel", content=body, headers={"x-vercel-signature": make_signature(body)})
        assert res.json() == {"ok": True}
        assert client.get("/api/deployments", params={"days": 3650}).json() == []
