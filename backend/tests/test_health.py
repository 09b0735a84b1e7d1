from fastapi.testclient import TestClient

from app.core.config import settings
from app.main import create_app


def test_health_ok():
    app = create_app()
    client = TestClient(app)

    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("status") == "ok"


def test_health_live():
    app = create_app()
    client = TestClient(app)

    r = client.get("/health/live")
    assert r.status_code == 200
    assert r.json().get("status") == "live"


def test_health_ready_checks_db_and_redis(client):
    r = client.get("/health/ready")
    assert r.status_code == 200
    assert r.json().get("status") == "ready"


def test_responses_carry_request_id_and_security_headers(client):
    r = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert r.headers["X-Request-ID"] == "abc-123"
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"


def test_foreign_origin_cannot_write(client):
    r = client.post("/auth/verify-email", json={"token": "x"}, headers={"Origin": "https://evil.example.com"})
    assert r.status_code == 403
    assert r.json()["error_code"] == "forbidden"


def test_cron_maintenance_is_hidden_without_a_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", None)
    r = client.post("/health/cron/maintenance", headers={"X-Cron-Secret": "anything"})
    assert r.status_code == 404


def test_cron_maintenance_enqueues_once_per_interval(client, monkeypatch, enqueued):
    monkeypatch.setattr(settings, "cron_secret", "tick")

    r = client.post("/health/cron/maintenance", headers={"X-Cron-Secret": "wrong"})
    assert r.status_code == 403

    r = client.post("/health/cron/maintenance", headers={"X-Cron-Secret": "tick"})
    assert r.status_code == 200
    assert r.json()["enqueued"] is True
    assert [(j["queue"], j["func"]) for j in enqueued] == [(settings.rq_queue_default, "purge_stale_records_job")]

    r = client.post("/health/cron/maintenance", headers={"X-Cron-Secret": "tick"})
    assert r.json() == {"ok": True, "enqueued": False, "reason": "locked"}
    assert len(enqueued) == 1
