import json
import logging

from fastapi.testclient import TestClient

from app.core.config import settings
from app.infrastructure.logging.context import reset_site_id, set_site_id
from app.infrastructure.logging.json_formatter import JsonLogFormatter
from app.interfaces.api import health
from main import app


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("app.publishing", logging.ERROR, __file__, 1, "publish_failed site_id=%s", (3,), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_site_context_and_publish_fields() -> None:
    token = set_site_id("3")
    try:
        payload = json.loads(JsonLogFormatter().format(_record(version="17", error_code="storage_upload_failed")))
    finally:
        reset_site_id(token)

    assert payload["message"] == "publish_failed site_id=3"
    assert payload["site_id"] == "3"
    assert payload["version"] == "17"
    assert payload["error_code"] == "storage_upload_failed"
    assert payload["level"] == "ERROR"
    assert "artifact" not in payload


def test_ready_requires_content_store_coordinator_and_storage(monkeypatch) -> None:
    monkeypatch.setattr(health, "_probe_content_store", lambda: {"status": "up", "latency_ms": 1.0})
    monkeypatch.setattr(
        health, "_probe_coordinator", lambda: {"status": "up", "latency_ms": 1.0, "worker_alive": False}
    )
    monkeypatch.setattr(settings, "supabase_url", "https://project.supabase.co")
    monkeypatch.setattr(settings, "supabase_service_role_key", "service-key")
    client = TestClient(app)

    ready = client.get("/ready")
    assert ready.status_code == 200
    assert ready.json()["services"]["coordinator"]["lock_policy"] == "fail_closed"

    monkeypatch.setattr(
        health, "_probe_coordinator", lambda: {"status": "down", "latency_ms": None, "worker_alive": False}
    )
    not_ready = client.get("/ready")
    assert not_ready.status_code == 503
    assert not_ready.json()["status"] == "not_ready"

    health_response = client.get("/health")
    assert health_response.status_code == 200
    assert health_response.json()["status"] == "degraded"
