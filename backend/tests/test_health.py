from fastapi.testclient import TestClient

from lexdraft.api.routers.system import reset_ready_cache
from lexdraft.config import settings
from lexdraft.main import app


def test_root_reports_service_banner() -> None:
    with TestClient(app) as client:
        response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"service": "lexdraft-backend", "status": "running"}


def test_health_endpoint() -> None:
    with TestClient(app) as client:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


def test_ready_endpoint_checks_database_and_storage() -> None:
    with TestClient(app) as client:
        response = client.get("/ready")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    assert payload["checks"]["db"]["ok"] is True
    assert payload["checks"]["storage"] == {"ok": True, "backend": "local"}
    assert payload["checks"]["llm"]["model"] == settings.openai_model


def test_ready_endpoint_reports_missing_llm_key_without_failing() -> None:
    settings.openai_api_key = ""
    with TestClient(app) as client:
        response = client.get("/ready")
    assert response.status_code == 200
    assert response.json()["checks"]["llm"]["ok"] is False


def test_ready_endpoint_fails_for_unknown_storage_backend() -> None:
    with TestClient(app) as client:
        settings.storage_backend = "ftp"
        reset_ready_cache()
        response = client.get("/ready")
    assert response.status_code == 503
    payload = response.json()
    assert payload["status"] == "not_ready"
    assert payload["checks"]["storage"]["ok"] is False


def test_ready_endpoint_caches_result() -> None:
    with TestClient(app) as client:
        first = client.get("/ready")
        settings.storage_backend = "ftp"
        second = client.get("/ready")
    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json() == first.json()
