import pytest
from fastapi.testclient import TestClient

from worker.main import create_app


@pytest.fixture
def client(test_settings):
    with TestClient(create_app(test_settings)) as client:
        yield client


def test_health_check_success(client: TestClient):
    """Test health check endpoint returns correct format."""
    response = client.get("/v1/healthz")

    assert response.status_code == 200

    data = response.json()
    assert data["ok"] is True

    health_data = data["data"]
    assert health_data["ok"] is True
    assert health_data["version"] == "1.0.0"
    assert health_data["database"]["connected"] is True
    assert health_data["processor"]["enabled"] is False


def test_health_check_response_structure(client: TestClient):
    """Test health check response envelope structure."""
    response = client.get("/v1/healthz")

    data = response.json()

    required_keys = ["ok", "data", "message", "request_id"]
    for key in required_keys:
        assert key in data

    assert "X-Request-ID" in response.headers


def test_health_check_reports_running_processor(test_settings):
    settings = test_settings.model_copy(
        update={"processor_enabled": True, "initial_scan_delay_s": 60.0}
    )

    with TestClient(create_app(settings)) as client:
        processor = client.get("/v1/healthz").json()["data"]["processor"]

    assert processor["enabled"] is True
    assert processor["running"] is True
    assert processor["status"] == "healthy"
    assert processor["capacity"] == 5
    assert processor["metrics"]["total_processed"] == 0
