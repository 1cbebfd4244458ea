"""
Tests for health endpoint.
"""

from deeptutor.shared.config import settings


def test_health_returns_correct_structure(client):
    """GET /health returns JSON with all required status fields."""
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()

    assert data["status"] == "healthy"
    assert data["provider"] == "gemini"
    assert data["backend_configured"] is True
    assert isinstance(data["uptime_seconds"], (int, float))


def test_health_degraded_without_credential(make_client, monkeypatch):
    """No server-side key means every generation fails, so the service is degraded."""
    monkeypatch.setattr(settings.backend, "gemini_api_key", None)

    with make_client(api_key=None) as client:
        data = client.get("/health").json()

    assert data["status"] == "degraded"
    assert data["backend_configured"] is False


def test_root_reports_service(client):
    response = client.get("/")
    assert response.json() == {"service": "deeptutor", "status": "running"}


def test_cors_headers_present(client):
    """CORS headers present for configured origins."""
    origin = settings.api.cors_origins[0]
    response = client.get("/health", headers={"Origin": origin})
    assert response.status_code == 200
    assert response.headers.get("access-control-allow-origin") == origin
