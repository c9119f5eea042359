"""Test health check endpoint and error envelope."""

from fastapi.testclient import TestClient

from app.main import app

client = TestClient(app)


def test_health_check():
    """Test that /health returns 200 with status ok."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"


def test_chat_route_is_mounted_under_v1():
    """Unauthenticated call reaches the endpoint and gets the JSON error envelope."""
    response = client.post("/v1/chat/context", json={})
    assert response.status_code == 401
    assert set(response.json()) == {"error"}
