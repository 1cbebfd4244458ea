"""
Fixtures for proxy service tests: a Gemini direct transport over httpx.MockTransport.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from deeptutor.api.app import create_app
from deeptutor.gateway.transports import DirectTransport


@pytest.fixture
def backend_handler():
    """Default backend: one candidate with a text part. Tests may replace handler."""
    state = {"handler": lambda request: httpx.Response(
        200, json={"candidates": [{"content": {"parts": [{"text": "Hello from the backend"}]}}]}
    )}
    return state


@pytest.fixture
def make_client(backend_handler):
    """Factory for a TestClient whose app forwards to the mocked backend."""

    def _make(api_key="server-key"):
        http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: backend_handler["handler"](request))
        )
        transport = DirectTransport(
            provider="gemini",
            api_key=api_key,
            timeout_seconds=5,
            base_url="https://backend.test/v1beta",
            http_client=http_client,
        )
        return TestClient(create_app(transport=transport))

    return _make


@pytest.fixture
def client(make_client):
    """Create test client (runs lifespan for app.state)."""
    with make_client() as tc:
        yield tc
