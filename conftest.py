import pytest

from gateway.utils_tests.gateway_client import BACKEND_URL


@pytest.fixture
def backend_url(monkeypatch):
    """Point the forwarder at a fake backend that tests mock with respx."""
    monkeypatch.setattr("gateway.backend.forwarder.BACKEND_API_URL", BACKEND_URL)
    return BACKEND_URL
