"""Shared fixtures for integration tests.

Only the network is faked: every client gets an ``httpx.MockTransport``
driven by a ``mock_api.ScriptedHandler``.
"""

import httpx
import pytest
from mock_api import BASE_URL

from socket_sdk.settings import get_settings


@pytest.fixture
def make_client():
    def _make(handler, **kwargs):
        return httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler), **kwargs)

    return _make


@pytest.fixture(autouse=True)
def _socket_env(monkeypatch):
    """Keep real SOCKET_* variables and cached settings out of tests."""
    for name in ("SOCKET_API_TOKEN", "SOCKET_BASE_URL", "SOCKET_TIMEOUT", "SOCKET_RETRIES", "SOCKET_CONCURRENCY"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
