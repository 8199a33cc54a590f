"""Pytest configuration and shared fixtures."""

import os
import sys
from pathlib import Path

import httpx
import pytest

# Ensure source tree is importable without editable install
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


def pytest_configure(config):
    """Configure pytest markers and environment for tests."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")

    # These MUST override any developer shell/.env values to keep the test run deterministic.
    os.environ["ENVIRONMENT"] = "test"
    os.environ["CHAT_URL"] = "http://test/functions/v1/bodhit-chat"
    os.environ["CHAT_API_KEY"] = "test-key"
    os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

    from bodhit.config import reset_settings_cache

    reset_settings_cache()


@pytest.fixture(autouse=True)
def block_external_http(monkeypatch):
    """Fail the fast lane if code tries to hit the public internet.

    Mocked clients in the suite talk to the allowed ``test`` host, so only
    requests aimed at real hosts are rejected.
    """

    allowed_hosts = {"test", "testserver", "localhost", "127.0.0.1"}

    # Both client.request and client.stream end up in send.
    async def _async_guard(self, request, *args, **kwargs):  # type: ignore[no-untyped-def]
        u = request.url
        if u.scheme in {"http", "https"} and (u.host or "") not in allowed_hosts:
            raise RuntimeError(f"External HTTP blocked in tests: {u!s}")
        return await _orig_async_send(self, request, *args, **kwargs)

    _orig_async_send = httpx.AsyncClient.send
    monkeypatch.setattr(httpx.AsyncClient, "send", _async_guard, raising=True)

    yield


def pytest_sessionfinish(session, exitstatus):  # noqa: ARG001
    """Best-effort teardown for the global async engine."""
    try:
        import asyncio

        from bodhit.storage.database import shutdown_async_db

        asyncio.run(shutdown_async_db())
    except Exception:
        # Never fail the test run during teardown.
        return


@pytest.fixture
def anyio_backend() -> str:
    """Run anyio tests on asyncio (SQLAlchemy/asyncio-based stack)."""
    return "asyncio"


@pytest.fixture
def intake_text() -> str:
    return (
        "Project idea: Todo app with reminders\n"
        "Tech stack: React + TypeScript\n"
        "Skill level: beginner\n"
        "Timeline: 4 weeks"
    )
