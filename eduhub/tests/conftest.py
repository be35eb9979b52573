"""
Pytest configuration for EduHub tests.

Why: Force AnyIO to use the asyncio backend; the session core is built on a
single asyncio event loop.
"""
import pytest


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _dev_environment(monkeypatch: pytest.MonkeyPatch):
    """Keep tests on permissive dev config regardless of the host env."""
    monkeypatch.setenv("EDUHUB_ENV", "dev")
    for var in ("IDENTITY_BACKEND", "PROFILE_BACKEND", "CLIENT_STORAGE_BACKEND", "EDUHUB_TRUST_PROXY"):
        monkeypatch.delenv(var, raising=False)
