"""Pytest configuration and fixtures."""

import pytest

from fakes import FakePlatform
from podgroup_operator import config, pod_manager


@pytest.fixture(autouse=True)
def reset_globals(monkeypatch):
    """Fresh configuration and pod manager registry for every test."""
    for var in ("OWNER_MAX_RETRIES", "OWNER_BASE_DELAY", "OWNER_MAX_DELAY", "DEFAULT_IMAGE"):
        monkeypatch.delenv(var, raising=False)
    config.reset_config()
    pod_manager.reset_registry()
    yield
    config.reset_config()
    pod_manager.reset_registry()


@pytest.fixture
def platform():
    """In-memory platform."""
    return FakePlatform()


@pytest.fixture
def no_sleep(monkeypatch):
    """Make owner set retry backoff instantaneous."""
    monkeypatch.setenv("OWNER_BASE_DELAY", "0")
    monkeypatch.setenv("OWNER_MAX_DELAY", "0")
