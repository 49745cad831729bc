"""Pytest configuration and fixtures.

Provides client fixtures over the in-memory gateway, environment isolation,
and logging configuration. Fixtures marked autouse apply to every test.
"""

from __future__ import annotations

from contextlib import suppress
import logging
import os

import pytest

from quarry.config import Config
from quarry.gateway.memory import InMemoryGateway
from quarry.warehouse import Warehouse
from tests.helpers import DETERMINISTIC_POLICY, FAST_WAIT_POLICY, FakeClock

# =============================================================================
# Client Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway(default_page_size=2)


@pytest.fixture
def config(clock: FakeClock) -> Config:
    return Config(
        project_id="test-project",
        retry=DETERMINISTIC_POLICY,
        query_wait=FAST_WAIT_POLICY,
        clock=clock,
    )


@pytest.fixture
def warehouse(config: Config, gateway: InMemoryGateway) -> Warehouse:
    return Warehouse(config, gateway=gateway)


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Each test starts with the one-time .env load still pending, so opted-in
    tests see their own file. Opt-out: @pytest.mark.allow_dotenv
    """
    monkeypatch.setattr("quarry.config._DOTENV_LOADED", False)
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_quarry_env(request, monkeypatch):
    """Clear QUARRY_* variables so the outer environment cannot leak in.

    Opt-out: @pytest.mark.allow_env_pollution
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return
    for key in list(os.environ.keys()):
        if key.startswith("QUARRY_"):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
