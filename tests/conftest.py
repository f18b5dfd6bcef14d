"""Shared fixtures for the devcontrol test suite.

Session tests start real processes through /bin/sh, so they only run on
POSIX hosts.
"""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio

from devcontrol.config import ConfigStore
from devcontrol.handlers import ToolHandlers
from devcontrol.terminal import SessionManager
from tests.utils import SHELL


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def manager():
    """A fresh SessionManager; any leftover sessions are killed afterwards."""
    mgr = SessionManager(default_shell=SHELL, terminate_grace=0.5)
    yield mgr
    await mgr.shutdown()


@pytest.fixture
def config_store(tmp_path: Path) -> ConfigStore:
    store = ConfigStore(tmp_path / "config" / "config.json")
    store.set("default_shell", SHELL)
    return store


@pytest.fixture
def handlers(manager: SessionManager, config_store: ConfigStore) -> ToolHandlers:
    return ToolHandlers(manager, config_store)
