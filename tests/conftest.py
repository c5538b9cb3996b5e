from collections.abc import Iterator
from pathlib import Path

import pytest

from rootmux.core.bus import Bus
from rootmux.core.config import ConfigManager


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def bus_context() -> Iterator[None]:
    token = Bus.provide(Bus())
    try:
        yield
    finally:
        Bus.restore(token)


@pytest.fixture(autouse=True)
def config_context(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[ConfigManager]:
    home = tmp_path / "home"
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.setenv("ROOTMUX_TEST_HOME", str(home))
    monkeypatch.delenv("ROOTMUX_CONFIG_CONTENT", raising=False)

    manager = ConfigManager(directory=str(project))
    token = ConfigManager.provide(manager)
    try:
        yield manager
    finally:
        ConfigManager.restore(token)
