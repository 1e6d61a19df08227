import sys
from pathlib import Path

import pytest

FAKE_ENGINE = Path(__file__).parent / "fake_engine.py"


@pytest.fixture
def engine_command() -> list[str]:
    """argv that starts the fake UCI engine with the current interpreter."""
    return [sys.executable, str(FAKE_ENGINE)]


@pytest.fixture
def engine_mode(monkeypatch):
    """Select the fake engine's behaviour for processes started by this test."""

    def _set(mode: str) -> None:
        monkeypatch.setenv("FAKE_ENGINE_MODE", mode)

    _set("normal")
    return _set


@pytest.fixture
def engine_log(monkeypatch, tmp_path) -> Path:
    """File the fake engine appends every received command to."""
    path = tmp_path / "engine-commands.log"
    monkeypatch.setenv("FAKE_ENGINE_LOG", str(path))
    return path
