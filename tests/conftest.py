"""
Shared test fixtures and configuration.
"""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from ttshub.adapters.mock import MockRunner
from ttshub.core.config.loader import load_config
from ttshub.core.models.hub import HubConfig
from ttshub.core.services.log_bus import LogBus


@pytest.fixture
def bus() -> LogBus:
    return LogBus(history_size=500, subscriber_queue_size=100)


@pytest.fixture
def mock_runner(bus: LogBus) -> MockRunner:
    return MockRunner(bus)


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def checkout(tmp_path: Path) -> Path:
    """A directory that looks like a cloned repository."""
    repo = tmp_path / "index-tts"
    (repo / ".git").mkdir(parents=True)
    return repo


@pytest.fixture
def hub_yml(tmp_path: Path) -> Path:
    """A hub.yml with fast probe and debounce settings."""
    path = tmp_path / "hub.yml"
    path.write_text(textwrap.dedent("""\
        repository:
          url: https://example.com/index-tts.git
          dir: index-tts
        network:
          environment: overseas
        service:
          port: 7860
          probe_interval: 0.01
          probe_attempts: 5
          probe_timeout: 0.01
          stop_grace: 0.1
        debounce: 0
    """))
    return path


@pytest.fixture
def hub_config(hub_yml: Path) -> HubConfig:
    return load_config(hub_yml)
