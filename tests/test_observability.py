"""
Tests for logging setup.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from ttshub.core.observability.logging_config import (
    ENV_LEVEL,
    resolve_level,
    setup_from_env,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    for h in handlers:
        root.addHandler(h)
    root.setLevel(level)


class TestResolveLevel:
    def test_flags_win(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv(ENV_LEVEL, "ERROR")
        assert resolve_level(debug=True) == "DEBUG"
        assert resolve_level(verbose=True) == "INFO"
        assert resolve_level(quiet=True) == "ERROR"

    def test_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv(ENV_LEVEL, "INFO")
        assert resolve_level() == "INFO"

    def test_default(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv(ENV_LEVEL, raising=False)
        assert resolve_level() == "WARNING"


class TestSetupLogging:
    def test_console_level(self):
        setup_logging("INFO")
        root = logging.getLogger()
        assert root.level == logging.INFO
        assert len(root.handlers) == 1

    def test_unknown_level_falls_back(self):
        setup_logging("LOUD")
        assert logging.getLogger().level == logging.WARNING

    def test_repeated_setup_does_not_stack_handlers(self):
        setup_logging("INFO")
        setup_logging("DEBUG")
        assert len(logging.getLogger().handlers) == 1

    def test_log_file(self, tmp_path: Path):
        log_file = tmp_path / "hub.log"
        setup_logging("ERROR", log_file=str(log_file), log_file_level="DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        logging.getLogger("ttshub.test").debug("to the file only")
        for h in logging.getLogger().handlers:
            h.flush()
        assert "to the file only" in log_file.read_text()

    def test_third_party_quieted(self):
        setup_logging("INFO")
        assert logging.getLogger("werkzeug").level == logging.WARNING

    def test_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        log_file = tmp_path / "env.log"
        monkeypatch.setenv("TTSHUB_LOG_FILE", str(log_file))
        setup_from_env("WARNING")
        logging.getLogger("ttshub.test").warning("hello")
        for h in logging.getLogger().handlers:
            h.flush()
        assert "hello" in log_file.read_text()
