"""
Tests for CLI commands — run against the mock runner.
"""

from __future__ import annotations

import json
from pathlib import Path

from click.testing import CliRunner

from ttshub.main import cli


def _invoke(hub_yml: Path, *args: str):  # type: ignore[no-untyped-def]
    runner = CliRunner()
    return runner.invoke(cli, ["--config", str(hub_yml), "--mock", *args])


class TestCLIGlobal:
    def test_missing_config_file(self, tmp_path: Path):
        runner = CliRunner()
        result = runner.invoke(cli, ["--config", str(tmp_path / "nope.yml"), "--mock", "env"])
        assert result.exit_code == 1
        assert "Config file not found" in result.output


class TestPipelineCommands:
    def test_steps(self, hub_yml: Path):
        result = _invoke(hub_yml, "pipeline", "steps")
        assert result.exit_code == 0
        assert "clone-repo" in result.output
        assert "download-model" in result.output

    def test_run_then_status(self, hub_yml: Path, tmp_path: Path):
        result = _invoke(hub_yml, "pipeline", "run")
        assert result.exit_code == 0, result.output
        assert "All steps completed" in result.output
        assert "git clone https://example.com/index-tts.git" in result.output
        assert (tmp_path / "index-tts" / ".git").is_dir()

        status = _invoke(hub_yml, "pipeline", "status")
        assert status.exit_code == 0
        assert "Last run: completed" in status.output

    def test_run_json(self, hub_yml: Path):
        result = _invoke(hub_yml, "pipeline", "run", "--json")
        assert result.exit_code == 0
        report = json.loads(result.output)
        assert report["status"] == "completed"
        assert len(report["outcomes"]) == 9

    def test_run_failure_exits_nonzero(self, hub_yml: Path, tmp_path: Path):
        (tmp_path / "index-tts").mkdir()
        (tmp_path / "index-tts" / "notes.txt").write_text("x")
        result = _invoke(hub_yml, "pipeline", "run")
        assert result.exit_code == 1
        assert "Clone repository failed" in result.output


class TestServiceCommands:
    def test_status_when_stopped(self, hub_yml: Path):
        result = _invoke(hub_yml, "service", "status", "--json")
        assert result.exit_code == 0
        assert json.loads(result.output)["state"] == "stopped"

    def test_stop_when_not_running(self, hub_yml: Path):
        result = _invoke(hub_yml, "service", "stop")
        assert result.exit_code == 0
        assert "not running" in result.output

    def test_start_before_provisioning(self, hub_yml: Path):
        result = _invoke(hub_yml, "service", "start")
        assert result.exit_code == 1
        assert "❌" in result.output


class TestUpdateCommands:
    def test_check_before_clone(self, hub_yml: Path):
        result = _invoke(hub_yml, "update", "check")
        assert result.exit_code == 1
        assert "Not a repository checkout" in result.output

    def test_check_after_clone(self, hub_yml: Path):
        _invoke(hub_yml, "pipeline", "run")
        result = _invoke(hub_yml, "update", "check", "--json")
        assert result.exit_code == 0
        assert "has_update" in json.loads(result.output)


class TestConfigCommands:
    def test_set_and_show(self, hub_yml: Path):
        result = _invoke(hub_yml, "config", "set", "port", "7861")
        assert result.exit_code == 0, result.output

        shown = _invoke(hub_yml, "config", "show", "--json")
        data = json.loads(shown.output)
        assert data["settings"]["service"]["port"] == 7861
        assert data["hub"]["service"]["port"] == 7860

    def test_set_extra_flags(self, hub_yml: Path):
        _invoke(hub_yml, "config", "set", "extra_flags", "--verbose --seed 1")
        data = json.loads(_invoke(hub_yml, "config", "show", "--json").output)
        assert data["settings"]["service"]["extra_flags"] == ["--verbose", "--seed", "1"]

    def test_set_bad_value(self, hub_yml: Path):
        result = _invoke(hub_yml, "config", "set", "use_deepspeed", "maybe")
        assert result.exit_code == 1

    def test_set_unknown_key(self, hub_yml: Path):
        result = _invoke(hub_yml, "config", "set", "colour", "blue")
        assert result.exit_code == 1
        assert "Unknown setting" in result.output

    def test_show_yaml(self, hub_yml: Path):
        result = _invoke(hub_yml, "config", "show")
        assert result.exit_code == 0
        assert "# hub.yml" in result.output
        assert "example.com/index-tts.git" in result.output


class TestEnvAndHistory:
    def test_env_json(self, hub_yml: Path):
        result = _invoke(hub_yml, "env", "--json")
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["tools"]["git_installed"] is True
        assert "system" in data

    def test_env_text(self, hub_yml: Path):
        result = _invoke(hub_yml, "env")
        assert result.exit_code == 0
        assert "Tools" in result.output

    def test_history(self, hub_yml: Path):
        assert "No history yet" in _invoke(hub_yml, "history").output
        _invoke(hub_yml, "pipeline", "run")
        result = _invoke(hub_yml, "history", "--kind", "pipeline")
        assert result.exit_code == 0
        assert "completed" in result.output
