"""
Tests for the repository version tracker.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from ttshub.adapters.mock import MockRunner
from ttshub.core.errors import CommandFailed, ErrorKind, InvalidTarget
from ttshub.core.services.version_tracker import VersionTracker

LOCAL = "7f8a9b1c0d2e3f405162738495a6b7c8d9e0f1a2"
REMOTE = "3c2d1e0f9a8b7c6d5e4f3a2b1c0d9e8f7a6b5c4d"


@pytest.fixture
def tracker(mock_runner: MockRunner) -> VersionTracker:
    return VersionTracker(mock_runner)


class TestCheckUpdate:
    def test_update_available(self, mock_runner: MockRunner, tracker: VersionTracker, checkout: Path):
        mock_runner.set_result("rev_parse", stdout=[LOCAL])
        mock_runner.set_result("ls_remote", stdout=[f"{REMOTE}\tHEAD"])

        info = tracker.check_update(str(checkout))
        assert info.has_update
        assert info.local_revision.startswith("7f8a9b1")
        assert info.remote_revision.startswith("3c2d1e0")
        assert not info.stale
        assert tracker.last == info

    def test_up_to_date_with_short_hash(
        self, mock_runner: MockRunner, tracker: VersionTracker, checkout: Path
    ):
        mock_runner.set_result("rev_parse", stdout=["7f8a9b1"])
        mock_runner.set_result("ls_remote", stdout=[f"{LOCAL}\tHEAD"])
        info = tracker.check_update(str(checkout))
        assert not info.has_update
        assert info.message == "Up to date"

    def test_remote_unreachable_returns_stale(
        self, mock_runner: MockRunner, tracker: VersionTracker, checkout: Path
    ):
        mock_runner.set_result("rev_parse", stdout=[LOCAL])
        mock_runner.set_result("ls_remote", stdout=[f"{REMOTE}\tHEAD"])
        first = tracker.check_update(str(checkout))

        mock_runner.set_failure("ls_remote", 128, "fatal: unable to access remote")
        info = tracker.check_update(str(checkout))
        assert info.stale
        assert info.error_kind == ErrorKind.NETWORK_ERROR
        assert "unable to access" in info.message
        # Previous knowledge is kept.
        assert info.remote_revision == first.remote_revision
        assert info.has_update

    def test_stale_result_keeps_previous_comparison(
        self, mock_runner: MockRunner, tracker: VersionTracker, checkout: Path
    ):
        mock_runner.queue_result("rev_parse", stdout=[LOCAL])
        mock_runner.queue_result("rev_parse", stdout=[REMOTE])
        mock_runner.set_result("ls_remote", stdout=[f"{REMOTE}\tHEAD"])
        first = tracker.check_update(str(checkout))

        mock_runner.set_failure("ls_remote", 128, "Could not resolve host")
        info = tracker.check_update(str(checkout))
        assert info.stale
        assert info.local_revision == first.local_revision == LOCAL
        assert info.remote_revision == REMOTE
        assert info.has_update

    def test_remote_unreachable_without_history(
        self, mock_runner: MockRunner, tracker: VersionTracker, checkout: Path
    ):
        mock_runner.set_result("rev_parse", stdout=[LOCAL])
        mock_runner.set_failure("ls_remote", 128, "Could not resolve host")
        info = tracker.check_update(str(checkout))
        assert info.stale
        assert info.remote_revision is None
        assert info.local_revision == LOCAL

    def test_not_a_checkout(self, tracker: VersionTracker, tmp_path: Path):
        with pytest.raises(InvalidTarget):
            tracker.check_update(str(tmp_path))
        with pytest.raises(InvalidTarget):
            tracker.check_update(None)

    def test_local_revision_failure(
        self, mock_runner: MockRunner, tracker: VersionTracker, checkout: Path
    ):
        mock_runner.set_failure("rev_parse", 128, "fatal: bad revision")
        with pytest.raises(CommandFailed):
            tracker.check_update(str(checkout))

    def test_uses_configured_remote(self, mock_runner: MockRunner, checkout: Path):
        mock_runner.set_result("rev_parse", stdout=[LOCAL])
        mock_runner.set_result("ls_remote", stdout=[f"{LOCAL}\trefs/heads/main"])
        VersionTracker(mock_runner, remote="upstream", ref="main").check_update(str(checkout))
        cmd = mock_runner.calls("ls_remote")[0].command
        assert (cmd.remote, cmd.ref) == ("upstream", "main")


class TestPull:
    def test_pull_clears_update(self, mock_runner: MockRunner, tracker: VersionTracker, checkout: Path):
        mock_runner.queue_result("rev_parse", stdout=[LOCAL])
        mock_runner.queue_result("rev_parse", stdout=[REMOTE])
        mock_runner.set_result("ls_remote", stdout=[f"{REMOTE}\tHEAD"])

        assert tracker.check_update(str(checkout)).has_update
        info = tracker.pull(str(checkout))
        assert not info.has_update
        assert info.local_revision == REMOTE
        assert info.message == "Updated to latest revision"
        assert mock_runner.calls("git_pull")[0].command.ff_only

        # A fresh check now agrees.
        assert not tracker.check_update(str(checkout)).has_update

    def test_pull_failure(self, mock_runner: MockRunner, tracker: VersionTracker, checkout: Path):
        mock_runner.set_failure("git_pull", 1, "fatal: Not possible to fast-forward, aborting.")
        with pytest.raises(CommandFailed) as exc:
            tracker.pull(str(checkout))
        assert "fast-forward" in exc.value.message
        assert exc.value.exit_code == 1
