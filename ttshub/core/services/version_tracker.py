"""
Version tracker — compare the local checkout with its remote.

An update check never fails hard: when the remote is unreachable the
previous result is returned marked ``stale`` so the operator still sees
what was known.
"""

from __future__ import annotations

import logging
import threading

from ttshub.adapters.base import CommandRunner
from ttshub.adapters.vcs.git import (
    is_checkout,
    parse_ls_remote,
    parse_rev_parse,
    revisions_match,
)
from ttshub.core.errors import CommandFailed, ErrorKind, InvalidTarget
from ttshub.core.models.command import GitPull, LsRemote, RevParse
from ttshub.core.models.version import RepoVersionInfo

logger = logging.getLogger(__name__)

VERSION_TAG = "update"


class VersionTracker:
    """Detect and apply upstream updates of the target repository."""

    def __init__(
        self,
        runner: CommandRunner,
        *,
        remote: str = "origin",
        ref: str = "HEAD",
        last: RepoVersionInfo | None = None,
    ) -> None:
        self._runner = runner
        self._remote = remote
        self._ref = ref
        self._last = last
        self._lock = threading.Lock()

    @property
    def last(self) -> RepoVersionInfo | None:
        with self._lock:
            return self._last

    def _require_checkout(self, repo: str | None) -> str:
        if not is_checkout(repo):
            raise InvalidTarget(f"Not a repository checkout: {repo or '(not set)'}")
        return str(repo)

    def local_revision(self, repo: str) -> str:
        result = self._runner.run(RevParse(repo=repo), source_tag=VERSION_TAG)
        if not result.success:
            raise CommandFailed(
                f"Could not read local revision: {result.message}",
                exit_code=result.exit_code,
                log_tail=result.stderr_tail,
            )
        return parse_rev_parse(result.stdout_tail)

    def check_update(self, repo: str | None) -> RepoVersionInfo:
        """Compare local HEAD with the remote ref.

        Raises:
            InvalidTarget: ``repo`` is not a checkout.
            CommandFailed: the local revision could not be read.
        """
        repo = self._require_checkout(repo)
        local = self.local_revision(repo)

        remote_result = self._runner.run(
            LsRemote(repo=repo, remote=self._remote, ref=self._ref),
            source_tag=VERSION_TAG,
        )
        remote = parse_ls_remote(remote_result.stdout_tail) if remote_result.success else None

        with self._lock:
            if remote is None:
                reason = remote_result.message or f"{self._ref} not found on {self._remote}"
                logger.warning("Update check could not reach remote: %s", reason)
                # The last full comparison is kept intact, only flagged stale.
                previous = self._last or RepoVersionInfo(local_revision=local)
                info = previous.model_copy(update={
                    "stale": True,
                    "error_kind": ErrorKind.NETWORK_ERROR,
                    "message": f"Remote unreachable: {reason}",
                })
                self._last = info
                return info

            has_update = not revisions_match(local, remote)
            info = RepoVersionInfo(
                local_revision=local,
                remote_revision=remote,
                has_update=has_update,
                message="Update available" if has_update else "Up to date",
            )
            self._last = info

        logger.info("Update check: local=%s remote=%s update=%s", local[:7], remote[:7], has_update)
        return info

    def pull(self, repo: str | None) -> RepoVersionInfo:
        """Fast-forward the checkout to its upstream.

        Raises:
            InvalidTarget: ``repo`` is not a checkout.
            CommandFailed: ``git pull`` failed (local changes, diverged...).
        """
        repo = self._require_checkout(repo)
        result = self._runner.run(GitPull(repo=repo), source_tag=VERSION_TAG)
        if not result.success:
            raise CommandFailed(
                f"Pull failed: {result.message}",
                exit_code=result.exit_code,
                log_tail=result.stderr_tail,
            )

        local = self.local_revision(repo)
        with self._lock:
            previous = self._last or RepoVersionInfo()
            info = previous.model_copy(update={
                "local_revision": local,
                "has_update": False,
                "stale": False,
                "error_kind": None,
                "message": "Updated to latest revision",
            })
            self._last = info
        logger.info("Pulled %s to %s", repo, local[:7])
        return info
