"""
Clone worker.

Each repository row is cloned fresh into its own folder under the clone root
and, when a cutoff is configured, rewound to the newest commit that predates
it. Workers only ever touch their own folder, so many of them can run at the
same time without coordination.
"""
from __future__ import annotations

import base64
import os
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Mapping, Optional
from urllib.parse import urlsplit

from git import Commit, GitCommandError, RemoteProgress, Repo

from ..ingestion import RepoDescriptor
from ..logger import get_logger

log = get_logger(__name__)

_CLONE_ENV = {"GIT_TERMINAL_PROMPT": "0"}


class CloneError(RuntimeError):
    """A single repository could not be prepared; other workers are unaffected."""

    def __init__(self, descriptor: RepoDescriptor, stage: str, message: str) -> None:
        super().__init__(f"{descriptor.destination_name}: {stage} failed: {message}")
        self.descriptor = descriptor
        self.stage = stage


@dataclass(frozen=True)
class CloneResult:
    """A clone that is ready for collection."""

    descriptor: RepoDescriptor
    local_directory: Path
    revision: Optional[str] = None


class _LoggingProgress(RemoteProgress):
    """Forwards git's clone progress lines to the debug log."""

    def __init__(self, destination: str) -> None:
        super().__init__()
        self._destination = destination

    def update(self, op_code, cur_count, max_count=None, message=""):  # type: ignore[override]
        log.debug(
            "clone_progress",
            destination=self._destination,
            current=cur_count,
            total=max_count,
            message=message or None,
        )


def clone_environment(
    url: str,
    username: str,
    token: str,
    base: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Environment for a ``git clone`` of ``url``.

    Credentials for http(s) remotes travel as a basic-auth ``http.extraHeader``
    set through ``GIT_CONFIG_COUNT``. They live only in the git process
    environment and are never written to the clone's ``.git/config``. Entries
    already numbered in ``base`` (``os.environ`` by default) are kept.
    """
    env = dict(_CLONE_ENV)
    if urlsplit(url).scheme not in {"http", "https"} or not (username or token):
        return env
    base = os.environ if base is None else base
    index = int(base.get("GIT_CONFIG_COUNT") or 0)
    credentials = base64.b64encode(f"{username}:{token}".encode("utf-8")).decode("ascii")
    env["GIT_CONFIG_COUNT"] = str(index + 1)
    env[f"GIT_CONFIG_KEY_{index}"] = "http.extraHeader"
    env[f"GIT_CONFIG_VALUE_{index}"] = f"Authorization: Basic {credentials}"
    return env


def find_commit_before(repo: Repo, cutoff: datetime) -> Optional[Commit]:
    """Return the first commit from HEAD backwards committed strictly before ``cutoff``."""
    for commit in repo.iter_commits("HEAD"):
        if commit.committed_datetime < cutoff:
            return commit
    return None


class CloneWorker:
    """Clones one repository descriptor at a time."""

    def __init__(
        self,
        clone_root: Path,
        username: str = "",
        access_token: str = "",
        cutoff: Optional[datetime] = None,
    ) -> None:
        self.clone_root = clone_root
        self.username = username
        self.access_token = access_token
        self.cutoff = cutoff

    def target_directory(self, descriptor: RepoDescriptor) -> Path:
        return self.clone_root / descriptor.destination_name

    def run(self, descriptor: RepoDescriptor) -> CloneResult:
        """Clone ``descriptor`` and apply the cutoff; raises :class:`CloneError`."""
        target = self.target_directory(descriptor)
        self._remove_existing(descriptor, target)
        repo = self._clone(descriptor, target)
        try:
            revision = self._rewind(descriptor, repo, self.cutoff) if self.cutoff is not None else None
        finally:
            repo.close()
        return CloneResult(descriptor=descriptor, local_directory=target, revision=revision)

    def _redact(self, text: str) -> str:
        if self.access_token:
            text = text.replace(self.access_token, "***")
        return text

    def _remove_existing(self, descriptor: RepoDescriptor, target: Path) -> None:
        if not target.exists():
            return
        try:
            shutil.rmtree(target)
        except OSError as exc:
            raise CloneError(descriptor, "remove", str(exc)) from exc
        log.info("existing_clone_removed", destination=str(target))

    def _clone(self, descriptor: RepoDescriptor, target: Path) -> Repo:
        log.info(
            "clone_started",
            url=descriptor.url,
            destination=str(target),
            branch=descriptor.branch or "default",
        )
        options = {"branch": descriptor.branch} if descriptor.branch else {}
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            repo = Repo.clone_from(
                descriptor.url,
                target,
                progress=_LoggingProgress(descriptor.destination_name),
                env=clone_environment(descriptor.url, self.username, self.access_token),
                **options,
            )
        except (GitCommandError, OSError) as exc:
            raise CloneError(descriptor, "clone", self._redact(str(exc))) from exc
        log.info("clone_completed", url=descriptor.url, destination=str(target))
        return repo

    def _rewind(self, descriptor: RepoDescriptor, repo: Repo, cutoff: datetime) -> Optional[str]:
        try:
            commit = find_commit_before(repo, cutoff)
        except (GitCommandError, ValueError) as exc:
            raise CloneError(descriptor, "history", str(exc)) from exc

        if commit is None:
            log.warning(
                "no_commit_before_cutoff",
                destination=descriptor.destination_name,
                cutoff=cutoff.isoformat(),
            )
            return None

        log.info(
            "commit_before_cutoff",
            destination=descriptor.destination_name,
            cutoff=cutoff.isoformat(),
            commit=commit.hexsha,
            committed=commit.committed_datetime.isoformat(),
        )
        try:
            repo.git.checkout("--force", commit.hexsha)
        except GitCommandError as exc:
            raise CloneError(descriptor, "checkout", str(exc)) from exc
        try:
            repo.git.clean("-f", "-d")
        except GitCommandError as exc:
            raise CloneError(descriptor, "clean", str(exc)) from exc
        log.info("checkout_completed", destination=descriptor.destination_name, commit=commit.hexsha)
        return commit.hexsha
