from __future__ import annotations

import shutil
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import pytest
import structlog

_SETTINGS_ENV = (
    "HARVEST_USERNAME",
    "HARVEST_ACCESS_TOKEN",
    "HARVEST_CUTOFF",
    "HARVEST_PACKAGE_FILTER",
    "HARVEST_OUTPUT_ROOT",
    "HARVEST_REPOS_FILE",
    "HARVEST_CLONE_ROOT",
    "HARVEST_MANIFEST_PATH",
    "HARVEST_SEARCH_ROOTS",
    "HARVEST_MAX_WORKERS",
    "HARVEST_CONFIG_PATH",
    "GITHUB_USERNAME",
    "GITHUB_ACCESS_TOKEN",
    "BEFORE_DATE",
    "PACKAGE_INFIX",
    "MOVING_DIR",
)


@pytest.fixture(scope="session", autouse=True)
def uncached_loggers() -> None:
    """Keep module loggers visible to ``structlog.testing.capture_logs``."""
    structlog.configure(cache_logger_on_first_use=False)


@pytest.fixture
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run from an empty directory with no harvest variables set."""
    for name in _SETTINGS_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def snapshot_tree(root: Path) -> Dict[str, bytes]:
    """Relative path -> file bytes for every file under ``root``."""
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


def write_files(root: Path, files: Dict[str, str]) -> None:
    for relative, content in files.items():
        target = root / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)


class GitFixture:
    """Builds a local repository with commits at chosen timestamps."""

    def __init__(self, path: Path) -> None:
        from git import Actor, Repo

        self.path = path
        self.repo = Repo.init(path)
        self.actor = Actor("Fixture Bot", "fixture@example.com")

    def commit(self, files: Dict[str, str], when: datetime, message: Optional[str] = None) -> str:
        write_files(self.path, files)
        self.repo.index.add([str(self.path / relative) for relative in files])
        stamp = f"{int(when.timestamp())} +0000"
        commit = self.repo.index.commit(
            message or f"commit at {when.isoformat()}",
            author=self.actor,
            committer=self.actor,
            author_date=stamp,
            commit_date=stamp,
        )
        return commit.hexsha

    def rename_branch(self, name: str) -> None:
        self.repo.git.branch("-M", name)

    def branch(self, name: str) -> None:
        self.repo.git.checkout("-b", name)

    def checkout(self, name: str) -> None:
        self.repo.git.checkout(name)


@pytest.fixture
def git_fixture(tmp_path: Path):
    if shutil.which("git") is None:
        pytest.skip("git executable not available")

    def factory(name: str, history: Iterable[Tuple[datetime, Dict[str, str]]]) -> GitFixture:
        fixture = GitFixture(tmp_path / "remotes" / name)
        for when, files in history:
            fixture.commit(files, when)
        fixture.rename_branch("main")
        return fixture

    return factory


@pytest.fixture
def tree_snapshot():
    return snapshot_tree


@pytest.fixture
def make_files():
    return write_files
