"""
Per-repository progress tracking shared by clone threads and the collector.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional

from ..ingestion import RepoDescriptor

RepoState = Literal["queued", "cloning", "cloned", "failed", "collected"]


@dataclass
class RepoStatus:
    descriptor: RepoDescriptor
    state: RepoState = "queued"
    stage: Optional[str] = None
    error: Optional[str] = None
    revision: Optional[str] = None
    package: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)


@dataclass
class HarvestSummary:
    """End-of-run counts and the packages that made it into the manifest."""

    total: int
    cloned: int
    failed: int
    collected: int
    packages: List[str]
    manifest_path: Optional[str] = None
    failures: Dict[str, str] = field(default_factory=dict)


class StatusBoard:
    """Thread-safe registry of repository states keyed by destination name."""

    def __init__(self) -> None:
        self._statuses: Dict[str, RepoStatus] = {}
        self._lock = threading.Lock()

    def register(self, descriptor: RepoDescriptor) -> RepoStatus:
        status = RepoStatus(descriptor=descriptor)
        with self._lock:
            self._statuses[descriptor.destination_name] = status
        return status

    def get(self, destination_name: str) -> Optional[RepoStatus]:
        with self._lock:
            return self._statuses.get(destination_name)

    def list(self) -> List[RepoStatus]:
        with self._lock:
            return list(self._statuses.values())

    def _update(self, destination_name: str, **fields: object) -> None:
        with self._lock:
            status = self._statuses[destination_name]
            for name, value in fields.items():
                setattr(status, name, value)
            status.updated_at = time.time()

    def mark_cloning(self, destination_name: str) -> None:
        self._update(destination_name, state="cloning")

    def mark_cloned(self, destination_name: str, revision: Optional[str] = None) -> None:
        self._update(destination_name, state="cloned", revision=revision)

    def mark_failed(self, destination_name: str, error: str, stage: Optional[str] = None) -> None:
        self._update(destination_name, state="failed", error=error, stage=stage)

    def mark_collected(self, destination_name: str, package: Optional[str]) -> None:
        self._update(destination_name, state="collected", package=package)

    def summary(self, packages: List[str], manifest_path: Optional[str] = None) -> HarvestSummary:
        statuses = self.list()
        failed = [status for status in statuses if status.state == "failed"]
        collected = [status for status in statuses if status.state == "collected"]
        return HarvestSummary(
            total=len(statuses),
            cloned=len(statuses) - len(failed),
            failed=len(failed),
            collected=sum(1 for status in collected if status.package),
            packages=list(packages),
            manifest_path=manifest_path,
            failures={status.descriptor.destination_name: status.error or "" for status in failed},
        )
