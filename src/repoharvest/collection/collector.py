"""
Package folder collection.

The collector receives finished clone directories one at a time, finds every
folder whose name contains the package filter and copies it into the output
root. It is the only component that writes to the output root and the
manifest, and it runs on a single thread.
"""
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence, Set

from ..logger import get_logger
from .copier import copy_directory
from .manifest import Manifest

log = get_logger(__name__)

SKIPPED_DIRECTORIES = frozenset({".git"})


@dataclass
class CollectionReport:
    """What one clone directory contributed to the output root."""

    clone_directory: Path
    copied: List[Path] = field(default_factory=list)
    failed: List[Path] = field(default_factory=list)
    manifest_entry: Optional[str] = None
    skipped: bool = False


class Collector:
    """Copies matching folders from clone directories into the output root."""

    def __init__(
        self,
        output_root: Path,
        package_filter: str,
        manifest: Manifest,
        search_roots: Sequence[str] = (".",),
        copy_callback: Optional[Callable[[Path], None]] = None,
    ) -> None:
        if not package_filter:
            raise ValueError("package_filter must not be empty")
        self.output_root = output_root
        self.package_filter = package_filter
        self.manifest = manifest
        self.search_roots = list(search_roots)
        self.copy_callback = copy_callback
        self._initialized_destinations: Set[Path] = set()
        self._manifested_clones: Set[Path] = set()
        self._processed_clones: Set[Path] = set()

    def candidate_roots(self, clone_dir: Path) -> List[Path]:
        """Search roots for ``clone_dir`` in configured order."""
        return [clone_dir / root for root in self.search_roots]

    def iter_matches(self, root: Path) -> Iterator[Path]:
        """Yield folders under ``root`` (``root`` included) whose name contains the filter."""

        def on_error(exc: OSError) -> None:
            log.warning("walk_failed", path=getattr(exc, "filename", None), error=str(exc))

        for current, dirs, _files in os.walk(root, onerror=on_error):
            dirs[:] = sorted(d for d in dirs if d not in SKIPPED_DIRECTORIES)
            current_path = Path(current)
            if self.package_filter in current_path.name:
                yield current_path

    def collect(self, clone_dir: Path) -> CollectionReport:
        report = CollectionReport(clone_directory=clone_dir)
        key = clone_dir.resolve()
        if key in self._processed_clones:
            log.warning("clone_already_collected", clone=str(clone_dir))
            report.skipped = True
            return report
        self._processed_clones.add(key)

        seen: Set[Path] = set()
        for root in self.candidate_roots(clone_dir):
            if not root.is_dir():
                log.debug("search_root_missing", root=str(root))
                continue
            for match in self.iter_matches(root):
                resolved = match.resolve()
                if resolved in seen:
                    continue
                seen.add(resolved)
                if self._copy_match(match):
                    report.copied.append(match)
                    self._record_manifest(key, match.name, report)
                else:
                    report.failed.append(match)

        log.info(
            "clone_collected",
            clone=str(clone_dir),
            copied=len(report.copied),
            failed=len(report.failed),
            package=report.manifest_entry,
        )
        return report

    def _prepare_destination(self, destination: Path) -> bool:
        """Clear stale content the first time a destination is used in this run."""
        if destination in self._initialized_destinations:
            return True
        if destination.exists():
            try:
                shutil.rmtree(destination)
            except OSError as exc:
                log.error("destination_remove_failed", destination=str(destination), error=str(exc))
                return False
            log.info("stale_destination_removed", destination=str(destination))
        self._initialized_destinations.add(destination)
        return True

    def _copy_match(self, match: Path) -> bool:
        destination = self.output_root / match.name
        if not self._prepare_destination(destination):
            return False
        log.info("package_copy_started", source=str(match), destination=str(destination))
        try:
            destination.mkdir(parents=True, exist_ok=True)
            copy_directory(match, destination, copy_callback=self.copy_callback)
        except OSError as exc:
            log.error("package_copy_failed", source=str(match), destination=str(destination), error=str(exc))
            return False
        return True

    def _record_manifest(self, clone_key: Path, package_name: str, report: CollectionReport) -> None:
        if clone_key in self._manifested_clones:
            return
        try:
            self.manifest.append(package_name)
        except (OSError, ValueError) as exc:
            log.error("manifest_write_failed", package=package_name, error=str(exc))
            return
        self._manifested_clones.add(clone_key)
        report.manifest_entry = package_name
        log.info("manifest_entry_written", package=package_name, manifest=str(self.manifest.path))
