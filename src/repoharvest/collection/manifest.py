"""
Manifest of harvested packages.

One package name per line in the order clones finished. The file is
truncated when a run starts so every run describes only itself.
"""
from __future__ import annotations

from pathlib import Path
from typing import IO, List, Optional

from ..logger import get_logger

log = get_logger(__name__)


class Manifest:
    """Append-only text file written by the collector."""

    def __init__(self, path: Path, handle: IO[str]) -> None:
        self.path = path
        self._handle: Optional[IO[str]] = handle
        self.entries: List[str] = []

    @classmethod
    def create(cls, path: Path) -> "Manifest":
        path.parent.mkdir(parents=True, exist_ok=True)
        handle = path.open("w", encoding="utf-8")
        log.info("manifest_created", path=str(path))
        return cls(path, handle)

    def append(self, package_name: str) -> None:
        if self._handle is None:
            raise ValueError(f"manifest {self.path} is closed")
        self._handle.write(package_name + "\n")
        self._handle.flush()
        self.entries.append(package_name)

    def close(self) -> None:
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "Manifest":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
