"""
Repository list parsing.

The input is a headerless CSV file where every row names a repository URL,
the folder it is cloned into and, optionally, the branch to clone.
"""
from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path, PurePath, PurePosixPath
from typing import List, Optional, Tuple

from ..logger import get_logger

log = get_logger(__name__)


class SourceFileError(ValueError):
    """The repository list is missing or malformed; the run cannot start."""


@dataclass(frozen=True)
class RepoDescriptor:
    """One row of the repository list."""

    url: str
    destination_name: str
    branch: Optional[str] = None
    line_number: int = 0


def _validate_destination(name: str, line_number: int) -> None:
    path = PurePath(name)
    if path.is_absolute() or ".." in path.parts or not path.parts:
        raise SourceFileError(
            f"line {line_number}: destination {name!r} must be a relative folder name"
        )


def parse_row(row: List[str], line_number: int) -> RepoDescriptor:
    """Turn one CSV row into a descriptor, rejecting malformed rows."""
    if len(row) not in (2, 3):
        raise SourceFileError(
            f"line {line_number}: expected 2 or 3 columns (url, destination[, branch]), got {len(row)}"
        )
    cells = [cell.strip() for cell in row]
    url, destination = cells[0], cells[1]
    if not url:
        raise SourceFileError(f"line {line_number}: repository URL is empty")
    if not destination:
        raise SourceFileError(f"line {line_number}: destination folder is empty")
    _validate_destination(destination, line_number)
    branch = cells[2] if len(cells) == 3 and cells[2] else None
    return RepoDescriptor(url=url, destination_name=destination, branch=branch, line_number=line_number)


def _check_independent(
    descriptor: RepoDescriptor,
    parts: Tuple[str, ...],
    claimed: List[Tuple[Tuple[str, ...], RepoDescriptor]],
) -> None:
    """Reject a destination that equals or nests with one listed earlier."""
    for other_parts, other in claimed:
        if parts == other_parts:
            raise SourceFileError(
                f"line {descriptor.line_number}: destination {descriptor.destination_name!r} "
                f"already used on line {other.line_number}"
            )
        shorter = min(len(parts), len(other_parts))
        if parts[:shorter] == other_parts[:shorter]:
            raise SourceFileError(
                f"line {descriptor.line_number}: destination {descriptor.destination_name!r} "
                f"overlaps {other.destination_name!r} from line {other.line_number}"
            )


def read_repo_descriptors(path: Path) -> List[RepoDescriptor]:
    """Read every repository row from ``path``; blank lines are skipped."""
    try:
        with path.open("r", encoding="utf-8", newline="") as handle:
            rows = list(csv.reader(handle))
    except FileNotFoundError as exc:
        raise SourceFileError(f"repository list not found: {path}") from exc
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        raise SourceFileError(f"cannot read repository list {path}: {exc}") from exc

    descriptors: List[RepoDescriptor] = []
    claimed: List[Tuple[Tuple[str, ...], RepoDescriptor]] = []
    for index, row in enumerate(rows, start=1):
        if not row or all(not cell.strip() for cell in row):
            continue
        descriptor = parse_row(row, index)
        parts = PurePosixPath(descriptor.destination_name).parts
        _check_independent(descriptor, parts, claimed)
        claimed.append((parts, descriptor))
        descriptors.append(descriptor)

    log.info("repository_list_loaded", path=str(path), repositories=len(descriptors))
    return descriptors
