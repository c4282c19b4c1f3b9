"""Version lookup for the CLI ``--version`` flag."""

from __future__ import annotations

from functools import lru_cache
from importlib import metadata, resources

_DISTRIBUTION = "repoharvest"


@lru_cache(maxsize=1)
def get_version() -> str:
    """Prefer the bundled VERSION file, then installed metadata."""
    try:
        bundled = resources.files(_DISTRIBUTION).joinpath("VERSION")
        return bundled.read_text(encoding="utf-8").strip()
    except (FileNotFoundError, ModuleNotFoundError):
        pass
    try:
        return metadata.version(_DISTRIBUTION)
    except metadata.PackageNotFoundError:
        return "unknown"


__version__ = get_version()
