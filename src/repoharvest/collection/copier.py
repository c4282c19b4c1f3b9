"""Recursive directory copy used when harvesting package folders."""
from __future__ import annotations

import shutil
from pathlib import Path
from typing import Callable, Optional


def copy_directory(
    src: Path,
    dest: Path,
    copy_callback: Optional[Callable[[Path], None]] = None,
) -> Path:
    """
    Recreate the tree under ``src`` inside ``dest``.

    Git metadata directories are never copied, so a clone matched as a whole
    contributes its working tree only.

    Existing files in ``dest`` with the same relative path are overwritten and
    unrelated files are left alone, so repeating a copy is harmless. File
    bytes and permission bits are copied; timestamps are not. Raises
    ``OSError`` (``shutil.Error`` once every entry has been attempted) when an
    entry cannot be read or written.
    """
    if not src.is_dir():
        raise NotADirectoryError(f"source is not a directory: {src}")

    def copy_with_callback(src_path: str, dst_path: str) -> str:
        shutil.copy(src_path, dst_path)
        if copy_callback:
            copy_callback(Path(dst_path))
        return dst_path

    shutil.copytree(
        src,
        dest,
        copy_function=copy_with_callback,
        ignore=shutil.ignore_patterns(".git"),
        dirs_exist_ok=True,
    )
    return dest
