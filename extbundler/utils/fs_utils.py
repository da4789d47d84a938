"""Filesystem helpers for the destination tree."""

import os
import shutil
from pathlib import Path
from typing import Optional, Union
import logging

from .exceptions import IOFailure

logger = logging.getLogger(__name__)


def reset_directory(path: Path, static_dir: Optional[Path] = None) -> Path:
    """
    Remove ``path`` entirely and recreate it, seeded with ``static_dir``.

    Args:
        path: Destination directory
        static_dir: Optional directory copied verbatim into the destination

    Returns:
        The recreated directory
    """
    try:
        if path.exists():
            shutil.rmtree(path)
            logger.debug(f"Removed {path}")

        if static_dir is not None and static_dir.is_dir():
            shutil.copytree(static_dir, path)
            logger.debug(f"Copied {static_dir} -> {path}")
        else:
            path.mkdir(parents=True)
    except OSError as e:
        raise IOFailure(f"Cannot reset output directory {path}: {e}") from e

    return path


def write_output(path: Path, data: Union[str, bytes]) -> Path:
    """
    Write a file and flush it to storage before returning.

    Later phases read files written by earlier ones, so every write is
    fsync'd.
    """
    mode = 'wb' if isinstance(data, bytes) else 'w'
    encoding = None if isinstance(data, bytes) else 'utf-8'
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, mode, encoding=encoding, newline='' if encoding else None) as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
    except OSError as e:
        raise IOFailure(f"Cannot write {path}: {e}") from e

    logger.debug(f"Wrote {path} ({len(data)} {'bytes' if encoding is None else 'chars'})")
    return path


def read_text(path: Path) -> str:
    try:
        return path.read_text(encoding='utf-8')
    except OSError as e:
        raise IOFailure(f"Cannot read {path}: {e}") from e
