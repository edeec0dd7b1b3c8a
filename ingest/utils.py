"""
Filesystem helpers for the watch root.
"""
import errno
import logging
import mimetypes
import os
import shutil
from collections.abc import Iterable
from pathlib import Path
from typing import Optional

from config.constant import DEFAULT_CONTENT_TYPE

logger = logging.getLogger(__name__)


def is_allowed_extension(filename: str, allowed: Iterable[str]) -> bool:
    ext = Path(filename).suffix.lower().lstrip(".")
    return bool(ext) and ext in {a.lower().lstrip(".") for a in allowed}


def content_type_for(filename: str) -> str:
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or DEFAULT_CONTENT_TYPE


def _unique_destination(dest: Path) -> Path:
    if not dest.exists():
        return dest
    stem, suffix = dest.stem, dest.suffix
    counter = 1
    while True:
        candidate = dest.with_name(f"{stem}_{counter}{suffix}")
        if not candidate.exists():
            return candidate
        counter += 1


def move_file_safe(src: Path, dest_dir: Path, name: Optional[str] = None) -> Path:
    """
    Move `src` into `dest_dir` (optionally renamed), never overwriting.
    Uses an atomic rename, falling back to copy + unlink across devices.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    dest = _unique_destination(dest_dir / (name or src.name))
    try:
        os.replace(src, dest)
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise
        logger.debug("Cross-device move %s -> %s, copying", src, dest)
        shutil.copy2(src, dest)
        os.unlink(src)
    return dest


def list_candidate_files(directory: Path, allowed: Iterable[str]) -> list[Path]:
    """Regular, non-hidden files with an allowed extension, sorted by name."""
    if not directory.is_dir():
        return []
    allowed_set = set(allowed)
    found: list[Path] = []
    with os.scandir(directory) as entries:
        for entry in entries:
            if entry.name.startswith(".") or not entry.is_file(follow_symlinks=False):
                continue
            if is_allowed_extension(entry.name, allowed_set):
                found.append(Path(entry.path))
    return sorted(found, key=lambda p: p.name)


__all__ = [
    "is_allowed_extension",
    "content_type_for",
    "move_file_safe",
    "list_candidate_files",
]
