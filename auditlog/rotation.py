"""Size-based rotation and count-based retention for the file sink."""

import logging
import os
import re
import threading
from datetime import datetime

logger = logging.getLogger(__name__)

ROTATION_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

_path_locks: dict[str, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def path_lock(path: str) -> threading.Lock:
    """Return the process-wide lock for one active log file path."""
    key = os.path.normcase(os.path.abspath(path))
    with _path_locks_guard:
        lock = _path_locks.get(key)
        if lock is None:
            lock = _path_locks[key] = threading.Lock()
        return lock


def should_rotate(path: str, max_bytes: int) -> bool:
    try:
        return os.path.getsize(path) >= max_bytes
    except OSError:
        return False


def rotated_path_for(path: str, now: datetime) -> str:
    """<stem>_<yyyyMMdd_HHmmss><ext>, with a _<n> counter if that name is taken."""
    stem, ext = os.path.splitext(path)
    candidate = f"{stem}_{now.strftime(ROTATION_TIMESTAMP_FORMAT)}{ext}"
    counter = 1
    while os.path.exists(candidate):
        candidate = f"{stem}_{now.strftime(ROTATION_TIMESTAMP_FORMAT)}_{counter}{ext}"
        counter += 1
    return candidate


def rotate(path: str, now: datetime) -> str:
    """Rename the active file out of the way. Returns the rotated path."""
    rotated = rotated_path_for(path, now)
    os.replace(path, rotated)
    return rotated


def rotated_file_pattern(basename: str, ext: str = ".log") -> re.Pattern:
    return re.compile(
        rf"^{re.escape(basename)}_\d{{8}}_\d{{8}}_\d{{6}}(?:_\d+)?{re.escape(ext)}$"
    )


def get_rotated_files(log_dir: str, basename: str, ext: str = ".log") -> list[str]:
    """Rotated files for *basename*, newest first by last-write time."""
    pattern = rotated_file_pattern(basename, ext)
    rotated = []
    for name in os.listdir(log_dir):
        if not pattern.match(name):
            continue
        try:
            mtime = os.path.getmtime(os.path.join(log_dir, name))
        except OSError:
            continue
        rotated.append((mtime, name))
    rotated.sort(reverse=True)
    return [name for _, name in rotated]


def enforce_retention(log_dir: str, basename: str, max_files: int) -> list[str]:
    """Delete rotated files beyond the newest *max_files*. Returns deleted names."""
    deleted = []
    for name in get_rotated_files(log_dir, basename)[max_files:]:
        try:
            os.remove(os.path.join(log_dir, name))
        except OSError as e:
            logger.warning("Retention could not delete %s: %s", name, e)
            continue
        deleted.append(name)
    return deleted
