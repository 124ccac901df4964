"""Append-only, day-scoped JSON-lines file sink with size-based rotation."""

import json
import logging
import os
from datetime import datetime, timezone

from auditlog.config import Config
from auditlog.errors import SinkUnavailableError
from auditlog.models import LogEntry
from auditlog.rotation import enforce_retention, path_lock, rotate, should_rotate

logger = logging.getLogger(__name__)


def format_record(entry: LogEntry) -> str:
    return json.dumps(entry.to_dict(), separators=(",", ":"), ensure_ascii=False) + "\n"


class FileSink:
    def __init__(self, time_func=None):
        self._time_func = time_func or (lambda: datetime.now(timezone.utc))

    def active_path(self, config: Config, now: datetime | None = None) -> str:
        now = now or self._time_func()
        filename = f"{config.log_basename}_{now.strftime('%Y%m%d')}.log"
        return os.path.join(config.log_path, filename)

    def write(self, entry: LogEntry, config: Config) -> str | None:
        """Append one record, rotating first if the active file is full.

        Returns the rotated file path if rotation occurred. Raises
        SinkUnavailableError if the file system refuses the write.
        """
        now = self._time_func()
        path = self.active_path(config, now)
        record = format_record(entry)
        rotated = None

        with path_lock(path):
            try:
                os.makedirs(config.log_path, exist_ok=True)
                if should_rotate(path, config.max_log_size_bytes):
                    rotated = rotate(path, now)
                    logger.info("Rotated %s -> %s", path, rotated)
                    deleted = enforce_retention(
                        config.log_path, config.log_basename, config.max_log_files
                    )
                    if deleted:
                        logger.info("Purged %d rotated file(s): %s", len(deleted), ", ".join(deleted))

                with open(path, "a", encoding="utf-8") as f:
                    f.write(record)
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise SinkUnavailableError(f"Cannot write log file {path}: {e}") from e

        return rotated


def read_entries(path: str) -> list[LogEntry]:
    """Parse a record file back into entries, skipping malformed lines."""
    entries = []
    with open(path, "r", encoding="utf-8") as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(LogEntry.from_dict(json.loads(line)))
            except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
                logger.warning("Skipping malformed record %s:%d: %s", path, line_num, e)
    return entries
