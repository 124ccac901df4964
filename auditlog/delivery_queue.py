"""Durable on-disk queue for SIEM entries whose delivery was exhausted.

One JSON file per item. Redelivery is owned by an external process; this module
only writes items and lists them.
"""

import json
import logging
import os
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from auditlog.models import LogEntry

logger = logging.getLogger(__name__)

QUEUE_FILE_PATTERN = re.compile(r"^\d{14}_[0-9a-f]{8}\.json$")


@dataclass(frozen=True)
class QueueItem:
    entry: dict
    attempts: int
    enqueued_utc: str
    siem_type: str
    last_error: str | None
    path: str

    @property
    def log_entry(self) -> LogEntry:
        return LogEntry.from_dict(self.entry)


class DeliveryQueue:
    def __init__(self, queue_dir: str, time_func=None):
        self._queue_dir = queue_dir
        self._time_func = time_func or (lambda: datetime.now(timezone.utc))

    @property
    def queue_dir(self) -> str:
        return self._queue_dir

    def enqueue(self, entry: LogEntry, attempts: int, siem_type: str,
                last_error: str | None = None) -> str:
        """Persist one item and return its path. Raises OSError on failure."""
        now = self._time_func()
        name = f"{now.strftime('%Y%m%d%H%M%S')}_{uuid.uuid4().hex[:8]}.json"
        path = os.path.join(self._queue_dir, name)
        payload = {
            "entry": entry.to_dict(),
            "attempts": attempts,
            "enqueuedUtc": now.isoformat(),
            "siemType": siem_type,
            "lastError": last_error,
        }

        os.makedirs(self._queue_dir, exist_ok=True)
        tmp_path = os.path.join(self._queue_dir, f".{name}.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        logger.info("Queued undelivered SIEM entry %s", path)
        return path

    def pending(self) -> list[QueueItem]:
        """Queued items, oldest first. Unreadable files are skipped."""
        if not os.path.isdir(self._queue_dir):
            return []
        items = []
        for name in sorted(os.listdir(self._queue_dir)):
            if not QUEUE_FILE_PATTERN.match(name):
                continue
            path = os.path.join(self._queue_dir, name)
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                items.append(QueueItem(
                    entry=data["entry"],
                    attempts=int(data["attempts"]),
                    enqueued_utc=data["enqueuedUtc"],
                    siem_type=data.get("siemType", ""),
                    last_error=data.get("lastError"),
                    path=path,
                ))
            except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
                logger.warning("Skipping unreadable queue file %s: %s", path, e)
        return items
