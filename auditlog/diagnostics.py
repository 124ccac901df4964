"""Internal diagnostics channel and last-resort fallback file."""

import logging
import os
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiagnosticRecord:
    kind: str
    message: str
    timestamp: str


class Diagnostics:
    """Thread-safe counters and a bounded ring of recent degraded-path events.

    Every failure the pipeline recovers from locally is recorded here, keyed by
    the name of the error class that describes it.
    """

    def __init__(self, max_recent: int = 100):
        self._lock = threading.Lock()
        self._counts: dict[str, int] = {}
        self._recent: deque[DiagnosticRecord] = deque(maxlen=max_recent)

    def record(self, kind: str, message: str):
        entry = DiagnosticRecord(
            kind=kind,
            message=message,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        with self._lock:
            self._counts[kind] = self._counts.get(kind, 0) + 1
            self._recent.append(entry)

    def count(self, kind: str | None = None) -> int:
        with self._lock:
            if kind is None:
                return sum(self._counts.values())
            return self._counts.get(kind, 0)

    def counts(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def get_recent(self, n: int = 10) -> list[DiagnosticRecord]:
        with self._lock:
            return list(self._recent)[-n:]

    def reset(self):
        with self._lock:
            self._counts.clear()
            self._recent.clear()


class FallbackRecorder:
    """Appends pipeline-internal failures to one fixed file, outside rotation."""

    def __init__(self, diagnostics: Diagnostics):
        self._diagnostics = diagnostics
        self._lock = threading.Lock()

    def write(self, path: str, level: str, message: str, error: BaseException) -> bool:
        """Record the original message and failure reason. Never raises."""
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        reason = f"{type(error).__name__}: {error}"
        line = f"{timestamp} | {level} | {message} | {reason}\n"
        try:
            with self._lock:
                directory = os.path.dirname(path)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                with open(path, "a", encoding="utf-8") as f:
                    f.write(line)
                    f.flush()
            return True
        except Exception as e:  # terminal best effort
            self._diagnostics.record("FallbackWriteError", f"{path}: {e}")
            return False
