"""OS-level structured event sink: Windows Event Log, or syslog elsewhere."""

import logging
import sys
from enum import Enum

from auditlog.config import Config, LogLevel
from auditlog.errors import SinkUnavailableError
from auditlog.models import LogEntry

logger = logging.getLogger(__name__)


class EventSeverity(str, Enum):
    INFORMATION = "Information"
    WARNING = "Warning"
    ERROR = "Error"

    @classmethod
    def parse(cls, value) -> "EventSeverity":
        if isinstance(value, EventSeverity):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.strip().lower():
                    return member
        raise ValueError(f"Unknown event severity: {value!r}")


SEVERITY_BY_LEVEL = {
    LogLevel.DEBUG: EventSeverity.INFORMATION,
    LogLevel.INFORMATION: EventSeverity.INFORMATION,
    LogLevel.WARNING: EventSeverity.WARNING,
    LogLevel.ERROR: EventSeverity.ERROR,
    LogLevel.CRITICAL: EventSeverity.ERROR,
}

EVENT_ID_BY_LEVEL = {
    LogLevel.DEBUG: 1000,
    LogLevel.INFORMATION: 1000,
    LogLevel.WARNING: 2000,
    LogLevel.ERROR: 3000,
    LogLevel.CRITICAL: 4000,
}

MAX_EVENT_ID = 65535


def render_event_message(entry: LogEntry) -> str:
    """Human-readable block: message, metadata, exception, additional data."""
    lines = [
        entry.message,
        "",
        f"Timestamp: {entry.timestamp_utc}",
        f"Level: {entry.level.label}",
        f"Machine: {entry.machine}",
        f"Process: {entry.process_name} ({entry.process_id})",
        f"User: {entry.user}",
        f"CorrelationId: {entry.correlation_id}",
        f"Caller: {entry.caller_function} ({entry.caller_script}:{entry.caller_line})",
    ]
    if entry.exception is not None:
        exc = entry.exception
        lines += ["", "Exception:", f"  Type: {exc.type}", f"  Message: {exc.message}"]
        if exc.hresult is not None:
            lines.append(f"  HResult: {exc.hresult}")
        if exc.inner_exception_message:
            lines.append(f"  Inner: {exc.inner_exception_message}")
        lines += ["  StackTrace:"] + [f"    {line}" for line in exc.stack_trace.splitlines()]
    if entry.additional_data:
        lines += ["", "Additional Data:"]
        lines += [f"  {key}: {value}" for key, value in entry.additional_data.items()]
    return "\n".join(lines)


class SyslogBackend:
    """POSIX syslog; the source name is used as the ident."""

    _PRIORITIES = {
        EventSeverity.INFORMATION: "LOG_INFO",
        EventSeverity.WARNING: "LOG_WARNING",
        EventSeverity.ERROR: "LOG_ERR",
    }

    def __init__(self):
        import syslog
        self._syslog = syslog

    def source_exists(self, source: str, log_name: str) -> bool:
        return True

    def write(self, source: str, log_name: str, event_id: int,
              severity: EventSeverity, message: str):
        priority = getattr(self._syslog, self._PRIORITIES[severity])
        self._syslog.openlog(ident=source, logoption=self._syslog.LOG_PID,
                             facility=self._syslog.LOG_USER)
        self._syslog.syslog(priority, f"[{event_id}] " + message.replace("\n", " | "))


class WindowsEventLogBackend:
    """Windows Event Log through pywin32. Sources must be registered beforehand."""

    REGISTRY_ROOT = r"SYSTEM\CurrentControlSet\Services\EventLog"

    def __init__(self):
        import win32evtlog
        import win32evtlogutil
        import winreg
        self._evtlog = win32evtlog
        self._evtlogutil = win32evtlogutil
        self._winreg = winreg

    def source_exists(self, source: str, log_name: str) -> bool:
        key_path = rf"{self.REGISTRY_ROOT}\{log_name}\{source}"
        try:
            key = self._winreg.OpenKey(self._winreg.HKEY_LOCAL_MACHINE, key_path)
        except OSError:
            return False
        self._winreg.CloseKey(key)
        return True

    def write(self, source: str, log_name: str, event_id: int,
              severity: EventSeverity, message: str):
        event_types = {
            EventSeverity.INFORMATION: self._evtlog.EVENTLOG_INFORMATION_TYPE,
            EventSeverity.WARNING: self._evtlog.EVENTLOG_WARNING_TYPE,
            EventSeverity.ERROR: self._evtlog.EVENTLOG_ERROR_TYPE,
        }
        self._evtlogutil.ReportEvent(
            source, event_id, eventType=event_types[severity], strings=[message],
        )


def default_backend():
    if sys.platform == "win32":
        return WindowsEventLogBackend()
    return SyslogBackend()


class EventSink:
    def __init__(self, backend=None):
        self._backend = backend

    @property
    def backend(self):
        if self._backend is None:
            self._backend = default_backend()
        return self._backend

    def write(self, entry: LogEntry, config: Config):
        self._write(
            render_event_message(entry),
            EVENT_ID_BY_LEVEL[entry.level],
            SEVERITY_BY_LEVEL[entry.level],
            config.event_source,
            config.event_log_name,
        )

    def write_direct(self, message: str, event_id: int, severity,
                     source: str, log_name: str):
        """Write one raw event, bypassing entry construction.

        Raises ValueError for a bad severity or event id and
        SinkUnavailableError if the source is not registered.
        """
        severity = EventSeverity.parse(severity)
        if isinstance(event_id, bool) or not isinstance(event_id, int) \
                or not 0 <= event_id <= MAX_EVENT_ID:
            raise ValueError(f"Event id must be an integer in 0..{MAX_EVENT_ID}, got {event_id!r}")
        self._write(message, event_id, severity, source, log_name)

    def _write(self, message: str, event_id: int, severity: EventSeverity,
               source: str, log_name: str):
        try:
            backend = self.backend
        except ImportError as e:
            raise SinkUnavailableError(f"No event log backend available: {e}") from e
        if not backend.source_exists(source, log_name):
            raise SinkUnavailableError(
                f"Event source '{source}' is not registered in log '{log_name}'"
            )
        try:
            backend.write(source, log_name, event_id, severity, message)
        except OSError as e:
            raise SinkUnavailableError(f"Event log write failed: {e}") from e
