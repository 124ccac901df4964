"""Log entry model, execution identity, and entry construction."""

import getpass
import json
import os
import socket
import sys
import traceback
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType

from auditlog.caller import CallerContext
from auditlog.config import LogLevel


@dataclass(frozen=True)
class ExceptionInfo:
    type: str
    message: str
    stack_trace: str
    hresult: int | None = None
    inner_exception_message: str | None = None

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ExceptionInfo":
        exc_type = type(exc)
        if exc_type.__module__ == "builtins":
            type_name = exc_type.__qualname__
        else:
            type_name = f"{exc_type.__module__}.{exc_type.__qualname__}"
        inner = exc.__cause__ or exc.__context__
        return cls(
            type=type_name,
            message=str(exc),
            stack_trace="".join(
                traceback.format_exception(exc_type, exc, exc.__traceback__)
            ).rstrip("\n"),
            hresult=getattr(exc, "winerror", None) or getattr(exc, "errno", None),
            inner_exception_message=str(inner) if inner is not None else None,
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "message": self.message,
            "stackTrace": self.stack_trace,
            "hResult": self.hresult,
            "innerExceptionMessage": self.inner_exception_message,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExceptionInfo":
        return cls(
            type=data.get("type", ""),
            message=data.get("message", ""),
            stack_trace=data.get("stackTrace", ""),
            hresult=data.get("hResult"),
            inner_exception_message=data.get("innerExceptionMessage"),
        )


@dataclass(frozen=True)
class LogEntry:
    timestamp_utc: str
    level: LogLevel
    message: str
    machine: str
    process_id: int
    process_name: str
    user: str
    correlation_id: str
    caller_function: str
    caller_script: str
    caller_line: int
    exception: ExceptionInfo | None = None
    additional_data: Mapping | None = None

    def to_dict(self) -> dict:
        """Self-describing record with camelCase keys, optional blocks omitted."""
        record = {
            "timestampUtc": self.timestamp_utc,
            "level": self.level.label,
            "message": self.message,
            "machine": self.machine,
            "processId": self.process_id,
            "processName": self.process_name,
            "user": self.user,
            "correlationId": self.correlation_id,
            "callerFunction": self.caller_function,
            "callerScript": self.caller_script,
            "callerLine": self.caller_line,
        }
        if self.exception is not None:
            record["exception"] = self.exception.to_dict()
        if self.additional_data:
            record["additionalData"] = dict(self.additional_data)
        return record

    @classmethod
    def from_dict(cls, data: dict) -> "LogEntry":
        exception = data.get("exception")
        return cls(
            timestamp_utc=data["timestampUtc"],
            level=LogLevel.parse(data["level"]),
            message=data["message"],
            machine=data.get("machine", ""),
            process_id=int(data.get("processId", 0)),
            process_name=data.get("processName", ""),
            user=data.get("user", ""),
            correlation_id=data["correlationId"],
            caller_function=data.get("callerFunction", "Unknown"),
            caller_script=data.get("callerScript", "Unknown"),
            caller_line=int(data.get("callerLine", 0)),
            exception=ExceptionInfo.from_dict(exception) if exception else None,
            additional_data=data.get("additionalData"),
        )


def new_correlation_id() -> str:
    return str(uuid.uuid4())


def machine_name() -> str:
    return socket.gethostname() or "localhost"


def process_name() -> str:
    if sys.argv and sys.argv[0]:
        return os.path.basename(sys.argv[0])
    return os.path.basename(sys.executable) or "python"


def user_identity() -> str:
    """DOMAIN\\user where a domain is known, else the bare login name."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = os.environ.get("USERNAME") or os.environ.get("USER") or "Unknown"
    domain = os.environ.get("USERDOMAIN")
    return f"{domain}\\{user}" if domain else user


def sanitize_additional_data(data) -> tuple[dict | None, list[str]]:
    """Keep the JSON-serializable subset of *data*.

    Returns (kept, dropped_keys). Insertion order is preserved.
    """
    if data is None:
        return None, []
    if not isinstance(data, Mapping):
        return None, ["<additional_data>"]

    kept = {}
    dropped = []
    for key, value in data.items():
        try:
            json.dumps(value, allow_nan=False)
        except (TypeError, ValueError, OverflowError, RecursionError):
            dropped.append(str(key))
            continue
        kept[str(key)] = value
    return kept, dropped


def build_entry(
    message,
    level: LogLevel,
    correlation_id: str,
    caller: CallerContext,
    exception: BaseException | None = None,
    additional_data=None,
    time_func=None,
) -> tuple[LogEntry, list[str]]:
    """Assemble an immutable LogEntry. Returns (entry, dropped additional-data keys)."""
    now = (time_func or (lambda: datetime.now(timezone.utc)))()
    kept, dropped = sanitize_additional_data(additional_data)
    entry = LogEntry(
        timestamp_utc=now.isoformat(),
        level=level,
        message=message if isinstance(message, str) else str(message),
        machine=machine_name(),
        process_id=os.getpid(),
        process_name=process_name(),
        user=user_identity(),
        correlation_id=correlation_id,
        caller_function=caller.function,
        caller_script=caller.script,
        caller_line=caller.line,
        exception=ExceptionInfo.from_exception(exception) if exception is not None else None,
        additional_data=MappingProxyType(kept) if kept else None,
    )
    return entry, dropped
