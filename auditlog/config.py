"""Configuration — frozen dataclass snapshots behind a lock-guarded store.

Defaults <- optional YAML file <- environment variables, then partial updates
through ConfigurationStore.configure().
"""

import logging
import math
import os
import threading
from dataclasses import dataclass, fields, replace
from enum import Enum, IntEnum
from urllib.parse import urlsplit

import yaml

from auditlog.errors import ConfigurationError

logger = logging.getLogger(__name__)


class LogLevel(IntEnum):
    DEBUG = 0
    INFORMATION = 1
    WARNING = 2
    ERROR = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return _LEVEL_LABELS[self]

    @classmethod
    def parse(cls, value) -> "LogLevel":
        """Accept a LogLevel, its label, a common alias, or its integer value."""
        if isinstance(value, LogLevel):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        if isinstance(value, str):
            key = value.strip().upper()
            if key in _LEVEL_ALIASES:
                return _LEVEL_ALIASES[key]
        raise ValueError(f"Unknown log level: {value!r}")


_LEVEL_LABELS = {
    LogLevel.DEBUG: "Debug",
    LogLevel.INFORMATION: "Information",
    LogLevel.WARNING: "Warning",
    LogLevel.ERROR: "Error",
    LogLevel.CRITICAL: "Critical",
}

_LEVEL_ALIASES = {
    "DEBUG": LogLevel.DEBUG,
    "INFORMATION": LogLevel.INFORMATION,
    "INFO": LogLevel.INFORMATION,
    "WARNING": LogLevel.WARNING,
    "WARN": LogLevel.WARNING,
    "ERROR": LogLevel.ERROR,
    "ERR": LogLevel.ERROR,
    "CRITICAL": LogLevel.CRITICAL,
    "FATAL": LogLevel.CRITICAL,
}


class SiemType(str, Enum):
    GENERIC = "Generic"
    SPLUNK = "Splunk"
    ELASTIC = "Elastic"
    SENTINEL = "Sentinel"

    @classmethod
    def parse(cls, value) -> "SiemType":
        if isinstance(value, SiemType):
            return value
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.strip().lower():
                    return member
        raise ValueError(f"Unknown SIEM type: {value!r}")


_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")


def _parse_bool(value: str) -> bool:
    key = value.strip().lower()
    if key in _TRUE_VALUES:
        return True
    if key in _FALSE_VALUES:
        return False
    raise ValueError(f"expected a boolean, got {value!r}")


@dataclass(frozen=True)
class Config:
    log_path: str = "./logs"
    log_level: LogLevel = LogLevel.INFORMATION
    max_log_size_mb: float = 10.0
    max_log_files: int = 10
    enable_file_sink: bool = True
    enable_event_sink: bool = False
    enable_siem: bool = False
    siem_endpoint: str | None = None
    siem_token: str | None = None
    siem_type: SiemType = SiemType.GENERIC
    log_basename: str = "AuditLog"
    event_source: str = "AuditLogPipeline"
    event_log_name: str = "Application"
    siem_timeout_seconds: float = 30.0
    siem_max_attempts: int = 3
    siem_backoff_base_seconds: float = 2.0
    siem_verify_tls: bool = True
    queue_dir: str | None = None
    fallback_path: str | None = None

    @property
    def max_log_size_bytes(self) -> int:
        return int(self.max_log_size_mb * 1024 * 1024)

    @property
    def resolved_queue_dir(self) -> str:
        return self.queue_dir or os.path.join(self.log_path, "siem_queue")

    @property
    def resolved_fallback_path(self) -> str:
        return self.fallback_path or os.path.join(self.log_path, "pipeline_fallback.log")


OPTION_ALIASES = {
    "LogPath": "log_path",
    "LogLevel": "log_level",
    "MaxLogSizeMB": "max_log_size_mb",
    "MaxLogFiles": "max_log_files",
    "EnableFileSink": "enable_file_sink",
    "EnableEventSink": "enable_event_sink",
    "EnableSiem": "enable_siem",
    "SiemEndpoint": "siem_endpoint",
    "SiemToken": "siem_token",
    "SiemType": "siem_type",
}

_FIELD_NAMES = {f.name for f in fields(Config)}
_OPTIONAL_FIELDS = {"siem_endpoint", "siem_token", "queue_dir", "fallback_path"}


def _as_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return _parse_bool(value)
    raise ValueError(f"expected a boolean, got {value!r}")


def _as_positive_float(value) -> float:
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"must be a finite number, got {value!r}")
    if number <= 0:
        raise ValueError(f"must be greater than zero, got {value!r}")
    return number


def _as_positive_int(value) -> int:
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValueError(f"expected an integer, got {value!r}")
    number = int(value)
    if number < 1:
        raise ValueError(f"must be at least 1, got {value!r}")
    return number


def _as_text(value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"expected a non-empty string, got {value!r}")
    return value


def _as_endpoint(value) -> str:
    text = _as_text(value)
    parts = urlsplit(text)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"not an absolute http(s) URL: {value!r}")
    return text


_COERCERS = {
    "log_path": _as_text,
    "log_level": LogLevel.parse,
    "max_log_size_mb": _as_positive_float,
    "max_log_files": _as_positive_int,
    "enable_file_sink": _as_bool,
    "enable_event_sink": _as_bool,
    "enable_siem": _as_bool,
    "siem_endpoint": _as_endpoint,
    "siem_token": _as_text,
    "siem_type": SiemType.parse,
    "log_basename": _as_text,
    "event_source": _as_text,
    "event_log_name": _as_text,
    "siem_timeout_seconds": _as_positive_float,
    "siem_max_attempts": _as_positive_int,
    "siem_backoff_base_seconds": _as_positive_float,
    "siem_verify_tls": _as_bool,
    "queue_dir": _as_text,
    "fallback_path": _as_text,
}


def normalize_options(options: dict) -> dict:
    """Validate and coerce a partial set of options into Config field values.

    Raises ConfigurationError naming the first offending option.
    """
    changes = {}
    for raw_name, value in options.items():
        name = OPTION_ALIASES.get(raw_name, raw_name)
        if name not in _FIELD_NAMES:
            raise ConfigurationError(f"Unknown configuration option: {raw_name}")
        if value is None:
            if name not in _OPTIONAL_FIELDS:
                raise ConfigurationError(f"Option {raw_name} cannot be cleared")
            changes[name] = None
            continue
        try:
            changes[name] = _COERCERS[name](value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid value for {raw_name}: {e}") from e
    return changes


def validate(config: Config) -> Config:
    """Cross-field checks that a single option cannot express."""
    if config.enable_siem and not config.siem_endpoint:
        raise ConfigurationError("EnableSiem requires SiemEndpoint to be set")
    return config


class ConfigurationStore:
    """Process-lifetime settings owned by one pipeline, guarded by a single lock."""

    def __init__(self, initial: Config | None = None):
        self._lock = threading.Lock()
        self._config = validate(initial or Config())

    def get(self) -> Config:
        with self._lock:
            return self._config

    def configure(self, **options) -> Config:
        """Apply only the options given and return the resulting snapshot."""
        changes = normalize_options(options)
        with self._lock:
            candidate = validate(replace(self._config, **changes))
            self._config = candidate
            return candidate


_ENV_VARS = {
    "LOG_PATH": "log_path",
    "LOG_LEVEL": "log_level",
    "MAX_LOG_SIZE_MB": "max_log_size_mb",
    "MAX_LOG_FILES": "max_log_files",
    "ENABLE_FILE_SINK": "enable_file_sink",
    "ENABLE_EVENT_SINK": "enable_event_sink",
    "ENABLE_SIEM": "enable_siem",
    "SIEM_ENDPOINT": "siem_endpoint",
    "SIEM_TOKEN": "siem_token",
    "SIEM_TYPE": "siem_type",
    "EVENT_SOURCE": "event_source",
}


def load_yaml_config(path: str | None) -> dict:
    """Load option overrides from a YAML file. Returns empty dict if no path."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    logger.info("Loaded YAML config from %s", path)
    return data


def load_config(yaml_path: str | None = None, environ=None) -> Config:
    """Build Config from defaults <- YAML file <- env vars (highest priority)."""
    if environ is None:
        environ = os.environ

    options = dict(load_yaml_config(yaml_path))
    for var, name in _ENV_VARS.items():
        if var in environ:
            options[name] = environ[var]

    return validate(replace(Config(), **normalize_options(options)))
