"""Logging pipeline facade: configuration, sessions, emit, and direct events.

Emit runs synchronously on the caller's thread and never raises. Failures
inside it are recovered locally, logged through the stdlib logger, and counted
on ``pipeline.diagnostics``.
"""

import logging
from datetime import datetime, timezone

from auditlog.caller import CallerContext, resolve_caller
from auditlog.config import Config, ConfigurationStore, LogLevel
from auditlog.diagnostics import Diagnostics, FallbackRecorder
from auditlog.errors import (
    PipelineInternalError,
    SerializationError,
    SinkUnavailableError,
    TransientDeliveryError,
)
from auditlog.event_sink import EventSink
from auditlog.file_sink import FileSink
from auditlog.models import build_entry, new_correlation_id
from auditlog.session import Session, SessionManager
from auditlog.siem import SiemSink

logger = logging.getLogger(__name__)


class LoggingPipeline:
    def __init__(
        self,
        config: Config | None = None,
        *,
        file_sink: FileSink | None = None,
        event_sink: EventSink | None = None,
        siem_sink: SiemSink | None = None,
        time_func=None,
    ):
        self._time_func = time_func or (lambda: datetime.now(timezone.utc))
        self._store = ConfigurationStore(config)
        self._sessions = SessionManager(time_func=self._time_func)
        self._diagnostics = Diagnostics()
        self._fallback = FallbackRecorder(self._diagnostics)
        self._file_sink = file_sink or FileSink(time_func=self._time_func)
        self._event_sink = event_sink or EventSink()
        self._siem_sink = siem_sink or SiemSink(time_func=self._time_func)

    @property
    def diagnostics(self) -> Diagnostics:
        return self._diagnostics

    @property
    def active_session(self) -> Session | None:
        return self._sessions.active

    # -- configuration -----------------------------------------------------

    def configure(self, **options) -> Config:
        """Apply a partial update. Raises ConfigurationError without mutating."""
        config = self._store.configure(**options)
        if options:
            logger.debug("Configuration updated: %s", ", ".join(sorted(options)))
        return config

    def get_config(self) -> Config:
        return self._store.get()

    # -- sessions ----------------------------------------------------------

    def start_session(self, name: str | None = None) -> Session:
        session = self._sessions.start(name)
        self.emit(
            f"Session started: {name or session.id}",
            LogLevel.INFORMATION,
            correlation_id=session.id,
            additional_data=session.describe(),
        )
        return session

    def stop_session(self):
        session = self._sessions.active
        if session is None:
            logger.warning("stop_session called with no active session")
            return
        self.emit(
            f"Session ended: {session.name or session.id}",
            LogLevel.INFORMATION,
            correlation_id=session.id,
            additional_data={
                "sessionId": session.id,
                "sessionName": session.name,
                "durationSeconds": round(self._sessions.elapsed_seconds(session), 3),
            },
        )
        self._sessions.stop()

    # -- emission ----------------------------------------------------------

    def emit(
        self,
        message,
        level=LogLevel.INFORMATION,
        correlation_id: str | None = None,
        exception: BaseException | None = None,
        additional_data=None,
        caller: CallerContext | None = None,
    ):
        """Build an entry and dispatch it to every enabled sink. Never raises."""
        try:
            self._emit(message, level, correlation_id, exception, additional_data, caller)
        except Exception as e:
            self._internal_failure(message, level, e)

    def _emit(self, message, level, correlation_id, exception, additional_data, caller):
        config = self._store.get()
        try:
            level = LogLevel.parse(level)
        except ValueError as e:
            self._degraded("InvalidLevel", f"{e}; using Information")
            level = LogLevel.INFORMATION

        if level < config.log_level:
            return

        entry, dropped = build_entry(
            message,
            level,
            correlation_id or self._sessions.correlation_id or new_correlation_id(),
            caller or resolve_caller(),
            exception=exception,
            additional_data=additional_data,
            time_func=self._time_func,
        )
        for key in dropped:
            self._degraded(
                SerializationError.__name__,
                f"additional data '{key}' is not JSON-serializable; dropped",
            )

        self._dispatch(entry, config)

    def _dispatch(self, entry, config: Config):
        sinks = (
            ("file", config.enable_file_sink, self._file_sink.write),
            ("event", config.enable_event_sink, self._event_sink.write),
            ("siem", config.enable_siem, self._siem_sink.deliver),
        )
        for name, enabled, write in sinks:
            if not enabled:
                continue
            try:
                result = write(entry, config)
            except SinkUnavailableError as e:
                self._degraded(SinkUnavailableError.__name__, f"{name} sink skipped: {e}")
                continue
            except Exception as e:
                self._internal_failure(entry.message, entry.level, e, config)
                continue
            if name == "siem" and result is False:
                self._degraded(TransientDeliveryError.__name__, "SIEM delivery exhausted; entry queued")

    # -- direct events -----------------------------------------------------

    def write_direct_event(self, message: str, event_id: int, severity,
                           source: str | None = None, log_name: str | None = None):
        """Write straight to the OS event facility, bypassing the pipeline."""
        config = self._store.get()
        try:
            self._event_sink.write_direct(
                message,
                event_id,
                severity,
                source or config.event_source,
                log_name or config.event_log_name,
            )
        except SinkUnavailableError as e:
            self._degraded(SinkUnavailableError.__name__, f"direct event skipped: {e}")
        except ValueError as e:
            self._degraded("InvalidArgument", f"direct event rejected: {e}")
        except Exception as e:
            self._internal_failure(message, severity, e, config)

    # -- failure handling --------------------------------------------------

    def _degraded(self, kind: str, message: str):
        logger.warning("%s: %s", kind, message)
        self._diagnostics.record(kind, message)

    def _internal_failure(self, message, level, error: Exception, config: Config | None = None):
        """Redirect an unexpected fault to the fallback file. Never raises."""
        try:
            config = config or self._store.get()
            label = level.label if isinstance(level, LogLevel) else str(level)
            self._diagnostics.record(PipelineInternalError.__name__, f"{type(error).__name__}: {error}")
            logger.warning("Pipeline internal error (%s); writing fallback record", error)
            self._fallback.write(config.resolved_fallback_path, label, str(message), error)
        except Exception:  # terminal best effort
            pass
