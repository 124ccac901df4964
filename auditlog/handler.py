"""Bridge stdlib logging records into a LoggingPipeline."""

import logging

from auditlog.caller import CallerContext
from auditlog.config import LogLevel


def _pipeline_level(levelno: int) -> LogLevel:
    if levelno >= logging.CRITICAL:
        return LogLevel.CRITICAL
    if levelno >= logging.ERROR:
        return LogLevel.ERROR
    if levelno >= logging.WARNING:
        return LogLevel.WARNING
    if levelno >= logging.INFO:
        return LogLevel.INFORMATION
    return LogLevel.DEBUG


class PipelineHandler(logging.Handler):
    """Forward records from application loggers to ``pipeline.emit``.

    Records from the pipeline's own ``auditlog`` loggers are dropped so its
    internal warnings cannot loop back into it.
    """

    def __init__(self, pipeline, level=logging.NOTSET):
        super().__init__(level)
        self._pipeline = pipeline

    def emit(self, record: logging.LogRecord) -> None:
        if record.name == "auditlog" or record.name.startswith("auditlog."):
            return
        try:
            message = self.format(record) if self.formatter else record.getMessage()
            exception = record.exc_info[1] if record.exc_info else None
            self._pipeline.emit(
                message,
                _pipeline_level(record.levelno),
                correlation_id=getattr(record, "correlation_id", None),
                exception=exception,
                additional_data={"logger": record.name, **getattr(record, "data", {})},
                caller=CallerContext(record.funcName or "<module>", record.pathname, record.lineno),
            )
        except Exception:
            self.handleError(record)
