"""Error taxonomy for the audit log pipeline.

Only ConfigurationError ever reaches a caller. The others are raised inside the
pipeline, caught at the sink or emit boundary, and recorded as diagnostics.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(PipelineError, ValueError):
    """An option value was rejected; configuration was left unchanged."""


class TransientDeliveryError(PipelineError):
    """A SIEM delivery attempt failed (non-2xx, timeout, transport error)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SinkUnavailableError(PipelineError):
    """A sink could not be written (missing event source, unwritable path)."""


class SerializationError(PipelineError):
    """A value could not be serialized to JSON."""


class PipelineInternalError(PipelineError):
    """An unexpected fault escaped a sink and was caught at the emit boundary."""
