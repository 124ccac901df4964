"""SIEM delivery over HTTPS with exponential backoff and durable fallback."""

import json
import logging
import time
from datetime import datetime, timezone

import httpx

from auditlog.config import Config, SiemType
from auditlog.delivery_queue import DeliveryQueue
from auditlog.errors import SinkUnavailableError, TransientDeliveryError
from auditlog.models import LogEntry

logger = logging.getLogger(__name__)

SPLUNK_SOURCE = "AuditLogPipeline"
SPLUNK_SOURCETYPE = "_json"


def _compact(obj) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def _epoch_seconds(timestamp: str) -> float:
    parsed = datetime.fromisoformat(timestamp)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return round(parsed.timestamp(), 3)


def build_envelope(entry: LogEntry, siem_type: SiemType) -> tuple[bytes, str]:
    """Serialize *entry* for the collector type. Returns (body, content type)."""
    record = entry.to_dict()
    if siem_type is SiemType.SPLUNK:
        body = _compact({
            "time": _epoch_seconds(entry.timestamp_utc),
            "host": entry.machine,
            "source": SPLUNK_SOURCE,
            "sourcetype": SPLUNK_SOURCETYPE,
            "event": record,
        })
        return body.encode("utf-8"), "application/json"
    if siem_type is SiemType.ELASTIC:
        body = _compact({"@timestamp": entry.timestamp_utc, **record}) + "\n"
        return body.encode("utf-8"), "application/x-ndjson"
    if siem_type is SiemType.SENTINEL:
        return _compact([record]).encode("utf-8"), "application/json"
    return _compact(record).encode("utf-8"), "application/json"


def build_headers(config: Config, content_type: str) -> dict:
    headers = {"Content-Type": content_type, "Accept": "application/json"}
    if config.siem_token:
        scheme = "Splunk" if config.siem_type is SiemType.SPLUNK else "Bearer"
        headers["Authorization"] = f"{scheme} {config.siem_token}"
    return headers


def backoff_delay(base: float, attempt: int) -> float:
    """Delay after failed attempt *attempt* (1-based): base * 2^(attempt-1)."""
    return base * (2 ** (attempt - 1))


class SiemSink:
    """Posts entries to the configured collector; queues them durably on exhaustion."""

    def __init__(self, sleep_func=None, transport: httpx.BaseTransport | None = None,
                 time_func=None):
        self._sleep = sleep_func or time.sleep
        self._transport = transport
        self._time_func = time_func

    def deliver(self, entry: LogEntry, config: Config) -> bool:
        """Send *entry*, retrying transient failures.

        Returns True if delivered, False if it was written to the durable
        queue instead. Raises SinkUnavailableError only if the queue write
        also fails.
        """
        body, content_type = build_envelope(entry, config.siem_type)
        headers = build_headers(config, content_type)
        max_attempts = config.siem_max_attempts
        last_error = None

        with httpx.Client(timeout=config.siem_timeout_seconds,
                          verify=config.siem_verify_tls,
                          transport=self._transport) as client:
            for attempt in range(1, max_attempts + 1):
                try:
                    self._post(client, config.siem_endpoint, body, headers)
                    if attempt > 1:
                        logger.info("SIEM delivery succeeded on attempt %d", attempt)
                    return True
                except TransientDeliveryError as e:
                    last_error = str(e)
                    logger.warning(
                        "SIEM delivery failed (attempt %d/%d): %s",
                        attempt, max_attempts, e,
                    )
                if attempt < max_attempts:
                    self._sleep(backoff_delay(config.siem_backoff_base_seconds, attempt))

        logger.error("SIEM delivery exhausted after %d attempts", max_attempts)
        queue = DeliveryQueue(config.resolved_queue_dir, time_func=self._time_func)
        try:
            queue.enqueue(entry, max_attempts, config.siem_type.value, last_error)
        except OSError as e:
            raise SinkUnavailableError(
                f"SIEM delivery exhausted and queue write to {queue.queue_dir} failed: {e}"
            ) from e
        return False

    @staticmethod
    def _post(client: httpx.Client, endpoint: str, body: bytes, headers: dict):
        try:
            response = client.post(endpoint, content=body, headers=headers)
        except httpx.TimeoutException as e:
            raise TransientDeliveryError(f"timeout: {e}") from e
        except httpx.HTTPError as e:
            raise TransientDeliveryError(f"{type(e).__name__}: {e}") from e
        if not response.is_success:
            raise TransientDeliveryError(
                f"HTTP {response.status_code}", status_code=response.status_code
            )
