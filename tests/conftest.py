"""Shared pytest fixtures for the audit log pipeline test suite."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from auditlog.config import Config
from auditlog.event_sink import EventSink
from auditlog.file_sink import FileSink
from auditlog.pipeline import LoggingPipeline
from auditlog.siem import SiemSink


class Clock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 1.0):
        self.now += timedelta(seconds=seconds)


class FakeEventBackend:
    """In-memory event facility with an explicit set of registered sources."""

    def __init__(self, registered=(("AuditLogPipeline", "Application"),)):
        self.registered = set(registered)
        self.events: list[dict] = []

    def source_exists(self, source, log_name):
        return (source, log_name) in self.registered

    def write(self, source, log_name, event_id, severity, message):
        self.events.append({
            "source": source,
            "log_name": log_name,
            "event_id": event_id,
            "severity": severity,
            "message": message,
        })


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    def __call__(self, seconds: float):
        self.delays.append(seconds)


class SiemServer:
    """httpx MockTransport that replays a scripted list of responses."""

    def __init__(self, statuses=(200,)):
        self.statuses = list(statuses)
        self.requests: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.statuses)) - 1
        outcome = self.statuses[index]
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, json={"text": "ok"})


def log_files(directory) -> list[str]:
    return sorted(n for n in os.listdir(directory) if n.endswith(".log"))


@pytest.fixture()
def clock() -> Clock:
    return Clock()


@pytest.fixture()
def event_backend() -> FakeEventBackend:
    return FakeEventBackend()


@pytest.fixture()
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def siem_server() -> SiemServer:
    return SiemServer()


@pytest.fixture()
def base_config(tmp_path) -> Config:
    return Config(
        log_path=str(tmp_path / "logs"),
        enable_file_sink=True,
        enable_event_sink=False,
        enable_siem=False,
        siem_endpoint="https://siem.example.com/collector",
    )


@pytest.fixture()
def make_pipeline(base_config, clock, event_backend, sleeper, siem_server):
    """Factory building a pipeline wired to fake event log, SIEM, clock, and sleep."""

    def _make(config: Config | None = None, **sinks) -> LoggingPipeline:
        return LoggingPipeline(
            config or base_config,
            file_sink=sinks.get("file_sink") or FileSink(time_func=clock),
            event_sink=sinks.get("event_sink") or EventSink(backend=event_backend),
            siem_sink=sinks.get("siem_sink") or SiemSink(
                sleep_func=sleeper, transport=siem_server.transport, time_func=clock,
            ),
            time_func=clock,
        )

    return _make


@pytest.fixture()
def pipeline(make_pipeline) -> LoggingPipeline:
    return make_pipeline()
