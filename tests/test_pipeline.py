"""End-to-end tests for the pipeline facade: filtering, sessions, sinks, failures."""

import itertools
import os
import threading
from dataclasses import replace

import pytest

from auditlog.caller import CallerContext
from auditlog.config import LogLevel
from auditlog.errors import (
    ConfigurationError,
    PipelineInternalError,
    SerializationError,
    SinkUnavailableError,
    TransientDeliveryError,
)
from auditlog.event_sink import EVENT_ID_BY_LEVEL, EventSeverity, EventSink
from auditlog.file_sink import read_entries

from conftest import FakeEventBackend


DAY_FILE = "AuditLog_20250115.log"


def _entries(pipeline):
    path = os.path.join(pipeline.get_config().log_path, DAY_FILE)
    if not os.path.exists(path):
        return []
    return read_entries(path)


class ExplodingFileSink:
    def write(self, entry, config):
        raise RuntimeError("disk controller reset")


class TestLevelFilter:
    @pytest.mark.parametrize("level,threshold", list(itertools.product(list(LogLevel), repeat=2)))
    def test_every_sink_honours_threshold(self, make_pipeline, siem_server, event_backend,
                                          level, threshold):
        pipeline = make_pipeline()
        pipeline.configure(log_level=threshold, enable_event_sink=True, enable_siem=True)

        pipeline.emit(f"{level.label} entry", level)

        expected = 1 if level >= threshold else 0
        assert len(_entries(pipeline)) == expected
        assert len(event_backend.events) == expected
        assert len(siem_server.requests) == expected

    def test_warning_threshold_by_option_alias(self, pipeline):
        pipeline.configure(LogLevel="WARN")

        pipeline.emit("routine", "INFO")
        pipeline.emit("drift", "Warning")
        pipeline.emit("broken", LogLevel.ERROR)

        assert [e.message for e in _entries(pipeline)] == ["drift", "broken"]

    def test_invalid_level_is_recorded_and_treated_as_information(self, pipeline):
        pipeline.emit("odd level", "Verbose")

        (entry,) = _entries(pipeline)
        assert entry.level is LogLevel.INFORMATION
        assert pipeline.diagnostics.count("InvalidLevel") == 1


class TestEmit:
    def test_written_entry_round_trips(self, pipeline):
        try:
            raise ConnectionResetError("peer closed")
        except ConnectionResetError as e:
            error = e
        pipeline.emit("Replication failed", LogLevel.ERROR, correlation_id="corr-77",
                      exception=error, additional_data={"dc": "DC01", "retries": 2})

        (entry,) = _entries(pipeline)
        assert entry.message == "Replication failed"
        assert entry.level is LogLevel.ERROR
        assert entry.correlation_id == "corr-77"
        assert entry.exception.type == "ConnectionResetError"
        assert entry.exception.message == "peer closed"
        assert dict(entry.additional_data) == {"dc": "DC01", "retries": 2}
        assert entry.timestamp_utc == "2025-01-15T12:00:00+00:00"

    def test_caller_is_the_emitting_function(self, pipeline):
        pipeline.emit("who called")
        (entry,) = _entries(pipeline)
        assert entry.caller_function == "test_caller_is_the_emitting_function"
        assert entry.caller_script.endswith("test_pipeline.py")
        assert entry.caller_line > 0

    def test_explicit_caller_wins(self, pipeline):
        pipeline.emit("forwarded", caller=CallerContext("Remote-Job", "job.py", 88))
        (entry,) = _entries(pipeline)
        assert (entry.caller_function, entry.caller_script, entry.caller_line) == (
            "Remote-Job", "job.py", 88,
        )

    def test_without_session_each_entry_gets_fresh_id(self, pipeline):
        pipeline.emit("a")
        pipeline.emit("b")
        first, second = _entries(pipeline)
        assert first.correlation_id and second.correlation_id
        assert first.correlation_id != second.correlation_id

    def test_unserializable_data_is_dropped_and_recorded(self, pipeline):
        pipeline.emit("partial", additional_data={"ok": True, "conn": object()})

        (entry,) = _entries(pipeline)
        assert dict(entry.additional_data) == {"ok": True}
        assert pipeline.diagnostics.count("SerializationError") == 1

    def test_disabled_file_sink_writes_nothing(self, pipeline, event_backend):
        pipeline.configure(enable_file_sink=False, enable_event_sink=True)
        pipeline.emit("event only", LogLevel.WARNING)

        assert _entries(pipeline) == []
        (event,) = event_backend.events
        assert event["severity"] is EventSeverity.WARNING
        assert event["event_id"] == EVENT_ID_BY_LEVEL[LogLevel.WARNING]

    def test_concurrent_emits_share_session_and_lose_nothing(self, pipeline):
        session = pipeline.start_session("bulk")

        def worker(n):
            for i in range(25):
                pipeline.emit(f"worker-{n}-{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        entries = [e for e in _entries(pipeline) if e.message.startswith("worker-")]
        assert len(entries) == 100
        assert {e.correlation_id for e in entries} == {session.id}


class TestSessions:
    def test_session_lifecycle_drives_correlation(self, pipeline, clock):
        session = pipeline.start_session("X")
        pipeline.emit("inside")
        clock.advance(5)
        pipeline.stop_session()
        pipeline.emit("after")

        started, inside, ended, after = _entries(pipeline)
        assert started.message == "Session started: X"
        assert started.additional_data["sessionName"] == "X"
        assert started.additional_data["sessionId"] == session.id
        assert inside.correlation_id == session.id
        assert ended.message == "Session ended: X"
        assert ended.correlation_id == session.id
        assert ended.additional_data["durationSeconds"] == 5.0
        assert after.correlation_id != session.id
        assert pipeline.active_session is None

    def test_unnamed_session_is_labelled_by_id(self, pipeline):
        session = pipeline.start_session()
        (started,) = _entries(pipeline)
        assert started.message == f"Session started: {session.id}"

    def test_explicit_correlation_id_beats_session(self, pipeline):
        pipeline.start_session("X")
        pipeline.emit("explicit", correlation_id="caller-chosen")
        assert _entries(pipeline)[-1].correlation_id == "caller-chosen"

    def test_stop_without_session_writes_nothing(self, pipeline):
        pipeline.stop_session()
        assert _entries(pipeline) == []
        assert pipeline.diagnostics.count() == 0

    def test_new_session_replaces_active_one(self, pipeline):
        first = pipeline.start_session("first")
        second = pipeline.start_session("second")
        pipeline.emit("inside")

        assert first.id != second.id
        assert pipeline.active_session == second
        assert _entries(pipeline)[-1].correlation_id == second.id


class TestConfigure:
    def test_invalid_update_raises_and_keeps_state(self, pipeline):
        before = pipeline.get_config()
        with pytest.raises(ConfigurationError):
            pipeline.configure(max_log_files=0)
        with pytest.raises(ConfigurationError):
            pipeline.configure(siem_endpoint=None, enable_siem=True)
        assert pipeline.get_config() == before

    @pytest.mark.parametrize("size", ["nan", "inf"])
    def test_non_finite_size_is_rejected_and_file_sink_keeps_working(self, pipeline, size):
        with pytest.raises(ConfigurationError):
            pipeline.configure(MaxLogSizeMB=size)

        pipeline.emit("audit", LogLevel.ERROR)

        assert [e.message for e in _entries(pipeline)] == ["audit"]
        assert pipeline.diagnostics.count() == 0

    def test_unrecognised_boolean_does_not_disable_sink(self, pipeline):
        with pytest.raises(ConfigurationError):
            pipeline.configure(EnableFileSink="definitely")
        assert pipeline.get_config().enable_file_sink is True

    def test_update_applies_to_next_emit(self, pipeline, tmp_path):
        pipeline.emit("old location")
        pipeline.configure(LogPath=str(tmp_path / "moved"))
        pipeline.emit("new location")

        assert [e.message for e in _entries(pipeline)] == ["new location"]


class TestDegradedPaths:
    def test_unregistered_event_source_does_not_block_other_sinks(self, make_pipeline):
        pipeline = make_pipeline(event_sink=EventSink(backend=FakeEventBackend(registered=())))
        pipeline.configure(enable_event_sink=True)

        pipeline.emit("still on disk", LogLevel.ERROR)

        assert [e.message for e in _entries(pipeline)] == ["still on disk"]
        assert pipeline.diagnostics.count("SinkUnavailableError") == 1

    def test_siem_exhaustion_queues_and_records(self, pipeline, siem_server, sleeper):
        siem_server.statuses = [503]
        pipeline.configure(enable_siem=True)

        pipeline.emit("needs SIEM", LogLevel.CRITICAL, correlation_id="corr-q")

        config = pipeline.get_config()
        assert len(siem_server.requests) == 3
        assert sleeper.delays == [2.0, 4.0]
        assert len(os.listdir(config.resolved_queue_dir)) == 1
        assert pipeline.diagnostics.count("TransientDeliveryError") == 1
        assert [e.message for e in _entries(pipeline)] == ["needs SIEM"]

    def test_internal_sink_fault_goes_to_fallback_file(self, make_pipeline, event_backend):
        pipeline = make_pipeline(file_sink=ExplodingFileSink())
        pipeline.configure(enable_event_sink=True)

        pipeline.emit("Audit step crashed", LogLevel.ERROR)

        fallback = pipeline.get_config().resolved_fallback_path
        with open(fallback, encoding="utf-8") as f:
            (line,) = f.read().splitlines()
        assert " | Error | Audit step crashed | RuntimeError: disk controller reset" in line
        assert pipeline.diagnostics.count("PipelineInternalError") == 1
        assert len(event_backend.events) == 1

    def test_unwritable_fallback_never_raises(self, make_pipeline, base_config, tmp_path):
        config = replace(base_config, fallback_path=str(tmp_path))
        pipeline = make_pipeline(config, file_sink=ExplodingFileSink())

        pipeline.emit("lost entirely", LogLevel.ERROR)

        assert pipeline.diagnostics.count("PipelineInternalError") == 1
        assert pipeline.diagnostics.count("FallbackWriteError") == 1

    def test_diagnostic_kinds_are_error_class_names(self, make_pipeline, siem_server):
        pipeline = make_pipeline(file_sink=ExplodingFileSink())
        pipeline.configure(enable_event_sink=True, enable_siem=True, event_source="Unregistered")
        siem_server.statuses = [503]

        pipeline.emit("mixed failures", LogLevel.ERROR, additional_data={"conn": object()})

        assert pipeline.diagnostics.counts() == {
            SerializationError.__name__: 1,
            PipelineInternalError.__name__: 1,
            SinkUnavailableError.__name__: 1,
            TransientDeliveryError.__name__: 1,
        }

    def test_unprintable_message_never_raises(self, pipeline):
        class Unprintable:
            def __str__(self):
                raise RuntimeError("no repr for you")

        pipeline.emit(Unprintable())
        assert pipeline.diagnostics.count("PipelineInternalError") == 1


class TestWriteDirectEvent:
    def test_uses_configured_source_by_default(self, pipeline, event_backend):
        pipeline.write_direct_event("raw event", 4100, "Error")

        (event,) = event_backend.events
        assert event["source"] == "AuditLogPipeline"
        assert event["log_name"] == "Application"
        assert event["event_id"] == 4100
        assert event["severity"] is EventSeverity.ERROR
        assert event["message"] == "raw event"
        assert _entries(pipeline) == []

    def test_explicit_source_and_log(self, make_pipeline):
        backend = FakeEventBackend(registered={("GpoAudit", "Security")})
        pipeline = make_pipeline(event_sink=EventSink(backend=backend))

        pipeline.write_direct_event("raw", 7, "Warning", source="GpoAudit", log_name="Security")

        assert backend.events[0]["source"] == "GpoAudit"

    def test_ignores_event_sink_toggle_and_level_filter(self, pipeline, event_backend):
        pipeline.configure(enable_event_sink=False, log_level="Critical")
        pipeline.write_direct_event("raw", 1, "Information")
        assert len(event_backend.events) == 1

    def test_unregistered_source_is_recorded(self, pipeline, event_backend):
        pipeline.write_direct_event("raw", 1, "Information", source="Unknown-Source")

        assert event_backend.events == []
        assert pipeline.diagnostics.count("SinkUnavailableError") == 1

    @pytest.mark.parametrize("event_id,severity", [(70000, "Error"), (1, "Verbose")])
    def test_invalid_arguments_are_recorded(self, pipeline, event_backend, event_id, severity):
        pipeline.write_direct_event("raw", event_id, severity)

        assert event_backend.events == []
        assert pipeline.diagnostics.count("InvalidArgument") == 1

    def test_backend_fault_goes_to_fallback(self, make_pipeline):
        class FaultyBackend(FakeEventBackend):
            def write(self, *args):
                raise RuntimeError("RPC server unavailable")

        pipeline = make_pipeline(event_sink=EventSink(backend=FaultyBackend()))
        pipeline.write_direct_event("raw", 1, "Warning")

        with open(pipeline.get_config().resolved_fallback_path, encoding="utf-8") as f:
            assert "| Warning | raw | RuntimeError: RPC server unavailable" in f.read()
