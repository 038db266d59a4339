"""
Golden tests: trace files replayed through capture, storage and analysis.

Each trace in fixtures/traces/ describes one scenario with a known result.
"""

import json

import pytest

from querydoctor.capture import QueryCaptureService
from querydoctor.config import CaptureConfig
from querydoctor.exceptions import CaptureError
from querydoctor.masking import MASKED, BindingMasker
from querydoctor.models import CaptureContext, IssueType, Severity
from querydoctor.services import ReportService
from querydoctor.trace import TraceEvent, ingest_trace, load_trace


def make_capture(storage) -> QueryCaptureService:
    config = CaptureConfig(http=True, queue=True, cli=True, sample_rate=1.0)
    return QueryCaptureService(storage, BindingMasker.with_defaults(), config)


def analyze_trace(storage, path):
    ingest_trace(make_capture(storage), load_trace(path))
    return ReportService(storage).analyze_stored()


class TestLoadTrace:
    """Parsing and validating trace files."""

    def test_events_key(self, traces_dir):
        events = load_trace(traces_dir / "n_plus_one.json")
        assert len(events) == 26
        assert events[0].stack[0].file == "app/views/users.py"

    def test_top_level_list(self, traces_dir):
        events = load_trace(traces_dir / "duplicate.json")
        assert len(events) == 12
        assert events[0].context == CaptureContext.QUEUE

    def test_defaults(self):
        event = TraceEvent(sql="select 1")
        assert event.bindings == []
        assert event.connection == "default"
        assert event.context == CaptureContext.HTTP
        assert event.context_id is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(CaptureError, match="Cannot read"):
            load_trace(tmp_path / "absent.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(CaptureError, match="not valid JSON"):
            load_trace(path)

    def test_wrong_shape(self, tmp_path):
        path = tmp_path / "shape.json"
        path.write_text(json.dumps({"queries": []}))
        with pytest.raises(CaptureError, match="list of events"):
            load_trace(path)

    def test_invalid_event(self, tmp_path):
        path = tmp_path / "event.json"
        path.write_text(json.dumps([{"sql": "select 1", "time_ms": -4}]))
        with pytest.raises(CaptureError, match="Invalid event"):
            load_trace(path)


class TestIngestTrace:
    """Replaying trace events through capture."""

    def test_groups_by_context(self, memory_storage):
        events = [
            TraceEvent(sql="select 1", context_id="a"),
            TraceEvent(sql="select 2", context_id="b"),
            TraceEvent(sql="select 3", context_id="a"),
        ]
        result = ingest_trace(make_capture(memory_storage), events)

        assert result.stored == 3
        assert result.ok
        contexts = sorted(e.context_id for e in memory_storage.get_events())
        assert contexts == ["a", "a", "b"]

    def test_fallback_context_id(self, memory_storage):
        events = [TraceEvent(sql="select 1"), TraceEvent(sql="select 2", context_id="own")]
        ingest_trace(make_capture(memory_storage), events, context_id="batch-9")

        contexts = {e.sql: e.context_id for e in memory_storage.get_events()}
        assert contexts == {"select 1": "batch-9", "select 2": "own"}

    def test_unknown_context_without_ids(self, memory_storage):
        ingest_trace(make_capture(memory_storage), [TraceEvent(sql="select 1")])
        assert memory_storage.get_events()[0].context_id == "unknown"

    def test_bindings_masked(self, memory_storage):
        events = [TraceEvent(sql="select * from users where password = ?", bindings=["pw"])]
        ingest_trace(make_capture(memory_storage), events)
        assert memory_storage.get_events()[0].bindings == (MASKED,)

    def test_ignore_patterns_apply(self, memory_storage):
        events = [TraceEvent(sql="PRAGMA foreign_keys"), TraceEvent(sql="select 1")]
        result = ingest_trace(make_capture(memory_storage), events)
        assert result.stored == 1


@pytest.fixture(params=["memory", "sqlite"])
def storage(request, memory_storage):
    if request.param == "memory":
        return memory_storage
    return request.getfixturevalue("sqlite_storage")


class TestGoldenTraces:
    """Known scenarios end to end."""

    def test_n_plus_one_trace(self, storage, traces_dir):
        issues = analyze_trace(storage, traces_dir / "n_plus_one.json")
        by_type = {i.type: i for i in issues}

        assert set(by_type) == {IssueType.N_PLUS_ONE, IssueType.SELECT_STAR}

        n_plus_one = by_type[IssueType.N_PLUS_ONE]
        assert n_plus_one.severity == Severity.HIGH
        assert n_plus_one.evidence.query_count == 25
        assert n_plus_one.evidence.total_time_ms == pytest.approx(300.0)
        assert n_plus_one.evidence.fingerprint.value == "select * from posts where user_id = ?"
        assert n_plus_one.source_context.route == "GET /users"
        assert n_plus_one.source_context.file == "app/views/users.py"
        assert n_plus_one.source_context.line == 22

        assert by_type[IssueType.SELECT_STAR].severity == Severity.LOW
        assert issues[0].type == IssueType.N_PLUS_ONE

    def test_duplicate_trace(self, storage, traces_dir):
        issues = analyze_trace(storage, traces_dir / "duplicate.json")

        assert [i.type for i in issues] == [IssueType.DUPLICATE]
        assert issues[0].severity == Severity.MEDIUM
        assert issues[0].evidence.query_count == 12
        assert issues[0].source_context.route == "SyncSettingsJob"

    def test_clean_trace(self, storage, traces_dir):
        assert analyze_trace(storage, traces_dir / "clean.json") == []

    def test_reingest_keeps_issue_ids(self, storage, traces_dir):
        first = {i.id for i in analyze_trace(storage, traces_dir / "duplicate.json")}
        second = {i.id for i in analyze_trace(storage, traces_dir / "duplicate.json")}
        assert first == second
