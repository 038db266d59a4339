"""Tests for the analysis pipeline."""

from datetime import datetime, timedelta, timezone

import pytest

from querydoctor.analyzers import Analyzer, NPlusOneAnalyzer, SlowQueryAnalyzer
from querydoctor.config import Config
from querydoctor.exceptions import AnalyzerFailedError, ConfigurationError
from querydoctor.models import IssueType, QueryEvent
from querydoctor.pipeline import AnalysisPipeline, AnalyzerRunStatus

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_events(count: int = 25, time_ms: float = 12.0) -> list[QueryEvent]:
    """An N+1 burst that also trips SELECT *."""
    return [
        QueryEvent(
            sql="SELECT * FROM posts WHERE user_id = ?",
            bindings=(i,),
            time_ms=time_ms,
            context_id="req-1",
            timestamp=BASE_TIME + timedelta(milliseconds=i),
        )
        for i in range(count)
    ]


class ExplodingAnalyzer(Analyzer):
    """Raises on every batch; never registered globally."""

    type = IssueType.MISSING_INDEX
    version = "0.0.1"

    def analyze(self, events):
        raise RuntimeError("boom")


class TestAnalysisPipeline:
    """Running analyzers and merging their output."""

    def test_default_runs_all_analyzers(self):
        pipeline = AnalysisPipeline.default()
        assert [a.type.value for a in pipeline.analyzers] == [
            "slow",
            "duplicate",
            "n_plus_one",
            "missing_index",
            "select_star",
        ]

    def test_detects_n_plus_one_and_select_star(self):
        issues = AnalysisPipeline.default().analyze(make_events())
        assert {i.type for i in issues} == {IssueType.N_PLUS_ONE, IssueType.SELECT_STAR}

    def test_empty_batch(self):
        issues, runs = AnalysisPipeline.default().analyze_with_runs([])
        assert issues == []
        assert runs == []

    def test_records_a_run_per_analyzer(self):
        _, runs = AnalysisPipeline.default().analyze_with_runs(make_events())

        assert len(runs) == 5
        assert all(r.status == AnalyzerRunStatus.PASS for r in runs)
        by_name = {r.analyzer: r for r in runs}
        assert by_name["n_plus_one"].issues_count == 1
        assert by_name["slow"].issues_count == 0

    def test_failing_analyzer_is_isolated(self):
        pipeline = AnalysisPipeline([ExplodingAnalyzer(), NPlusOneAnalyzer()])
        issues, runs = pipeline.analyze_with_runs(make_events())

        assert [i.type for i in issues] == [IssueType.N_PLUS_ONE]
        assert runs[0].status == AnalyzerRunStatus.FAIL
        assert runs[0].error_summary == "boom"
        assert runs[1].status == AnalyzerRunStatus.PASS

    def test_fail_fast_raises(self):
        pipeline = AnalysisPipeline([ExplodingAnalyzer(), NPlusOneAnalyzer()], fail_fast=True)

        with pytest.raises(AnalyzerFailedError) as exc_info:
            pipeline.analyze(make_events())

        assert exc_info.value.analyzer_type == "missing_index"
        assert "boom" in exc_info.value.message

    def test_merges_issues_by_id(self):
        events = [
            QueryEvent(
                sql="SELECT * FROM reports",
                time_ms=300.0,
                context_id="req-1",
                timestamp=BASE_TIME + timedelta(seconds=i),
            )
            for i in range(3)
        ]
        issues = AnalysisPipeline([SlowQueryAnalyzer()]).analyze(events)
        assert len(issues) == 1

    def test_deterministic(self):
        events = make_events()
        first = [i.id for i in AnalysisPipeline.default().analyze(events)]
        second = [i.id for i in AnalysisPipeline.default().analyze(events)]
        assert first == second


class TestPipelineFromConfig:
    """Building the pipeline from configuration."""

    def test_disabled_analyzer_not_instantiated(self):
        config = Config(analyzers={"select_star": {"enabled": False}})
        pipeline = AnalysisPipeline.from_config(config)

        assert "select_star" not in [a.type.value for a in pipeline.analyzers]
        assert len(pipeline.analyzers) == 4

    def test_thresholds_applied(self):
        config = Config(analyzers={"slow": {"threshold_ms": 10}})
        pipeline = AnalysisPipeline.from_config(config)

        issues = pipeline.analyze(make_events(count=1, time_ms=15.0))
        assert [i.type for i in issues] == [IssueType.SLOW]

    def test_unknown_analyzer_rejected(self):
        config = Config(analyzers={"cartesian": {"enabled": True}})
        with pytest.raises(ConfigurationError, match="cartesian"):
            AnalysisPipeline.from_config(config)

    def test_unknown_option_rejected(self):
        config = Config(analyzers={"slow": {"treshold_ms": 10}})
        with pytest.raises(ConfigurationError) as exc_info:
            AnalysisPipeline.from_config(config)
        assert exc_info.value.config_key == "analyzers.slow"

    def test_invalid_value_rejected(self):
        config = Config(analyzers={"n_plus_one": {"min_repetitions": 1}})
        with pytest.raises(ConfigurationError):
            AnalysisPipeline.from_config(config)
