"""
Service layer shared by the CLI and library callers.

ReportService turns stored events into persisted issues and rendered
reports; BaselineService manages the accepted-issue snapshot used by CI.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace

from querydoctor.models import Issue, QueryEvent, Severity, count_by_severity
from querydoctor.output.renderers import OutputFormat, render
from querydoctor.pipeline import AnalysisPipeline, AnalyzerRun, AnalyzerRunStatus
from querydoctor.storage.base import EventFilters, IssueFilters, Storage, sort_by_severity

logger = logging.getLogger(__name__)


class ReportService:
    """
    Analyze stored events and render the results.

    Example:
        service = ReportService(storage, AnalysisPipeline.from_config(config))
        issues = service.analyze_stored(EventFilters(period=Period.DAY))
        print(service.render(issues, "markdown"))
    """

    def __init__(self, storage: Storage, pipeline: AnalysisPipeline | None = None) -> None:
        self.storage = storage
        self.pipeline = pipeline or AnalysisPipeline.default()
        self.last_runs: list[AnalyzerRun] = []

    def analyze_stored(
        self,
        event_filters: EventFilters | None = None,
        issue_filters: IssueFilters | None = None,
    ) -> list[Issue]:
        """
        Run the pipeline over stored events, one context at a time.

        Every resulting issue is upserted into storage (storage errors
        propagate). Issue filters then apply to the fresh results, and
        issues marked ignored in storage are left out. When no events
        match, previously stored issues are returned instead.
        """
        events = self.storage.get_events(event_filters)
        if not events:
            logger.debug("No stored events matched; returning stored issues")
            return self.storage.get_issues(issue_filters)

        by_context = self.group_by_context(events)
        merged: dict[str, Issue] = {}
        self.last_runs = []

        for context_id, context_events in by_context.items():
            issues, runs = self.pipeline.analyze_with_runs(context_events)
            self.last_runs.extend(runs)
            for issue in issues:
                merged[issue.id] = issue
            logger.debug(
                "Context %s: %d event(s), %d issue(s)",
                context_id, len(context_events), len(issues),
            )

        for issue in merged.values():
            self.storage.store_issue(issue)

        shown = replace(issue_filters or IssueFilters(), period=None)
        visible = {i.id for i in self.storage.get_issues(shown)}
        result = sort_by_severity(i for i in merged.values() if i.id in visible)

        logger.info(
            "Analyzed %d event(s) across %d context(s): %d issue(s)",
            len(events), len(by_context), len(merged),
        )
        return result

    @staticmethod
    def group_by_context(events: Sequence[QueryEvent]) -> dict[str, list[QueryEvent]]:
        """
        Events grouped by context id, each group in capture order.

        Storage returns newest first; groups are put back in the order
        the queries ran.
        """
        groups: dict[str, list[QueryEvent]] = {}
        for event in sorted(reversed(events), key=lambda e: e.timestamp):
            groups.setdefault(event.context_id, []).append(event)
        return groups

    @property
    def failed_runs(self) -> list[AnalyzerRun]:
        return [r for r in self.last_runs if r.status == AnalyzerRunStatus.FAIL]

    @staticmethod
    def render(issues: Sequence[Issue], format: OutputFormat | str = OutputFormat.TEXT) -> str:
        """Render issues; an unknown format raises UnknownFormatError."""
        return render(issues, format)

    @staticmethod
    def has_issues_at_or_above(issues: Sequence[Issue], threshold: Severity) -> bool:
        return any(issue.severity.is_at_least(threshold) for issue in issues)

    @staticmethod
    def count_by_severity(issues: Sequence[Issue]) -> dict[str, int]:
        return count_by_severity(issues)


class BaselineService:
    """Snapshot of accepted issues; CI only fails on issues outside it."""

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def create(self) -> int:
        """Replace the baseline with every current non-ignored issue."""
        return self.storage.create_baseline()

    def clear(self) -> None:
        self.storage.clear_baseline()
        logger.info("Baseline cleared")

    def baselined_ids(self) -> list[str]:
        return self.storage.get_baselined_issue_ids()

    def filter_baselined(self, issues: Sequence[Issue]) -> list[Issue]:
        """Drop baselined issues; with no baseline, everything passes through."""
        baselined = set(self.baselined_ids())
        if not baselined:
            return list(issues)
        return [issue for issue in issues if issue.id not in baselined]
