"""
In-process storage.

Useful for tests and for one-shot analysis where nothing needs to survive
the process. There is no retention: cleanup() does nothing.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone

from querydoctor.models import Issue, QueryEvent
from querydoctor.storage.base import (
    MAX_EVENTS,
    EventFilters,
    IssueFilters,
    Storage,
    sort_by_severity,
)


class _IssueRecord:
    __slots__ = ("issue", "first_seen", "last_seen", "occurrences", "ignored")

    def __init__(self, issue: Issue, now: datetime) -> None:
        self.issue = issue
        self.first_seen = now
        self.last_seen = now
        self.occurrences = 1
        self.ignored = False


class InMemoryStorage(Storage):
    """Volatile storage backed by lists and dicts, guarded by one lock."""

    def __init__(self) -> None:
        super().__init__(cleanup_every=0)
        self._lock = threading.Lock()
        self._events: list[QueryEvent] = []
        self._issues: dict[str, _IssueRecord] = {}
        self._baseline: list[str] = []

    def store_event(self, event: QueryEvent) -> None:
        with self._lock:
            self._events.append(event)

    def store_events(self, events: list[QueryEvent]) -> None:
        if not events:
            return
        with self._lock:
            self._events.extend(events)

    def get_events(self, filters: EventFilters | None = None) -> list[QueryEvent]:
        filters = filters or EventFilters()
        since = filters.period.since() if filters.period else None

        with self._lock:
            events = list(self._events)

        result = [
            e for e in events
            if (filters.context_id is None or e.context_id == filters.context_id)
            and (filters.fingerprint_hash is None
                 or e.fingerprint().hash == filters.fingerprint_hash)
            and (filters.min_time is None or e.time_ms >= filters.min_time)
            and (filters.connection is None or e.connection == filters.connection)
            and (since is None or e.timestamp >= since)
        ]
        # Newest first; reversing first keeps later captures ahead on ties
        result.reverse()
        result.sort(key=lambda e: e.timestamp, reverse=True)
        return result[:MAX_EVENTS]

    def store_issue(self, issue: Issue) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            record = self._issues.get(issue.id)
            if record is None:
                self._issues[issue.id] = _IssueRecord(issue, now)
                return
            record.issue = replace(
                record.issue,
                severity=issue.severity,
                confidence=issue.confidence,
            )
            record.last_seen = now
            record.occurrences += 1

    def get_issues(self, filters: IssueFilters | None = None) -> list[Issue]:
        filters = filters or IssueFilters()
        since = filters.period.since() if filters.period else None

        with self._lock:
            records = list(self._issues.values())

        issues = [
            r.issue for r in records
            if (filters.include_ignored or not r.ignored)
            and (filters.severity is None or r.issue.severity == filters.severity)
            and (filters.type is None or r.issue.type == filters.type)
            and filters.matches_route(
                r.issue.source_context.route if r.issue.source_context else None
            )
            and (since is None or r.last_seen >= since)
        ]
        return sort_by_severity(issues)

    def occurrences(self, issue_id: str) -> int:
        record = self._issues.get(issue_id)
        return record.occurrences if record else 0

    def ignore_issue(self, issue_id: str) -> None:
        with self._lock:
            record = self._issues.get(issue_id)
            if record is not None:
                record.ignored = True

    def create_baseline(self) -> int:
        with self._lock:
            self._baseline = [i for i, r in self._issues.items() if not r.ignored]
            return len(self._baseline)

    def clear_baseline(self) -> None:
        with self._lock:
            self._baseline = []

    def get_baselined_issue_ids(self) -> list[str]:
        with self._lock:
            return list(self._baseline)

    def cleanup(self) -> None:
        pass
