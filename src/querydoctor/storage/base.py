"""
Storage contract shared by all backends.

Storage owns two things the pipeline does not: the append-only log of
captured events, and the long-term lifecycle of issues (upserted by id,
with first/last seen and occurrence counts), plus the single active
baseline snapshot.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable

from querydoctor.models import Issue, IssueType, QueryEvent, Severity

logger = logging.getLogger(__name__)

MAX_EVENTS = 10_000


class Period(str, Enum):
    """Time windows accepted by event and issue filters."""

    HOUR = "1h"
    SIX_HOURS = "6h"
    DAY = "24h"
    WEEK = "7d"
    MONTH = "30d"

    @property
    def delta(self) -> timedelta:
        return _PERIOD_DELTAS[self]

    def since(self, now: datetime | None = None) -> datetime:
        return (now or datetime.now(timezone.utc)) - self.delta


_PERIOD_DELTAS = {
    Period.HOUR: timedelta(hours=1),
    Period.SIX_HOURS: timedelta(hours=6),
    Period.DAY: timedelta(hours=24),
    Period.WEEK: timedelta(days=7),
    Period.MONTH: timedelta(days=30),
}


@dataclass(frozen=True)
class EventFilters:
    """Conjunctive filters for get_events(); None means "any"."""

    context_id: str | None = None
    fingerprint_hash: str | None = None
    min_time: float | None = None
    connection: str | None = None
    period: Period | None = None


@dataclass(frozen=True)
class IssueFilters:
    """Conjunctive filters for get_issues(); ``route`` accepts ``*`` wildcards."""

    severity: Severity | None = None
    type: IssueType | None = None
    route: str | None = None
    period: Period | None = None
    include_ignored: bool = False

    def matches_route(self, route: str | None) -> bool:
        if self.route is None:
            return True
        return route is not None and route_pattern(self.route).fullmatch(route) is not None


def route_pattern(route: str) -> re.Pattern[str]:
    """Case-insensitive matcher in which only ``*`` is a wildcard."""
    parts = (re.escape(part) for part in route.split("*"))
    return re.compile(".*".join(parts), re.IGNORECASE | re.DOTALL)


def sort_by_severity(issues: Iterable[Issue]) -> list[Issue]:
    """Critical first; stable for equal severities."""
    return sorted(issues, key=lambda i: i.severity.weight, reverse=True)


class Storage(ABC):
    """
    Abstract storage backend.

    Implementations must be safe for readers while a write is in progress:
    a batch of events and a baseline replacement become visible all at once
    or not at all.
    """

    def __init__(self, cleanup_every: int = 500) -> None:
        self.cleanup_every = cleanup_every
        self._writes_since_cleanup = 0

    @abstractmethod
    def store_event(self, event: QueryEvent) -> None:
        """Append one event."""

    @abstractmethod
    def store_events(self, events: list[QueryEvent]) -> None:
        """Append a batch of events atomically."""

    @abstractmethod
    def get_events(self, filters: EventFilters | None = None) -> list[QueryEvent]:
        """Events matching all filters, newest first, at most MAX_EVENTS."""

    @abstractmethod
    def store_issue(self, issue: Issue) -> None:
        """
        Insert or update an issue by id.

        First insert: first_seen = last_seen = now, occurrences = 1.
        Later calls: last_seen = now, occurrences + 1, severity and
        confidence replaced with the new values.
        """

    @abstractmethod
    def get_issues(self, filters: IssueFilters | None = None) -> list[Issue]:
        """Issues matching all filters, ordered critical to low."""

    @abstractmethod
    def occurrences(self, issue_id: str) -> int:
        """How many times an issue has been stored (0 if unknown)."""

    @abstractmethod
    def ignore_issue(self, issue_id: str) -> None:
        """Exclude an issue from default listings without deleting it."""

    @abstractmethod
    def create_baseline(self) -> int:
        """Replace the baseline with all non-ignored issue ids; return the count."""

    @abstractmethod
    def clear_baseline(self) -> None:
        """Remove the baseline entirely."""

    @abstractmethod
    def get_baselined_issue_ids(self) -> list[str]:
        """Ids in the current baseline."""

    @abstractmethod
    def cleanup(self) -> None:
        """Delete data older than the retention window."""

    def close(self) -> None:
        """Release resources held by the backend."""

    def _record_write(self, count: int = 1) -> None:
        """
        Count writes and run cleanup every ``cleanup_every`` writes.

        Cleanup here is maintenance: a failure is logged and never
        propagated to the write that triggered it.
        """
        if self.cleanup_every <= 0:
            return

        self._writes_since_cleanup += count
        if self._writes_since_cleanup < self.cleanup_every:
            return

        self._writes_since_cleanup = 0
        try:
            self.cleanup()
        except Exception as e:
            logger.warning("Automatic cleanup failed: %s", e)
