"""
Domain models for QueryDoctor.

QueryEvent is the captured fact (one executed query). Issue is the unit of
analysis output. Both are immutable; storage owns the long-term lifecycle
of issues (first seen, last seen, occurrences).
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Sequence

from querydoctor.fingerprint import QueryFingerprint

MAX_SAMPLES = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def serialize_bindings(bindings: Sequence[Any]) -> str:
    """Stable text form of bindings, used as an exact-match key."""
    return json.dumps(list(bindings), default=repr, sort_keys=True)


def hash_bindings(bindings: Sequence[Any]) -> str:
    return hashlib.sha256(serialize_bindings(bindings).encode()).hexdigest()


class CaptureContext(str, Enum):
    """Kind of unit of work a query was captured in."""

    HTTP = "http"
    QUEUE = "queue"
    CLI = "cli"


class Severity(str, Enum):
    """
    Severity levels for issues, ordered LOW < MEDIUM < HIGH < CRITICAL.

    Comparison operators use weight, not string order, so that
    gating checks like ``issue.severity >= Severity.HIGH`` read naturally.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def weight(self) -> int:
        return _SEVERITY_WEIGHTS[self]

    def is_at_least(self, other: "Severity") -> bool:
        return self.weight >= other.weight

    @classmethod
    def from_string(cls, value: str) -> "Severity":
        """Parse a severity name, case-insensitively. Raises ValueError if unknown."""
        return cls(value.strip().lower())

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.weight < other.weight

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.weight <= other.weight

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.weight > other.weight

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.weight >= other.weight


_SEVERITY_WEIGHTS = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class IssueType(str, Enum):
    """The five anti-patterns QueryDoctor detects."""

    N_PLUS_ONE = "n_plus_one"
    DUPLICATE = "duplicate"
    SLOW = "slow"
    MISSING_INDEX = "missing_index"
    SELECT_STAR = "select_star"

    @property
    def label(self) -> str:
        return _ISSUE_LABELS[self]


_ISSUE_LABELS = {
    IssueType.N_PLUS_ONE: "N+1 Query",
    IssueType.DUPLICATE: "Duplicate Query",
    IssueType.SLOW: "Slow Query",
    IssueType.MISSING_INDEX: "Missing Index",
    IssueType.SELECT_STAR: "SELECT *",
}


@dataclass(frozen=True)
class StackFrame:
    """One call-site frame from the capture stack excerpt."""

    file: str
    line: int
    function: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "line": self.line, "function": self.function}


@dataclass(frozen=True)
class QueryEvent:
    """
    A single executed query as observed by the capture layer.

    Bindings are stored after masking. ``context_id`` groups the queries of
    one request, job or command so they can be analyzed together.

    ``bindings_hash`` is set when the values themselves were not kept (events
    read back from durable storage). Analyzers compare ``bindings_key`` so
    that identity survives either way.
    """

    sql: str
    bindings: tuple[Any, ...] = ()
    time_ms: float = 0.0
    connection: str = "default"
    context_id: str = "unknown"
    context: CaptureContext = CaptureContext.HTTP
    route: str | None = None
    controller: str | None = None
    stack_excerpt: tuple[StackFrame, ...] = ()
    timestamp: datetime = field(default_factory=_utcnow)
    bindings_hash: str | None = None

    def __post_init__(self) -> None:
        # Accept lists from callers but keep the event hashable/immutable
        if not isinstance(self.bindings, tuple):
            object.__setattr__(self, "bindings", tuple(self.bindings))
        if not isinstance(self.stack_excerpt, tuple):
            object.__setattr__(self, "stack_excerpt", tuple(self.stack_excerpt))

    def fingerprint(self) -> QueryFingerprint:
        return QueryFingerprint.from_sql(self.sql)

    @property
    def bindings_key(self) -> str:
        return self.bindings_hash or hash_bindings(self.bindings)


@dataclass(frozen=True)
class Evidence:
    """
    Supporting data for an issue.

    ``queries`` holds at most MAX_SAMPLES samples, while ``query_count`` and
    ``total_time_ms`` always describe the whole matching group.
    """

    queries: tuple[QueryEvent, ...]
    query_count: int
    total_time_ms: float
    fingerprint: QueryFingerprint

    @classmethod
    def from_group(
        cls,
        events: list[QueryEvent],
        fingerprint: QueryFingerprint,
    ) -> "Evidence":
        return cls(
            queries=tuple(events[:MAX_SAMPLES]),
            query_count=len(events),
            total_time_ms=sum(e.time_ms for e in events),
            fingerprint=fingerprint,
        )


@dataclass(frozen=True)
class Recommendation:
    action: str
    code: str | None = None
    docs_url: str | None = None


@dataclass(frozen=True)
class SourceContext:
    """Where in the application the offending query came from."""

    route: str | None = None
    file: str | None = None
    line: int | None = None
    controller: str | None = None

    @classmethod
    def from_event(cls, event: QueryEvent) -> "SourceContext":
        frame = event.stack_excerpt[0] if event.stack_excerpt else None
        return cls(
            route=event.route,
            file=frame.file if frame else None,
            line=frame.line if frame else None,
            controller=event.controller,
        )


@dataclass(frozen=True)
class Issue:
    """
    A detected anti-pattern instance.

    The id is derived from (type, fingerprint hash, context id), so the same
    recurring problem in the same context always maps to the same issue,
    which is what lets storage upsert it across runs.
    """

    id: str
    type: IssueType
    severity: Severity
    confidence: float
    title: str
    description: str
    evidence: Evidence
    recommendation: Recommendation
    source_context: SourceContext | None = None
    created_at: datetime = field(default_factory=_utcnow)

    @staticmethod
    def make_id(
        issue_type: IssueType,
        fingerprint: QueryFingerprint,
        context_id: str,
    ) -> str:
        key = f"{issue_type.value}:{fingerprint.hash}:{context_id}"
        return hashlib.sha256(key.encode()).hexdigest()


# Scan types shared by all EXPLAIN adapters
SCAN_FULL = "full_scan"
SCAN_INDEX = "index_scan"
SCAN_RANGE = "range_scan"
SCAN_REF = "ref"
SCAN_CONST = "const"


@dataclass(frozen=True)
class ExplainResult:
    """Engine-neutral summary of an EXPLAIN plan for one query."""

    scan_type: str
    possible_keys: tuple[str, ...] = ()
    used_key: str | None = None
    estimated_rows: int = 0
    extra: tuple[str, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def is_full_scan(self) -> bool:
        return self.scan_type == SCAN_FULL

    @property
    def uses_index(self) -> bool:
        return self.used_key is not None

    @property
    def has_filesort(self) -> bool:
        return any("filesort" in item.lower() for item in self.extra)

    @property
    def has_temporary_table(self) -> bool:
        return any("temporary" in item.lower() for item in self.extra)


def count_by_severity(issues: Iterable[Issue]) -> dict[str, int]:
    """Issue counts keyed critical/high/medium/low; every key is present."""
    counts = {s.value: 0 for s in sorted(Severity, reverse=True)}
    for issue in issues:
        counts[issue.severity.value] += 1
    return counts
