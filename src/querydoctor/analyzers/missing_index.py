"""
Analyzer: Missing Index

Heuristic detection of filtered or sorted queries that are both frequent and
slow on average. Without an EXPLAIN plan this can only suggest an index, so
confidence starts low and grows with frequency and duration.

Table and column extraction is best effort. When it fails the issue is
still reported, only with a generic recommendation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from pydantic import Field

from querydoctor.analyzers.base import Analyzer, AnalyzerConfig, truncate_sql
from querydoctor.analyzers.registry import register_analyzer
from querydoctor.models import Issue, IssueType, QueryEvent, Recommendation, Severity

_INDEXABLE_CLAUSE = re.compile(r"\b(where|order\s+by|group\s+by|having)\b", re.IGNORECASE)
_FROM_TABLE = re.compile(r"\bfrom\s+[`\"]?(\w+)[`\"]?", re.IGNORECASE)
_UPDATE_TABLE = re.compile(r"\bupdate\s+[`\"]?(\w+)[`\"]?", re.IGNORECASE)
_WHERE_COLUMNS = re.compile(
    r"\bwhere\b.*?[`\"]?(\w+)[`\"]?\s*(?:=|>|<|>=|<=|<>|!=|like|in)\s",
    re.IGNORECASE,
)
_COMPARED_COLUMNS = re.compile(
    r"[`\"]?(\w+)[`\"]?\s*(?:=|>|<|>=|<=|<>|!=)\s*\?",
    re.IGNORECASE,
)
_SQL_KEYWORDS = frozenset({
    "select", "from", "where", "and", "or", "not", "in", "is", "null", "like", "between",
})


class MissingIndexConfig(AnalyzerConfig):
    """Configuration for missing index detection."""

    min_occurrences: int = Field(
        default=5,
        ge=1,
        description="Minimum executions of one query shape to consider",
    )
    min_avg_ms: float = Field(
        default=50.0,
        ge=0,
        description="Minimum average duration to report",
    )


@dataclass(frozen=True)
class IndexCandidate:
    table: str
    columns: tuple[str, ...]

    @property
    def index_name(self) -> str:
        return f"idx_{self.table}_{'_'.join(self.columns)}"

    def create_statement(self) -> str:
        return f"CREATE INDEX {self.index_name} ON {self.table} ({', '.join(self.columns)});"


def _unique(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


def extract_index_candidate(sql: str) -> IndexCandidate | None:
    """Guess the table and filtered columns of a query, or None."""
    match = _FROM_TABLE.search(sql) or _UPDATE_TABLE.search(sql)
    if match is None:
        return None
    table = match.group(1)

    columns = _unique(_WHERE_COLUMNS.findall(sql))
    if not columns:
        columns = _unique(_COMPARED_COLUMNS.findall(sql))

    columns = [c for c in columns if c.lower() not in _SQL_KEYWORDS]
    if not columns:
        return None

    return IndexCandidate(table=table, columns=tuple(columns))


@register_analyzer
class MissingIndexAnalyzer(Analyzer):
    """Suggest indexes for frequent, slow, filtered query shapes."""

    type = IssueType.MISSING_INDEX
    version = "1.0.0"
    description = "Suggests indexes for frequent slow queries with WHERE/ORDER BY/GROUP BY"
    config_schema = MissingIndexConfig

    def analyze(self, events: list[QueryEvent]) -> list[Issue]:
        config: MissingIndexConfig = self.config  # type: ignore[assignment]

        indexable = [e for e in events if _INDEXABLE_CLAUSE.search(e.sql)]
        issues: list[Issue] = []

        for fingerprint, group in self.group_by_fingerprint(indexable).values():
            count = len(group)
            if count < config.min_occurrences:
                continue

            total_time = sum(e.time_ms for e in group)
            avg_time = total_time / count
            if avg_time < config.min_avg_ms:
                continue

            first = group[0]
            candidate = extract_index_candidate(first.sql)
            confidence = self.calculate_confidence(count, avg_time)

            hint = ""
            if candidate is not None:
                hint = f" Consider indexing {candidate.table}({', '.join(candidate.columns)})."

            issues.append(self.build_issue(
                group=group,
                fingerprint=fingerprint,
                severity=self.determine_severity(confidence, avg_time),
                confidence=confidence,
                title=f"Possible missing index: {truncate_sql(first.sql)}",
                description=(
                    f"This query runs {count} times with an average of {avg_time:.1f}ms. "
                    f"The WHERE/ORDER BY clause suggests an index might help.{hint}"
                ),
                recommendation=self.build_recommendation(candidate),
            ))

        return issues

    @staticmethod
    def calculate_confidence(count: int, avg_time_ms: float) -> float:
        """base 0.3 + up to 0.2 for frequency + 0.1 when average exceeds 200ms."""
        frequency_bonus = min(0.2, count / 100)
        time_bonus = 0.1 if avg_time_ms > 200 else 0.0
        return min(1.0, 0.3 + frequency_bonus + time_bonus)

    @staticmethod
    def determine_severity(confidence: float, avg_time_ms: float) -> Severity:
        if confidence >= 0.8 and avg_time_ms >= 500:
            return Severity.HIGH
        if confidence >= 0.5 and avg_time_ms >= 100:
            return Severity.MEDIUM
        return Severity.LOW

    @staticmethod
    def build_recommendation(candidate: IndexCandidate | None) -> Recommendation:
        docs_url = "https://docs.sqlalchemy.org/en/20/core/constraints.html#indexes"
        if candidate is None:
            return Recommendation(
                action=(
                    "Consider adding an index. Run EXPLAIN on this query to identify "
                    "which columns to index."
                ),
                docs_url=docs_url,
            )

        return Recommendation(
            action=f"Add an index on {candidate.table}({', '.join(candidate.columns)}).",
            code=candidate.create_statement(),
            docs_url=docs_url,
        )
