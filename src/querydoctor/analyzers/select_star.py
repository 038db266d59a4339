"""
Analyzer: SELECT *

Detects frequently executed queries that fetch every column. Mostly a
low-severity hygiene finding; it escalates to medium when the query also
joins, since all columns of every joined table are transferred.
"""

from __future__ import annotations

import re

from pydantic import Field

from querydoctor.analyzers.base import Analyzer, AnalyzerConfig, truncate_sql
from querydoctor.analyzers.registry import register_analyzer
from querydoctor.models import Issue, IssueType, QueryEvent, Recommendation, Severity

_SELECT_STAR = re.compile(r"\bselect\s+(\w+\.)?\*", re.IGNORECASE)
_JOIN = re.compile(r"\bjoin\b", re.IGNORECASE)


class SelectStarConfig(AnalyzerConfig):
    """Configuration for SELECT * detection."""

    min_occurrences: int = Field(
        default=3,
        ge=1,
        description="Minimum executions of one query shape to report",
    )


@register_analyzer
class SelectStarAnalyzer(Analyzer):
    type = IssueType.SELECT_STAR
    version = "1.0.0"
    description = "Detects frequent SELECT * queries"
    config_schema = SelectStarConfig

    def analyze(self, events: list[QueryEvent]) -> list[Issue]:
        config: SelectStarConfig = self.config  # type: ignore[assignment]

        candidates = [e for e in events if _SELECT_STAR.search(e.sql)]
        issues: list[Issue] = []

        for fingerprint, group in self.group_by_fingerprint(candidates).values():
            count = len(group)
            if count < config.min_occurrences:
                continue

            first = group[0]
            total_time = sum(e.time_ms for e in group)
            has_join = bool(_JOIN.search(first.sql))
            join_note = " This is especially wasteful in queries with JOINs." if has_join else ""

            issues.append(self.build_issue(
                group=group,
                fingerprint=fingerprint,
                severity=self.determine_severity(count, has_join),
                confidence=self.calculate_confidence(count, total_time, has_join),
                title=f"SELECT * ({count}x): {truncate_sql(first.sql)}",
                description=(
                    f"This query uses SELECT * and runs {count} times. Fetching all "
                    f"columns increases memory usage and network transfer.{join_note}"
                ),
                recommendation=Recommendation(
                    action="Specify only the columns you need.",
                    code=(
                        "# Before:\n"
                        "users = session.scalars(select(User)).all()\n\n"
                        "# After:\n"
                        "rows = session.execute(select(User.id, User.name, User.email)).all()"
                    ),
                    docs_url="https://docs.sqlalchemy.org/en/20/orm/queryguide/columns.html",
                ),
            ))

        return issues

    @staticmethod
    def calculate_confidence(count: int, total_time_ms: float, has_join: bool) -> float:
        confidence = 0.4 + min(0.3, count / 20)
        if total_time_ms > 100:
            confidence += 0.2
        if has_join:
            confidence += 0.1
        return min(1.0, confidence)

    @staticmethod
    def determine_severity(count: int, has_join: bool) -> Severity:
        if has_join and count >= 10:
            return Severity.MEDIUM
        return Severity.LOW
