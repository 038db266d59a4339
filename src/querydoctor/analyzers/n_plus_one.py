"""
Analyzer: N+1 Query

Detects one query shape executed many times within a single context with
different bindings, typically a lazy-loaded relationship accessed inside a
loop:

    for user in session.scalars(select(User)):
        user.posts          # SELECT * FROM posts WHERE user_id = ?  (x N)

Groups whose bindings are all identical are left to the duplicate
analyzer: that is repeated work, not a fan-out.
"""

from __future__ import annotations

import re

from pydantic import Field

from querydoctor.analyzers.base import Analyzer, AnalyzerConfig, truncate_sql
from querydoctor.analyzers.registry import register_analyzer
from querydoctor.fingerprint import QueryFingerprint
from querydoctor.models import Issue, IssueType, QueryEvent, Recommendation, Severity

_SINGLE_COLUMN_EQUALITY = re.compile(r"\bwhere\s+\w+\s*=\s*\?", re.IGNORECASE)

_EAGER_LOADING_EXAMPLE = """\
# Before:
users = session.scalars(select(User)).all()
for user in users:
    user.posts  # N+1!

# After:
users = session.scalars(select(User).options(selectinload(User.posts))).all()"""


class NPlusOneConfig(AnalyzerConfig):
    """Configuration for N+1 detection."""

    min_repetitions: int = Field(
        default=5,
        ge=2,
        description="Minimum executions of one query shape to report",
    )
    min_total_ms: float = Field(
        default=20.0,
        ge=0,
        description="Minimum combined duration of the group",
    )


@register_analyzer
class NPlusOneAnalyzer(Analyzer):
    """Report query shapes repeated with varying bindings in one context."""

    type = IssueType.N_PLUS_ONE
    version = "1.0.0"
    description = "Detects repeated queries with varying bindings (lazy loading in loops)"
    config_schema = NPlusOneConfig

    def analyze(self, events: list[QueryEvent]) -> list[Issue]:
        config: NPlusOneConfig = self.config  # type: ignore[assignment]
        issues: list[Issue] = []

        for fingerprint, group in self.group_by_fingerprint(events).values():
            count = len(group)
            if count < config.min_repetitions:
                continue

            if self.all_bindings_identical(group):
                continue

            total_time = sum(e.time_ms for e in group)
            if total_time < config.min_total_ms:
                continue

            issues.append(self.build_issue(
                group=group,
                fingerprint=fingerprint,
                severity=self.determine_severity(count, total_time),
                confidence=self.calculate_confidence(count, fingerprint),
                title=f"N+1 query ({count}x): {truncate_sql(group[0].sql)}",
                description=(
                    f"This query pattern runs {count} times in a single context with "
                    f"different bindings. Total time: {total_time:.1f}ms. This is "
                    "typically caused by accessing a relationship inside a loop "
                    "without eager loading."
                ),
                recommendation=Recommendation(
                    action="Eager load the relationship with selectinload() or joinedload().",
                    code=_EAGER_LOADING_EXAMPLE,
                    docs_url="https://docs.sqlalchemy.org/en/20/orm/queryguide/relationships.html",
                ),
            ))

        return issues

    @staticmethod
    def all_bindings_identical(group: list[QueryEvent]) -> bool:
        if len(group) <= 1:
            return True
        first = group[0].bindings_key
        return all(e.bindings_key == first for e in group[1:])

    def calculate_confidence(self, count: int, fingerprint: QueryFingerprint) -> float:
        """
        base 0.6
        + up to 0.3 for repetitions beyond the minimum (1 point per 50)
        + 0.1 when the WHERE clause is a single-column equality (``user_id = ?``)
        """
        config: NPlusOneConfig = self.config  # type: ignore[assignment]
        repetition_bonus = min(0.3, (count - config.min_repetitions) / 50)
        pattern_bonus = 0.1 if _SINGLE_COLUMN_EQUALITY.search(fingerprint.value) else 0.0
        return min(1.0, 0.6 + repetition_bonus + pattern_bonus)

    @staticmethod
    def determine_severity(count: int, total_time_ms: float) -> Severity:
        if count >= 50 and total_time_ms >= 500:
            return Severity.CRITICAL
        if count >= 20 and total_time_ms >= 200:
            return Severity.HIGH
        if count >= 10 and total_time_ms >= 50:
            return Severity.MEDIUM
        return Severity.LOW
