"""
Analyzer: Duplicate Query

Detects the exact same SQL with the exact same bindings executed several
times in one context. That is repeated work whose result could be reused,
as opposed to N+1 where the bindings vary.
"""

from __future__ import annotations

from pydantic import Field

from querydoctor.analyzers.base import Analyzer, AnalyzerConfig, truncate_sql
from querydoctor.analyzers.registry import register_analyzer
from querydoctor.models import Issue, IssueType, QueryEvent, Recommendation, Severity


class DuplicateQueryConfig(AnalyzerConfig):
    """Configuration for duplicate query detection."""

    min_count: int = Field(
        default=3,
        ge=2,
        description="Minimum identical executions to report",
    )


@register_analyzer
class DuplicateQueryAnalyzer(Analyzer):
    """Report identical query + binding combinations repeated in one context."""

    type = IssueType.DUPLICATE
    version = "1.0.0"
    description = "Detects identical queries with identical bindings"
    config_schema = DuplicateQueryConfig

    def analyze(self, events: list[QueryEvent]) -> list[Issue]:
        config: DuplicateQueryConfig = self.config  # type: ignore[assignment]

        groups: dict[str, list[QueryEvent]] = {}
        for event in events:
            key = f"{event.sql}|{event.bindings_key}"
            groups.setdefault(key, []).append(event)

        issues: list[Issue] = []
        for group in groups.values():
            count = len(group)
            if count < config.min_count:
                continue

            first = group[0]
            total_time = sum(e.time_ms for e in group)

            issues.append(self.build_issue(
                group=group,
                fingerprint=first.fingerprint(),
                severity=self.determine_severity(count),
                confidence=1.0,
                title=f"Duplicate query ({count}x): {truncate_sql(first.sql)}",
                description=(
                    f"This exact query runs {count} times in a single context. "
                    f"Total time wasted: {total_time:.1f}ms. "
                    "Cache the result or restructure to query once."
                ),
                recommendation=Recommendation(
                    action="Cache the result or eliminate the duplicate call.",
                    code=(
                        "# Load once and pass the result down instead of re-querying\n"
                        "settings = session.scalars(select(Setting)).all()"
                    ),
                    docs_url="https://docs.sqlalchemy.org/en/20/orm/session_basics.html",
                ),
            ))

        return issues

    @staticmethod
    def determine_severity(count: int) -> Severity:
        if count >= 20:
            return Severity.HIGH
        if count >= 10:
            return Severity.MEDIUM
        return Severity.LOW
