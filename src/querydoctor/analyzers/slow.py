"""
Analyzer: Slow Query

Flags every individual query whose measured duration reaches the
threshold. Duration is measured, not estimated, so confidence is always 1.0.
"""

from __future__ import annotations

from pydantic import Field

from querydoctor.analyzers.base import Analyzer, AnalyzerConfig, truncate_sql
from querydoctor.analyzers.registry import register_analyzer
from querydoctor.models import Issue, IssueType, QueryEvent, Recommendation, Severity


class SlowQueryConfig(AnalyzerConfig):
    """Configuration for slow query detection."""

    threshold_ms: float = Field(
        default=100.0,
        ge=0,
        description="Queries at or above this duration are reported",
    )


@register_analyzer
class SlowQueryAnalyzer(Analyzer):
    """Report queries slower than ``threshold_ms``, one issue per query."""

    type = IssueType.SLOW
    version = "1.0.0"
    description = "Detects individual queries exceeding a duration threshold"
    config_schema = SlowQueryConfig

    def analyze(self, events: list[QueryEvent]) -> list[Issue]:
        config: SlowQueryConfig = self.config  # type: ignore[assignment]
        issues: list[Issue] = []

        for event in events:
            if event.time_ms < config.threshold_ms:
                continue

            issues.append(self.build_issue(
                group=[event],
                fingerprint=event.fingerprint(),
                severity=self.determine_severity(event.time_ms),
                confidence=1.0,
                title=f"Slow query ({event.time_ms:.0f}ms): {truncate_sql(event.sql)}",
                description=(
                    f"This query took {event.time_ms:.1f}ms to execute, which exceeds "
                    f"the threshold of {config.threshold_ms:.0f}ms."
                ),
                recommendation=Recommendation(
                    action="Optimize this query. Run EXPLAIN to identify bottlenecks.",
                    docs_url="https://docs.sqlalchemy.org/en/20/faq/performance.html",
                ),
            ))

        return issues

    @staticmethod
    def determine_severity(time_ms: float) -> Severity:
        if time_ms >= 5000:
            return Severity.CRITICAL
        if time_ms >= 1000:
            return Severity.HIGH
        if time_ms >= 500:
            return Severity.MEDIUM
        return Severity.LOW
