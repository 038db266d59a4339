"""
Base class for query analyzers.

Every analyzer receives the events of exactly one context (one request, job
or command) and returns zero or more issues. Analyzers must be:
- Deterministic: the same batch always yields the same issues and ids
- Side-effect free: no storage access, no logging of bindings
- Tolerant: an empty batch returns an empty list
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict

from querydoctor.fingerprint import QueryFingerprint
from querydoctor.models import (
    Evidence,
    Issue,
    IssueType,
    QueryEvent,
    Recommendation,
    Severity,
    SourceContext,
)

_WHITESPACE = re.compile(r"\s+")


class AnalyzerConfig(BaseModel):
    """
    Base configuration for all analyzers.

    Analyzers define their thresholds by subclassing this. Unknown keys are
    rejected so that a typo in a config file fails loudly.

    Example:
        class SlowQueryConfig(AnalyzerConfig):
            threshold_ms: float = Field(default=100.0, ge=0)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = True


class Analyzer(ABC):
    """
    Abstract base class for analyzers.

    Attributes:
        type: Issue type this analyzer produces (also its registry key)
        version: Bump when detection logic changes
        description: One-line description for documentation
        config_schema: Pydantic model for analyzer configuration
    """

    type: ClassVar[IssueType]
    version: ClassVar[str] = "1.0.0"
    description: ClassVar[str] = ""
    config_schema: ClassVar[type[AnalyzerConfig]] = AnalyzerConfig

    def __init__(self, config: AnalyzerConfig | dict[str, Any] | None = None) -> None:
        """
        Initialize the analyzer with configuration.

        Args:
            config: AnalyzerConfig instance, dict, or None for defaults.
                    A dict is validated against config_schema.
        """
        if config is None:
            self.config = self.config_schema()
        elif isinstance(config, dict):
            self.config = self.config_schema(**config)
        else:
            self.config = config

    @abstractmethod
    def analyze(self, events: list[QueryEvent]) -> list[Issue]:
        """
        Analyze the events of one context and return issues.

        Args:
            events: Events captured within a single context, in capture order

        Returns:
            List of issues, or empty list if nothing qualifies.
        """

    @staticmethod
    def group_by_fingerprint(
        events: list[QueryEvent],
    ) -> dict[str, tuple[QueryFingerprint, list[QueryEvent]]]:
        """Group events by fingerprint hash, preserving first-seen order."""
        groups: dict[str, tuple[QueryFingerprint, list[QueryEvent]]] = {}
        for event in events:
            fp = event.fingerprint()
            if fp.hash not in groups:
                groups[fp.hash] = (fp, [])
            groups[fp.hash][1].append(event)
        return groups

    def build_issue(
        self,
        group: list[QueryEvent],
        fingerprint: QueryFingerprint,
        severity: Severity,
        confidence: float,
        title: str,
        description: str,
        recommendation: Recommendation,
    ) -> Issue:
        """
        Build an issue for a qualifying group.

        Identity, source context and creation time come from the first event;
        evidence covers the whole group.
        """
        first = group[0]
        return Issue(
            id=Issue.make_id(self.type, fingerprint, first.context_id),
            type=self.type,
            severity=severity,
            confidence=min(1.0, confidence),
            title=title,
            description=description,
            evidence=Evidence.from_group(group, fingerprint),
            recommendation=recommendation,
            source_context=SourceContext.from_event(first),
            created_at=first.timestamp,
        )


def truncate_sql(sql: str, max_length: int = 80) -> str:
    """Collapse whitespace and shorten SQL for issue titles."""
    sql = _WHITESPACE.sub(" ", sql).strip()
    if len(sql) <= max_length:
        return sql
    return sql[: max_length - 3] + "..."
