"""
Analysis pipeline.

Runs every enabled analyzer over a batch of events from one context and
merges the results by issue id. An analyzer that raises is isolated: its
output is dropped, the failure is recorded on its AnalyzerRun, and the
remaining analyzers still run.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, ValidationError

# Registers the built-in analyzers
import querydoctor.analyzers  # noqa: F401
from querydoctor.analyzers.base import Analyzer
from querydoctor.analyzers.registry import AnalyzerRegistry, get_registry
from querydoctor.exceptions import AnalyzerFailedError, ConfigurationError
from querydoctor.models import Issue, QueryEvent

if TYPE_CHECKING:
    from querydoctor.config import Config

logger = logging.getLogger(__name__)


class AnalyzerRunStatus(str, Enum):
    """Outcome of a single analyzer execution."""

    PASS = "pass"
    FAIL = "fail"


class AnalyzerRun(BaseModel):
    """Record of one analyzer execution within a pipeline run."""

    model_config = ConfigDict(frozen=True)

    analyzer: str = Field(..., description="Issue type the analyzer produces")
    version: str = Field(..., description="Analyzer version")
    status: AnalyzerRunStatus = Field(..., description="Execution status")
    runtime_ms: float = Field(default=0.0, description="Execution time in milliseconds")
    issues_count: int = Field(default=0, description="Number of issues produced")
    error_summary: str | None = Field(default=None, description="Error message if FAIL")


class AnalysisPipeline:
    """
    Ordered set of analyzers applied to one context's events.

    Example:
        pipeline = AnalysisPipeline.from_config(get_config())
        issues = pipeline.analyze(events)
    """

    def __init__(self, analyzers: Sequence[Analyzer], fail_fast: bool = False) -> None:
        self.analyzers = list(analyzers)
        self.fail_fast = fail_fast

    @classmethod
    def from_config(
        cls,
        config: "Config",
        registry: AnalyzerRegistry | None = None,
        fail_fast: bool = False,
    ) -> "AnalysisPipeline":
        """
        Build the pipeline from configuration.

        Disabled analyzers are not instantiated at all. Options for unknown
        analyzer types, or invalid threshold values, raise ConfigurationError.
        """
        registry = registry or get_registry()

        unknown = set(config.analyzers) - set(registry.all_keys())
        if unknown:
            raise ConfigurationError(
                f"Unknown analyzer(s) in configuration: {', '.join(sorted(unknown))}. "
                f"Available: {', '.join(registry.all_keys())}",
                config_key="analyzers",
            )

        analyzers: list[Analyzer] = []
        for analyzer_cls in registry.all():
            key = analyzer_cls.type.value
            try:
                options = analyzer_cls.config_schema(**config.analyzer_options(key))
            except ValidationError as e:
                raise ConfigurationError(
                    f"Invalid options for analyzer '{key}': {e}",
                    config_key=f"analyzers.{key}",
                ) from e
            if options.enabled:
                analyzers.append(analyzer_cls(options))

        return cls(analyzers, fail_fast=fail_fast)

    @classmethod
    def default(cls) -> "AnalysisPipeline":
        """Pipeline with every registered analyzer at default thresholds."""
        return cls([analyzer_cls() for analyzer_cls in get_registry().all()])

    def analyze(self, events: Iterable[QueryEvent]) -> list[Issue]:
        issues, _ = self.analyze_with_runs(events)
        return issues

    def analyze_with_runs(
        self,
        events: Iterable[QueryEvent],
    ) -> tuple[list[Issue], list[AnalyzerRun]]:
        """
        Run all analyzers and return merged issues plus per-analyzer run records.

        Issues are keyed by id; a later issue with the same id replaces an
        earlier one but keeps the earlier position.
        """
        batch = list(events)
        if not batch:
            return [], []

        merged: dict[str, Issue] = {}
        runs: list[AnalyzerRun] = []

        for analyzer in self.analyzers:
            key = analyzer.type.value
            start = time.perf_counter()
            try:
                found = analyzer.analyze(batch)
            except Exception as e:
                runtime_ms = (time.perf_counter() - start) * 1000

                if self.fail_fast:
                    raise AnalyzerFailedError(key, e) from e

                runs.append(AnalyzerRun(
                    analyzer=key,
                    version=analyzer.version,
                    status=AnalyzerRunStatus.FAIL,
                    runtime_ms=runtime_ms,
                    error_summary=str(e),
                ))
                logger.warning("Analyzer %s failed: %s", key, e)
                continue

            for issue in found:
                merged[issue.id] = issue

            runs.append(AnalyzerRun(
                analyzer=key,
                version=analyzer.version,
                status=AnalyzerRunStatus.PASS,
                runtime_ms=(time.perf_counter() - start) * 1000,
                issues_count=len(found),
            ))

        return list(merged.values()), runs
