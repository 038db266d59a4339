"""
JSON schema for report output.

The JSON report is built only through these models, so CI tooling can rely
on the field set. Breaking changes bump SCHEMA_VERSION.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Schema version - increment on breaking changes
SCHEMA_VERSION = "1.0"


class EvidenceSchema(BaseModel):
    """Aggregate evidence for one issue."""

    model_config = ConfigDict(frozen=True)

    query_count: int = Field(..., description="Queries in the matching group")
    total_time_ms: float = Field(..., description="Summed execution time of the group")
    fingerprint: str = Field(..., description="Normalized SQL pattern")


class RecommendationSchema(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: str = Field(..., description="What to change")
    code: str | None = Field(None, description="Example fix")
    docs_url: str | None = Field(None, description="Further reading")


class SourceSchema(BaseModel):
    """Where the query came from, when known."""

    model_config = ConfigDict(frozen=True)

    route: str | None = Field(None, description="Route or job name")
    file: str | None = Field(None, description="Application file of the call site")
    line: int | None = Field(None, description="Line of the call site")
    controller: str | None = Field(None, description="Handler that issued the query")


class IssueSchema(BaseModel):
    """Schema for a single issue."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Deterministic issue id")
    type: str = Field(..., description="Issue type (n_plus_one, duplicate, ...)")
    severity: str = Field(..., description="Severity (low/medium/high/critical)")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Detection confidence")
    title: str = Field(..., description="One-line summary")
    description: str = Field(..., description="Detailed explanation")
    evidence: EvidenceSchema = Field(..., description="Supporting evidence")
    recommendation: RecommendationSchema = Field(..., description="Suggested fix")
    source: SourceSchema | None = Field(None, description="Source context")


class SummarySchema(BaseModel):
    """Issue counts, every severity always present."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(0, description="Total issues")
    critical: int = Field(0, description="Critical issues")
    high: int = Field(0, description="High issues")
    medium: int = Field(0, description="Medium issues")
    low: int = Field(0, description="Low issues")


class ReportSchema(BaseModel):
    """
    Top-level report document.

    This schema is stable across minor versions.
    """

    model_config = ConfigDict(frozen=True)

    version: str = Field(SCHEMA_VERSION, description="Schema version")
    generated_at: str = Field(..., description="UTC timestamp, ISO 8601")
    summary: SummarySchema = Field(..., description="Issue counts")
    issues: list[IssueSchema] = Field(default_factory=list, description="All issues")


def get_json_schema() -> dict[str, Any]:
    """JSON Schema of the report document."""
    return ReportSchema.model_json_schema()
