"""
SQLAlchemy ORM models for the SQLite store.

Tables: doctor_runs, doctor_query_events, doctor_issues, doctor_baselines,
doctor_meta. Datetimes are stored as naive UTC.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

SCHEMA_VERSION = 1

# Naming convention for constraints (makes migrations deterministic)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    metadata = MetaData(naming_convention=convention)


class DoctorRun(Base):
    """One capture context (request, job, command), keyed by context id."""

    __tablename__ = "doctor_runs"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    context: Mapped[str] = mapped_column(String(16), nullable=False)
    route: Mapped[str | None] = mapped_column(String(512))
    controller: Mapped[str | None] = mapped_column(String(512))
    query_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_ms: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_doctor_runs_context_created", "context", "created_at"),
    )


class DoctorQueryEvent(Base):
    """A captured query. Bindings are kept only as a hash."""

    __tablename__ = "doctor_query_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("doctor_runs.id", ondelete="CASCADE"), nullable=False
    )
    sql: Mapped[str] = mapped_column(Text, nullable=False)
    bindings_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    time_ms: Mapped[float] = mapped_column(Float, nullable=False)
    connection: Mapped[str] = mapped_column(String(128), nullable=False)
    fingerprint: Mapped[str] = mapped_column(Text, nullable=False)
    fingerprint_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    stack_excerpt: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_doctor_query_events_run_id", "run_id"),
        Index("ix_doctor_query_events_fingerprint_hash", "fingerprint_hash"),
        Index("ix_doctor_query_events_time_ms", "time_ms"),
        Index("ix_doctor_query_events_created_at", "created_at"),
    )


class DoctorIssue(Base):
    """Long-lived issue record, upserted by deterministic id."""

    __tablename__ = "doctor_issues"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    fingerprint: Mapped[str] = mapped_column(Text, nullable=False)
    fingerprint_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    evidence_json: Mapped[str] = mapped_column(Text, nullable=False)
    recommendation_json: Mapped[str] = mapped_column(Text, nullable=False)
    source_route: Mapped[str | None] = mapped_column(String(512))
    source_file: Mapped[str | None] = mapped_column(String(1024))
    source_line: Mapped[int | None] = mapped_column(Integer)
    source_controller: Mapped[str | None] = mapped_column(String(512))
    is_ignored: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    occurrences: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    __table_args__ = (
        Index("ix_doctor_issues_type", "type"),
        Index("ix_doctor_issues_severity", "severity"),
        Index("ix_doctor_issues_fingerprint_hash", "fingerprint_hash"),
        Index("ix_doctor_issues_last_seen_at", "last_seen_at"),
    )


class DoctorBaseline(Base):
    """One accepted issue in the active baseline."""

    __tablename__ = "doctor_baselines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    issue_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    fingerprint_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class DoctorMeta(Base):
    """Key/value metadata, currently only ``schema_version``."""

    __tablename__ = "doctor_meta"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
