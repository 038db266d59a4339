"""
SQLite storage backend.

Synchronous SQLAlchemy 2.0 engine over a single database file. Every
connection is put in WAL mode with foreign keys on, so readers are never
blocked by the writer and deleting a run cascades to its events.

Events are stored without their bindings. Only the bindings hash is kept,
so events read back from here have empty bindings but the same
``bindings_key`` they were stored with. Issues keep counts and a
sample SQL in their evidence, but not the sample events themselves.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import (
    case,
    create_engine,
    delete,
    event,
    false,
    func,
    insert,
    literal,
    select,
    update,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from querydoctor.exceptions import StorageError
from querydoctor.fingerprint import QueryFingerprint
from querydoctor.models import (
    CaptureContext,
    Evidence,
    Issue,
    IssueType,
    QueryEvent,
    Recommendation,
    Severity,
    SourceContext,
    StackFrame,
)
from querydoctor.storage.base import MAX_EVENTS, EventFilters, IssueFilters, Storage
from querydoctor.storage.schema import (
    SCHEMA_VERSION,
    Base,
    DoctorBaseline,
    DoctorIssue,
    DoctorMeta,
    DoctorQueryEvent,
    DoctorRun,
)

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"

_SEVERITY_ORDER = case(
    {"critical": 0, "high": 1, "medium": 2, "low": 3},
    value=DoctorIssue.severity,
    else_=4,
)


def _to_db_time(value: datetime) -> datetime:
    """Aware or naive datetime -> naive UTC (naive input is taken as UTC)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db_time(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc)


def _route_like(route: str) -> str:
    """LIKE pattern for a route filter; only ``*`` is a wildcard."""
    escaped = route.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return escaped.replace("*", "%")


class SqliteStorage(Storage):
    """
    Durable storage in a local SQLite file.

    Example:
        storage = SqliteStorage(".querydoctor/doctor.sqlite", retention_days=14)
        storage.store_events(events)
        issues = storage.get_issues(IssueFilters(severity=Severity.HIGH))
    """

    def __init__(
        self,
        path: str | Path,
        retention_days: int = 14,
        cleanup_every: int = 500,
        busy_timeout_ms: int = 5000,
    ) -> None:
        super().__init__(cleanup_every=cleanup_every)
        self.path = str(path)
        self.retention_days = retention_days
        self.busy_timeout_ms = busy_timeout_ms

        engine_kwargs: dict[str, Any] = {
            "connect_args": {
                "check_same_thread": False,
                "timeout": busy_timeout_ms / 1000,
            },
        }
        if self.path == MEMORY_PATH:
            # One shared connection, otherwise each checkout is a new empty db
            engine_kwargs["poolclass"] = StaticPool
        else:
            try:
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(
                    f"Cannot create storage directory for {self.path}: {e}",
                    operation="open",
                ) from e

        self.engine = create_engine(URL.create("sqlite", database=self.path), **engine_kwargs)
        event.listen(self.engine, "connect", self._configure_connection)
        self._session_factory = sessionmaker(self.engine, expire_on_commit=False)

        self._migrate()
        logger.debug("Opened SQLite storage at %s", self.path)

    # ── Setup ──────────────────────────────────────────────────────────

    def _configure_connection(self, dbapi_connection: Any, connection_record: Any) -> None:
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)}")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()

    def _migrate(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StorageError(
                f"Cannot initialize schema at {self.path}: {e}", operation="migrate"
            ) from e

        with self._transaction("migrate") as session:
            stmt = sqlite_insert(DoctorMeta).values(key="schema_version", value=str(SCHEMA_VERSION))
            session.execute(stmt.on_conflict_do_nothing(index_elements=["key"]))

        version = self.schema_version()
        if version > SCHEMA_VERSION:
            raise StorageError(
                f"Database {self.path} has schema version {version}, "
                f"this version of querydoctor supports up to {SCHEMA_VERSION}",
                operation="migrate",
            )

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Session]:
        """Session in a transaction; SQLAlchemy errors become StorageError."""
        try:
            with self._session_factory.begin() as session:
                yield session
        except SQLAlchemyError as e:
            raise StorageError(f"SQLite {operation} failed: {e}", operation=operation) from e

    def schema_version(self) -> int:
        with self._transaction("schema_version") as session:
            value = session.scalar(
                select(DoctorMeta.value).where(DoctorMeta.key == "schema_version")
            )
        return int(value) if value is not None else 0

    # ── Events ─────────────────────────────────────────────────────────

    def store_event(self, event: QueryEvent) -> None:
        self.store_events([event])

    def store_events(self, events: list[QueryEvent]) -> None:
        if not events:
            return

        with self._transaction("store_events") as session:
            for e in events:
                self._upsert_run(session, e)
                self._insert_event(session, e)

        self._record_write(len(events))

    @staticmethod
    def _upsert_run(session: Session, e: QueryEvent) -> None:
        now = _to_db_time(e.timestamp)
        stmt = sqlite_insert(DoctorRun).values(
            id=e.context_id,
            context=e.context.value,
            route=e.route,
            controller=e.controller,
            query_count=1,
            total_ms=e.time_ms,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "query_count": DoctorRun.query_count + 1,
                "total_ms": DoctorRun.total_ms + stmt.excluded.total_ms,
                "created_at": func.min(DoctorRun.created_at, stmt.excluded.created_at),
                "updated_at": func.max(DoctorRun.updated_at, stmt.excluded.updated_at),
            },
        )
        session.execute(stmt)

    @staticmethod
    def _insert_event(session: Session, e: QueryEvent) -> None:
        fp = e.fingerprint()
        session.execute(insert(DoctorQueryEvent).values(
            run_id=e.context_id,
            sql=e.sql,
            bindings_hash=e.bindings_key,
            time_ms=e.time_ms,
            connection=e.connection,
            fingerprint=fp.value,
            fingerprint_hash=fp.hash,
            stack_excerpt=json.dumps([frame.to_dict() for frame in e.stack_excerpt]),
            created_at=_to_db_time(e.timestamp),
        ))

    def get_events(self, filters: EventFilters | None = None) -> list[QueryEvent]:
        filters = filters or EventFilters()

        stmt = select(DoctorQueryEvent, DoctorRun).join(
            DoctorRun, DoctorQueryEvent.run_id == DoctorRun.id
        )
        if filters.context_id is not None:
            stmt = stmt.where(DoctorQueryEvent.run_id == filters.context_id)
        if filters.fingerprint_hash is not None:
            stmt = stmt.where(DoctorQueryEvent.fingerprint_hash == filters.fingerprint_hash)
        if filters.min_time is not None:
            stmt = stmt.where(DoctorQueryEvent.time_ms >= filters.min_time)
        if filters.connection is not None:
            stmt = stmt.where(DoctorQueryEvent.connection == filters.connection)
        if filters.period is not None:
            stmt = stmt.where(DoctorQueryEvent.created_at >= _to_db_time(filters.period.since()))

        stmt = stmt.order_by(
            DoctorQueryEvent.created_at.desc(), DoctorQueryEvent.id.desc()
        ).limit(MAX_EVENTS)

        with self._transaction("get_events") as session:
            return [self._row_to_event(row, run) for row, run in session.execute(stmt)]

    @staticmethod
    def _row_to_event(row: DoctorQueryEvent, run: DoctorRun) -> QueryEvent:
        frames = tuple(
            StackFrame(file=f["file"], line=f["line"], function=f.get("function"))
            for f in json.loads(row.stack_excerpt or "[]")
        )
        return QueryEvent(
            sql=row.sql,
            bindings=(),
            bindings_hash=row.bindings_hash,
            time_ms=row.time_ms,
            connection=row.connection,
            context_id=run.id,
            context=CaptureContext(run.context),
            route=run.route,
            controller=run.controller,
            stack_excerpt=frames,
            timestamp=_from_db_time(row.created_at),
        )

    # ── Issues ─────────────────────────────────────────────────────────

    def store_issue(self, issue: Issue) -> None:
        now = _to_db_time(datetime.now(timezone.utc))
        source = issue.source_context or SourceContext()
        sample_sql = issue.evidence.queries[0].sql if issue.evidence.queries else None

        stmt = sqlite_insert(DoctorIssue).values(
            id=issue.id,
            type=issue.type.value,
            severity=issue.severity.value,
            confidence=issue.confidence,
            title=issue.title,
            description=issue.description,
            fingerprint=issue.evidence.fingerprint.value,
            fingerprint_hash=issue.evidence.fingerprint.hash,
            evidence_json=json.dumps({
                "query_count": issue.evidence.query_count,
                "total_time_ms": issue.evidence.total_time_ms,
                "sample_sql": sample_sql,
            }),
            recommendation_json=json.dumps({
                "action": issue.recommendation.action,
                "code": issue.recommendation.code,
                "docs_url": issue.recommendation.docs_url,
            }),
            source_route=source.route,
            source_file=source.file,
            source_line=source.line,
            source_controller=source.controller,
            is_ignored=False,
            created_at=_to_db_time(issue.created_at),
            first_seen_at=now,
            last_seen_at=now,
            occurrences=1,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["id"],
            set_={
                "last_seen_at": stmt.excluded.last_seen_at,
                "occurrences": DoctorIssue.occurrences + 1,
                "severity": stmt.excluded.severity,
                "confidence": stmt.excluded.confidence,
            },
        )

        with self._transaction("store_issue") as session:
            session.execute(stmt)

        self._record_write()

    def get_issues(self, filters: IssueFilters | None = None) -> list[Issue]:
        filters = filters or IssueFilters()

        stmt = select(DoctorIssue)
        if not filters.include_ignored:
            stmt = stmt.where(DoctorIssue.is_ignored == false())
        if filters.severity is not None:
            stmt = stmt.where(DoctorIssue.severity == filters.severity.value)
        if filters.type is not None:
            stmt = stmt.where(DoctorIssue.type == filters.type.value)
        if filters.route is not None:
            stmt = stmt.where(
                DoctorIssue.source_route.like(_route_like(filters.route), escape="\\")
            )
        if filters.period is not None:
            stmt = stmt.where(DoctorIssue.last_seen_at >= _to_db_time(filters.period.since()))

        stmt = stmt.order_by(_SEVERITY_ORDER, DoctorIssue.last_seen_at.desc())

        with self._transaction("get_issues") as session:
            return [self._row_to_issue(row) for row in session.scalars(stmt)]

    @staticmethod
    def _row_to_issue(row: DoctorIssue) -> Issue:
        evidence = json.loads(row.evidence_json)
        recommendation = json.loads(row.recommendation_json)

        source = None
        if any(v is not None for v in (
            row.source_route, row.source_file, row.source_line, row.source_controller
        )):
            source = SourceContext(
                route=row.source_route,
                file=row.source_file,
                line=row.source_line,
                controller=row.source_controller,
            )

        return Issue(
            id=row.id,
            type=IssueType(row.type),
            severity=Severity(row.severity),
            confidence=row.confidence,
            title=row.title,
            description=row.description,
            evidence=Evidence(
                queries=(),
                query_count=evidence.get("query_count", 0),
                total_time_ms=evidence.get("total_time_ms", 0.0),
                fingerprint=QueryFingerprint(value=row.fingerprint, hash=row.fingerprint_hash),
            ),
            recommendation=Recommendation(
                action=recommendation.get("action", ""),
                code=recommendation.get("code"),
                docs_url=recommendation.get("docs_url"),
            ),
            source_context=source,
            created_at=_from_db_time(row.created_at),
        )

    def occurrences(self, issue_id: str) -> int:
        with self._transaction("occurrences") as session:
            value = session.scalar(
                select(DoctorIssue.occurrences).where(DoctorIssue.id == issue_id)
            )
        return value or 0

    def ignore_issue(self, issue_id: str) -> None:
        with self._transaction("ignore_issue") as session:
            session.execute(
                update(DoctorIssue).where(DoctorIssue.id == issue_id).values(is_ignored=True)
            )

    # ── Baseline ───────────────────────────────────────────────────────

    def create_baseline(self) -> int:
        now = _to_db_time(datetime.now(timezone.utc))

        with self._transaction("create_baseline") as session:
            session.execute(delete(DoctorBaseline))
            session.execute(
                insert(DoctorBaseline).from_select(
                    ["issue_id", "fingerprint_hash", "type", "created_at"],
                    select(
                        DoctorIssue.id,
                        DoctorIssue.fingerprint_hash,
                        DoctorIssue.type,
                        literal(now),
                    ).where(DoctorIssue.is_ignored == false()),
                )
            )
            count = session.scalar(select(func.count()).select_from(DoctorBaseline))

        logger.info("Baseline created with %d issue(s)", count)
        return count or 0

    def clear_baseline(self) -> None:
        with self._transaction("clear_baseline") as session:
            session.execute(delete(DoctorBaseline))

    def get_baselined_issue_ids(self) -> list[str]:
        with self._transaction("get_baselined_issue_ids") as session:
            return list(session.scalars(
                select(DoctorBaseline.issue_id).order_by(DoctorBaseline.id)
            ))

    # ── Maintenance ────────────────────────────────────────────────────

    def cleanup(self) -> None:
        cutoff = _to_db_time(datetime.now(timezone.utc) - timedelta(days=self.retention_days))

        with self._transaction("cleanup") as session:
            events = session.execute(
                delete(DoctorQueryEvent).where(DoctorQueryEvent.created_at < cutoff)
            ).rowcount
            runs = session.execute(
                delete(DoctorRun).where(DoctorRun.updated_at < cutoff)
            ).rowcount
            issues = session.execute(
                delete(DoctorIssue).where(
                    DoctorIssue.is_ignored == false(),
                    DoctorIssue.last_seen_at < cutoff,
                )
            ).rowcount

        logger.info(
            "Cleanup removed %d event(s), %d run(s), %d issue(s) older than %d days",
            events, runs, issues, self.retention_days,
        )

    def close(self) -> None:
        self.engine.dispose()
