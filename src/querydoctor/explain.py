"""
Optional EXPLAIN hook.

Adapters run EXPLAIN for a captured query on a live database and reduce
the engine-specific plan to an ExplainResult. Analyzers never depend on
this; it is extra evidence for callers that want it.

Parsing is kept in pure functions so plans can be examined offline.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import text
from sqlalchemy.engine import Engine

from querydoctor.models import (
    SCAN_CONST,
    SCAN_FULL,
    SCAN_INDEX,
    SCAN_RANGE,
    SCAN_REF,
    ExplainResult,
)

logger = logging.getLogger(__name__)

_EXPLAINABLE = re.compile(r"^\s*(select|insert|update|delete|replace)\b", re.IGNORECASE)
_POSITIONAL = re.compile(r"\?")

_MYSQL_SCAN_TYPES = {
    "all": SCAN_FULL,
    "index": SCAN_INDEX,
    "range": SCAN_RANGE,
    "ref": SCAN_REF,
    "eq_ref": SCAN_REF,
    "ref_or_null": SCAN_REF,
    "const": SCAN_CONST,
    "system": SCAN_CONST,
    "fulltext": "fulltext",
}

_POSTGRES_SCAN_TYPES = {
    "seq scan": SCAN_FULL,
    "index scan": SCAN_INDEX,
    "index only scan": SCAN_INDEX,
    "bitmap heap scan": SCAN_RANGE,
    "bitmap index scan": SCAN_RANGE,
}

USING_FILESORT = "Using filesort"
USING_WHERE = "Using where"
USING_TEMPORARY = "Using temporary"


@runtime_checkable
class ExplainAdapter(Protocol):
    """Runs EXPLAIN for one database driver."""

    def supports(self, driver: str) -> bool: ...

    def explain(
        self, sql: str, bindings: Sequence[Any], connection: str
    ) -> ExplainResult | None: ...


def is_explainable(sql: str) -> bool:
    """Only DML can be explained."""
    return bool(_EXPLAINABLE.match(sql))


def bind_positional(sql: str, bindings: Sequence[Any]) -> tuple[str, dict[str, Any]]:
    """Turn ``?`` placeholders into ``:p0, :p1, ...`` for sqlalchemy.text()."""
    position = 0

    def placeholder(_: re.Match[str]) -> str:
        nonlocal position
        name = f":p{position}"
        position += 1
        return name

    named = _POSITIONAL.sub(placeholder, sql)
    return named, {f"p{i}": value for i, value in enumerate(bindings)}


# =============================================================================
# MySQL
# =============================================================================


def _null_if_empty(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    if value in ("", "NULL"):
        return None
    return value


def parse_mysql_explain(rows: Sequence[Mapping[str, Any]]) -> ExplainResult | None:
    """
    Summarize MySQL EXPLAIN rows (one per table); the first row gives the
    primary signal.
    """
    if not rows:
        return None

    first = rows[0]
    mysql_type = str(first.get("type") or "ALL").lower()

    keys = _null_if_empty(first.get("possible_keys"))
    extra = _null_if_empty(first.get("Extra"))

    return ExplainResult(
        scan_type=_MYSQL_SCAN_TYPES.get(mysql_type, mysql_type),
        possible_keys=tuple(k.strip() for k in keys.split(",")) if keys else (),
        used_key=_null_if_empty(first.get("key")),
        estimated_rows=int(first.get("rows") or 0),
        extra=tuple(item.strip() for item in re.split(r"[;,]", extra)) if extra else (),
        raw={"rows": [dict(r) for r in rows]},
    )


# =============================================================================
# PostgreSQL
# =============================================================================


def _postgres_extra(node: Mapping[str, Any]) -> tuple[str, ...]:
    extra: list[str] = []

    if "Sort Key" in node:
        extra.append(USING_FILESORT)
    if "Filter" in node:
        extra.append(USING_WHERE)

    node_type = str(node.get("Node Type", "")).lower()
    if "hash" in node_type or "materialize" in node_type:
        extra.append(USING_TEMPORARY)

    for child in node.get("Plans") or []:
        if not isinstance(child, Mapping):
            continue
        child_type = str(child.get("Node Type", "")).lower()
        if child_type == "sort":
            extra.append(USING_FILESORT)
        if "materialize" in child_type or "hash" in child_type:
            extra.append(USING_TEMPORARY)

    return tuple(dict.fromkeys(extra))


def parse_postgres_explain(plan: Any) -> ExplainResult | None:
    """
    Summarize the output of ``EXPLAIN (FORMAT JSON)``.

    Accepts the JSON text or the decoded ``[{"Plan": {...}}]`` structure.
    """
    if isinstance(plan, (str, bytes)):
        plan = json.loads(plan)
    if not plan:
        return None

    if isinstance(plan, list) and isinstance(plan[0], Mapping):
        node = plan[0].get("Plan", plan[0])
    elif isinstance(plan, Mapping):
        node = plan.get("Plan", plan)
    else:
        return None

    node_type = str(node.get("Node Type", ""))
    index_name = node.get("Index Name")

    return ExplainResult(
        scan_type=_POSTGRES_SCAN_TYPES.get(
            node_type.lower(), node_type.lower().replace(" ", "_")
        ),
        possible_keys=(str(index_name),) if index_name is not None else (),
        used_key=str(index_name) if index_name is not None else None,
        estimated_rows=int(node.get("Plan Rows") or 0),
        extra=_postgres_extra(node),
        raw={"plan": plan},
    )


# =============================================================================
# Engine-backed adapters
# =============================================================================


class _EngineExplainAdapter:
    drivers: tuple[str, ...] = ()
    prefix = "EXPLAIN "

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def supports(self, driver: str) -> bool:
        return driver.lower() in self.drivers

    def explain(
        self,
        sql: str,
        bindings: Sequence[Any] = (),
        connection: str = "default",
    ) -> ExplainResult | None:
        """EXPLAIN one statement; any failure yields None."""
        if not is_explainable(sql):
            return None

        statement, params = bind_positional(sql, bindings)
        try:
            with self.engine.connect() as conn:
                result = conn.execute(text(self.prefix + statement), params)
                rows = [dict(r) for r in result.mappings()]
            return self.parse(rows)
        except Exception as e:
            logger.debug("EXPLAIN failed on %s: %s", connection, e)
            return None

    def parse(self, rows: list[dict[str, Any]]) -> ExplainResult | None:
        raise NotImplementedError


class MySQLExplainAdapter(_EngineExplainAdapter):
    drivers = ("mysql", "mariadb")

    def parse(self, rows: list[dict[str, Any]]) -> ExplainResult | None:
        return parse_mysql_explain(rows)


class PostgresExplainAdapter(_EngineExplainAdapter):
    drivers = ("postgresql", "postgres", "pgsql")
    prefix = "EXPLAIN (FORMAT JSON) "

    def parse(self, rows: list[dict[str, Any]]) -> ExplainResult | None:
        if not rows:
            return None
        first = rows[0]
        plan = first.get("QUERY PLAN", first.get("query plan"))
        if plan is None:
            return None
        return parse_postgres_explain(plan)


def get_explain_adapter(engine: Engine) -> ExplainAdapter | None:
    """Adapter for the engine's dialect, or None if EXPLAIN is unsupported."""
    for adapter_cls in (MySQLExplainAdapter, PostgresExplainAdapter):
        adapter = adapter_cls(engine)
        if adapter.supports(engine.dialect.name):
            return adapter
    return None
