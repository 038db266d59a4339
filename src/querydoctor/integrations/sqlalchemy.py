"""
SQLAlchemy capture adapter.

Hooks an Engine's cursor events and forwards every executed statement to
a QueryCaptureService with its timing, bindings and call-site stack.

Example:
    listener = SQLAlchemyCaptureListener(capture_service)
    listener.attach(engine)
    ...
    listener.detach()
"""

from __future__ import annotations

import logging
import re
import time
import traceback
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.engine import Engine

if TYPE_CHECKING:
    from querydoctor.capture import QueryCaptureService

logger = logging.getLogger(__name__)

_START_KEY = "querydoctor_query_start"

# pyformat %(name)s, format %s, numeric $1, named :name (not :: casts)
_PYFORMAT = re.compile(r"%\((\w+)\)s")
_FORMAT = re.compile(r"%s")
_NUMERIC = re.compile(r"\$\d+\b")
_NAMED = re.compile(r"(?<![:\w]):([A-Za-z_]\w*)")
_QUOTED = re.compile(r"'(?:\\.|[^'\\])*'" r'|"(?:\\.|[^"\\])*"')


def normalize_placeholders(sql: str) -> tuple[str, list[str]]:
    """
    Rewrite DBAPI placeholders to ``?``.

    Returns the rewritten SQL and, for named styles, the parameter names
    in the order they appear. Text inside quoted literals is left alone.
    """
    names: list[str] = []

    def named(match: re.Match[str]) -> str:
        names.append(match.group(1))
        return "?"

    def rewrite(chunk: str) -> str:
        chunk = _PYFORMAT.sub(named, chunk)
        chunk = _FORMAT.sub("?", chunk)
        chunk = _NUMERIC.sub("?", chunk)
        return _NAMED.sub(named, chunk)

    parts: list[str] = []
    pos = 0
    for literal in _QUOTED.finditer(sql):
        parts.append(rewrite(sql[pos:literal.start()]))
        parts.append(literal.group())
        pos = literal.end()
    parts.append(rewrite(sql[pos:]))
    return "".join(parts), names


def normalize_bindings(parameters: Any, names: Sequence[str] = ()) -> list[Any]:
    """Positional list of bound values from a DBAPI parameter structure."""
    if parameters is None:
        return []
    if isinstance(parameters, Mapping):
        if names and all(n in parameters for n in names):
            return [parameters[n] for n in names]
        return list(parameters.values())
    if isinstance(parameters, (list, tuple)):
        return list(parameters)
    return [parameters]


class SQLAlchemyCaptureListener:
    """Forward an Engine's executed statements to a capture service."""

    def __init__(
        self,
        capture_service: "QueryCaptureService",
        connection_name: str | None = None,
    ) -> None:
        self.capture_service = capture_service
        self.connection_name = connection_name
        self._engine: Engine | None = None

    @property
    def attached(self) -> bool:
        return self._engine is not None

    def attach(self, engine: Engine) -> None:
        if self._engine is not None:
            self.detach()
        event.listen(engine, "before_cursor_execute", self._before_cursor_execute)
        event.listen(engine, "after_cursor_execute", self._after_cursor_execute)
        self._engine = engine
        if self.connection_name is None:
            self.connection_name = engine.url.database or engine.dialect.name
        logger.debug(
            "Capture listener attached to %s", engine.url.render_as_string(hide_password=True)
        )

    def detach(self) -> None:
        if self._engine is None:
            return
        event.remove(self._engine, "before_cursor_execute", self._before_cursor_execute)
        event.remove(self._engine, "after_cursor_execute", self._after_cursor_execute)
        self._engine = None

    def _before_cursor_execute(
        self,
        conn: Any,
        cursor: Any,
        statement: str,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        conn.info.setdefault(_START_KEY, []).append(time.perf_counter())

    def _after_cursor_execute(
        self,
        conn: Any,
        cursor: Any,
        statement: str,
        parameters: Any,
        context: Any,
        executemany: bool,
    ) -> None:
        starts = conn.info.get(_START_KEY)
        if not starts:
            return
        elapsed_ms = (time.perf_counter() - starts.pop()) * 1000

        try:
            if executemany and isinstance(parameters, (list, tuple)):
                parameters = parameters[0] if parameters else None

            sql, names = normalize_placeholders(statement)
            self.capture_service.capture(
                sql,
                normalize_bindings(parameters, names),
                time_ms=elapsed_ms,
                connection=self.connection_name or "default",
                stack=reversed(traceback.extract_stack()[:-1]),
            )
        except Exception as e:
            logger.debug("Query capture failed: %s", e)
