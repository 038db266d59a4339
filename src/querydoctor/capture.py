"""
Query capture.

QueryCaptureService sits between a query source (the SQLAlchemy listener,
a trace file) and storage. It buffers events for one unit of work (a
request, job or command), applies ignore rules, masking and stack
trimming, and writes the buffer to storage on flush.

Capture must never break the application being observed: capture() and
flush() swallow their own failures and report them through logging and
FlushResult instead.
"""

from __future__ import annotations

import logging
import random
import re
import threading
import traceback
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING, Any, Union

from querydoctor.config import CaptureConfig
from querydoctor.exceptions import ConfigurationError
from querydoctor.masking import BindingMasker
from querydoctor.models import CaptureContext, QueryEvent, StackFrame
from querydoctor.storage.base import Storage

if TYPE_CHECKING:
    from querydoctor.config import Config

logger = logging.getLogger(__name__)

UNKNOWN_CONTEXT = "unknown"

Frame = Union[StackFrame, traceback.FrameSummary]


@dataclass(frozen=True)
class FlushResult:
    """Outcome of writing the buffer to storage."""

    stored: int = 0
    dropped: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CaptureBuffer:
    """
    Bounded, thread-safe list of events for the current unit of work.

    Events beyond ``max_size`` are not kept; they are only counted.
    """

    def __init__(self, max_size: int = 5000) -> None:
        self.max_size = max_size
        self._events: list[QueryEvent] = []
        self._dropped = 0
        self._lock = threading.Lock()

    def add(self, event: QueryEvent) -> bool:
        with self._lock:
            if len(self._events) >= self.max_size:
                self._dropped += 1
                return False
            self._events.append(event)
            return True

    def drain(self) -> tuple[list[QueryEvent], int]:
        """Return (events, dropped count) and reset the buffer."""
        with self._lock:
            events, dropped = self._events, self._dropped
            self._events = []
            self._dropped = 0
        return events, dropped

    @property
    def events(self) -> list[QueryEvent]:
        with self._lock:
            return list(self._events)

    @property
    def dropped(self) -> int:
        return self._dropped

    def __len__(self) -> int:
        return len(self._events)


@dataclass(frozen=True)
class _UnitOfWork:
    context_id: str
    context: CaptureContext
    route: str | None
    controller: str | None
    sampled: bool


class QueryCaptureService:
    """
    Capture executed queries for one unit of work at a time.

    Example:
        capture = QueryCaptureService(storage, masker, config.capture)
        capture.start("req-42", CaptureContext.HTTP, route="GET /users")
        capture.capture("SELECT * FROM users WHERE id = ?", [1], time_ms=0.4)
        result = capture.stop()

    Queries captured outside start()/stop() are recorded under the
    context id "unknown".
    """

    def __init__(
        self,
        storage: Storage,
        masker: BindingMasker | None = None,
        config: CaptureConfig | None = None,
        enabled: bool = True,
        rng: random.Random | None = None,
    ) -> None:
        self.storage = storage
        self.masker = masker or BindingMasker()
        self.config = config or CaptureConfig()
        self.enabled = enabled
        self._rng = rng or random.Random()
        self.buffer = CaptureBuffer(self.config.max_buffer)
        self._unit: _UnitOfWork | None = None

        try:
            self._ignore = [re.compile(p, re.IGNORECASE) for p in self.config.ignore_patterns]
        except re.error as e:
            raise ConfigurationError(
                f"Invalid capture ignore pattern: {e}",
                config_key="capture.ignore_patterns",
            ) from e

    @classmethod
    def from_config(cls, config: "Config", storage: Storage) -> "QueryCaptureService":
        from querydoctor.config import build_masker

        return cls(
            storage,
            masker=build_masker(config),
            config=config.capture,
            enabled=config.enabled,
        )

    # ── Lifecycle ──────────────────────────────────────────────────────

    def start(
        self,
        context_id: str,
        context: CaptureContext = CaptureContext.HTTP,
        route: str | None = None,
        controller: str | None = None,
    ) -> bool:
        """
        Begin a unit of work; returns whether its queries will be captured.

        Sampling, per-context toggles and ignored routes are decided here,
        once, for the whole unit. Events captured before the unit began
        are flushed first.
        """
        if len(self.buffer) or self.buffer.dropped:
            self.flush()
        sampled = self.enabled and self._should_sample(context, route)
        self._unit = _UnitOfWork(
            context_id=context_id or UNKNOWN_CONTEXT,
            context=context,
            route=route,
            controller=controller,
            sampled=sampled,
        )
        logger.debug("Capture started for %s (%s), sampled=%s", context_id, context.value, sampled)
        return sampled

    def stop(self) -> FlushResult:
        """Flush the buffer and end the current unit of work."""
        result = self.flush()
        self._unit = None
        return result

    @property
    def is_capturing(self) -> bool:
        """True while inside a started unit of work that was sampled in."""
        return self._unit is not None and self._unit.sampled

    @property
    def buffered_events(self) -> list[QueryEvent]:
        """Events buffered but not yet flushed."""
        return self.buffer.events

    def _should_sample(self, context: CaptureContext, route: str | None) -> bool:
        toggles = {
            CaptureContext.HTTP: self.config.http,
            CaptureContext.QUEUE: self.config.queue,
            CaptureContext.CLI: self.config.cli,
        }
        if not toggles[context]:
            return False
        if route is not None and any(
            fnmatchcase(route, pattern) for pattern in self.config.ignore_routes
        ):
            return False
        rate = self.config.sample_rate
        if rate >= 1.0:
            return True
        return self._rng.random() < rate

    # ── Capture ────────────────────────────────────────────────────────

    def should_ignore(self, sql: str) -> bool:
        return any(pattern.search(sql) for pattern in self._ignore)

    def capture(
        self,
        sql: str,
        bindings: Sequence[Any] = (),
        time_ms: float = 0.0,
        connection: str = "default",
        stack: Iterable[Frame] | None = None,
    ) -> bool:
        """
        Buffer one executed query; returns whether it was kept.

        Never raises: a failure while building the event skips the query.
        """
        if not self.enabled:
            return False
        unit = self._unit
        if unit is not None and not unit.sampled:
            return False

        try:
            if self.should_ignore(sql):
                return False

            event = QueryEvent(
                sql=sql,
                bindings=tuple(self.masker.mask(sql, list(bindings))),
                time_ms=float(time_ms),
                connection=connection or "default",
                context_id=unit.context_id if unit else UNKNOWN_CONTEXT,
                context=unit.context if unit else CaptureContext.HTTP,
                route=unit.route if unit else None,
                controller=unit.controller if unit else None,
                stack_excerpt=self.trim_stack(stack or ()),
            )
        except Exception as e:
            logger.debug("Skipping query capture: %s", e)
            return False

        return self.buffer.add(event)

    def trim_stack(self, frames: Iterable[Frame]) -> tuple[StackFrame, ...]:
        """
        Keep at most ``stack_depth`` frames, innermost first, skipping
        frames whose path contains an ``exclude_paths`` entry.
        """
        depth = self.config.stack_depth
        if depth <= 0:
            return ()

        kept: list[StackFrame] = []
        for frame in frames:
            if isinstance(frame, traceback.FrameSummary):
                frame = StackFrame(
                    file=frame.filename,
                    line=frame.lineno or 0,
                    function=frame.name,
                )
            if not frame.file or self._is_excluded(frame.file):
                continue
            kept.append(frame)
            if len(kept) >= depth:
                break
        return tuple(kept)

    def _is_excluded(self, path: str) -> bool:
        normalized = path.replace("\\", "/")
        return any(fragment in normalized for fragment in self.config.exclude_paths)

    # ── Flush ──────────────────────────────────────────────────────────

    def flush(self) -> FlushResult:
        """
        Write buffered events to storage and clear the buffer.

        Never raises; a storage failure is logged and returned in the result,
        and the events are counted as dropped.
        """
        events, dropped = self.buffer.drain()
        if dropped:
            logger.warning("Capture buffer full: dropped %d event(s)", dropped)
        if not events:
            return FlushResult(stored=0, dropped=dropped)

        try:
            self.storage.store_events(events)
        except Exception as e:
            logger.warning("Failed to flush %d captured event(s): %s", len(events), e)
            return FlushResult(stored=0, dropped=dropped + len(events), error=str(e))

        logger.debug("Flushed %d captured event(s)", len(events))
        return FlushResult(stored=len(events), dropped=dropped)
