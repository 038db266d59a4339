"""
Event and issue storage backends.

Use build_storage() to get the backend selected in configuration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from querydoctor.storage.base import (
    MAX_EVENTS,
    EventFilters,
    IssueFilters,
    Period,
    Storage,
    sort_by_severity,
)
from querydoctor.storage.memory import InMemoryStorage
from querydoctor.storage.sqlite import SqliteStorage

if TYPE_CHECKING:
    from querydoctor.config import Config


def build_storage(config: "Config") -> Storage:
    """Instantiate the storage backend named by ``config.storage.driver``."""
    from querydoctor.config import StorageDriver

    settings = config.storage
    if settings.driver == StorageDriver.MEMORY:
        return InMemoryStorage()

    return SqliteStorage(
        settings.path,
        retention_days=settings.retention_days,
        cleanup_every=settings.cleanup_every,
        busy_timeout_ms=settings.busy_timeout_ms,
    )


__all__ = [
    "MAX_EVENTS",
    "EventFilters",
    "InMemoryStorage",
    "IssueFilters",
    "Period",
    "SqliteStorage",
    "Storage",
    "build_storage",
    "sort_by_severity",
]
