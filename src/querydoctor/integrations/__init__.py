"""Adapters that feed queries from database libraries into capture."""

from querydoctor.integrations.sqlalchemy import (
    SQLAlchemyCaptureListener,
    normalize_bindings,
    normalize_placeholders,
)

__all__ = [
    "SQLAlchemyCaptureListener",
    "normalize_bindings",
    "normalize_placeholders",
]
