"""
Package-level exception hierarchy for QueryDoctor.

All exceptions inherit from QueryDoctorError, enabling:
- Catching all QueryDoctor errors with a single except clause
- Context fields for debugging (analyzer_type, config_key, operation, etc.)
- Structured serialization via to_dict() for JSON error output

Hierarchy:
    QueryDoctorError
    ├── AnalysisError            – Errors during analysis orchestration
    │   └── AnalyzerFailedError  – A specific analyzer raised
    ├── ConfigurationError       – Invalid configuration value or file
    ├── StorageError             – Persistent store read/write failure
    ├── UnknownFormatError       – Unsupported report format requested
    └── CaptureError             – Invalid capture lifecycle usage
"""

from __future__ import annotations

from typing import Any


class QueryDoctorError(Exception):
    """
    Base exception for all QueryDoctor errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON error output."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
        }


# ── Analysis Errors ──────────────────────────────────────────────────────


class AnalysisError(QueryDoctorError):
    """Errors during analysis orchestration."""
    pass


class AnalyzerFailedError(AnalysisError):
    """
    An analyzer raised while processing a batch of events.

    Only raised when the pipeline runs with fail_fast enabled; otherwise
    the failure is recorded on the AnalyzerRun and the run continues.

    Attributes:
        analyzer_type: Issue type the analyzer produces.
        original_error: The underlying exception.
    """

    def __init__(self, analyzer_type: str, original_error: Exception) -> None:
        self.analyzer_type = analyzer_type
        self.original_error = original_error
        message = (
            f"Analyzer '{analyzer_type}' failed: "
            f"{original_error.__class__.__name__}: {original_error}"
        )
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["analyzer_type"] = self.analyzer_type
        result["original_error_type"] = self.original_error.__class__.__name__
        result["original_error_message"] = str(self.original_error)
        return result


# ── Configuration Errors ─────────────────────────────────────────────────


class ConfigurationError(QueryDoctorError):
    """
    Error in configuration.

    Attributes:
        config_key: The configuration key that caused the error (if known).
    """

    def __init__(self, message: str, config_key: str | None = None) -> None:
        self.config_key = config_key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["config_key"] = self.config_key
        return result


# ── Storage Errors ───────────────────────────────────────────────────────


class StorageError(QueryDoctorError):
    """
    A storage backend failed to read or write.

    Attributes:
        operation: Name of the storage operation (e.g. "store_issue").
    """

    def __init__(self, message: str, operation: str | None = None) -> None:
        self.operation = operation
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["operation"] = self.operation
        return result


# ── Output Errors ────────────────────────────────────────────────────────


class UnknownFormatError(QueryDoctorError):
    """
    Requested report format is not supported.

    Attributes:
        format: The format that was requested.
        available: Formats that are supported.
    """

    def __init__(self, format: str, available: list[str]) -> None:
        self.format = format
        self.available = list(available)
        message = (
            f"Unknown report format '{format}'. "
            f"Available formats: {', '.join(self.available)}"
        )
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["format"] = self.format
        result["available"] = self.available
        return result


# ── Capture Errors ───────────────────────────────────────────────────────


class CaptureError(QueryDoctorError):
    """Invalid use of the capture lifecycle (e.g. malformed trace input)."""
    pass
