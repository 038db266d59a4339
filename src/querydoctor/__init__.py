"""QueryDoctor - query anti-pattern detection for SQLAlchemy applications."""

__version__ = "0.3.0"
__license__ = "MIT"

# Exception hierarchy (import first so other modules can use it)
from querydoctor.exceptions import (
    QueryDoctorError,
    AnalysisError,
    AnalyzerFailedError,
    CaptureError,
    ConfigurationError,
    StorageError,
    UnknownFormatError,
)

# Domain model
from querydoctor.fingerprint import QueryFingerprint, fingerprint, normalize_sql
from querydoctor.masking import BindingMasker
from querydoctor.models import (
    CaptureContext,
    Evidence,
    ExplainResult,
    Issue,
    IssueType,
    QueryEvent,
    Recommendation,
    Severity,
    SourceContext,
    StackFrame,
)

# Analysis
from querydoctor.analyzers import Analyzer, get_registry
from querydoctor.pipeline import AnalysisPipeline, AnalyzerRun

# Configuration, storage and services
from querydoctor.config import Config, get_config, load_config_from_file
from querydoctor.storage import (
    EventFilters,
    InMemoryStorage,
    IssueFilters,
    Period,
    SqliteStorage,
    Storage,
    build_storage,
)
from querydoctor.capture import FlushResult, QueryCaptureService
from querydoctor.services import BaselineService, ReportService
from querydoctor.output import OutputFormat, render

__all__ = [
    "__version__",
    # Exceptions
    "QueryDoctorError",
    "AnalysisError",
    "AnalyzerFailedError",
    "CaptureError",
    "ConfigurationError",
    "StorageError",
    "UnknownFormatError",
    # Domain
    "BindingMasker",
    "CaptureContext",
    "Evidence",
    "ExplainResult",
    "Issue",
    "IssueType",
    "QueryEvent",
    "QueryFingerprint",
    "Recommendation",
    "Severity",
    "SourceContext",
    "StackFrame",
    "fingerprint",
    "normalize_sql",
    # Analysis
    "Analyzer",
    "AnalysisPipeline",
    "AnalyzerRun",
    "get_registry",
    # Config / storage / services
    "Config",
    "get_config",
    "load_config_from_file",
    "EventFilters",
    "InMemoryStorage",
    "IssueFilters",
    "Period",
    "SqliteStorage",
    "Storage",
    "build_storage",
    "FlushResult",
    "QueryCaptureService",
    "BaselineService",
    "ReportService",
    "OutputFormat",
    "render",
]
