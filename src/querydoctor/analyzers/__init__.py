"""
Built-in analyzers.

Importing this package registers all five analyzers with the global
registry, in the order the pipeline runs them.
"""

from querydoctor.analyzers.base import Analyzer, AnalyzerConfig, truncate_sql
from querydoctor.analyzers.registry import (
    AnalyzerRegistry,
    get_registry,
    register_analyzer,
)

from querydoctor.analyzers.slow import SlowQueryAnalyzer, SlowQueryConfig
from querydoctor.analyzers.duplicate import DuplicateQueryAnalyzer, DuplicateQueryConfig
from querydoctor.analyzers.n_plus_one import NPlusOneAnalyzer, NPlusOneConfig
from querydoctor.analyzers.missing_index import (
    IndexCandidate,
    MissingIndexAnalyzer,
    MissingIndexConfig,
    extract_index_candidate,
)
from querydoctor.analyzers.select_star import SelectStarAnalyzer, SelectStarConfig

__all__ = [
    "Analyzer",
    "AnalyzerConfig",
    "AnalyzerRegistry",
    "DuplicateQueryAnalyzer",
    "DuplicateQueryConfig",
    "IndexCandidate",
    "MissingIndexAnalyzer",
    "MissingIndexConfig",
    "NPlusOneAnalyzer",
    "NPlusOneConfig",
    "SelectStarAnalyzer",
    "SelectStarConfig",
    "SlowQueryAnalyzer",
    "SlowQueryConfig",
    "extract_index_candidate",
    "get_registry",
    "register_analyzer",
    "truncate_sql",
]
