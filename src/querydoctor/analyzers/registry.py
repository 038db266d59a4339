"""
Analyzer registry.

Analyzers register themselves with the @register_analyzer decorator; the
pipeline runs them in registration order.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from querydoctor.analyzers.base import Analyzer

T = TypeVar("T", bound="Analyzer")


class AnalyzerRegistry:
    """Analyzer classes keyed by the issue type they report."""

    def __init__(self) -> None:
        self._by_type: dict[str, type[Analyzer]] = {}

    def register(self, analyzer_cls: type[T]) -> type[T]:
        """
        Add an analyzer class; one class per issue type.

        Raises:
            ValueError: If the issue type already has an analyzer
        """
        key = analyzer_cls.type.value
        taken = self._by_type.get(key)
        if taken is not None:
            raise ValueError(
                f"Issue type '{key}' is already handled by "
                f"{taken.__module__}.{taken.__name__}; "
                f"cannot add {analyzer_cls.__module__}.{analyzer_cls.__name__}"
            )
        self._by_type[key] = analyzer_cls
        return analyzer_cls

    def all(self) -> list[type[Analyzer]]:
        """Registered classes in pipeline order."""
        return list(self._by_type.values())

    def all_keys(self) -> list[str]:
        return list(self._by_type)


_registry = AnalyzerRegistry()


def get_registry() -> AnalyzerRegistry:
    return _registry


def register_analyzer(analyzer_cls: type[T]) -> type[T]:
    """
    Class decorator adding an analyzer to the global registry.

    Example:
        @register_analyzer
        class SlowQueryAnalyzer(Analyzer):
            type = IssueType.SLOW
    """
    return _registry.register(analyzer_cls)
