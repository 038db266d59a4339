"""
PII masking for captured query bindings.

Bindings are masked before they reach storage, in two passes:

1. Column-based: when the SQL compares a sensitive column against a
   placeholder (``password = ?``, ``token IN (?, ?)``,
   ``ssn BETWEEN ? AND ?``), the positional binding for that placeholder is
   replaced with MASKED.
2. Pattern-based: any remaining string binding that looks like PII (email,
   phone number, SSN) is replaced with MASKED regardless of column.

The SQLite store additionally persists only a hash of the bindings, never
the raw values.

Known gap: ``INSERT ... VALUES (?, ?)`` lists carry no column next to the
placeholder, so only the pattern pass can catch values there.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import Any

MASKED = "[MASKED]"

DEFAULT_SENSITIVE_COLUMNS: tuple[str, ...] = (
    "password",
    "secret",
    "token",
    "api_key",
    "access_token",
    "refresh_token",
    "credit_card",
    "ssn",
    "social_security",
)

DEFAULT_VALUE_PATTERNS: tuple[str, ...] = (
    r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$",  # email
    r"^\+?[1-9]\d{6,14}$",  # phone
    r"^\d{3}-\d{2}-\d{4}$",  # US SSN
)

_COLUMN = r"(?:`?(\w+)`?\.)?`?(\w+)`?"

_COMPARISON = re.compile(
    _COLUMN
    + r"\s*(?:!=|<>|>=|<=|=|>|<|(?:NOT\s+)?LIKE|IS(?:\s+NOT)?)\s*\?",
    re.IGNORECASE,
)
_IN_LIST = re.compile(_COLUMN + r"\s+(?:NOT\s+)?IN\s*\(([^)]+)\)", re.IGNORECASE)
_BETWEEN = re.compile(
    _COLUMN + r"\s+(?:NOT\s+)?BETWEEN\s+\?\s+AND\s+\?",
    re.IGNORECASE,
)


def find_placeholder_offsets(sql: str) -> list[int]:
    """
    Return character offsets of ``?`` placeholders outside string literals.

    The index into the returned list is the positional binding index.
    A quote preceded by a backslash does not toggle quote state.
    """
    offsets: list[int] = []
    in_single = False
    in_double = False

    for i, char in enumerate(sql):
        if char == "'" and not in_double:
            if i > 0 and sql[i - 1] == "\\":
                continue
            in_single = not in_single
        elif char == '"' and not in_single:
            if i > 0 and sql[i - 1] == "\\":
                continue
            in_double = not in_double
        elif char == "?" and not in_single and not in_double:
            offsets.append(i)

    return offsets


class BindingMasker:
    """
    Replaces sensitive positional bindings with MASKED.

    Example:
        masker = BindingMasker(columns=["password"])
        masker.mask("select * from users where email = ? and password = ?",
                    ["a@b.co", "hunter2"])
        # -> ["a@b.co", "[MASKED]"]   (email stays: no value patterns set)
    """

    def __init__(
        self,
        columns: Iterable[str] = (),
        value_patterns: Iterable[str] = (),
    ) -> None:
        self.sensitive_columns = frozenset(c.lower() for c in columns)
        self.value_patterns = [re.compile(p) for p in value_patterns]

    @classmethod
    def with_defaults(cls) -> "BindingMasker":
        return cls(DEFAULT_SENSITIVE_COLUMNS, DEFAULT_VALUE_PATTERNS)

    @property
    def is_active(self) -> bool:
        return bool(self.sensitive_columns or self.value_patterns)

    def mask(self, sql: str, bindings: Sequence[Any]) -> list[Any]:
        """
        Mask sensitive bindings.

        Returns a new list of the same length and order; the input is not
        modified. Never raises for any SQL text.
        """
        masked = list(bindings)
        if not masked:
            return masked

        if self.sensitive_columns:
            for index in self._sensitive_indexes(sql):
                if index < len(masked):
                    masked[index] = MASKED

        if self.value_patterns:
            for index, value in enumerate(masked):
                if value == MASKED or not isinstance(value, str):
                    continue
                if any(p.search(value) for p in self.value_patterns):
                    masked[index] = MASKED

        return masked

    def _sensitive_indexes(self, sql: str) -> set[int]:
        index_by_offset = {
            offset: index for index, offset in enumerate(find_placeholder_offsets(sql))
        }
        sensitive: set[int] = set()

        def collect(start: int, text: str) -> None:
            for pos, char in enumerate(text):
                if char == "?" and start + pos in index_by_offset:
                    sensitive.add(index_by_offset[start + pos])

        for match in _COMPARISON.finditer(sql):
            if match.group(2).lower() in self.sensitive_columns:
                qmark = match.group(0).find("?")
                offset = match.start() + qmark
                if offset in index_by_offset:
                    sensitive.add(index_by_offset[offset])

        for match in _IN_LIST.finditer(sql):
            if match.group(2).lower() in self.sensitive_columns:
                collect(match.start(3), match.group(3))

        for match in _BETWEEN.finditer(sql):
            if match.group(2).lower() in self.sensitive_columns:
                collect(match.start(), match.group(0))

        return sensitive
