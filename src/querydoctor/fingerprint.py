"""
SQL fingerprinting.

Normalizes raw SQL into a structural pattern so that queries differing only
in literal values group together:

    SELECT * FROM users WHERE id = 1   -> select * from users where id = ?
    SELECT * FROM users WHERE id = 99  -> select * from users where id = ?

The normalization is pattern based, not a parser. It never raises: the worst
case is an imperfect but stable pattern.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

PLACEHOLDER = "?"

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT = re.compile(r"--[^\n]*")
_SINGLE_QUOTED = re.compile(r"(?<!')('(?:[^'\\]|\\.)*')(?!')")
_DOUBLE_QUOTED = re.compile(r'(?<!")("(?:[^"\\]|\\.)*")(?!")')
_NUMBER = re.compile(r"\b\d+\.?\d*\b")
_IN_LIST = re.compile(r"\bIN\s*\(\s*\?(?:\s*,\s*\?)*\s*\)", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


def normalize_sql(sql: str) -> str:
    """
    Return the normalized pattern for a SQL statement.

    Steps run in a fixed order; later steps depend on earlier ones
    (IN-list collapsing only sees placeholders once literals are replaced).
    """
    normalized = _BLOCK_COMMENT.sub("", sql)
    normalized = _LINE_COMMENT.sub("", normalized)

    normalized = _SINGLE_QUOTED.sub(PLACEHOLDER, normalized)
    normalized = _DOUBLE_QUOTED.sub(PLACEHOLDER, normalized)

    normalized = _NUMBER.sub(PLACEHOLDER, normalized)

    normalized = _IN_LIST.sub("IN (?)", normalized)

    normalized = normalized.lower()
    return _WHITESPACE.sub(" ", normalized).strip()


@dataclass(frozen=True, eq=False)
class QueryFingerprint:
    """
    Normalized SQL pattern plus its SHA-256 hash.

    Two fingerprints are equal when their hashes are equal.
    """

    value: str
    hash: str

    @classmethod
    def from_sql(cls, sql: str) -> "QueryFingerprint":
        value = normalize_sql(sql)
        return cls(value=value, hash=hashlib.sha256(value.encode()).hexdigest())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, QueryFingerprint):
            return NotImplemented
        return self.hash == other.hash

    def __hash__(self) -> int:
        return hash(self.hash)

    def __str__(self) -> str:
        return self.value


def fingerprint(sql: str) -> QueryFingerprint:
    """Shortcut for QueryFingerprint.from_sql()."""
    return QueryFingerprint.from_sql(sql)
