"""
Patch severity: closed set with a total order.
The order is for display and sorting only; cohort membership never depends on it.
"""

from __future__ import annotations

import enum
import functools

from soroban_registry.core.errors import InvalidSeverity

_RANK = {"low": 0, "medium": 1, "high": 2, "critical": 3}


@functools.total_ordering
class Severity(enum.Enum):
    """Low < Medium < High < Critical."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RANK[self.value]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __str__(self) -> str:
        return self.value.capitalize()

    @classmethod
    def parse(cls, value: "str | Severity") -> "Severity":
        """Case-insensitive parse of low/medium/high/critical; raises InvalidSeverity otherwise."""
        if isinstance(value, Severity):
            return value
        if not isinstance(value, str):
            raise InvalidSeverity(repr(value))
        key = value.strip().lower()
        if key not in _RANK:
            raise InvalidSeverity(value)
        return cls(key)
