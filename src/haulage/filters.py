"""Filter expression types for selecting legacy rows."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

_COLUMN_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _validate_column(name: str) -> None:
    """Validate a column identifier."""
    if not _COLUMN_RE.match(name):
        raise ValueError(f"Invalid column name '{name}': must match [A-Za-z_][A-Za-z0-9_]*")


NULL_EQ_ERROR = "Use .is_null() instead of == None in filter expressions."
NULL_NE_ERROR = "Use .is_not_null() instead of != None in filter expressions."


class FilterExpression:
    """Base class for filter expressions."""

    def __and__(self, other: FilterExpression) -> LogicalExpression:
        return LogicalExpression(op="AND", children=[self, other])

    def __or__(self, other: FilterExpression) -> LogicalExpression:
        return LogicalExpression(op="OR", children=[self, other])

    def __invert__(self) -> LogicalExpression:
        return LogicalExpression(op="NOT", children=[self])


@dataclass
class ComparisonExpression(FilterExpression):
    """A comparison between a legacy column and a value."""

    column: str
    op: str  # "==", "!=", ">", ">=", "<", "<=", "LIKE", "IN", "IS_NULL", "IS_NOT_NULL"
    value: Any = None

    def __hash__(self) -> int:
        v = self.value
        if isinstance(v, list):
            v = tuple(v)
        return hash((self.column, self.op, v))

    def __eq__(self, other: object) -> bool:  # type: ignore[override]
        if not isinstance(other, ComparisonExpression):
            return NotImplemented
        return self.column == other.column and self.op == other.op and self.value == other.value


@dataclass
class LogicalExpression(FilterExpression):
    """A logical combination of filter expressions."""

    op: str  # "AND", "OR", "NOT"
    children: list[FilterExpression] = field(default_factory=list)


class FieldProxy:
    """Proxy that generates FilterExpression from column operations.

    Usage: column("status") == "active"
    """

    def __init__(self, name: str) -> None:
        _validate_column(name)
        self._name = name

    def __eq__(self, other: object) -> ComparisonExpression:  # type: ignore[override]
        if other is None:
            raise TypeError(NULL_EQ_ERROR)
        return ComparisonExpression(self._name, "==", other)

    def __ne__(self, other: object) -> ComparisonExpression:  # type: ignore[override]
        if other is None:
            raise TypeError(NULL_NE_ERROR)
        return ComparisonExpression(self._name, "!=", other)

    def __gt__(self, other: Any) -> ComparisonExpression:
        return ComparisonExpression(self._name, ">", other)

    def __ge__(self, other: Any) -> ComparisonExpression:
        return ComparisonExpression(self._name, ">=", other)

    def __lt__(self, other: Any) -> ComparisonExpression:
        return ComparisonExpression(self._name, "<", other)

    def __le__(self, other: Any) -> ComparisonExpression:
        return ComparisonExpression(self._name, "<=", other)

    def __hash__(self) -> int:
        return hash(self._name)

    def startswith(self, prefix: str) -> ComparisonExpression:
        return ComparisonExpression(self._name, "LIKE", f"{prefix}%")

    def endswith(self, suffix: str) -> ComparisonExpression:
        return ComparisonExpression(self._name, "LIKE", f"%{suffix}")

    def contains(self, substring: str) -> ComparisonExpression:
        return ComparisonExpression(self._name, "LIKE", f"%{substring}%")

    def in_(self, values: list[Any]) -> ComparisonExpression:
        return ComparisonExpression(self._name, "IN", list(values))

    def is_null(self) -> ComparisonExpression:
        return ComparisonExpression(self._name, "IS_NULL")

    def is_not_null(self) -> ComparisonExpression:
        return ComparisonExpression(self._name, "IS_NOT_NULL")


def column(name: str) -> FieldProxy:
    """Create a proxy for building filters on a legacy column."""
    return FieldProxy(name)


def from_mapping(conditions: Mapping[str, Any]) -> FilterExpression | None:
    """Build an AND-combined equality filter from a ``{column: value}`` mapping.

    ``None`` values become IS NULL tests and list values become IN tests.
    """
    exprs: list[FilterExpression] = []
    for name, value in conditions.items():
        _validate_column(name)
        if value is None:
            exprs.append(ComparisonExpression(name, "IS_NULL"))
        elif isinstance(value, (list, tuple, set, frozenset)):
            exprs.append(ComparisonExpression(name, "IN", list(value)))
        else:
            exprs.append(ComparisonExpression(name, "==", value))
    if not exprs:
        return None
    if len(exprs) == 1:
        return exprs[0]
    return LogicalExpression(op="AND", children=exprs)


def filter_columns(expr: FilterExpression | None) -> list[str]:
    """Column names referenced anywhere in a filter tree, in first-seen order."""
    if expr is None:
        return []
    if isinstance(expr, ComparisonExpression):
        return [expr.column]
    names: list[str] = []
    if isinstance(expr, LogicalExpression):
        for child in expr.children:
            for name in filter_columns(child):
                if name not in names:
                    names.append(name)
    return names


def coerce_filter(value: FilterExpression | Mapping[str, Any] | None) -> FilterExpression | None:
    """Normalize the accepted filter forms to a FilterExpression (or None)."""
    if value is None or isinstance(value, FilterExpression):
        return value
    if isinstance(value, Mapping):
        return from_mapping(value)
    raise TypeError(f"Unsupported filter type: {type(value).__name__}")
