"""CLI filter parser: converts ``--where`` arguments to a FilterExpression."""

from __future__ import annotations

import json
from typing import Any

from haulage.filters import ComparisonExpression, FilterExpression, LogicalExpression

# Map CLI operator tokens to internal operator strings
_OP_MAP: dict[str, str] = {
    "eq": "==",
    "ne": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "in": "IN",
    "like": "LIKE",
    "is_null": "IS_NULL",
    "is_not_null": "IS_NOT_NULL",
}

_NO_VALUE_OPS = ("IS_NULL", "IS_NOT_NULL")


def split_where_arg(arg: str) -> tuple[str, str, str]:
    """Split ``"COLUMN OP VALUE_JSON"`` into its three tokens.

    The value may be omitted for ``is_null`` and ``is_not_null``.
    """
    parts = arg.split(None, 2)
    if len(parts) == 2 and _OP_MAP.get(parts[1]) in _NO_VALUE_OPS:
        return parts[0], parts[1], "null"
    if len(parts) != 3:
        raise ValueError(f"Invalid filter (expected 'COLUMN OP VALUE_JSON'): {arg}")
    return parts[0], parts[1], parts[2]


def parse_cli_filters(triples: list[tuple[str, str, str]]) -> FilterExpression | None:
    """Parse CLI filter triples (COLUMN, OP, VALUE_JSON) into a FilterExpression.

    Multiple filters are AND-combined.
    """
    if not triples:
        return None

    exprs: list[FilterExpression] = []
    for column, op_token, value_json in triples:
        op = _OP_MAP.get(op_token)
        if op is None:
            raise ValueError(
                f"Unknown filter operator '{op_token}'. "
                f"Valid operators: {', '.join(sorted(_OP_MAP.keys()))}"
            )

        value: Any = None
        if op not in _NO_VALUE_OPS:
            try:
                value = json.loads(value_json)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON value for '{column}': {value_json}") from e
            if op == "IN" and not isinstance(value, list):
                raise ValueError(f"Operator 'in' expects a JSON array for '{column}'")

        exprs.append(ComparisonExpression(column=column, op=op, value=value))

    if len(exprs) == 1:
        return exprs[0]
    return LogicalExpression(op="AND", children=exprs)


def parse_where_args(args: list[str] | None) -> FilterExpression | None:
    """Parse repeated ``--where`` option values."""
    if not args:
        return None
    return parse_cli_filters([split_where_arg(a) for a in args])
