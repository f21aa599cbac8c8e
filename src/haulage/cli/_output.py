"""Output formatting helpers for the CLI."""

from __future__ import annotations

import json
import sys
from typing import Any

from haulage.driver import MigrationReport


def print_table(headers: list[str], rows: list[list[Any]], *, json_mode: bool = False) -> None:
    """Print rows as an aligned text table or a JSON array of objects."""
    if json_mode:
        print(json.dumps([dict(zip(headers, row)) for row in rows], indent=2, default=str))
        return

    if not rows:
        return

    str_rows = [["" if v is None else str(v) for v in row] for row in rows]
    widths = [max(len(h), *(len(r[i]) for r in str_rows)) for i, h in enumerate(headers)]

    print("  ".join(h.ljust(w) for h, w in zip(headers, widths)).rstrip())
    print("  ".join("-" * w for w in widths))
    for row in str_rows:
        print("  ".join(v.ljust(w) for v, w in zip(row, widths)).rstrip())


def print_object(data: dict[str, Any] | list[Any], *, json_mode: bool = False) -> None:
    """Print a single object or list as JSON or key-value pairs."""
    if json_mode:
        print(json.dumps(data, indent=2, default=str))
        return

    items = data if isinstance(data, list) else [data]
    for item in items:
        if isinstance(item, dict):
            for k, v in item.items():
                print(f"{k}: {v}")
        else:
            print(item)


def print_summary(report: MigrationReport) -> None:
    """Print the closing line for one migrated entity."""
    line = f"{report.label}: {report.succeeded} succeeded, {report.failed} error"
    if report.failed != 1:
        line += "s"
    line += f" ({report.attempted} of {report.total} legacy rows"
    if report.offset:
        line += f", after {report.offset}"
    line += ")"
    print(line)
    if report.next_primary_key is not None:
        print(f"  next {report.entity} id: {report.next_primary_key}")


def print_error(msg: str) -> None:
    """Print an error message to stderr."""
    print(f"Error: {msg}", file=sys.stderr)
