"""Configuration for haulage runs."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from haulage.filters import FilterExpression, coerce_filter


def positive_or_none(value: Any) -> int | None:
    """Return ``value`` as an int if it is a positive integer, else None."""
    if value is None:
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


@dataclass
class HaulageConfig:
    """Configuration for the migration driver."""

    fetch_batch_size: int = 1000
    wipe_on_abort: bool = True
    echo_progress: bool = True
    create_tables: bool = False


@dataclass
class MigrationOptions:
    """Per-run options: which legacy rows participate and how progress is labelled.

    ``limit`` and ``offset`` only take effect when positive. ``filter`` accepts a
    FilterExpression or a plain ``{column: value}`` mapping.
    """

    filter: FilterExpression | Mapping[str, Any] | None = None
    limit: int | None = None
    offset: int | None = None
    label: str | None = None

    def __post_init__(self) -> None:
        self.filter = coerce_filter(self.filter)
        self.limit = positive_or_none(self.limit)
        self.offset = positive_or_none(self.offset)

    def merged(self, **overrides: Any) -> MigrationOptions:
        """Return a copy with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)


ENV_LIMIT_NAMES = ("HAULAGE_LIMIT", "limit")
ENV_OFFSET_NAMES = ("HAULAGE_OFFSET", "offset")


def _first_env(environ: Mapping[str, str], names: tuple[str, ...]) -> int | None:
    for name in names:
        value = positive_or_none(environ.get(name))
        if value is not None:
            return value
    return None


def options_from_env(environ: Mapping[str, str], **kwargs: Any) -> MigrationOptions:
    """Build MigrationOptions, taking limit/offset from the environment.

    Read once by the outermost caller. Explicit ``limit``/``offset`` keyword
    arguments win over the environment; only positive values are honored.
    """
    limit = positive_or_none(kwargs.pop("limit", None)) or _first_env(environ, ENV_LIMIT_NAMES)
    offset = positive_or_none(kwargs.pop("offset", None)) or _first_env(
        environ, ENV_OFFSET_NAMES
    )
    return MigrationOptions(limit=limit, offset=offset, **kwargs)
