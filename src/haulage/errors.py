"""Structured error types for haulage."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from haulage.driver import MigrationReport


class HaulageError(Exception):
    """Base error for all haulage errors."""


@dataclass(frozen=True)
class MigrationError:
    """Validation failures for one migrated row.

    This is a report record, not an exception: the record migrator returns it
    and the driver collects it. It is never persisted.
    """

    entity: str
    primary_key: Any
    messages: tuple[str, ...] = field(default_factory=tuple)

    def __str__(self) -> str:
        lines = [f"{self.entity} {self.primary_key!r}:"]
        lines.extend(f"  - {m}" for m in self.messages)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "primary_key": self.primary_key,
            "messages": list(self.messages),
        }


class ConfigurationError(HaulageError):
    """Raised when an entity, legacy type, mapper or helper cannot be resolved."""


class StoreUnavailableError(HaulageError):
    """Raised when a legacy or target store operation fails outright."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Store unavailable during {operation}: {detail}")


class RecordValidationError(HaulageError):
    """Raised by a target store when a record fails validation on save."""

    def __init__(self, messages: list[str]) -> None:
        self.messages = list(messages)
        super().__init__("; ".join(self.messages) or "record is invalid")


class MigrationAborted(HaulageError):
    """Raised when a run stops on a fatal error after the target was wiped."""

    def __init__(self, entity: str, primary_key: Any, report: MigrationReport) -> None:
        self.entity = entity
        self.primary_key = primary_key
        self.report = report
        # Reports of passes that finished earlier in the same run_many call.
        self.completed: list[MigrationReport] = []
        where = "while reading legacy rows" if primary_key is None else f"at row {primary_key!r}"
        super().__init__(
            f"Migration of {entity} aborted {where} after "
            f"{report.attempted} of {report.total} row(s)"
        )
