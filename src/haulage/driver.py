"""Migration driver: wipe, count, stream, migrate, report, re-sequence."""

from __future__ import annotations

import logging
import time
from contextlib import closing
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Callable

from haulage.config import HaulageConfig, MigrationOptions
from haulage.errors import HaulageError, MigrationAborted, MigrationError
from haulage.record import migrate_record
from haulage.registry import Catalog, CatalogEntry
from haulage.storage import LegacyStoreProtocol, TargetStoreProtocol

logger = logging.getLogger(__name__)

ERROR_DELIMITER = "...................."


@dataclass
class MigrationReport:
    """Outcome of one driver invocation for one entity."""

    entity: str
    label: str
    total: int = 0
    offset: int | None = None
    limit: int | None = None
    attempted: int = 0
    succeeded: int = 0
    errors: list[MigrationError] = field(default_factory=list)
    last_counter: int = 0
    next_primary_key: int | None = None
    duration_s: float = 0.0

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "label": self.label,
            "total": self.total,
            "offset": self.offset,
            "limit": self.limit,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "last_counter": self.last_counter,
            "next_primary_key": self.next_primary_key,
            "duration_s": round(self.duration_s, 3),
            "errors": [e.to_dict() for e in self.errors],
        }


def status_line(label: str, counter: int, total: int, offset: int | None = None) -> str:
    """Format the per-row progress line."""
    status = f"Migrating {label}"
    if offset:
        status += f" after {offset}"
    return f"{status} ({counter}/{total})"


def format_error_report(errors: list[MigrationError]) -> list[str]:
    """Lines printed after a pass that produced row errors."""
    if not errors:
        return []
    lines = ["", "", f"{len(errors)} ERRORS"]
    for error in errors:
        lines.append(ERROR_DELIMITER)
        lines.append(str(error))
    return lines


class Migrator:
    """Runs single-entity migration passes from a legacy store to a target store.

    Example:
        >>> migrator = Migrator(catalog, legacy, target)
        >>> report = migrator.run("Person", MigrationOptions(limit=100))
        >>> report.succeeded, report.failed
        (99, 1)
    """

    def __init__(
        self,
        catalog: Catalog,
        legacy_store: LegacyStoreProtocol,
        target_store: TargetStoreProtocol,
        *,
        config: HaulageConfig | None = None,
        echo: Callable[[str], None] = print,
    ) -> None:
        self._catalog = catalog
        self._legacy = legacy_store
        self._target = target_store
        self._config = config or HaulageConfig()
        self._echo = echo

    def _emit(self, line: str) -> None:
        if self._config.echo_progress:
            self._echo(line)

    def _prepare(self, entity_name: str, options: MigrationOptions) -> CatalogEntry:
        entry = self._catalog.resolve(entity_name)
        self._legacy.check_table(entry.legacy_type, options.filter)
        if self._config.create_tables:
            self._target.ensure_table(entry.entity_type)
        self._target.check_table(entry.entity_type)
        return entry

    def run(
        self,
        entity_name: str,
        options: MigrationOptions | None = None,
        **overrides: Any,
    ) -> MigrationReport:
        """Migrate every selected legacy row of one entity.

        Args:
            entity_name: New-schema entity name (``"Person"``).
            options: Filter, limit, offset and label for this pass.
            **overrides: Individual option values that replace ``options`` fields.

        Raises:
            ConfigurationError: The entity, its legacy type, mapper or tables
                cannot be resolved. Nothing has been written.
            StoreUnavailableError: A store failed before the target was wiped.
            MigrationAborted: A fatal error after the wipe. The target table is
                cleared again when ``wipe_on_abort`` is set.
        """
        options = (options or MigrationOptions()).merged(**overrides)

        entry = self._prepare(entity_name, options)
        label = options.label or entry.name
        report = MigrationReport(
            entity=entry.name,
            label=label,
            offset=options.offset,
            limit=options.limit,
        )
        start_time = time.monotonic()

        deleted = self._target.delete_all(entry.entity_type)
        logger.info("Cleared %d existing %s row(s)", deleted, entry.name)

        counter = options.offset or 0
        current_key: Any = None
        try:
            report.total = self._legacy.count(entry.legacy_type, options.filter)
            logger.info(
                "Starting migration of %s: %d legacy row(s), limit=%s, offset=%s",
                entry.name,
                report.total,
                options.limit,
                options.offset,
            )

            rows = self._legacy.fetch(
                entry.legacy_type,
                options.filter,
                options.limit,
                options.offset,
                batch_size=self._config.fetch_batch_size,
            )
            # The read cursor must be released before the caller closes the connection.
            with closing(rows):
                for record in rows:
                    current_key = record.primary_key
                    counter += 1
                    report.last_counter = counter
                    report.attempted += 1
                    self._emit(status_line(label, counter, report.total, options.offset))

                    error = migrate_record(record, entry, self._target)
                    if error is None:
                        report.succeeded += 1
                    else:
                        report.errors.append(error)
                    logger.debug(
                        "Migrated %s %r (%d/%d)", entry.name, current_key, counter, report.total
                    )
                    current_key = None
        except Exception as e:
            # Anything escaping a row after the wipe is fatal, whatever its type.
            report.duration_s = time.monotonic() - start_time
            self._abort(entry, current_key, e)
            raise MigrationAborted(entry.name, current_key, report) from e

        for line in format_error_report(report.errors):
            self._emit(line)

        report.next_primary_key = self._target.reset_pk_sequence(entry.entity_type)
        report.duration_s = time.monotonic() - start_time

        logger.info(
            "Finished %s: %d succeeded, %d failed in %.2fs",
            entry.name,
            report.succeeded,
            report.failed,
            report.duration_s,
        )
        return report

    def _abort(self, entry: CatalogEntry, primary_key: Any, cause: Exception) -> None:
        where = "while reading legacy rows" if primary_key is None else f"at row {primary_key!r}"
        logger.error("Migration of %s aborted %s: %s", entry.name, where, cause)
        self._emit(f"Migration of {entry.name} aborted {where}: {cause}")
        if not self._config.wipe_on_abort:
            return
        try:
            self._target.delete_all(entry.entity_type)
        except HaulageError as wipe_error:
            logger.error("Could not clear %s after abort: %s", entry.name, wipe_error)
        else:
            logger.info("Cleared partially migrated %s rows after abort", entry.name)

    def run_many(
        self,
        entity_names: Iterable[str],
        options: MigrationOptions | None = None,
    ) -> list[MigrationReport]:
        """Run passes for several entities in order, resolving all names first.

        When a pass aborts, the reports of the passes that already finished are
        attached to the raised MigrationAborted as ``completed``.
        """
        names = list(entity_names)
        for name in names:
            self._catalog.resolve(name)

        reports: list[MigrationReport] = []
        for name in names:
            try:
                reports.append(self.run(name, options))
            except MigrationAborted as e:
                e.completed = reports
                raise
        return reports

    def run_helper(self, name: str) -> Any:
        """Run a registered helper routine in place of a table pass."""
        helper = self._catalog.resolve_helper(name)
        logger.info("Running migration helper %s", name)
        return helper(self._legacy, self._target)
