"""Record migrator: map, build, re-key and save one legacy row."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from haulage.errors import ConfigurationError, MigrationError
from haulage.registry import CatalogEntry
from haulage.storage import TargetStoreProtocol
from haulage.types import LegacyRecord, NewRecord

logger = logging.getLogger(__name__)


def build_record(record: LegacyRecord, entry: CatalogEntry) -> NewRecord:
    """Run the entry's mapper and build a NewRecord keyed by the legacy key.

    Raises ConfigurationError when the record belongs to another entity or the
    mapper does not return a mapping keyed by attribute name. Exceptions
    raised by the mapper itself propagate to the caller.
    """
    if record.entity_type != entry.legacy_type.__legacy_name__:
        raise ConfigurationError(
            f"Record of type '{record.entity_type}' cannot be migrated as {entry.name}"
        )

    mapped = entry.mapper(record)
    if not isinstance(mapped, Mapping):
        raise ConfigurationError(
            f"Field mapper {entry.mapper_name} for {entry.name} returned "
            f"{type(mapped).__name__}, expected a mapping"
        )

    bad_keys = [k for k in mapped if not isinstance(k, str)]
    if bad_keys:
        raise ConfigurationError(
            f"Field mapper {entry.mapper_name} for {entry.name} returned non-string "
            f"attribute name(s) {bad_keys!r}"
        )

    new_record = NewRecord(entry.entity_type, mapped)
    # Identity is preserved even when the mapper supplies its own key.
    new_record.primary_key = record.primary_key
    return new_record


def migrate_record(
    record: LegacyRecord,
    entry: CatalogEntry,
    store: TargetStoreProtocol,
) -> MigrationError | None:
    """Migrate one legacy record into the target store.

    Returns None on success, or a MigrationError describing why the row was
    rejected. Row-level failures never raise; configuration and store errors do.
    """
    try:
        new_record = build_record(record, entry)
    except ConfigurationError:
        raise
    except Exception as e:
        logger.warning(
            "Mapper %s failed on %s %r: %s", entry.mapper_name, entry.name, record.primary_key, e
        )
        return MigrationError(
            entity=entry.name,
            primary_key=record.primary_key,
            messages=(f"{entry.mapper_name}: {type(e).__name__}: {e}",),
        )

    result = store.save(new_record)
    if result.ok:
        return None

    logger.warning(
        "%s %r failed validation: %s", entry.name, record.primary_key, "; ".join(result.errors)
    )
    return MigrationError(
        entity=entry.name,
        primary_key=record.primary_key,
        messages=tuple(result.errors),
    )
