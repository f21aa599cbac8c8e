"""haulage: migrate legacy relational rows into a new schema, one entity at a time."""

__version__ = "0.1.0"

from haulage.config import HaulageConfig, MigrationOptions, options_from_env
from haulage.driver import MigrationReport, Migrator
from haulage.errors import (
    ConfigurationError,
    HaulageError,
    MigrationAborted,
    MigrationError,
    RecordValidationError,
    StoreUnavailableError,
)
from haulage.filters import column
from haulage.mapping import field_mapper, load_mappers, migration_helper
from haulage.record import migrate_record
from haulage.registry import Catalog, CatalogEntry, target_name_for
from haulage.storage import open_legacy_store, open_target_store
from haulage.types import Entity, Field, LegacyEntity, LegacyRecord, NewRecord

__all__ = [
    "__version__",
    "Entity",
    "LegacyEntity",
    "Field",
    "LegacyRecord",
    "NewRecord",
    "column",
    "field_mapper",
    "migration_helper",
    "load_mappers",
    "Catalog",
    "CatalogEntry",
    "target_name_for",
    "migrate_record",
    "Migrator",
    "MigrationReport",
    "MigrationOptions",
    "HaulageConfig",
    "options_from_env",
    "open_legacy_store",
    "open_target_store",
    "HaulageError",
    "ConfigurationError",
    "StoreUnavailableError",
    "RecordValidationError",
    "MigrationAborted",
    "MigrationError",
]
