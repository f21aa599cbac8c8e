"""Field mappers and helper routines: decorators and module loading."""

from __future__ import annotations

import importlib
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from haulage.errors import ConfigurationError
from haulage.types import LegacyRecord

__all__ = [
    "FieldMapper",
    "field_mapper",
    "migration_helper",
    "load_mappers",
    "MapperModule",
]


class FieldMapper(Protocol):
    """Maps one legacy record to new-schema attribute values.

    Implementations must be deterministic and must not write to either store.
    """

    def __call__(self, record: LegacyRecord) -> Mapping[str, Any]: ...


def field_mapper(entity_name: str) -> Callable[..., Any]:
    """Decorator marking a function as the field mapper for a new-schema entity.

    Example::

        @field_mapper("Person")
        def map_person(record):
            return {"name": record["FullName"].strip(), "email": record["Mail"]}
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        func._haulage_mapper = {"entity_name": entity_name}  # type: ignore[attr-defined]
        return func

    return decorator


def migration_helper(name: str) -> Callable[..., Any]:
    """Decorator marking a function as a named helper routine.

    Helpers run custom migration code instead of a table pass. They receive
    the legacy and target stores and may return a count of rows touched.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        func._haulage_helper = {"name": name}  # type: ignore[attr-defined]
        return func

    return decorator


@dataclass
class MapperModule:
    """Mappers and helpers collected from one module."""

    mappers: dict[str, Callable[..., Any]] = field(default_factory=dict)
    helpers: dict[str, Callable[..., Any]] = field(default_factory=dict)


def collect_mappers(namespace: Mapping[str, Any]) -> MapperModule:
    """Collect decorated mappers and helpers from a namespace.

    Raises ConfigurationError on duplicate registrations.
    """
    collected = MapperModule()

    for obj in namespace.values():
        meta = getattr(obj, "_haulage_mapper", None)
        if meta is not None:
            name = meta["entity_name"]
            existing = collected.mappers.get(name)
            if existing is not None and existing is not obj:
                raise ConfigurationError(
                    f"Duplicate field mapper for {name}: "
                    f"{existing.__qualname__} and {obj.__qualname__}"
                )
            collected.mappers[name] = obj

        meta = getattr(obj, "_haulage_helper", None)
        if meta is not None:
            name = meta["name"]
            existing = collected.helpers.get(name)
            if existing is not None and existing is not obj:
                raise ConfigurationError(
                    f"Duplicate migration helper {name}: "
                    f"{existing.__qualname__} and {obj.__qualname__}"
                )
            collected.helpers[name] = obj

    return collected


def load_mappers(module_path: str) -> MapperModule:
    """Import a module and collect all @field_mapper and @migration_helper functions."""
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import mapper module '{module_path}': {e}") from e
    return collect_mappers(vars(module))
