"""Model loader: import Python modules and build the entity catalog."""

from __future__ import annotations

import importlib
import sys
from pathlib import Path
from types import ModuleType

from haulage.mapping import collect_mappers, load_mappers
from haulage.registry import Catalog
from haulage.types import Entity, LegacyEntity


def import_models_module(models: str | None = None, models_path: str | None = None) -> ModuleType:
    """Import the models module from a dotted path or a file path."""
    if models_path:
        path = Path(models_path).resolve()
        if not path.exists():
            raise FileNotFoundError(f"Models path not found: {models_path}")
        # Add parent to sys.path so import works
        parent = str(path.parent)
        if parent not in sys.path:
            sys.path.insert(0, parent)
        return importlib.import_module(path.stem)
    if models:
        return importlib.import_module(models)
    raise ValueError("One of --models or --models-path is required")


def load_catalog(
    models: str | None = None,
    models_path: str | None = None,
    mappers: str | None = None,
) -> Catalog:
    """Load Entity and LegacyEntity classes and their mappers into a Catalog.

    Args:
        models: Dotted Python import path (e.g. 'myapp.models')
        models_path: Filesystem path to a Python file
        mappers: Optional dotted path of a separate mapper module. Mappers and
            helpers declared in the models module are always collected.
    """
    module = import_models_module(models, models_path)

    entity_types: list[type[Entity]] = []
    legacy_types: list[type[LegacyEntity]] = []
    for obj in vars(module).values():
        if not isinstance(obj, type):
            continue
        if issubclass(obj, Entity) and obj is not Entity:
            entity_types.append(obj)
        elif issubclass(obj, LegacyEntity) and obj is not LegacyEntity:
            legacy_types.append(obj)

    collected = collect_mappers(vars(module))
    if mappers:
        extra = load_mappers(mappers)
        collected.mappers.update(extra.mappers)
        collected.helpers.update(extra.helpers)

    return Catalog(
        entity_types=entity_types,
        legacy_types=legacy_types,
        mappers=collected.mappers,
        helpers=collected.helpers,
    )
