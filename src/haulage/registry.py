"""Static catalog of migratable entities and the legacy naming convention."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Callable

from haulage.errors import ConfigurationError
from haulage.types import LEGACY_PREFIX, Entity, LegacyEntity


def target_name_for(legacy_name: str) -> str:
    """Return the new-schema entity name for a legacy type name.

    ``LegacyPerson`` -> ``Person``. Names without the legacy qualifier, or
    consisting of nothing else, do not resolve.
    """
    if not legacy_name.startswith(LEGACY_PREFIX) or legacy_name == LEGACY_PREFIX:
        raise ConfigurationError(
            f"Legacy type '{legacy_name}' does not follow the "
            f"'{LEGACY_PREFIX}<Entity>' naming convention"
        )
    return legacy_name[len(LEGACY_PREFIX) :]


def legacy_name_for(entity_name: str) -> str:
    """Return the legacy type name for a new-schema entity name."""
    return f"{LEGACY_PREFIX}{entity_name}"


@dataclass(frozen=True)
class CatalogEntry:
    """A fully resolved entity: target type, legacy type and mapper."""

    name: str
    entity_type: type[Entity]
    legacy_type: type[LegacyEntity]
    mapper: Callable[..., Any]

    @property
    def mapper_name(self) -> str:
        return getattr(self.mapper, "__qualname__", repr(self.mapper))


class Catalog:
    """Entity table built once from declared types and mappers.

    Lookups never reflect over modules at run time; everything the driver can
    migrate is listed here when the catalog is constructed.
    """

    def __init__(
        self,
        entity_types: Iterable[type[Entity]] = (),
        legacy_types: Iterable[type[LegacyEntity]] = (),
        mappers: Mapping[str, Callable[..., Any]] | None = None,
        helpers: Mapping[str, Callable[..., Any]] | None = None,
    ) -> None:
        self._entity_types: dict[str, type[Entity]] = {}
        for et in entity_types:
            if et.__entity_name__ in self._entity_types:
                raise ConfigurationError(f"Duplicate entity type {et.__entity_name__}")
            self._entity_types[et.__entity_name__] = et

        self._legacy_types: dict[str, type[LegacyEntity]] = {}
        for lt in legacy_types:
            if lt.__legacy_name__ in self._legacy_types:
                raise ConfigurationError(f"Duplicate legacy type {lt.__legacy_name__}")
            self._legacy_types[lt.__legacy_name__] = lt

        self._mappers: dict[str, Callable[..., Any]] = dict(mappers or {})
        self._helpers: dict[str, Callable[..., Any]] = dict(helpers or {})

    @property
    def helpers(self) -> dict[str, Callable[..., Any]]:
        return dict(self._helpers)

    def names(self) -> list[str]:
        """Entity names that have a legacy counterpart, in declaration order."""
        names: list[str] = []
        for legacy_name in self._legacy_types:
            try:
                name = target_name_for(legacy_name)
            except ConfigurationError:
                continue
            if name in self._entity_types:
                names.append(name)
        return names

    def _canonical_name(self, name: str) -> str:
        if name in self._entity_types:
            return name
        if name in self._legacy_types:
            return target_name_for(name)
        lowered = name.lower()
        for candidate in self._entity_types:
            if candidate.lower() == lowered:
                return candidate
        for candidate in self._legacy_types:
            if candidate.lower() == lowered:
                return target_name_for(candidate)
        return name

    def resolve(self, name: str) -> CatalogEntry:
        """Resolve an entity name to its catalog entry.

        Raises ConfigurationError naming the entity if any part is missing.
        """
        canonical = self._canonical_name(name)

        entity_type = self._entity_types.get(canonical)
        if entity_type is None:
            raise ConfigurationError(f"Unknown entity '{name}': no new-schema Entity is declared")

        legacy_name = legacy_name_for(canonical)
        legacy_type = self._legacy_types.get(legacy_name)
        if legacy_type is None:
            raise ConfigurationError(
                f"Unknown entity '{name}': no legacy type '{legacy_name}' is declared"
            )

        mapper = self._mappers.get(canonical)
        if mapper is None:
            mapper = getattr(legacy_type, "map", None)
        if mapper is None or not callable(mapper):
            raise ConfigurationError(
                f"No field mapper for entity '{canonical}': register one with "
                f"@field_mapper({canonical!r}) or define {legacy_name}.map"
            )

        return CatalogEntry(
            name=canonical,
            entity_type=entity_type,
            legacy_type=legacy_type,
            mapper=mapper,
        )

    def resolve_helper(self, name: str) -> Callable[..., Any]:
        helper = self._helpers.get(name)
        if helper is None:
            raise ConfigurationError(f"Unknown migration helper '{name}'")
        return helper

    def check(self, *, strict: bool = False) -> list[str]:
        """Return every configuration problem in the catalog.

        With ``strict=True`` the first report is raised as ConfigurationError.
        """
        problems: list[str] = []

        for legacy_name in self._legacy_types:
            try:
                name = target_name_for(legacy_name)
            except ConfigurationError as e:
                problems.append(str(e))
                continue
            if name not in self._entity_types:
                problems.append(f"Legacy type '{legacy_name}' has no new-schema entity '{name}'")
                continue
            try:
                self.resolve(name)
            except ConfigurationError as e:
                problems.append(str(e))

        for name in self._mappers:
            if legacy_name_for(name) not in self._legacy_types:
                problems.append(f"Field mapper for '{name}' has no legacy type to read from")

        if strict and problems:
            raise ConfigurationError("; ".join(problems))
        return problems
