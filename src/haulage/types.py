"""Entity, LegacyEntity, Field and record types for haulage."""

from __future__ import annotations

import inspect
import re
import sys
import types
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, TypeVar, Union, get_args, get_origin

from pydantic import BaseModel, ConfigDict, create_model
from pydantic import ValidationError as PydanticValidationError

T = TypeVar("T")

_SENTINEL = object()

LEGACY_PREFIX = "Legacy"


def _snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class Field(Generic[T]):
    """Field descriptor for new-schema entities."""

    def __init__(
        self,
        default: Any = _SENTINEL,
        *,
        default_factory: Any | None = None,
        primary_key: bool = False,
        unique: bool = False,
    ) -> None:
        self.default = default
        self.default_factory = default_factory
        self.primary_key = primary_key
        self.unique = unique
        self.name: str = ""
        self.annotation: Any = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name

    def __get__(self, obj: Any, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        return obj.__dict__.get(self.name, _SENTINEL)

    def __set__(self, obj: Any, value: Any) -> None:
        obj.__dict__[self.name] = value

    @property
    def nullable(self) -> bool:
        """Whether None is an accepted value for this field."""
        if self.default is None:
            return True
        ann = self.annotation
        if ann is Any or ann is None:
            return True
        if get_origin(ann) in (Union, types.UnionType):
            return type(None) in get_args(ann)
        return False

    def has_default(self) -> bool:
        return self.default is not _SENTINEL or self.default_factory is not None

    def get_default(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        if self.default is not _SENTINEL:
            return self.default
        raise ValueError(f"Field '{self.name}' has no default")


def _resolve_annotation(ann: Any, module_name: str) -> Any:
    """Resolve string annotations and extract the inner type from Field[T]."""
    if isinstance(ann, str):
        module = sys.modules.get(module_name, None)
        ns = dict(vars(module)) if module else {}
        ns.setdefault("Field", Field)
        try:
            ann = eval(ann, ns)  # noqa: S307
        except Exception:
            return Any

    origin = getattr(ann, "__origin__", None)
    if origin is Field:
        args = get_args(ann)
        return args[0] if args else Any
    return ann


def _collect_fields(cls: type) -> dict[str, Field[Any]]:
    """Collect Field descriptors from class annotations."""
    fields: dict[str, Field[Any]] = {}

    annotations = inspect.get_annotations(cls)

    for name, ann in annotations.items():
        origin = getattr(ann, "__origin__", None)
        is_field_ann = origin is Field or (isinstance(ann, str) and "Field" in ann)
        if not is_field_ann:
            continue

        val = cls.__dict__.get(name, _SENTINEL)
        field_desc: Field[Any]
        if isinstance(val, Field):
            field_desc = val
        elif val is _SENTINEL:
            field_desc = Field()
        else:
            # `email: Field[str | None] = None` shorthand
            field_desc = Field(default=val)

        field_desc.name = name
        field_desc.annotation = _resolve_annotation(ann, cls.__module__)
        fields[name] = field_desc

        if not isinstance(cls.__dict__.get(name), Field):
            setattr(cls, name, field_desc)

    return fields


def _build_pydantic_model(model_name: str, fields: dict[str, Field[Any]]) -> type[BaseModel]:
    """Build a strict-about-extras Pydantic model from Field definitions."""
    from pydantic import Field as PydanticField

    pydantic_fields: dict[str, Any] = {}
    for name, f in fields.items():
        ann = f.annotation if f.annotation is not None else Any
        if f.default_factory is not None:
            pydantic_fields[name] = (ann, PydanticField(default_factory=f.default_factory))
        elif f.default is not _SENTINEL:
            pydantic_fields[name] = (ann, f.default)
        else:
            pydantic_fields[name] = (ann, ...)

    return create_model(  # type: ignore[call-overload]
        model_name, __config__=ConfigDict(extra="forbid"), **pydantic_fields
    )


def _format_pydantic_errors(exc: PydanticValidationError) -> list[str]:
    messages: list[str] = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "__root__"
        if err.get("type") == "extra_forbidden":
            messages.append(f"{loc}: unknown attribute")
        else:
            messages.append(f"{loc}: {err.get('msg', 'invalid value')}")
    return messages


class Entity:
    """Base class for new-schema entity types.

    Subclasses declare their columns with ``Field`` annotations and exactly one
    ``Field(primary_key=True)``::

        class Person(Entity, table="people"):
            id: Field[int] = Field(primary_key=True)
            name: Field[str]
            email: Field[str | None] = None
    """

    __entity_name__: ClassVar[str]
    __table_name__: ClassVar[str]
    __entity_fields__: ClassVar[tuple[str, ...]]
    _pydantic_model: ClassVar[type[BaseModel]]
    _field_definitions: ClassVar[dict[str, Field[Any]]]
    _primary_key_field: ClassVar[str]

    def __init_subclass__(
        cls, name: str | None = None, table: str | None = None, **kwargs: Any
    ) -> None:
        super().__init_subclass__(**kwargs)

        cls.__entity_name__ = name or cls.__name__
        if cls.__entity_name__.startswith(LEGACY_PREFIX):
            raise TypeError(
                f"Entity '{cls.__entity_name__}' must not use the '{LEGACY_PREFIX}' prefix; "
                f"declare legacy types with LegacyEntity"
            )
        cls.__table_name__ = table or _snake_case(cls.__entity_name__)

        fields = _collect_fields(cls)
        cls._field_definitions = fields
        cls.__entity_fields__ = tuple(fields.keys())

        pk_fields = [n for n, f in fields.items() if f.primary_key]
        if len(pk_fields) == 0:
            raise TypeError(
                f"Entity '{cls.__entity_name__}' must define exactly one Field(primary_key=True)"
            )
        if len(pk_fields) > 1:
            raise TypeError(
                f"Entity '{cls.__entity_name__}' has multiple primary keys: {pk_fields}"
            )
        cls._primary_key_field = pk_fields[0]

        cls._pydantic_model = _build_pydantic_model(f"_{cls.__entity_name__}Model", fields)

    def __init__(self, **data: Any) -> None:
        validated = self._pydantic_model(**data)
        for name in self.__entity_fields__:
            setattr(self, name, getattr(validated, name))

    @classmethod
    def validate_values(cls, values: Mapping[str, Any]) -> tuple[dict[str, Any], list[str]]:
        """Validate raw attribute values without raising.

        Returns (validated_values, messages). ``messages`` is empty on success.
        """
        try:
            validated = cls._pydantic_model(**dict(values))
        except PydanticValidationError as e:
            return {}, _format_pydantic_errors(e)
        return {name: getattr(validated, name) for name in cls.__entity_fields__}, []

    @classmethod
    def primary_key_field(cls) -> Field[Any]:
        return cls._field_definitions[cls._primary_key_field]

    def model_dump(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.__entity_fields__}

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={getattr(self, k)!r}" for k in self.__entity_fields__)
        return f"{self.__class__.__name__}({fields})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, self.__class__):
            return NotImplemented
        return self.model_dump() == other.model_dump()


class LegacyEntity:
    """Base class for legacy-schema declarations.

    The class name carries the legacy qualifier; the new entity it feeds is
    the same name without it (``LegacyPerson`` feeds ``Person``)::

        class LegacyPerson(LegacyEntity, table="tbl_person", primary_key="PersonID"):
            pass

    A subclass may define a ``map`` staticmethod taking a LegacyRecord; it is
    used as the field mapper when no ``@field_mapper`` is registered.
    """

    __legacy_name__: ClassVar[str]
    __table_name__: ClassVar[str]
    __primary_key__: ClassVar[str]
    __columns__: ClassVar[tuple[str, ...] | None]

    def __init_subclass__(
        cls,
        name: str | None = None,
        table: str | None = None,
        primary_key: str = "id",
        columns: tuple[str, ...] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init_subclass__(**kwargs)
        cls.__legacy_name__ = name or cls.__name__
        cls.__table_name__ = table or _snake_case(cls.__legacy_name__.removeprefix(LEGACY_PREFIX))
        cls.__primary_key__ = primary_key
        cls.__columns__ = tuple(columns) if columns is not None else None


@dataclass(frozen=True)
class LegacyRecord:
    """A read-only row fetched from the legacy store."""

    entity_type: str
    primary_key: Any
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", types.MappingProxyType(dict(self.attributes)))

    def __getitem__(self, name: str) -> Any:
        return self.attributes[name]

    def __contains__(self, name: object) -> bool:
        return name in self.attributes

    def __iter__(self) -> Iterator[str]:
        return iter(self.attributes)

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)


class NewRecord:
    """A new-schema row built from mapped attributes, pending save."""

    def __init__(self, entity_type: type[Entity], values: Mapping[str, Any]) -> None:
        self.entity_type = entity_type
        self.values: dict[str, Any] = dict(values)

    @property
    def primary_key(self) -> Any:
        return self.values.get(self.entity_type._primary_key_field)

    @primary_key.setter
    def primary_key(self, value: Any) -> None:
        self.values[self.entity_type._primary_key_field] = value

    def __repr__(self) -> str:
        return f"NewRecord({self.entity_type.__entity_name__}, {self.values!r})"
