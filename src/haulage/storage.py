"""Legacy and target store backends and shared filter compilation."""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import types
from collections.abc import Generator
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Protocol, Union, get_args, get_origin
from urllib.parse import urlparse

from haulage.errors import ConfigurationError, RecordValidationError, StoreUnavailableError
from haulage.filters import (
    ComparisonExpression,
    FilterExpression,
    LogicalExpression,
    filter_columns,
)
from haulage.types import Entity, Field, LegacyEntity, LegacyRecord, NewRecord

logger = logging.getLogger(__name__)

_SQL_OPS = {"==": "=", "!=": "!=", ">": ">", ">=": ">=", "<": "<", "<=": "<="}

_CONSTRAINT_RE = re.compile(r"^(?P<kind>[A-Z ]*constraint failed)(?::\s*(?P<cols>.+))?$")


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


def _compile_filter(expr: FilterExpression, params: list[Any]) -> str:
    """Compile a FilterExpression tree into a SQL WHERE clause fragment."""
    if isinstance(expr, ComparisonExpression):
        return _compile_comparison(expr, params)
    elif isinstance(expr, LogicalExpression):
        if expr.op == "NOT":
            child_sql = _compile_filter(expr.children[0], params)
            return f"NOT ({child_sql})"
        elif expr.op in ("AND", "OR"):
            parts = [_compile_filter(c, params) for c in expr.children]
            joiner = f" {expr.op} "
            return f"({joiner.join(parts)})"
    raise ValueError(f"Unknown filter expression type: {type(expr)}")


def _compile_comparison(expr: ComparisonExpression, params: list[Any]) -> str:
    """Compile a single comparison expression to SQL."""
    col = _quote(expr.column)
    op = expr.op
    if op == "IS_NULL":
        return f"{col} IS NULL"
    elif op == "IS_NOT_NULL":
        return f"{col} IS NOT NULL"
    elif op == "IN":
        if not expr.value:
            return "0"
        placeholders = ", ".join("?" for _ in expr.value)
        params.extend(expr.value)
        return f"{col} IN ({placeholders})"
    elif op == "LIKE":
        params.append(expr.value)
        return f"{col} LIKE ?"
    elif op in _SQL_OPS:
        params.append(expr.value)
        return f"{col} {_SQL_OPS[op]} ?"
    raise ValueError(f"Unknown filter operator: {op}")


def _where_clause(expr: FilterExpression | None) -> tuple[str, list[Any]]:
    params: list[Any] = []
    if expr is None:
        return "", params
    return f" WHERE {_compile_filter(expr, params)}", params


def _unwrap_optional(ann: Any) -> Any:
    if get_origin(ann) in (Union, types.UnionType):
        args = [a for a in get_args(ann) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return ann


def _column_type(f: Field[Any]) -> str:
    ann = _unwrap_optional(f.annotation)
    if ann is bool or ann is int:
        return "INTEGER"
    if ann is float:
        return "REAL"
    if ann is bytes:
        return "BLOB"
    return "TEXT"


def _to_sql_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    return value


_BINDABLE = (type(None), int, float, str, bytes, bytearray, memoryview)
_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1


def _unbindable_message(name: str, value: Any) -> str | None:
    """Describe why sqlite3 cannot bind ``value``, or return None when it can."""
    if not isinstance(value, _BINDABLE):
        return f"{name}: unsupported value type {type(value).__name__}"
    if isinstance(value, int) and not _INT64_MIN <= value <= _INT64_MAX:
        return f"{name}: integer out of range for a 64-bit column"
    return None


def _integrity_message(exc: sqlite3.IntegrityError) -> str:
    """Turn 'NOT NULL constraint failed: people.name' into 'name: NOT NULL constraint failed'."""
    text = str(exc)
    m = _CONSTRAINT_RE.match(text)
    if not m:
        return text
    cols = m.group("cols")
    if not cols:
        return m.group("kind")
    names = [c.strip().rsplit(".", 1)[-1] for c in cols.split(",")]
    return f"{', '.join(names)}: {m.group('kind')}"


@dataclass(frozen=True)
class StorageTarget:
    """Resolved storage target from a URI or a bare database path."""

    backend: str
    uri: str
    db_path: str


def parse_storage_target(uri_or_path: str) -> StorageTarget:
    """Resolve a backend target from ``sqlite:///path`` or a bare file path."""
    if not uri_or_path:
        raise StoreUnavailableError("parse_storage_uri", "empty storage URI")

    if "://" not in uri_or_path:
        return StorageTarget(backend="sqlite", uri=f"sqlite:///{uri_or_path}", db_path=uri_or_path)

    parsed = urlparse(uri_or_path)
    if parsed.scheme == "sqlite":
        sqlite_path = parsed.path
        if parsed.netloc:
            sqlite_path = f"{parsed.netloc}{sqlite_path}"
        elif sqlite_path.startswith("//"):
            # sqlite:////abs/path -> /abs/path
            sqlite_path = sqlite_path[1:]
        elif sqlite_path.startswith("/"):
            # sqlite:///rel/path -> rel/path
            sqlite_path = sqlite_path[1:]
        if sqlite_path in ("/:memory:", ":memory:"):
            sqlite_path = ":memory:"
        if not sqlite_path:
            raise StoreUnavailableError("parse_storage_uri", f"Invalid sqlite URI: {uri_or_path}")
        return StorageTarget(backend="sqlite", uri=uri_or_path, db_path=sqlite_path)

    raise StoreUnavailableError(
        "parse_storage_uri",
        f"Unsupported storage URI scheme '{parsed.scheme}' for '{uri_or_path}'",
    )


@dataclass
class ValidationResult:
    """Outcome of one save attempt."""

    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        if self.errors:
            raise RecordValidationError(self.errors)


class LegacyStoreProtocol(Protocol):
    """Read-only query surface of the legacy database."""

    def close(self) -> None: ...

    def check_table(
        self, legacy_type: type[LegacyEntity], filter: FilterExpression | None = None
    ) -> None: ...

    def count(
        self, legacy_type: type[LegacyEntity], filter: FilterExpression | None = None
    ) -> int: ...

    def fetch(
        self,
        legacy_type: type[LegacyEntity],
        filter: FilterExpression | None = None,
        limit: int | None = None,
        offset: int | None = None,
        *,
        batch_size: int = 1000,
    ) -> Generator[LegacyRecord, None, None]: ...


class TargetStoreProtocol(Protocol):
    """Write surface of the new database."""

    def close(self) -> None: ...

    def check_table(self, entity_type: type[Entity]) -> None: ...

    def ensure_table(self, entity_type: type[Entity]) -> None: ...

    def delete_all(self, entity_type: type[Entity]) -> int: ...

    def save(self, record: NewRecord) -> ValidationResult: ...

    def count(self, entity_type: type[Entity]) -> int: ...

    def reset_pk_sequence(self, entity_type: type[Entity]) -> int | None: ...


class _SqliteStore:
    def __init__(self, db_path: str, *, read_only: bool = False) -> None:
        self.db_path = db_path
        try:
            if read_only and db_path != ":memory:":
                self._conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True)
            else:
                self._conn = sqlite3.connect(db_path)
        except sqlite3.Error as e:
            raise StoreUnavailableError("connect", f"{db_path}: {e}") from e

    def close(self) -> None:
        self._conn.close()

    def columns(self, table: str) -> list[str]:
        try:
            rows = self._conn.execute(f"PRAGMA table_info({_quote(table)})").fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailableError("table_info", str(e)) from e
        return [r[1] for r in rows]

    def has_table(self, table: str) -> bool:
        return bool(self.columns(table))


class SqliteLegacyStore(_SqliteStore):
    """SQLite legacy database, opened read-only."""

    def __init__(self, db_path: str) -> None:
        super().__init__(db_path, read_only=True)

    def check_table(
        self, legacy_type: type[LegacyEntity], filter: FilterExpression | None = None
    ) -> None:
        """Raise ConfigurationError unless every column the pass will read exists.

        That is the table, its key column, the declared ``columns`` and every
        column named in ``filter``. SQLite reads an unknown double-quoted name
        as a string literal, so these are never caught by the query itself.
        """
        table = legacy_type.__table_name__
        cols = self.columns(table)
        if not cols:
            raise ConfigurationError(
                f"Legacy table '{table}' for {legacy_type.__legacy_name__} does not exist"
            )
        if legacy_type.__primary_key__ not in cols:
            raise ConfigurationError(
                f"Legacy table '{table}' has no primary key column "
                f"'{legacy_type.__primary_key__}'"
            )
        unknown = [c for c in legacy_type.__columns__ or () if c not in cols]
        if unknown:
            raise ConfigurationError(
                f"Legacy table '{table}' has no column(s) {unknown} "
                f"declared on {legacy_type.__legacy_name__}"
            )
        unknown = [c for c in filter_columns(filter) if c not in cols]
        if unknown:
            raise ConfigurationError(
                f"Filter for {legacy_type.__legacy_name__} names column(s) {unknown} "
                f"not in legacy table '{table}'"
            )

    def _select_list(self, legacy_type: type[LegacyEntity]) -> str:
        columns = legacy_type.__columns__
        if not columns:
            return "*"
        if legacy_type.__primary_key__ not in columns:
            columns = (legacy_type.__primary_key__, *columns)
        return ", ".join(_quote(c) for c in columns)

    def count(
        self, legacy_type: type[LegacyEntity], filter: FilterExpression | None = None
    ) -> int:
        where, params = _where_clause(filter)
        sql = f"SELECT COUNT(*) FROM {_quote(legacy_type.__table_name__)}{where}"
        try:
            row = self._conn.execute(sql, params).fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailableError("count", str(e)) from e
        return row[0] if row else 0

    def fetch(
        self,
        legacy_type: type[LegacyEntity],
        filter: FilterExpression | None = None,
        limit: int | None = None,
        offset: int | None = None,
        *,
        batch_size: int = 1000,
    ) -> Generator[LegacyRecord, None, None]:
        """Yield legacy rows in the store's natural order.

        No ORDER BY is imposed; SQLite returns a plain table scan in rowid order.
        """
        where, params = _where_clause(filter)
        sql = (
            f"SELECT {self._select_list(legacy_type)} "
            f"FROM {_quote(legacy_type.__table_name__)}{where} LIMIT ? OFFSET ?"
        )
        params.extend([limit if limit is not None else -1, offset or 0])

        try:
            cursor = self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StoreUnavailableError("fetch", str(e)) from e

        names = [d[0] for d in cursor.description]
        pk_name = legacy_type.__primary_key__
        entity_type = legacy_type.__legacy_name__
        try:
            while True:
                try:
                    rows = cursor.fetchmany(batch_size)
                except sqlite3.Error as e:
                    raise StoreUnavailableError("fetch", str(e)) from e
                if not rows:
                    break
                for row in rows:
                    attributes = dict(zip(names, row))
                    yield LegacyRecord(
                        entity_type=entity_type,
                        primary_key=attributes[pk_name],
                        attributes=attributes,
                    )
        finally:
            cursor.close()


class SqliteTargetStore(_SqliteStore):
    """SQLite new-schema database."""

    def __init__(self, db_path: str) -> None:
        super().__init__(db_path)
        self._conn.execute("PRAGMA foreign_keys=ON")

    def check_table(self, entity_type: type[Entity]) -> None:
        table = entity_type.__table_name__
        cols = self.columns(table)
        if not cols:
            raise ConfigurationError(
                f"Target table '{table}' for {entity_type.__entity_name__} does not exist"
            )
        missing = [n for n in entity_type.__entity_fields__ if n not in cols]
        if missing:
            raise ConfigurationError(
                f"Target table '{table}' is missing column(s) {missing} "
                f"declared on {entity_type.__entity_name__}"
            )

    def ensure_table(self, entity_type: type[Entity]) -> None:
        """Create the entity's table if it does not exist."""
        col_defs: list[str] = []
        for name, f in entity_type._field_definitions.items():
            col_type = _column_type(f)
            if f.primary_key:
                if col_type == "INTEGER":
                    col_defs.append(f"{_quote(name)} INTEGER PRIMARY KEY AUTOINCREMENT")
                else:
                    col_defs.append(f"{_quote(name)} {col_type} PRIMARY KEY NOT NULL")
                continue
            parts = [_quote(name), col_type]
            if not f.nullable:
                parts.append("NOT NULL")
            if f.unique:
                parts.append("UNIQUE")
            col_defs.append(" ".join(parts))

        sql = (
            f"CREATE TABLE IF NOT EXISTS {_quote(entity_type.__table_name__)} "
            f"({', '.join(col_defs)})"
        )
        try:
            with self._conn:
                self._conn.execute(sql)
        except sqlite3.Error as e:
            raise StoreUnavailableError("ensure_table", str(e)) from e

    def delete_all(self, entity_type: type[Entity]) -> int:
        try:
            with self._conn:
                cursor = self._conn.execute(f"DELETE FROM {_quote(entity_type.__table_name__)}")
        except sqlite3.Error as e:
            raise StoreUnavailableError("delete_all", str(e)) from e
        return cursor.rowcount

    def save(self, record: NewRecord) -> ValidationResult:
        """Validate and insert one record; validation failures are returned, not raised."""
        entity_type = record.entity_type
        values, messages = entity_type.validate_values(record.values)
        if messages:
            return ValidationResult(messages)

        names = list(values)
        params = [_to_sql_value(values[n]) for n in names]
        unbindable = [
            m for m in (_unbindable_message(n, p) for n, p in zip(names, params)) if m is not None
        ]
        if unbindable:
            return ValidationResult(unbindable)

        sql = (
            f"INSERT INTO {_quote(entity_type.__table_name__)} "
            f"({', '.join(_quote(n) for n in names)}) "
            f"VALUES ({', '.join('?' for _ in names)})"
        )
        try:
            with self._conn:
                self._conn.execute(sql, params)
        except sqlite3.IntegrityError as e:
            return ValidationResult([_integrity_message(e)])
        except sqlite3.InterfaceError as e:
            return ValidationResult([f"unsupported value: {e}"])
        except sqlite3.Error as e:
            raise StoreUnavailableError("save", str(e)) from e
        return ValidationResult()

    def create(self, entity_type: type[Entity], values: dict[str, Any]) -> None:
        """Insert a record, raising RecordValidationError when it is invalid."""
        self.save(NewRecord(entity_type, values)).raise_for_errors()

    def execute(self, sql: str, params: tuple[Any, ...] | list[Any] = ()) -> int:
        """Run one write statement in its own transaction and return the row count."""
        try:
            with self._conn:
                cursor = self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StoreUnavailableError("execute", str(e)) from e
        return cursor.rowcount

    def count(self, entity_type: type[Entity]) -> int:
        try:
            row = self._conn.execute(
                f"SELECT COUNT(*) FROM {_quote(entity_type.__table_name__)}"
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailableError("count", str(e)) from e
        return row[0] if row else 0

    def get(self, entity_type: type[Entity], key: Any) -> dict[str, Any] | None:
        pk = entity_type._primary_key_field
        try:
            cursor = self._conn.execute(
                f"SELECT * FROM {_quote(entity_type.__table_name__)} WHERE {_quote(pk)} = ?",
                (key,),
            )
            row = cursor.fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailableError("get", str(e)) from e
        if row is None:
            return None
        return dict(zip([d[0] for d in cursor.description], row))

    def primary_keys(self, entity_type: type[Entity]) -> list[Any]:
        pk = _quote(entity_type._primary_key_field)
        try:
            rows = self._conn.execute(
                f"SELECT {pk} FROM {_quote(entity_type.__table_name__)} ORDER BY {pk}"
            ).fetchall()
        except sqlite3.Error as e:
            raise StoreUnavailableError("primary_keys", str(e)) from e
        return [r[0] for r in rows]

    def max_primary_key(self, entity_type: type[Entity]) -> Any:
        pk = _quote(entity_type._primary_key_field)
        try:
            row = self._conn.execute(
                f"SELECT MAX({pk}) FROM {_quote(entity_type.__table_name__)}"
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailableError("max_primary_key", str(e)) from e
        return row[0] if row else None

    def _uses_autoincrement(self, table: str) -> bool:
        row = self._conn.execute(
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?", (table,)
        ).fetchone()
        return bool(row and row[0] and "AUTOINCREMENT" in row[0].upper())

    def reset_pk_sequence(self, entity_type: type[Entity]) -> int | None:
        """Advance the key generator past the highest stored key.

        Returns the key the next auto-generated row will receive, or None when
        the primary key is not an integer.
        """
        if _unwrap_optional(entity_type.primary_key_field().annotation) is not int:
            logger.debug(
                "Skipping sequence reset for %s: primary key is not an integer",
                entity_type.__entity_name__,
            )
            return None

        table = entity_type.__table_name__
        max_key = self.max_primary_key(entity_type) or 0
        try:
            if self._uses_autoincrement(table):
                with self._conn:
                    updated = self._conn.execute(
                        "UPDATE sqlite_sequence SET seq = ? WHERE name = ?", (max_key, table)
                    ).rowcount
                    if not updated:
                        self._conn.execute(
                            "INSERT INTO sqlite_sequence (name, seq) VALUES (?, ?)",
                            (table, max_key),
                        )
        except sqlite3.Error as e:
            raise StoreUnavailableError("reset_pk_sequence", str(e)) from e

        logger.debug("Reset %s key sequence to %d", table, max_key)
        return max_key + 1


def open_legacy_store(uri_or_path: str) -> SqliteLegacyStore:
    """Open the legacy store named by a URI or path."""
    target = parse_storage_target(uri_or_path)
    if target.backend == "sqlite":
        return SqliteLegacyStore(target.db_path)
    raise StoreUnavailableError("open_legacy_store", f"Unsupported backend '{target.backend}'")


def open_target_store(uri_or_path: str) -> SqliteTargetStore:
    """Open the target store named by a URI or path."""
    target = parse_storage_target(uri_or_path)
    if target.backend == "sqlite":
        return SqliteTargetStore(target.db_path)
    raise StoreUnavailableError("open_target_store", f"Unsupported backend '{target.backend}'")


__all__ = [
    "LegacyStoreProtocol",
    "TargetStoreProtocol",
    "SqliteLegacyStore",
    "SqliteTargetStore",
    "StorageTarget",
    "ValidationResult",
    "parse_storage_target",
    "open_legacy_store",
    "open_target_store",
]
