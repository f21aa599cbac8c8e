"""Shared test fixtures for haulage tests."""

from __future__ import annotations

import sqlite3

import pytest

from haulage import Entity, Field, LegacyEntity, field_mapper, migration_helper
from haulage.driver import Migrator
from haulage.mapping import collect_mappers
from haulage.registry import Catalog
from haulage.storage import SqliteLegacyStore, SqliteTargetStore

# --- New-schema entities ---


class Person(Entity, table="people"):
    id: Field[int] = Field(primary_key=True)
    name: Field[str]
    email: Field[str | None] = Field(default=None, unique=True)
    active: Field[bool] = Field(default=True)


class Company(Entity, table="companies"):
    code: Field[str] = Field(primary_key=True)
    title: Field[str]


# --- Legacy declarations ---


class LegacyPerson(LegacyEntity, table="tbl_person", primary_key="PersonID"):
    pass


class LegacyCompany(LegacyEntity, table="company", primary_key="code"):
    @staticmethod
    def map(record):
        return {"title": record["name"].title()}


# --- Field mappers ---


@field_mapper("Person")
def map_person(record):
    name = record["FullName"]
    return {
        # Overridden by the legacy key on save.
        "id": 999,
        "name": name.strip() if name is not None else None,
        "email": record["Mail"],
        "active": bool(record["Active"]),
    }


@migration_helper("deactivate_unmailed")
def deactivate_unmailed(legacy, target):
    return target.execute("UPDATE people SET active = 0 WHERE email IS NULL")


PEOPLE_ROWS = [
    (10, "  Ada Lovelace ", "ada@example.com", 1),
    (11, "Grace Hopper", "grace@example.com", 1),
    (12, "Alan Turing", None, 0),
    (13, "Edsger Dijkstra", "edsger@example.com", 1),
    (14, "Barbara Liskov", "barbara@example.com", 0),
]

COMPANY_ROWS = [
    ("ACME", "acme corp"),
    ("INIT", "initech"),
]


def create_legacy_db(path: str, people=PEOPLE_ROWS, companies=COMPANY_ROWS) -> str:
    conn = sqlite3.connect(path)
    conn.executescript("""
        CREATE TABLE tbl_person (
            PersonID INTEGER PRIMARY KEY,
            FullName TEXT,
            Mail TEXT,
            Active INTEGER
        );
        CREATE TABLE company (
            code TEXT PRIMARY KEY,
            name TEXT
        );
    """)
    conn.executemany("INSERT INTO tbl_person VALUES (?, ?, ?, ?)", people)
    conn.executemany("INSERT INTO company VALUES (?, ?)", companies)
    conn.commit()
    conn.close()
    return path


def build_catalog() -> Catalog:
    collected = collect_mappers(globals())
    return Catalog(
        entity_types=[Person, Company],
        legacy_types=[LegacyPerson, LegacyCompany],
        mappers=collected.mappers,
        helpers=collected.helpers,
    )


# --- Fixtures ---


@pytest.fixture
def legacy_db(tmp_path):
    """Create a legacy SQLite database with five people and two companies."""
    return create_legacy_db(str(tmp_path / "legacy.db"))


@pytest.fixture
def target_db(tmp_path):
    """Create a target SQLite database with the new-schema tables."""
    path = str(tmp_path / "target.db")
    store = SqliteTargetStore(path)
    store.ensure_table(Person)
    store.ensure_table(Company)
    store.close()
    return path


@pytest.fixture
def legacy(legacy_db):
    store = SqliteLegacyStore(legacy_db)
    yield store
    store.close()


@pytest.fixture
def target(target_db):
    store = SqliteTargetStore(target_db)
    yield store
    store.close()


@pytest.fixture
def catalog():
    return build_catalog()


@pytest.fixture
def lines():
    """Collected progress/report lines."""
    return []


@pytest.fixture
def migrator(catalog, legacy, target, lines):
    return Migrator(catalog, legacy, target, echo=lines.append)
