"""Example 01: Migrating a Legacy Table.

This example walks through one entity migration end to end:
- Declaring the new-schema Entity and its LegacyEntity counterpart
- @field_mapper for the per-row attribute mapping
- A partial pass with limit/offset, then a full re-run
- Row-level validation errors collected in the report
- The target key sequence advanced past the migrated keys

Scenario: tbl_person (PersonID, FullName, Mail) becomes people (id, name, email)
"""

import sqlite3
from pathlib import Path

from haulage import (
    Catalog,
    Entity,
    Field,
    LegacyEntity,
    MigrationOptions,
    Migrator,
    field_mapper,
    open_legacy_store,
    open_target_store,
)


class Person(Entity, table="people"):
    """Person in the new schema."""

    id: Field[int] = Field(primary_key=True)
    name: Field[str]
    email: Field[str | None] = Field(default=None, unique=True)


class LegacyPerson(LegacyEntity, table="tbl_person", primary_key="PersonID"):
    """Person row in the legacy schema."""


@field_mapper("Person")
def map_person(record):
    name = record["FullName"]
    return {"name": name.strip() if name else None, "email": record["Mail"]}


def setup_legacy_db(path: Path) -> None:
    """Create a small legacy database, including one row with no name."""
    path.unlink(missing_ok=True)
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE tbl_person (PersonID INTEGER PRIMARY KEY, FullName, Mail)")
    conn.executemany(
        "INSERT INTO tbl_person VALUES (?, ?, ?)",
        [
            (101, " Alice Johnson", "alice@example.com"),
            (102, "Bob Smith", None),
            (103, None, "nobody@example.com"),
            (104, "Carol White", "carol@example.com"),
        ],
    )
    conn.commit()
    conn.close()
    print(f"  ✓ Created legacy database with 4 rows: {path}")


def main():
    """Run the legacy migration example."""
    print("=" * 80)
    print("EXAMPLE 01: MIGRATING A LEGACY TABLE")
    print("=" * 80)

    Path("tmp").mkdir(exist_ok=True)
    legacy_path = Path("tmp/legacy_people.db")
    target_path = Path("tmp/new_people.db")
    target_path.unlink(missing_ok=True)

    print("\n" + "=" * 80)
    print("1. SET UP STORES")
    print("=" * 80)
    setup_legacy_db(legacy_path)

    legacy = open_legacy_store(str(legacy_path))
    target = open_target_store(str(target_path))
    target.ensure_table(Person)
    print(f"  ✓ Created target table 'people' in {target_path}")

    catalog = Catalog([Person], [LegacyPerson], mappers={"Person": map_person})
    migrator = Migrator(catalog, legacy, target)

    try:
        print("\n" + "=" * 80)
        print("2. PARTIAL PASS (limit=2, offset=1)")
        print("=" * 80 + "\n")
        report = migrator.run("Person", MigrationOptions(limit=2, offset=1))
        print(f"\n  Migrated keys: {target.primary_keys(Person)}")
        print(f"  Errors: {report.failed}")

        print("\n" + "=" * 80)
        print("3. FULL PASS (target wiped first)")
        print("=" * 80 + "\n")
        report = migrator.run("Person")
        print(f"\n  Succeeded: {report.succeeded} of {report.total}")
        print(f"  Migrated keys: {target.primary_keys(Person)}")
        print(f"  Next auto-assigned id: {report.next_primary_key}")
    finally:
        legacy.close()
        target.close()

    print("\n" + "=" * 80)
    print("EXAMPLE COMPLETE")
    print("=" * 80)


if __name__ == "__main__":
    main()
