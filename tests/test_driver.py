"""Tests for the migration driver."""

from __future__ import annotations

import sqlite3
from typing import Any

import pytest

from haulage import Entity, Field, LegacyEntity, MigrationOptions, column
from haulage.config import HaulageConfig
from haulage.driver import ERROR_DELIMITER, MigrationReport, Migrator, status_line
from haulage.errors import (
    ConfigurationError,
    MigrationAborted,
    MigrationError,
    StoreUnavailableError,
)
from haulage.registry import Catalog
from haulage.storage import SqliteLegacyStore, SqliteTargetStore
from tests.conftest import (
    PEOPLE_ROWS,
    Company,
    LegacyCompany,
    LegacyPerson,
    Person,
    create_legacy_db,
    map_person,
)


def _rows(store: SqliteTargetStore) -> list[dict]:
    return [store.get(Person, key) for key in store.primary_keys(Person)]


class FlakyTargetStore(SqliteTargetStore):
    """Target store whose Nth save fails as if the connection dropped."""

    def __init__(self, db_path: str, fail_on: int) -> None:
        super().__init__(db_path)
        self.fail_on = fail_on
        self.saves = 0

    def save(self, record):
        self.saves += 1
        if self.saves == self.fail_on:
            raise StoreUnavailableError("save", "disk I/O error")
        return super().save(record)


class BrokenTargetStore(SqliteTargetStore):
    """Target store that raises a non-haulage exception when saving one key."""

    def __init__(self, db_path: str, fail_key: Any) -> None:
        super().__init__(db_path)
        self.fail_key = fail_key

    def save(self, record):
        if record.primary_key == self.fail_key:
            raise RuntimeError("driver bug")
        return super().save(record)


class TrackingLegacyStore(SqliteLegacyStore):
    """Legacy store that records whether its row generator was closed."""

    def __init__(self, db_path: str) -> None:
        super().__init__(db_path)
        self.fetch_closed = False

    def fetch(self, *args, **kwargs):
        try:
            yield from super().fetch(*args, **kwargs)
        finally:
            self.fetch_closed = True


class Note(Entity, table="notes"):
    id: Field[int] = Field(primary_key=True)
    body: Field[Any]


class LegacyNote(LegacyEntity, table="tbl_person", primary_key="PersonID"):
    pass


class LegacyTypoPerson(
    LegacyEntity,
    name="LegacyPerson",
    table="tbl_person",
    primary_key="PersonID",
    columns=("FullNme", "Mail"),
):
    pass


class TestStatusLine:
    def test_plain(self):
        assert status_line("Person", 2, 5) == "Migrating Person (2/5)"

    def test_with_offset(self):
        assert status_line("Person", 2, 5, offset=1) == "Migrating Person after 1 (2/5)"


class TestFullRun:
    def test_migrates_every_row(self, migrator, target):
        report = migrator.run("Person")

        assert isinstance(report, MigrationReport)
        assert report.total == 5
        assert report.attempted == 5
        assert report.succeeded == 5
        assert report.failed == 0
        assert report.ok
        assert target.count(Person) == 5

    def test_primary_keys_preserved_over_mapper_value(self, migrator, target):
        # map_person always returns id=999
        migrator.run("Person")
        assert target.primary_keys(Person) == [10, 11, 12, 13, 14]
        assert target.get(Person, 999) is None

    def test_mapped_values_written(self, migrator, target):
        migrator.run("Person")
        ada = target.get(Person, 10)
        assert ada == {"id": 10, "name": "Ada Lovelace", "email": "ada@example.com", "active": 1}
        alan = target.get(Person, 12)
        assert alan["email"] is None
        assert alan["active"] == 0

    def test_progress_lines(self, migrator, lines):
        migrator.run("Person")
        assert lines == [f"Migrating Person ({i}/5)" for i in range(1, 6)]

    def test_label_only_changes_progress_text(self, migrator, lines):
        report = migrator.run("Person", MigrationOptions(label="people"))
        assert lines[0] == "Migrating people (1/5)"
        assert report.entity == "Person"
        assert report.label == "people"

    def test_case_insensitive_name(self, migrator):
        report = migrator.run("person")
        assert report.entity == "Person"
        assert report.succeeded == 5

    def test_small_fetch_batches(self, catalog, legacy, target, lines):
        migrator = Migrator(
            catalog, legacy, target, config=HaulageConfig(fetch_batch_size=2), echo=lines.append
        )
        report = migrator.run("Person")
        assert report.succeeded == 5
        assert target.primary_keys(Person) == [10, 11, 12, 13, 14]

    def test_progress_can_be_silenced(self, catalog, legacy, target, lines):
        migrator = Migrator(
            catalog, legacy, target, config=HaulageConfig(echo_progress=False), echo=lines.append
        )
        migrator.run("Person")
        assert lines == []

    def test_string_keys_and_legacy_map_method(self, migrator, target):
        report = migrator.run("Company")
        assert report.succeeded == 2
        assert target.primary_keys(Company) == ["ACME", "INIT"]
        assert target.get(Company, "ACME")["title"] == "Acme Corp"
        assert report.next_primary_key is None


class TestLimitOffset:
    def test_documented_example(self, migrator, target, lines):
        report = migrator.run("Person", MigrationOptions(limit=2, offset=1))

        assert target.primary_keys(Person) == [11, 12]
        assert lines == [
            "Migrating Person after 1 (2/5)",
            "Migrating Person after 1 (3/5)",
        ]
        assert report.total == 5
        assert report.attempted == 2
        assert report.last_counter == 3

    @pytest.mark.parametrize(
        "offset,limit,expected_keys",
        [
            (3, 10, [13, 14]),
            (0, 3, [10, 11, 12]),
            (4, 1, [14]),
            (5, 2, []),
        ],
    )
    def test_migrates_min_of_limit_and_remaining(
        self, migrator, target, offset, limit, expected_keys
    ):
        report = migrator.run("Person", MigrationOptions(limit=limit, offset=offset))
        assert target.primary_keys(Person) == expected_keys
        assert report.attempted == min(limit, 5 - offset)
        assert report.last_counter == (offset + len(expected_keys) if expected_keys else 0)

    def test_keyword_overrides(self, migrator, target):
        report = migrator.run("Person", MigrationOptions(limit=4), limit=1)
        assert report.attempted == 1
        assert target.primary_keys(Person) == [10]

    def test_non_positive_values_are_ignored(self, migrator, lines):
        report = migrator.run("Person", MigrationOptions(limit=0, offset=-3))
        assert report.attempted == 5
        assert lines[0] == "Migrating Person (1/5)"


class TestFilter:
    def test_expression_filter(self, migrator, target, lines):
        report = migrator.run("Person", MigrationOptions(filter=column("Active") == 1))
        assert target.primary_keys(Person) == [10, 11, 13]
        assert report.total == 3
        assert lines[-1] == "Migrating Person (3/3)"

    def test_mapping_filter(self, migrator, target):
        migrator.run("Person", MigrationOptions(filter={"Active": 0}))
        assert target.primary_keys(Person) == [12, 14]

    def test_total_counts_filtered_set_not_limited_slice(self, migrator, lines):
        report = migrator.run(
            "Person", MigrationOptions(filter=column("Mail").is_not_null(), limit=1)
        )
        assert report.total == 4
        assert lines == ["Migrating Person (1/4)"]


class TestWipeAndIdempotence:
    def test_rerun_yields_same_contents(self, migrator, target):
        migrator.run("Person")
        first = _rows(target)
        migrator.run("Person")
        assert _rows(target) == first

    def test_stale_rows_are_removed(self, migrator, target):
        target.create(Person, {"id": 500, "name": "Stale"})
        migrator.run("Person", MigrationOptions(limit=1))
        assert target.primary_keys(Person) == [10]


class TestValidationErrors:
    @pytest.fixture
    def bad_legacy(self, tmp_path):
        rows = list(PEOPLE_ROWS)
        rows[3] = (13, None, "edsger@example.com", 1)
        store = SqliteLegacyStore(create_legacy_db(str(tmp_path / "bad.db"), people=rows))
        yield store
        store.close()

    def test_one_invalid_row(self, catalog, bad_legacy, target, lines):
        migrator = Migrator(catalog, bad_legacy, target, echo=lines.append)
        report = migrator.run("Person")

        assert report.succeeded == 4
        assert report.failed == 1
        error = report.errors[0]
        assert isinstance(error, MigrationError)
        assert error.primary_key == 13
        assert error.entity == "Person"
        assert any(m.startswith("name:") for m in error.messages)
        assert target.primary_keys(Person) == [10, 11, 12, 14]

    def test_error_report_lines(self, catalog, bad_legacy, target, lines):
        migrator = Migrator(catalog, bad_legacy, target, echo=lines.append)
        report = migrator.run("Person")

        tail = lines[5:]
        assert tail[:3] == ["", "", "1 ERRORS"]
        assert tail[3] == ERROR_DELIMITER
        assert tail[4] == str(report.errors[0])
        assert "13" in tail[4]

    def test_unique_violation_is_reported(self, catalog, tmp_path, target):
        rows = list(PEOPLE_ROWS)
        rows[1] = (11, "Grace Hopper", "ada@example.com", 1)
        legacy = SqliteLegacyStore(create_legacy_db(str(tmp_path / "dup.db"), people=rows))
        try:
            report = Migrator(catalog, legacy, target, echo=lambda _: None).run("Person")
        finally:
            legacy.close()

        assert report.failed == 1
        assert report.errors[0].primary_key == 11
        assert report.errors[0].messages == ("email: UNIQUE constraint failed",)

    def test_mapper_exception_is_per_row(self, legacy, target):
        def fussy(record):
            if record.primary_key == 11:
                raise KeyError("Nickname")
            return map_person(record)

        catalog = Catalog([Person], [LegacyPerson], mappers={"Person": fussy})
        report = Migrator(catalog, legacy, target, echo=lambda _: None).run("Person")

        assert report.succeeded == 4
        assert report.errors[0].primary_key == 11
        assert "KeyError" in report.errors[0].messages[0]

    def test_unbindable_value_is_per_row(self, legacy, target):
        def map_note(record):
            return {"body": object() if record.primary_key == 12 else record["FullName"]}

        target.ensure_table(Note)
        catalog = Catalog([Note], [LegacyNote], mappers={"Note": map_note})
        report = Migrator(catalog, legacy, target, echo=lambda _: None).run("Note")

        assert report.succeeded == 4
        assert report.errors[0].primary_key == 12
        assert report.errors[0].messages == ("body: unsupported value type object",)
        assert target.primary_keys(Note) == [10, 11, 13, 14]

    def test_sequence_reset_even_with_errors(self, catalog, bad_legacy, target):
        report = Migrator(catalog, bad_legacy, target, echo=lambda _: None).run("Person")
        assert report.failed == 1
        assert report.next_primary_key == 15


class TestSequenceReset:
    def _insert_new_person(self, db_path: str) -> int:
        conn = sqlite3.connect(db_path)
        try:
            cursor = conn.execute("INSERT INTO people (name, active) VALUES ('Newcomer', 1)")
            conn.commit()
            return cursor.lastrowid
        finally:
            conn.close()

    def test_next_key_after_max(self, migrator, target_db):
        report = migrator.run("Person")
        assert report.next_primary_key == 15
        assert self._insert_new_person(target_db) == 15

    def test_sequence_follows_smaller_rerun(self, migrator, target_db):
        migrator.run("Person")
        report = migrator.run("Person", MigrationOptions(limit=2))
        assert report.next_primary_key == 12
        assert self._insert_new_person(target_db) == 12


class TestFatalErrors:
    def test_unknown_entity_leaves_target_untouched(self, migrator, target):
        migrator.run("Person")
        with pytest.raises(ConfigurationError, match="Widget"):
            migrator.run("Widget")
        assert target.count(Person) == 5

    def test_missing_mapper_fails_before_wipe(self, legacy, target, migrator):
        migrator.run("Person")
        catalog = Catalog([Person], [LegacyPerson])
        with pytest.raises(ConfigurationError, match="No field mapper"):
            Migrator(catalog, legacy, target).run("Person")
        assert target.count(Person) == 5

    def test_missing_legacy_table(self, tmp_path, catalog, target):
        path = str(tmp_path / "empty.db")
        sqlite3.connect(path).close()
        legacy = SqliteLegacyStore(path)
        try:
            with pytest.raises(ConfigurationError, match="tbl_person"):
                Migrator(catalog, legacy, target).run("Person")
        finally:
            legacy.close()

    def test_missing_target_table(self, tmp_path, catalog, legacy):
        target = SqliteTargetStore(str(tmp_path / "blank.db"))
        try:
            with pytest.raises(ConfigurationError, match="people"):
                Migrator(catalog, legacy, target).run("Person")
        finally:
            target.close()

    def test_create_tables_option(self, tmp_path, catalog, legacy):
        target = SqliteTargetStore(str(tmp_path / "blank.db"))
        try:
            migrator = Migrator(
                catalog,
                legacy,
                target,
                config=HaulageConfig(create_tables=True),
                echo=lambda _: None,
            )
            assert migrator.run("Person").succeeded == 5
        finally:
            target.close()

    def test_store_failure_mid_run_wipes_target(self, catalog, legacy, target_db, lines):
        target = FlakyTargetStore(target_db, fail_on=3)
        try:
            migrator = Migrator(catalog, legacy, target, echo=lines.append)
            with pytest.raises(MigrationAborted) as exc_info:
                migrator.run("Person")

            err = exc_info.value
            assert err.primary_key == 12
            assert err.report.attempted == 3
            assert err.report.succeeded == 2
            assert isinstance(err.__cause__, StoreUnavailableError)
            assert "12" in lines[-1]
            assert target.count(Person) == 0
        finally:
            target.close()

    def test_keep_partial_rows_when_configured(self, catalog, legacy, target_db):
        target = FlakyTargetStore(target_db, fail_on=3)
        try:
            migrator = Migrator(
                catalog,
                legacy,
                target,
                config=HaulageConfig(wipe_on_abort=False),
                echo=lambda _: None,
            )
            with pytest.raises(MigrationAborted):
                migrator.run("Person")
            assert target.primary_keys(Person) == [10, 11]
        finally:
            target.close()

    def test_mapper_returning_non_mapping_aborts(self, legacy, target):
        catalog = Catalog([Person], [LegacyPerson], mappers={"Person": lambda r: None})
        with pytest.raises(MigrationAborted) as exc_info:
            Migrator(catalog, legacy, target, echo=lambda _: None).run("Person")
        assert isinstance(exc_info.value.__cause__, ConfigurationError)
        assert exc_info.value.primary_key == 10
        assert target.count(Person) == 0

    def test_unknown_filter_column_fails_before_wipe(self, migrator, target):
        migrator.run("Person")
        with pytest.raises(ConfigurationError, match="Mial"):
            migrator.run("Person", filter=column("Mial") == "ada@example.com")
        assert target.count(Person) == 5

    def test_unknown_declared_column_fails_before_wipe(self, migrator, legacy, target):
        migrator.run("Person")
        catalog = Catalog([Person], [LegacyTypoPerson], mappers={"Person": map_person})
        with pytest.raises(ConfigurationError, match="FullNme"):
            Migrator(catalog, legacy, target).run("Person")
        assert target.count(Person) == 5

    def test_mapper_returning_non_string_keys_aborts(self, legacy, target):
        def numbered(record):
            mapped = map_person(record)
            if record.primary_key == 12:
                mapped[1] = "oops"
            return mapped

        catalog = Catalog([Person], [LegacyPerson], mappers={"Person": numbered})
        with pytest.raises(MigrationAborted) as exc_info:
            Migrator(catalog, legacy, target, echo=lambda _: None).run("Person")

        assert exc_info.value.primary_key == 12
        assert isinstance(exc_info.value.__cause__, ConfigurationError)
        assert "non-string" in str(exc_info.value.__cause__)
        assert target.count(Person) == 0

    def test_unexpected_exception_aborts_and_wipes(self, catalog, legacy, target_db):
        target = BrokenTargetStore(target_db, fail_key=13)
        try:
            with pytest.raises(MigrationAborted) as exc_info:
                Migrator(catalog, legacy, target, echo=lambda _: None).run("Person")

            err = exc_info.value
            assert err.primary_key == 13
            assert err.report.succeeded == 3
            assert isinstance(err.__cause__, RuntimeError)
            assert target.count(Person) == 0
        finally:
            target.close()

    def test_row_generator_closed_on_abort(self, catalog, legacy_db, target_db):
        legacy = TrackingLegacyStore(legacy_db)
        target = FlakyTargetStore(target_db, fail_on=2)
        try:
            with pytest.raises(MigrationAborted):
                Migrator(catalog, legacy, target, echo=lambda _: None).run("Person")
            assert legacy.fetch_closed
        finally:
            legacy.close()
            target.close()


class TestRunManyAndHelpers:
    def test_run_many_in_order(self, migrator):
        reports = migrator.run_many(["Person", "Company"])
        assert [r.entity for r in reports] == ["Person", "Company"]
        assert [r.succeeded for r in reports] == [5, 2]

    def test_run_many_resolves_all_names_first(self, migrator, target):
        with pytest.raises(ConfigurationError):
            migrator.run_many(["Person", "Nope"])
        assert target.count(Person) == 0

    def test_run_many_abort_carries_completed_reports(self, legacy, target):
        catalog = Catalog(
            [Person, Company],
            [LegacyPerson, LegacyCompany],
            mappers={"Person": map_person, "Company": lambda r: None},
        )
        migrator = Migrator(catalog, legacy, target, echo=lambda _: None)
        with pytest.raises(MigrationAborted) as exc_info:
            migrator.run_many(["Person", "Company"])

        err = exc_info.value
        assert err.entity == "Company"
        assert [r.entity for r in err.completed] == ["Person"]
        assert err.completed[0].succeeded == 5
        assert target.count(Person) == 5

    def test_helper(self, migrator, target):
        migrator.run("Person")
        assert migrator.run_helper("deactivate_unmailed") == 1
        assert target.get(Person, 12)["active"] == 0

    def test_unknown_helper(self, migrator):
        with pytest.raises(ConfigurationError, match="helper"):
            migrator.run_helper("missing")


def test_report_to_dict(migrator):
    data = migrator.run("Person", MigrationOptions(offset=3)).to_dict()
    assert data["entity"] == "Person"
    assert data["attempted"] == 2
    assert data["failed"] == 0
    assert data["offset"] == 3
    assert data["last_counter"] == 5
    assert data["errors"] == []


def test_company_catalog_without_person(legacy, target):
    catalog = Catalog([Company], [LegacyCompany])
    report = Migrator(catalog, legacy, target, echo=lambda _: None).run("LegacyCompany")
    assert report.entity == "Company"
    assert report.succeeded == 2
