from datetime import date

import pytest
from conftest import run_sql

from profile_engine.errors import ErrorKind, FieldValidationError
from profile_engine.meta_models import Column, ColumnMetadata
from profile_engine.validator import coerce_value


@pytest.fixture
def typed_table(ctx):
    run_sql(ctx, """
        CREATE TABLE measurements (
            id INTEGER PRIMARY KEY,
            client_id INTEGER REFERENCES personal_details(client_id),
            count INTEGER NOT NULL,
            weight REAL,
            active BOOLEAN,
            code VARCHAR(5),
            gender TEXT,
            blood_group TEXT,
            status TEXT,
            note TEXT
        )
    """)
    return ctx.catalog.get_table_schema("measurements")


def _kinds(outcome):
    return {e.field: e.kind for e in outcome.errors}


@pytest.mark.parametrize("declared, raw, expected", [
    ("INTEGER", "42", 42),
    ("INTEGER", 7.0, 7),
    ("BIGINT", " -3 ", -3),
    ("REAL", "3.5", 3.5),
    ("DECIMAL(10,2)", 2, 2.0),
    ("BOOLEAN", "yes", 1),
    ("BOOLEAN", "No", 0),
    ("BOOLEAN", True, 1),
    ("BOOLEAN", "0", 0),
    ("TEXT", 12, "12"),
    ("VARCHAR(5)", "abcde", "abcde"),
    ("DATE", " 2024-02-29 ", "2024-02-29"),
    ("TIMESTAMP", "2024-05-01T10:30:00+05:30", "2024-05-01T10:30:00+05:30"),
    ("DATETIME", "2024-05-01 10:30", "2024-05-01 10:30"),
    ("DATE", date(1990, 4, 1), "1990-04-01"),
])
def test_coerce_value(declared, raw, expected):
    assert coerce_value(Column(name="f", type=declared), raw) == expected


@pytest.mark.parametrize("declared, raw", [
    ("INTEGER", "42abc"),
    ("INTEGER", 4.5),
    ("REAL", "heavy"),
    ("BOOLEAN", "maybe"),
    ("BOOLEAN", 2),
    ("VARCHAR(5)", "abcdef"),
    ("TEXT", {"a": 1}),
    ("DATE", "2024-02-31"),
    ("DATE", "2023-02-29"),
    ("DATE", "01/04/1990"),
    ("TIMESTAMP", "2024-05-01T25:00:00"),
    ("DATE", 20240101),
])
def test_coerce_value_rejects(declared, raw):
    with pytest.raises(FieldValidationError):
        coerce_value(Column(name="f", type=declared), raw)


def test_valid_record_is_coerced(ctx, typed_table):
    outcome = ctx.validator.validate_record_data(
        {"count": "3", "weight": "61.5", "active": "true", "code": "AB1", "note": 5}, typed_table
    )
    assert outcome.isValid
    assert outcome.record == {"count": 3, "weight": 61.5, "active": 1, "code": "AB1", "note": "5"}
    assert outcome.message == ""


def test_validation_is_idempotent(ctx, typed_table):
    first = ctx.validator.validate_record_data(
        {"count": "3", "weight": 2, "active": "no", "gender": "Male", "status": "active"}, typed_table
    )
    second = ctx.validator.validate_record_data(first.record, typed_table)
    assert second.isValid
    assert second.record == first.record


def test_unknown_columns_and_nulls(ctx, typed_table):
    outcome = ctx.validator.validate_record_data(
        {"count": "", "weight": None, "id": None, "colour": "red"}, typed_table
    )
    assert _kinds(outcome) == {"count": ErrorKind.FIELD_VALIDATION, "colour": ErrorKind.SCHEMA_NOT_FOUND}
    assert outcome.record == {"weight": None, "id": None}
    assert "colour" not in outcome.record


def test_name_heuristics_are_case_sensitive(ctx, typed_table):
    outcome = ctx.validator.validate_record_data(
        {"count": 1, "gender": "male", "blood_group": "Z+", "status": "done"}, typed_table
    )
    assert set(_kinds(outcome)) == {"gender", "blood_group", "status"}

    ok = ctx.validator.validate_record_data(
        {"count": 1, "gender": "Female", "blood_group": "AB-", "status": "pending"}, typed_table
    )
    assert ok.isValid


def test_errors_accumulate_into_one_message(ctx, typed_table):
    single = ctx.validator.validate_record_data({"count": "x"}, typed_table)
    assert single.message == "Error in Measurements: Count must be a whole number"

    multi = ctx.validator.validate_record_data({"count": "x", "weight": "y", "code": "toolong"}, typed_table)
    assert len(multi.errors) == 3
    assert multi.message.startswith("Errors in Measurements:\n• ")
    assert multi.message.count("\n• ") == 3


def test_foreign_key_emulation(ctx, typed_table, add_client):
    missing = ctx.validator.validate_record_data({"count": 1, "client_id": 99}, typed_table)
    assert _kinds(missing) == {"client_id": ErrorKind.FOREIGN_KEY_VIOLATION}

    add_client(99)
    found = ctx.validator.validate_record_data({"count": 1, "client_id": "99"}, typed_table)
    assert found.isValid
    assert found.record["client_id"] == 99


def test_unique_emulation(ctx, related_tables, add_client):
    add_client(1)
    run_sql(ctx, "INSERT INTO contact_info (id, client_id, email) VALUES (10, 1, 'a@b.com')")
    schema = ctx.catalog.get_table_schema("contact_info")

    taken = ctx.validator.validate_record_data({"client_id": 1, "email": "a@b.com"}, schema)
    assert _kinds(taken) == {"email": ErrorKind.UNIQUE_VIOLATION}
    assert "email" not in taken.record

    own_row = ctx.validator.validate_record_data({"email": "a@b.com"}, schema, exclude_row_id=10)
    assert own_row.isValid


def test_overlay_constraints(ctx, typed_table):
    ctx.overlay.upsert_metadata("measurements", "note", ColumnMetadata(isEmail=True, maxLength=12))
    ctx.overlay.upsert_metadata(
        "measurements", "code", ColumnMetadata(hasDropdown=True, dropdownOptions=["AA", "BB"])
    )
    ctx.overlay.upsert_metadata("measurements", "weight", ColumnMetadata(minValue=1, maxValue=200))
    schema = ctx.catalog.get_table_schema("measurements")

    ok = ctx.validator.validate_record_data({"count": 1, "note": "a@b.co", "code": "bb", "weight": 70}, schema)
    assert ok.isValid
    assert ok.record["code"] == "bb"

    bad = ctx.validator.validate_record_data(
        {"count": 1, "note": "not-an-email-address", "code": "CC", "weight": 500}, schema
    )
    assert set(_kinds(bad)) == {"note", "code", "weight"}
    # both the email and the length rule fail on note
    assert len([e for e in bad.errors if e.field == "note"]) == 2


def test_required_overlay_flag_is_not_enforced(ctx, typed_table):
    ctx.overlay.upsert_metadata("measurements", "note", ColumnMetadata(required=True))
    schema = ctx.catalog.get_table_schema("measurements")
    outcome = ctx.validator.validate_record_data({"count": 1, "note": None}, schema)
    assert outcome.isValid
    assert outcome.record == {"count": 1, "note": None}


def test_date_columns_are_checked_as_calendar_dates(ctx):
    run_sql(ctx, "CREATE TABLE visits (id INTEGER PRIMARY KEY, client_id INTEGER, visited_on DATE, seen_at TIMESTAMP)")
    schema = ctx.catalog.get_table_schema("visits")

    bad = ctx.validator.validate_record_data({"visited_on": "2024-02-31", "seen_at": "yesterday"}, schema)
    assert _kinds(bad) == {"visited_on": ErrorKind.FIELD_VALIDATION, "seen_at": ErrorKind.FIELD_VALIDATION}
    assert bad.errors[0].message == "Visited On must be a valid date (YYYY-MM-DD)"

    good = ctx.validator.validate_record_data({"visited_on": "2024-02-29", "seen_at": "2024-02-29T08:15:00Z"}, schema)
    assert good.isValid
    assert good.record == {"visited_on": "2024-02-29", "seen_at": "2024-02-29T08:15:00Z"}


def test_root_date_of_birth_is_a_date_column(ctx):
    schema = ctx.catalog.get_table_schema("personal_details")
    outcome = ctx.validator.validate_record_data({"first_name": "Asha", "date_of_birth": "1990-13-01"}, schema)
    assert _kinds(outcome) == {"date_of_birth": ErrorKind.FIELD_VALIDATION}
