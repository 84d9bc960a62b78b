from conftest import run_sql

from profile_engine.meta_models import ColumnMetadata, ForeignKeyRef


def test_table_exists_rejects_unknown_and_malformed_names(ctx):
    assert ctx.catalog.table_exists("personal_details")
    assert not ctx.catalog.table_exists("nope")
    assert not ctx.catalog.table_exists("personal_details; DROP TABLE x")
    assert ctx.catalog.get_table_schema("nope") is None


def test_schema_reports_keys_types_and_constraint_tokens(ctx, related_tables):
    schema = ctx.catalog.get_table_schema("contact_info")
    assert schema.column_names() == ["id", "client_id", "email", "phone"]
    assert schema.displayName == "Contact Info"
    assert schema.primaryKey == ["id"]

    client = schema.column("client_id")
    assert client.foreignKey == ForeignKeyRef(referencedTable="personal_details", referencedColumn="client_id")
    assert "NOT NULL" in client.constraints
    assert client.nullable is False

    email = schema.column("email")
    assert "UNIQUE" in email.constraints
    assert email.nullable is True
    assert schema.column("phone").type == "VARCHAR(15)"


def test_check_constraint_token(ctx):
    run_sql(ctx, "CREATE TABLE scores (id INTEGER PRIMARY KEY, points INTEGER CHECK (points >= 0))")
    schema = ctx.catalog.get_table_schema("scores")
    assert "CHECK" in schema.column("points").constraints
    assert "CHECK" not in schema.column("id").constraints


def test_available_tables_hide_system_and_scratch_tables(ctx, related_tables):
    run_sql(
        ctx,
        "CREATE TABLE contact_info_temp (id INTEGER)",
        "CREATE TABLE old_backup (id INTEGER)",
    )
    tables = ctx.catalog.get_available_tables()
    assert tables == sorted(tables)
    assert "contact_info" in tables
    assert "column_metadata" not in tables
    assert "contact_info_temp" not in tables
    assert "old_backup" not in tables
    assert not any(t.startswith("sqlite_") for t in tables)


def test_profile_related_tables_follow_creation_order(ctx):
    run_sql(
        ctx,
        "CREATE TABLE zeta_notes (id INTEGER PRIMARY KEY, client_id INTEGER, note TEXT)",
        "CREATE TABLE alpha_links (id INTEGER PRIMARY KEY, client_id INTEGER, url TEXT)",
        "CREATE TABLE lookup_codes (id INTEGER PRIMARY KEY, code TEXT)",
    )
    assert ctx.catalog.get_profile_related_tables() == ["zeta_notes", "alpha_links"]
    assert ctx.catalog.has_identifier_column("zeta_notes")
    assert not ctx.catalog.has_identifier_column("lookup_codes")
    assert not ctx.catalog.has_identifier_column("missing")


def test_describe_puts_root_first_and_documents_last(ctx, related_tables):
    described = ctx.catalog.describe()
    names = [d["tableName"] for d in described]
    assert names[0] == "personal_details"
    assert names[-1] == "documents"
    contact = next(d for d in described if d["tableName"] == "contact_info")
    assert contact == {"tableName": "contact_info", "displayName": "Contact Info", "isProfileTable": True}


def test_schema_is_enriched_from_overlay(ctx, related_tables):
    ctx.overlay.upsert_metadata("contact_info", "email", ColumnMetadata(isEmail=True, maxLength=40))
    schema = ctx.catalog.get_table_schema("contact_info")
    assert schema.column("email").overlay.isEmail is True
    assert schema.column("email").overlay.maxLength == 40
    assert schema.column("phone").overlay is None
