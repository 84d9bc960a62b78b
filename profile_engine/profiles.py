# profile_engine/profiles.py
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from sqlalchemy import desc, select, update
from sqlalchemy.exc import SQLAlchemyError

from profile_engine.completion import calculate_completion_percentage
from profile_engine.db import utc_timestamp
from profile_engine.errors import (
    EngineError, FieldValidationError, RecordValidationFailed, SchemaNotFound, UniqueViolation,
)
from profile_engine.field_mapper import (
    TIMESTAMP_COLUMNS, map_root_record, map_table_records, section_key,
)
from profile_engine.meta_models import DisassemblyReport, TableSchema
from profile_engine.row_store import (
    delete_where, insert_record, insert_validated, integrity_guard, require_schema, sa_table, select_rows,
    stamp_timestamps,
)

if TYPE_CHECKING:
    from profile_engine.context import EngineContext

logger = logging.getLogger(__name__)

DEFAULT_SECTIONS = ("contactInfo", "familyDetails", "educationalDetails")
DEFAULT_NATIONALITY = "Indian"


# ---- assembly ----------------------------------------------------------------

def build_personal_info(root_row: Dict[str, Any]) -> Dict[str, Any]:
    first = root_row.get("first_name") or ""
    last = root_row.get("last_name") or ""
    gender = root_row.get("gender")
    return {
        "fullName": f"{first} {last}".strip(),
        "gender": gender.lower() if isinstance(gender, str) else gender,
        "dateOfBirth": root_row.get("date_of_birth"),
        "nationality": root_row.get("nationality") or DEFAULT_NATIONALITY,
        "religion": root_row.get("religion"),
        "bloodGroup": root_row.get("blood_group"),
        "aadhaarNumber": root_row.get("aadhar_number"),
        "panNumber": root_row.get("pan_number"),
        "passportNumber": root_row.get("passport_number"),
    }

def build_section(rows: List[Dict[str, Any]], strip: set) -> Dict[str, Any]:
    """One row -> flat dict; several rows -> {"records": [...]}."""
    cleaned = [{k: v for k, v in row.items() if k not in strip} for row in rows]
    if len(cleaned) == 1:
        return cleaned[0]
    return {"records": cleaned}

def _fetch_root(ctx: "EngineContext", root: TableSchema, client_id: Any) -> Optional[Dict[str, Any]]:
    with ctx.engine.connect() as conn:
        rows = select_rows(conn, root, {ctx.settings.IDENTIFIER_COLUMN: client_id}, limit=1)
    return rows[0] if rows else None

def _fetch_table_data(ctx: "EngineContext", client_id: Any) -> Dict[str, List[Dict[str, Any]]]:
    """Rows per profile-related table, in table display order. Unreadable tables are skipped."""
    identifier = ctx.settings.IDENTIFIER_COLUMN
    data: Dict[str, List[Dict[str, Any]]] = {}
    for name in ctx.catalog.get_profile_related_tables():
        schema = ctx.catalog.get_table_schema(name)
        if schema is None:
            continue
        try:
            with ctx.engine.connect() as conn:
                data[name] = select_rows(conn, schema, {identifier: client_id})
        except SQLAlchemyError as e:
            logger.warning("Skipping table %s while assembling profile %s: %s", name, client_id, e)
    return data

def build_complete_profile(ctx: "EngineContext", client_id: Any) -> Optional[Dict[str, Any]]:
    """
    Assemble the nested profile document for one client:
      - envelope (id, identifier, timestamps, completion, status)
      - personalInfo from the root row's fixed fields
      - one section per related table holding rows, keyed by camelCase table name
      - empty contactInfo / familyDetails / educationalDetails when absent
    Returns None when no root row exists.
    """
    identifier = ctx.settings.IDENTIFIER_COLUMN
    root = require_schema(ctx, ctx.settings.ROOT_TABLE)
    root_row = _fetch_root(ctx, root, client_id)
    if root_row is None:
        return None

    table_data = _fetch_table_data(ctx, client_id)
    strip = {identifier, *TIMESTAMP_COLUMNS}

    profile: Dict[str, Any] = {
        "id": str(root_row[identifier]),
        identifier: root_row[identifier],
        "userId": None,
        "createdAt": root_row.get("created_at"),
        "updatedAt": root_row.get("updated_at"),
        "completionPercentage": calculate_completion_percentage(root_row, table_data),
        "status": "active",
        "personalInfo": build_personal_info(root_row),
    }

    for name, rows in table_data.items():
        if not rows:
            continue
        key = section_key(name)
        if key in profile:
            # never shadow the envelope or the synthesized personalInfo
            logger.warning("Section %s for table %s collides with a profile key; skipped", key, name)
            continue
        profile[key] = build_section(rows, strip)

    for key in DEFAULT_SECTIONS:
        profile.setdefault(key, {})
    return profile

def list_profiles(ctx: "EngineContext") -> List[Dict[str, Any]]:
    root = require_schema(ctx, ctx.settings.ROOT_TABLE)
    identifier = ctx.settings.IDENTIFIER_COLUMN
    t = sa_table(root)
    stmt = select(t.c[identifier])
    if "updated_at" in root.column_names():
        stmt = stmt.order_by(desc(t.c["updated_at"]))
    with ctx.engine.connect() as conn:
        ids = [r[0] for r in conn.execute(stmt)]
    profiles = []
    for client_id in ids:
        p = build_complete_profile(ctx, client_id)
        if p is not None:
            profiles.append(p)
    return profiles

def get_client_table_rows(ctx: "EngineContext", client_id: Any, table_name: str) -> List[Dict[str, Any]]:
    schema = require_schema(ctx, table_name)
    identifier = ctx.settings.IDENTIFIER_COLUMN
    if schema.column(identifier) is None:
        raise SchemaNotFound(table_name, identifier)
    with ctx.engine.connect() as conn:
        return select_rows(conn, schema, {identifier: client_id})


# ---- disassembly -------------------------------------------------------------

def extract_client_id(profile: Dict[str, Any], identifier: str) -> int:
    raw = profile.get(identifier)
    if raw in (None, ""):
        raw = profile.get("id")
    try:
        value = int(str(raw).strip()) if not isinstance(raw, bool) else None
    except ValueError:
        value = None
    if value is None or value <= 0:
        raise FieldValidationError(identifier, "positive integer", raw, "Client ID must be a positive integer")
    return value

def _missing_required(schema: TableSchema, record: Dict[str, Any]) -> Optional[str]:
    for col in schema.columns:
        if col.primaryKey or col.nullable or col.defaultValue is not None:
            continue
        if record.get(col.name) in (None, ""):
            return col.name
    return None

def _store_root(ctx: "EngineContext", root: TableSchema, client_id: int, record: Dict[str, Any], exists: bool, now: str) -> None:
    identifier = ctx.settings.IDENTIFIER_COLUMN
    outcome = ctx.validator.validate_record_data(record, root, exclude_row_id=client_id if exists else None)
    if not outcome.isValid:
        raise RecordValidationFailed(outcome)
    values = dict(outcome.record)
    t = sa_table(root)

    if exists:
        values = stamp_timestamps(root, values, creating=False, now=now)
        if values:
            with integrity_guard(root.tableName), ctx.engine.begin() as conn:
                conn.execute(update(t).where(t.c[identifier] == client_id).values(**values))
        return

    values[identifier] = client_id
    values = stamp_timestamps(root, values, creating=True, now=now)
    missing = _missing_required(root, values)
    if missing is not None:
        col = root.column(missing)
        raise FieldValidationError(missing, "a value", None, f"{col.displayName} is required")
    with integrity_guard(root.tableName), ctx.engine.begin() as conn:
        insert_record(conn, root, values)

def disassemble_and_store(ctx: "EngineContext", profile: Dict[str, Any], *, require_new: bool = False) -> DisassemblyReport:
    """
    Write a profile document back onto the store.

    The root row is created or updated first (all-or-nothing). Every
    profile-related table is then fully replaced: existing rows for the client
    are deleted, mapped records validated and inserted one by one. A failing
    record is logged and reported; the rest still go in.
    """
    identifier = ctx.settings.IDENTIFIER_COLUMN
    client_id = extract_client_id(profile, identifier)
    root = require_schema(ctx, ctx.settings.ROOT_TABLE)
    exists = _fetch_root(ctx, root, client_id) is not None
    if exists and require_new:
        raise UniqueViolation(root.tableName, identifier, f"Profile {client_id} already exists")

    now = utc_timestamp()
    _store_root(ctx, root, client_id, map_root_record(root, profile, identifier), exists, now)
    report = DisassemblyReport(clientId=client_id, created=not exists)

    schemas = []
    for name in ctx.catalog.get_profile_related_tables():
        schema = ctx.catalog.get_table_schema(name)
        if schema is not None:
            schemas.append(schema)

    for schema in schemas:
        with ctx.engine.begin() as conn:
            removed = delete_where(conn, schema, identifier, client_id)
        if removed:
            logger.info("Cleared %d row(s) of %s for client %s", removed, schema.tableName, client_id)

    for schema in schemas:
        for record in map_table_records(schema, profile, identifier, client_id):
            try:
                insert_validated(ctx, schema, record, now=now)
            except RecordValidationFailed as e:
                logger.warning("Record for %s rejected: %s", schema.tableName, e.message)
                report.errors.setdefault(schema.tableName, []).extend(err.message for err in e.outcome.errors)
                continue
            except (EngineError, SQLAlchemyError) as e:
                logger.warning("Insert into %s failed: %s", schema.tableName, e)
                report.errors.setdefault(schema.tableName, []).append(str(e))
                continue
            report.inserted[schema.tableName] = report.inserted.get(schema.tableName, 0) + 1

    logger.info(
        "Stored profile %s (created=%s, inserted=%s, failed tables=%s)",
        client_id, report.created, report.inserted, list(report.errors),
    )
    return report

def create_profile(ctx: "EngineContext", profile: Dict[str, Any]) -> DisassemblyReport:
    return disassemble_and_store(ctx, profile, require_new=True)


# ---- removal -----------------------------------------------------------------

def delete_profile(ctx: "EngineContext", client_id: Any) -> bool:
    """
    Remove a client: dependent rows in every profile-related table and the
    document table first, the root row last, all in one transaction.
    Returns False when there was no such client.
    """
    identifier = ctx.settings.IDENTIFIER_COLUMN
    root = require_schema(ctx, ctx.settings.ROOT_TABLE)
    if _fetch_root(ctx, root, client_id) is None:
        return False

    dependents: List[TableSchema] = []
    names = list(ctx.catalog.get_profile_related_tables())
    if ctx.catalog.has_identifier_column(ctx.settings.DOCUMENT_TABLE):
        names.append(ctx.settings.DOCUMENT_TABLE)
    for name in names:
        schema = ctx.catalog.get_table_schema(name)
        if schema is not None:
            dependents.append(schema)

    with integrity_guard(root.tableName), ctx.engine.begin() as conn:
        for schema in dependents:
            removed = delete_where(conn, schema, identifier, client_id)
            logger.debug("Deleted %d row(s) from %s for client %s", removed, schema.tableName, client_id)
        delete_where(conn, root, identifier, client_id)

    logger.info("Deleted profile %s and %d dependent table(s)", client_id, len(dependents))
    return True
