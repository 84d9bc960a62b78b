# profile_engine/row_store.py
#
# Generic row access for tables discovered at runtime. Statements are built on
# lightweight table()/column() constructs from the live TableSchema, so values
# pass through untyped exactly as the validator produced them.

from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, TYPE_CHECKING

from sqlalchemy import column, delete, insert, select, table, update
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError
from sqlalchemy.sql.expression import TableClause

from profile_engine.db import utc_timestamp
from profile_engine.errors import (
    EngineError, FieldValidationError, ForeignKeyViolation, RecordValidationFailed, SchemaNotFound, UniqueViolation,
)
from profile_engine.field_mapper import TIMESTAMP_COLUMNS
from profile_engine.meta_models import TableSchema, display_name
from profile_engine.validator import coerce_value

if TYPE_CHECKING:
    from profile_engine.context import EngineContext

logger = logging.getLogger(__name__)

# Driver constraint codes: sqlite3 extended result names, PostgreSQL SQLSTATE
_UNIQUE_CODES = {"SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY", "23505"}
_FOREIGN_KEY_CODES = {"SQLITE_CONSTRAINT_FOREIGNKEY", "23503"}
_NOT_NULL_CODES = {"SQLITE_CONSTRAINT_NOTNULL", "23502"}
_CHECK_CODES = {"SQLITE_CONSTRAINT_CHECK", "23514"}

# ---- store constraint failures -----------------------------------------------

def _constraint_code(exc: IntegrityError) -> Optional[str]:
    orig = exc.orig
    return getattr(orig, "sqlite_errorname", None) or getattr(orig, "pgcode", None)

def _failed_columns(exc: IntegrityError) -> List[str]:
    """'UNIQUE constraint failed: phones.client_id, phones.kind' -> ['client_id', 'kind']"""
    detail = str(exc.orig).partition(":")[2]
    return [part.strip().split(".")[-1] for part in detail.split(",") if part.strip()]

def integrity_failure(table_name: str, exc: IntegrityError) -> Optional[EngineError]:
    """Map a store-enforced constraint failure onto the engine's error kinds; None when unrecognised."""
    code = _constraint_code(exc)
    cols = _failed_columns(exc) if code and code.startswith("SQLITE") else []
    col = ", ".join(cols)
    title = display_name(table_name)

    if code in _UNIQUE_CODES:
        return UniqueViolation(table_name, col, f"A {title} row with the same {col or 'key'} already exists")
    if code in _FOREIGN_KEY_CODES:
        return ForeignKeyViolation(table_name, None, f"A {title} row references a record that does not exist")
    if code in _NOT_NULL_CODES:
        label = display_name(cols[0]) if cols else "A required field"
        return FieldValidationError(col or table_name, "a value", None, f"{label} is required")
    if code in _CHECK_CODES:
        return FieldValidationError(col or table_name, "a permitted value", None, f"{title} rejected a value")
    return None

@contextmanager
def integrity_guard(table_name: str) -> Iterator[None]:
    try:
        yield
    except IntegrityError as e:
        failure = integrity_failure(table_name, e)
        if failure is None:
            raise
        logger.warning("Write to %s rejected by the store: %s", table_name, failure.message)
        raise failure from e

# ---- statement helpers -------------------------------------------------------

def sa_table(schema: TableSchema) -> TableClause:
    return table(schema.tableName, *(column(n) for n in schema.column_names()))

def _row_dict(row) -> Dict[str, Any]:
    return dict(row._mapping)

def stamp_timestamps(schema: TableSchema, record: Dict[str, Any], *, creating: bool, now: Optional[str] = None) -> Dict[str, Any]:
    now = now or utc_timestamp()
    names = set(schema.column_names())
    if creating and "created_at" in names and not record.get("created_at"):
        record["created_at"] = now
    if "updated_at" in names:
        record["updated_at"] = now
    return record

def select_rows(conn: Connection, schema: TableSchema, where: Optional[Dict[str, Any]] = None,
                limit: Optional[int] = None, offset: int = 0) -> List[Dict[str, Any]]:
    t = sa_table(schema)
    stmt = select(t)
    for key, value in (where or {}).items():
        stmt = stmt.where(t.c[key] == value)
    if schema.primaryKey:
        stmt = stmt.order_by(*(t.c[k] for k in schema.primaryKey))
    if limit is not None:
        stmt = stmt.limit(limit).offset(offset)
    return [_row_dict(r) for r in conn.execute(stmt)]

def insert_record(conn: Connection, schema: TableSchema, record: Dict[str, Any]) -> Any:
    """Insert and return the new row's primary key value (when it has a single one)."""
    t = sa_table(schema)
    result = conn.execute(insert(t).values(**record))
    pk = schema.primaryKey
    if len(pk) == 1:
        return record.get(pk[0]) if record.get(pk[0]) is not None else result.lastrowid
    return None

def delete_where(conn: Connection, schema: TableSchema, key: str, value: Any) -> int:
    t = sa_table(schema)
    return conn.execute(delete(t).where(t.c[key] == value)).rowcount

# ---- context-level operations ------------------------------------------------

def require_schema(ctx: "EngineContext", table_name: str) -> TableSchema:
    schema = ctx.catalog.get_table_schema(table_name)
    if schema is None:
        raise SchemaNotFound(table_name)
    return schema

def _row_key(schema: TableSchema) -> str:
    pk = schema.primaryKey
    if len(pk) != 1:
        raise SchemaNotFound(schema.tableName, "<single-column primary key>")
    return pk[0]

def _coerce_row_id(schema: TableSchema, row_id: Any) -> Any:
    key = _row_key(schema)
    try:
        return coerce_value(schema.column(key), row_id)
    except FieldValidationError as e:
        raise FieldValidationError(key, e.expected, row_id, f"Invalid row id {row_id!r} for {schema.tableName}") from e

def insert_validated(ctx: "EngineContext", schema: TableSchema, record: Dict[str, Any], *, now: Optional[str] = None) -> Any:
    outcome = ctx.validator.validate_record_data(record, schema)
    if not outcome.isValid:
        raise RecordValidationFailed(outcome)
    values = stamp_timestamps(schema, dict(outcome.record), creating=True, now=now)
    with integrity_guard(schema.tableName), ctx.engine.begin() as conn:
        return insert_record(conn, schema, values)

def touch_profile(ctx: "EngineContext", client_id: Any) -> None:
    """Refresh the root row's updated_at after a change to one of its tables."""
    root = ctx.catalog.get_table_schema(ctx.settings.ROOT_TABLE)
    if root is None or "updated_at" not in root.column_names():
        return
    t = sa_table(root)
    with ctx.engine.begin() as conn:
        conn.execute(
            update(t).where(t.c[ctx.settings.IDENTIFIER_COLUMN] == client_id).values(updated_at=utc_timestamp())
        )

def list_rows(ctx: "EngineContext", table_name: str, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
    schema = require_schema(ctx, table_name)
    with ctx.engine.connect() as conn:
        return select_rows(conn, schema, limit=limit, offset=offset)

def get_row(ctx: "EngineContext", table_name: str, row_id: Any) -> Optional[Dict[str, Any]]:
    schema = require_schema(ctx, table_name)
    key = _row_key(schema)
    with ctx.engine.connect() as conn:
        rows = select_rows(conn, schema, {key: _coerce_row_id(schema, row_id)}, limit=1)
    return rows[0] if rows else None

def add_row(ctx: "EngineContext", table_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    schema = require_schema(ctx, table_name)
    new_id = insert_validated(ctx, schema, data)
    logger.info("Inserted row into %s (id=%s)", table_name, new_id)

    identifier = ctx.settings.IDENTIFIER_COLUMN
    if table_name != ctx.settings.ROOT_TABLE and data.get(identifier) is not None:
        touch_profile(ctx, data[identifier])

    if len(schema.primaryKey) == 1 and new_id is not None:
        return get_row(ctx, table_name, new_id) or {}
    return dict(data)

def update_row(ctx: "EngineContext", table_name: str, row_id: Any, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    schema = require_schema(ctx, table_name)
    key = _row_key(schema)
    rid = _coerce_row_id(schema, row_id)
    existing = get_row(ctx, table_name, rid)
    if existing is None:
        return None

    changes = {k: v for k, v in data.items() if k != key and k not in TIMESTAMP_COLUMNS}
    outcome = ctx.validator.validate_record_data(changes, schema, exclude_row_id=rid)
    if not outcome.isValid:
        raise RecordValidationFailed(outcome)

    values = stamp_timestamps(schema, dict(outcome.record), creating=False)
    if values:
        t = sa_table(schema)
        with integrity_guard(table_name), ctx.engine.begin() as conn:
            conn.execute(update(t).where(t.c[key] == rid).values(**values))

    client_id = existing.get(ctx.settings.IDENTIFIER_COLUMN)
    if table_name != ctx.settings.ROOT_TABLE and client_id is not None:
        touch_profile(ctx, client_id)
    return get_row(ctx, table_name, rid)

def delete_row(ctx: "EngineContext", table_name: str, row_id: Any) -> bool:
    schema = require_schema(ctx, table_name)
    if table_name == ctx.settings.ROOT_TABLE:
        from profile_engine.profiles import delete_profile
        return delete_profile(ctx, _coerce_row_id(schema, row_id))

    key = _row_key(schema)
    rid = _coerce_row_id(schema, row_id)
    existing = get_row(ctx, table_name, rid)
    if existing is None:
        return False
    with integrity_guard(table_name), ctx.engine.begin() as conn:
        delete_where(conn, schema, key, rid)

    client_id = existing.get(ctx.settings.IDENTIFIER_COLUMN)
    if client_id is not None:
        touch_profile(ctx, client_id)
    return True
