# profile_engine/overlay.py
from __future__ import annotations
import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from jsonschema import ValidationError
from jsonschema.validators import Draft7Validator
from sqlalchemy import (
    Column, Float, Integer, MetaData, Table, Text, UniqueConstraint,
    delete, insert, select, update,
)
from sqlalchemy.engine import Connection, Engine

from profile_engine.db import utc_timestamp
from profile_engine.meta_models import ColumnMetadata, TableSchema
from profile_engine.type_mapping import JSONList

logger = logging.getLogger(__name__)

class InvalidOverlayFile(Exception):
    pass

# Seed file accepted by load_overlay_file()
OVERLAY_FILE_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["columns"],
    "properties": {
        "columns": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["table", "column"],
                "properties": {
                    "table": {"type": "string", "pattern": "^[A-Za-z_][A-Za-z0-9_]*$"},
                    "column": {"type": "string", "pattern": "^[A-Za-z_][A-Za-z0-9_]*$"},
                    "required": {"type": "boolean"},
                    "isEmail": {"type": "boolean"},
                    "minLength": {"type": ["integer", "null"], "minimum": 0},
                    "maxLength": {"type": ["integer", "null"], "minimum": 0},
                    "exactLength": {"type": ["integer", "null"], "minimum": 0},
                    "hasDropdown": {"type": "boolean"},
                    "dropdownOptions": {"type": "array", "items": {"type": "string"}},
                    "minValue": {"type": ["number", "null"]},
                    "maxValue": {"type": ["number", "null"]},
                    "exactValue": {"type": ["number", "null"]},
                },
                "additionalProperties": False,
            },
        }
    },
}

# column name in the side table -> ColumnMetadata field
_FIELD_MAP = {
    "required": "required",
    "is_email": "isEmail",
    "min_length": "minLength",
    "max_length": "maxLength",
    "exact_length": "exactLength",
    "has_dropdown": "hasDropdown",
    "dropdown_options": "dropdownOptions",
    "min_value": "minValue",
    "max_value": "maxValue",
    "exact_value": "exactValue",
}
_BOOL_FIELDS = {"required", "is_email", "has_dropdown"}


class MetadataOverlay:
    """
    Per-column constraints the store itself cannot express, kept in a side
    table unique by (table_name, column_name). Reads are cached per table and
    every write through this object drops the affected cache entry.
    """

    def __init__(self, engine: Engine, table_name: str = "column_metadata") -> None:
        self.engine = engine
        self.table_name = table_name
        self._metadata = MetaData()
        self.table = Table(
            table_name,
            self._metadata,
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("table_name", Text, nullable=False),
            Column("column_name", Text, nullable=False),
            Column("required", Integer, nullable=False, server_default="0"),
            Column("is_email", Integer, nullable=False, server_default="0"),
            Column("min_length", Integer),
            Column("max_length", Integer),
            Column("exact_length", Integer),
            Column("has_dropdown", Integer, nullable=False, server_default="0"),
            Column("dropdown_options", JSONList()),
            Column("min_value", Float),
            Column("max_value", Float),
            Column("exact_value", Float),
            Column("created_at", Text),
            Column("updated_at", Text),
            UniqueConstraint("table_name", "column_name", name=f"uq_{table_name}_column"),
        )
        self._cache: Dict[str, Dict[str, ColumnMetadata]] = {}
        self._ensured = False

    # ---- plumbing -------------------------------------------------------

    def ensure_table(self) -> None:
        if not self._ensured:
            self._metadata.create_all(self.engine, checkfirst=True)
            self._ensured = True

    def invalidate(self, table: Optional[str] = None) -> None:
        if table is None:
            self._cache.clear()
        else:
            self._cache.pop(table, None)

    @contextmanager
    def _tx(self, conn: Optional[Connection]) -> Iterator[Connection]:
        if conn is not None:
            yield conn
        else:
            with self.engine.begin() as own:
                yield own

    @staticmethod
    def _row_to_metadata(row) -> ColumnMetadata:
        m = row._mapping
        data = {}
        for col, field in _FIELD_MAP.items():
            value = m[col]
            data[field] = bool(value) if col in _BOOL_FIELDS else value
        return ColumnMetadata.model_validate(data)

    @staticmethod
    def _metadata_to_values(meta: ColumnMetadata) -> Dict[str, Any]:
        values = {}
        for col, field in _FIELD_MAP.items():
            value = getattr(meta, field)
            values[col] = int(value) if col in _BOOL_FIELDS else value
        return values

    # ---- reads ----------------------------------------------------------

    def list_for_table(self, table: str) -> Dict[str, ColumnMetadata]:
        cached = self._cache.get(table)
        if cached is not None:
            return cached
        self.ensure_table()
        stmt = select(self.table).where(self.table.c.table_name == table).order_by(self.table.c.id)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).all()
        result = {row.column_name: self._row_to_metadata(row) for row in rows}
        self._cache[table] = result
        return result

    def get_metadata(self, table: str, column: str) -> Optional[ColumnMetadata]:
        return self.list_for_table(table).get(column)

    def enrich(self, schema: TableSchema) -> TableSchema:
        overlay = self.list_for_table(schema.tableName)
        for col in schema.columns:
            col.overlay = overlay.get(col.name)
        return schema

    def dropdown_options(self, table: str) -> Dict[str, List[str]]:
        """Value restrictions per column, as read by the extraction subsystem."""
        return {
            column: list(meta.dropdownOptions)
            for column, meta in self.list_for_table(table).items()
            if meta.hasDropdown and meta.dropdownOptions
        }

    def check_dropdown_value(self, table: str, column: str, value: Any) -> Dict[str, Any]:
        meta = self.get_metadata(table, column)
        if meta is None or not meta.hasDropdown:
            return {"isDropdown": False, "isValid": True, "allowedValues": []}
        options = list(meta.dropdownOptions)
        needle = "" if value is None else str(value).lower()
        is_valid = any(o.lower() == needle for o in options)
        result = {"isDropdown": True, "isValid": is_valid, "allowedValues": options}
        if not is_valid:
            result["message"] = f"Value must be one of: {', '.join(options)}"
        return result

    # ---- writes ---------------------------------------------------------

    def upsert_metadata(
        self,
        table: str,
        column: str,
        meta: ColumnMetadata,
        conn: Optional[Connection] = None,
    ) -> ColumnMetadata:
        """Full replace keyed by (table, column); inserts the row on first use."""
        self.ensure_table()
        values = self._metadata_to_values(meta)
        now = utc_timestamp()
        t = self.table
        with self._tx(conn) as c:
            existing = c.execute(
                select(t.c.id).where(t.c.table_name == table, t.c.column_name == column)
            ).scalar_one_or_none()
            if existing is None:
                c.execute(insert(t).values(
                    table_name=table, column_name=column, created_at=now, updated_at=now, **values
                ))
            else:
                c.execute(update(t).where(t.c.id == existing).values(updated_at=now, **values))
        self.invalidate(table)
        logger.info("Overlay upserted for %s.%s", table, column)
        return meta

    def delete_metadata(
        self,
        table: str,
        column: Optional[str] = None,
        conn: Optional[Connection] = None,
    ) -> int:
        self.ensure_table()
        t = self.table
        stmt = delete(t).where(t.c.table_name == table)
        if column is not None:
            stmt = stmt.where(t.c.column_name == column)
        with self._tx(conn) as c:
            count = c.execute(stmt).rowcount
        self.invalidate(table)
        return count

    def rename_column(self, table: str, old: str, new: str, conn: Optional[Connection] = None) -> None:
        self.ensure_table()
        t = self.table
        with self._tx(conn) as c:
            c.execute(
                update(t)
                .where(t.c.table_name == table, t.c.column_name == old)
                .values(column_name=new)
            )
        self.invalidate(table)

    # ---- seed file ------------------------------------------------------

    def load_overlay_file(self, path: str) -> int:
        """
        Upsert every entry of a JSON seed file:
            {"columns": [{"table": "contact_info", "column": "email", "isEmail": true}]}
        Returns the number of entries applied.
        """
        seed_path = Path(path)
        if not seed_path.exists():
            raise InvalidOverlayFile(f"Overlay file not found at {path}")
        try:
            data = json.loads(seed_path.read_text(encoding="utf-8"))
        except ValueError as e:
            raise InvalidOverlayFile(f"Overlay file is not valid JSON: {e}") from e

        try:
            Draft7Validator(OVERLAY_FILE_SCHEMA).validate(data)
        except ValidationError as e:
            raise InvalidOverlayFile(f"Overlay file validation failed: {e.message}") from e

        applied = 0
        with self.engine.begin() as conn:
            for entry in data["columns"]:
                fields = {k: v for k, v in entry.items() if k not in ("table", "column")}
                self.upsert_metadata(entry["table"], entry["column"], ColumnMetadata.model_validate(fields), conn=conn)
                applied += 1
        logger.info("Loaded %d overlay entries from %s", applied, seed_path)
        return applied
