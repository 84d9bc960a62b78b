# profile_engine/catalog.py
from __future__ import annotations
import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy import inspect as sa_inspect
from sqlalchemy.engine import Engine
from sqlalchemy.types import NullType

from profile_engine.db import Settings
from profile_engine.meta_models import Column, ForeignKeyRef, TableSchema, display_name
from profile_engine.ordering import order_tables
from profile_engine.overlay import MetadataOverlay

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
SYSTEM_SUFFIXES = ("_temp", "_backup")

def is_valid_identifier(name: Optional[str]) -> bool:
    return bool(name) and bool(IDENTIFIER_RE.match(name))


class SchemaCatalog:
    """
    Live view of the store's tables. Every call re-inspects; nothing here is
    cached, so a migration is visible to the very next lookup.
    """

    def __init__(self, engine: Engine, settings: Settings, overlay: Optional[MetadataOverlay] = None) -> None:
        self.engine = engine
        self.settings = settings
        self.overlay = overlay

    @property
    def root_table(self) -> str:
        return self.settings.ROOT_TABLE

    @property
    def identifier_column(self) -> str:
        return self.settings.IDENTIFIER_COLUMN

    @property
    def document_table(self) -> str:
        return self.settings.DOCUMENT_TABLE

    def is_system_table(self, name: str) -> bool:
        return (
            name.startswith("sqlite_")
            or name == self.settings.METADATA_TABLE
            or name.endswith(SYSTEM_SUFFIXES)
        )

    # ---- existence ------------------------------------------------------

    def table_exists(self, name: str) -> bool:
        if not is_valid_identifier(name):
            return False
        return name in sa_inspect(self.engine).get_table_names()

    def has_identifier_column(self, name: str) -> bool:
        if not self.table_exists(name):
            return False
        cols = sa_inspect(self.engine).get_columns(name)
        return any(c["name"] == self.identifier_column for c in cols)

    # ---- schema ---------------------------------------------------------

    def _type_string(self, sa_type) -> str:
        if isinstance(sa_type, NullType):
            return ""
        return sa_type.compile(dialect=self.engine.dialect)

    def get_table_schema(self, name: str) -> Optional[TableSchema]:
        if not self.table_exists(name):
            return None
        insp = sa_inspect(self.engine)

        pk_cols = set(insp.get_pk_constraint(name).get("constrained_columns") or [])

        fk_map: Dict[str, ForeignKeyRef] = {}
        for fk in insp.get_foreign_keys(name):
            local = fk.get("constrained_columns") or []
            remote = fk.get("referred_columns") or []
            if len(local) == 1 and len(remote) == 1:
                fk_map[local[0]] = ForeignKeyRef(
                    referencedTable=fk["referred_table"], referencedColumn=remote[0]
                )

        unique_cols = set()
        for uc in insp.get_unique_constraints(name):
            if len(uc.get("column_names") or []) == 1:
                unique_cols.add(uc["column_names"][0])
        for ix in insp.get_indexes(name):
            if ix.get("unique") and len(ix.get("column_names") or []) == 1:
                unique_cols.add(ix["column_names"][0])

        try:
            checks = [str(c.get("sqltext", "")) for c in insp.get_check_constraints(name)]
        except NotImplementedError:
            checks = []

        columns: List[Column] = []
        for c in insp.get_columns(name):
            cname = c["name"]
            tokens: List[str] = []
            if cname in unique_cols:
                tokens.append("UNIQUE")
            if not c.get("nullable", True):
                tokens.append("NOT NULL")
            if any(re.search(rf"\b{re.escape(cname)}\b", sql) for sql in checks):
                tokens.append("CHECK")
            columns.append(Column(
                name=cname,
                type=self._type_string(c["type"]),
                nullable=bool(c.get("nullable", True)),
                primaryKey=cname in pk_cols,
                foreignKey=fk_map.get(cname),
                constraints=tokens,
                defaultValue=c.get("default"),
            ))

        schema = TableSchema(tableName=name, columns=columns)
        if self.overlay is not None:
            self.overlay.enrich(schema)
        return schema

    # ---- discovery ------------------------------------------------------

    def get_available_tables(self) -> List[str]:
        names = sa_inspect(self.engine).get_table_names()
        return sorted(n for n in names if not self.is_system_table(n))

    def creation_order(self) -> Optional[List[str]]:
        """sqlite_master rowid order; None where the dialect keeps no such record."""
        if self.engine.dialect.name != "sqlite":
            return None
        with self.engine.connect() as conn:
            rows = conn.exec_driver_sql(
                "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY rowid"
            ).all()
        return [r[0] for r in rows]

    def order_tables(self, names: List[str]) -> List[str]:
        return order_tables(names, self.root_table, self.document_table, self.creation_order())

    def get_profile_related_tables(self) -> List[str]:
        insp = sa_inspect(self.engine)
        related = []
        for name in self.get_available_tables():
            if name in (self.root_table, self.document_table):
                continue
            cols = insp.get_columns(name)
            if any(c["name"] == self.identifier_column for c in cols):
                related.append(name)
        ordered = self.order_tables(related)
        logger.debug("Profile-related tables: %s", ", ".join(ordered))
        return ordered

    def describe(self) -> List[Dict[str, Any]]:
        """Every available table with display name and profile membership, in display order."""
        related = set(self.get_profile_related_tables())
        return [
            {
                "tableName": name,
                "displayName": display_name(name),
                "isProfileTable": name in related,
            }
            for name in self.order_tables(self.get_available_tables())
        ]
