# profile_engine/migrate.py
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint, Column, ForeignKey, Index, MetaData, Table, UniqueConstraint,
    insert, literal_column, select, types,
)
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.types import NullType

from profile_engine.catalog import is_valid_identifier
from profile_engine.ddl_builder import build_column, create_table_from_specs
from profile_engine.errors import SchemaMigrationFailure, SchemaNotFound
from profile_engine.meta_models import ColumnSpec, DataType, TableSchema

if TYPE_CHECKING:
    from profile_engine.context import EngineContext

logger = logging.getLogger(__name__)

SCRATCH_SUFFIX = "_temp"
PROTECTED_ROOT_COLUMNS = ("first_name", "created_at", "updated_at")
RESERVED_WORDS = frozenset({
    "add", "all", "alter", "and", "as", "by", "check", "column", "create", "default",
    "delete", "drop", "from", "group", "index", "insert", "into", "join", "key", "not",
    "null", "on", "or", "order", "primary", "references", "select", "set", "table",
    "unique", "update", "values", "where",
})

# ---- small plan model --------------------------------------------------------

@dataclass
class RebuildPlan:
    operation: str
    table: str
    # (source column, target column), in source order
    keep: List[Tuple[str, str]] = field(default_factory=list)
    add: List[ColumnSpec] = field(default_factory=list)

    @property
    def renames(self) -> Dict[str, str]:
        return {s: t for s, t in self.keep if s != t}

    def format_plan(self) -> str:
        lines = [f"{self.operation} on {self.table}:"]
        kept = [s for s, _ in self.keep]
        for s, t in self.renames.items():
            lines.append(f"  - rename {s} -> {t}")
        for spec in self.add:
            lines.append(f"  - add {spec.columnName} {spec.dataType.value}")
        lines.append(f"  - copy {len(kept)} column(s)")
        return "\n".join(lines)

# ---- helpers -----------------------------------------------------------------

def sanitize_column_name(name: str) -> str:
    """'  Alt Phone ' -> 'alt_phone'"""
    return re.sub(r"\s+", "_", (name or "").strip()).lower()

def _check_name(operation: str, table: str, name: str) -> None:
    if not is_valid_identifier(name):
        raise SchemaMigrationFailure(operation, table, f"'{name}' is not a valid identifier")
    if name.lower() in RESERVED_WORDS:
        raise SchemaMigrationFailure(operation, table, f"'{name}' is a reserved word")

def protected_columns(ctx: "EngineContext", table: str) -> Tuple[str, ...]:
    if table == ctx.settings.ROOT_TABLE:
        return (ctx.settings.IDENTIFIER_COLUMN, *PROTECTED_ROOT_COLUMNS)
    return (ctx.settings.IDENTIFIER_COLUMN,)

def _require(ctx: "EngineContext", table: str) -> TableSchema:
    schema = ctx.catalog.get_table_schema(table)
    if schema is None:
        raise SchemaNotFound(table)
    return schema

def _q(conn: Connection, name: str) -> str:
    return conn.dialect.identifier_preparer.quote(name)

def _copy_column(col: Column, new_name: str) -> Column:
    sa_type = types.Text() if isinstance(col.type, NullType) else col.type
    fks = [
        ForeignKey(fk.target_fullname, ondelete=fk.ondelete, onupdate=fk.onupdate)
        for fk in col.foreign_keys
    ]
    return Column(
        new_name,
        sa_type,
        *fks,
        primary_key=col.primary_key,
        nullable=False if col.primary_key else col.nullable,
        server_default=col.server_default.arg if col.server_default is not None else None,
    )

def _copy_constraints(source: Table, renames: Dict[str, str], dropped: set) -> List:
    """UNIQUE and CHECK constraints carried over to the replacement table."""
    out = []
    for c in source.constraints:
        if isinstance(c, UniqueConstraint):
            names = [col.name for col in c.columns]
            if any(n in dropped for n in names):
                continue
            out.append(UniqueConstraint(*(renames.get(n, n) for n in names)))
        elif isinstance(c, CheckConstraint):
            sql = str(c.sqltext).strip()
            # single-line CREATE TABLE statements reflect with the closing paren attached
            while sql.endswith(")") and sql.count(")") > sql.count("("):
                sql = sql[:-1].rstrip()
            if any(re.search(rf"\b{re.escape(n)}\b", sql) for n in dropped):
                logger.warning("Dropping CHECK (%s) on %s: references a removed column", sql, source.name)
                continue
            for old, new in renames.items():
                sql = re.sub(rf"\b{re.escape(old)}\b", new, sql)
            out.append(CheckConstraint(sql))
    return out

def _row_order(conn: Connection, source: Table) -> List:
    if source.primary_key.columns:
        return list(source.primary_key.columns)
    if conn.dialect.name == "sqlite":
        return [literal_column("rowid")]
    return []

# ---- rebuild -----------------------------------------------------------------

def _rebuild_table(
    ctx: "EngineContext",
    plan: RebuildPlan,
    overlay_step: Optional[Callable[[Connection], None]] = None,
) -> TableSchema:
    """
    Replace `plan.table` with a rebuilt copy inside one transaction:
    create <table>_temp, copy rows in row order, drop the original, rename
    the copy, fix indexes and overlay rows. Any failure rolls everything back.
    """
    logger.warning("=== REBUILD ===\n%s", plan.format_plan())
    scratch = f"{plan.table}{SCRATCH_SUFFIX}"
    renames = dict(plan.keep)
    dropped = set()

    try:
        with ctx.engine.begin() as conn:
            metadata = MetaData()
            source = Table(plan.table, metadata, autoload_with=conn)
            dropped = {c.name for c in source.columns if c.name not in renames}

            conn.exec_driver_sql(f"DROP TABLE IF EXISTS {_q(conn, scratch)}")

            columns = [_copy_column(c, renames[c.name]) for c in source.columns if c.name in renames]
            columns += [build_column(spec, ctx.settings.IDENTIFIER_COLUMN) for spec in plan.add]
            target = Table(scratch, metadata, *columns, *_copy_constraints(source, plan.renames, dropped))
            target.create(conn)

            src_cols = [source.c[s] for s, _ in plan.keep]
            copy = insert(target).from_select(
                [t for _, t in plan.keep],
                select(*src_cols).order_by(*_row_order(conn, source)),
            )
            copied = conn.execute(copy).rowcount

            indexes = [
                (ix.name, [col.name for col in ix.columns], ix.unique)
                for ix in source.indexes
            ]
            source.drop(conn)
            conn.exec_driver_sql(f"ALTER TABLE {_q(conn, scratch)} RENAME TO {_q(conn, plan.table)}")

            final = Table(plan.table, MetaData(), autoload_with=conn)
            for name, cols, unique in indexes:
                if any(c in dropped for c in cols):
                    continue
                Index(name, *(final.c[renames.get(c, c)] for c in cols), unique=unique).create(conn)

            if overlay_step is not None:
                overlay_step(conn)
            logger.info("Rebuilt %s (%s rows copied)", plan.table, copied)
    except SQLAlchemyError as e:
        logger.error("%s on %s rolled back: %s", plan.operation, plan.table, e)
        raise SchemaMigrationFailure(plan.operation, plan.table, str(e.orig if getattr(e, "orig", None) else e)) from e
    finally:
        ctx.overlay.invalidate(plan.table)

    return _require(ctx, plan.table)

# ---- column operations -------------------------------------------------------

def add_column(ctx: "EngineContext", table: str, spec: ColumnSpec) -> TableSchema:
    op = "add_column"
    schema = _require(ctx, table)
    _check_name(op, table, spec.columnName)
    if schema.column(spec.columnName) is not None:
        raise SchemaMigrationFailure(op, table, f"column '{spec.columnName}' already exists")
    if spec.isPrimaryKey:
        raise SchemaMigrationFailure(op, table, "cannot add a primary key column")

    plan = RebuildPlan(op, table, keep=[(c, c) for c in schema.column_names()], add=[spec])

    def _overlay(conn: Connection) -> None:
        if spec.metadata is not None and spec.metadata.declares_constraints():
            ctx.overlay.upsert_metadata(table, spec.columnName, spec.metadata, conn=conn)

    return _rebuild_table(ctx, plan, _overlay)

def rename_column(ctx: "EngineContext", table: str, old_name: str, new_name: str) -> TableSchema:
    op = "rename_column"
    schema = _require(ctx, table)
    new_name = sanitize_column_name(new_name)
    if schema.column(old_name) is None:
        raise SchemaNotFound(table, old_name)
    if old_name in protected_columns(ctx, table):
        raise SchemaMigrationFailure(op, table, f"column '{old_name}' is protected")
    _check_name(op, table, new_name)
    if new_name == old_name:
        return schema
    if schema.column(new_name) is not None:
        raise SchemaMigrationFailure(op, table, f"column '{new_name}' already exists")

    plan = RebuildPlan(
        op, table, keep=[(c, new_name if c == old_name else c) for c in schema.column_names()]
    )

    def _overlay(conn: Connection) -> None:
        ctx.overlay.rename_column(table, old_name, new_name, conn=conn)

    return _rebuild_table(ctx, plan, _overlay)

def drop_column(ctx: "EngineContext", table: str, column_name: str) -> TableSchema:
    op = "drop_column"
    schema = _require(ctx, table)
    if schema.column(column_name) is None:
        raise SchemaNotFound(table, column_name)
    if column_name in protected_columns(ctx, table):
        raise SchemaMigrationFailure(op, table, f"column '{column_name}' is protected")
    if len(schema.columns) <= 1:
        raise SchemaMigrationFailure(op, table, "cannot drop the last column")

    plan = RebuildPlan(op, table, keep=[(c, c) for c in schema.column_names() if c != column_name])

    def _overlay(conn: Connection) -> None:
        ctx.overlay.delete_metadata(table, column_name, conn=conn)

    return _rebuild_table(ctx, plan, _overlay)

# ---- table operations --------------------------------------------------------

def create_table(ctx: "EngineContext", table: str, columns: List[ColumnSpec]) -> TableSchema:
    """
    Create a table from column specs. A table without a declared primary key
    gets an INTEGER `id` key in front.
    """
    op = "create_table"
    _check_name(op, table, table)
    if ctx.catalog.table_exists(table):
        raise SchemaMigrationFailure(op, table, "table already exists")
    if not columns:
        raise SchemaMigrationFailure(op, table, "at least one column is required")

    names = [c.columnName for c in columns]
    for name in names:
        _check_name(op, table, name)
    if len(set(names)) != len(names):
        raise SchemaMigrationFailure(op, table, "duplicate column names")

    specs = list(columns)
    if not any(c.isPrimaryKey for c in specs):
        if "id" in names:
            raise SchemaMigrationFailure(op, table, "column 'id' must be the primary key")
        specs.insert(0, ColumnSpec(columnName="id", dataType=DataType.INTEGER, isPrimaryKey=True))

    try:
        with ctx.engine.begin() as conn:
            create_table_from_specs(conn, table, specs, ctx.settings.IDENTIFIER_COLUMN)
            for spec in specs:
                if spec.metadata is not None and spec.metadata.declares_constraints():
                    ctx.overlay.upsert_metadata(table, spec.columnName, spec.metadata, conn=conn)
    except SQLAlchemyError as e:
        logger.error("create_table %s rolled back: %s", table, e)
        raise SchemaMigrationFailure(op, table, str(e)) from e
    finally:
        ctx.overlay.invalidate(table)

    logger.info("Created table %s with %d column(s)", table, len(specs))
    return _require(ctx, table)

def drop_table(ctx: "EngineContext", table: str) -> None:
    op = "drop_table"
    s = ctx.settings
    if table in (s.ROOT_TABLE, s.DOCUMENT_TABLE, s.METADATA_TABLE):
        raise SchemaMigrationFailure(op, table, "table is protected")
    if not ctx.catalog.table_exists(table):
        raise SchemaNotFound(table)
    try:
        with ctx.engine.begin() as conn:
            conn.exec_driver_sql(f"DROP TABLE {_q(conn, table)}")
            ctx.overlay.delete_metadata(table, conn=conn)
    except SQLAlchemyError as e:
        raise SchemaMigrationFailure(op, table, str(e)) from e
    logger.warning("Dropped table %s", table)
