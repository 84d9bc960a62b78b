# profile_engine/ddl_builder.py
from __future__ import annotations
from typing import Any, List, Optional, Set

from sqlalchemy import Column, ForeignKey, MetaData, Table
from sqlalchemy.engine import Connection

from profile_engine.meta_models import ColumnSpec
from profile_engine.type_mapping import sqlalchemy_type

def _server_default(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)

def build_column(spec: ColumnSpec, identifier_column: Optional[str] = None) -> Column:
    """
    ColumnSpec -> SQLAlchemy Column.
    - FK references cascade on delete
    - the client identifier is NOT NULL wherever it is not the primary key
    """
    sa_type = sqlalchemy_type(
        spec.dataType.value if hasattr(spec.dataType, "value") else str(spec.dataType),
        length=spec.length,
        precision=spec.precision,
        scale=spec.scale,
    )
    args = []
    if spec.foreignKey is not None:
        ref = spec.foreignKey
        args.append(ForeignKey(f"{ref.referencedTable}.{ref.referencedColumn}", ondelete="CASCADE"))

    nullable = spec.isNullable and not spec.isPrimaryKey
    if identifier_column and spec.columnName == identifier_column and not spec.isPrimaryKey:
        nullable = False

    return Column(
        spec.columnName,
        sa_type,
        *args,
        primary_key=spec.isPrimaryKey,
        nullable=nullable,
        unique=spec.isUnique,
        server_default=_server_default(spec.defaultValue),
    )

def referenced_tables(specs: List[ColumnSpec]) -> Set[str]:
    return {s.foreignKey.referencedTable for s in specs if s.foreignKey is not None}

def build_table(metadata: MetaData, table_name: str, specs: List[ColumnSpec],
                identifier_column: Optional[str] = None) -> Table:
    return Table(table_name, metadata, *(build_column(s, identifier_column) for s in specs))

def create_table_from_specs(conn: Connection, table_name: str, specs: List[ColumnSpec],
                            identifier_column: Optional[str] = None) -> Table:
    """
    Emit CREATE TABLE on `conn`. Referenced tables are reflected into the same
    MetaData first so FK clauses can render.
    """
    metadata = MetaData()
    refs = referenced_tables(specs) - {table_name}
    if refs:
        metadata.reflect(bind=conn, only=sorted(refs))
    table = build_table(metadata, table_name, specs, identifier_column)
    table.create(conn)
    return table
