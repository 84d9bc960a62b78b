# profile_engine/bootstrap.py
from __future__ import annotations
import logging
from typing import List, TYPE_CHECKING

from profile_engine.ddl_builder import create_table_from_specs
from profile_engine.meta_models import ColumnSpec, DataType, ForeignKeyRef

if TYPE_CHECKING:
    from profile_engine.context import EngineContext

logger = logging.getLogger(__name__)

def _text(name: str, **kw) -> ColumnSpec:
    return ColumnSpec(columnName=name, dataType=DataType.TEXT, **kw)

def root_table_specs(identifier: str) -> List[ColumnSpec]:
    return [
        ColumnSpec(columnName=identifier, dataType=DataType.INTEGER, isPrimaryKey=True),
        _text("first_name", isNullable=False),
        _text("middle_name"),
        _text("last_name"),
        ColumnSpec(columnName="date_of_birth", dataType=DataType.DATE),
        _text("gender"),
        _text("nationality", defaultValue="Indian"),
        _text("religion"),
        _text("blood_group"),
        _text("aadhar_number"),
        _text("pan_number"),
        _text("passport_number"),
        _text("created_at", isNullable=False),
        _text("updated_at", isNullable=False),
    ]

def document_table_specs(identifier: str, root_table: str) -> List[ColumnSpec]:
    return [
        ColumnSpec(columnName="document_id", dataType=DataType.INTEGER, isPrimaryKey=True),
        ColumnSpec(
            columnName=identifier,
            dataType=DataType.INTEGER,
            isNullable=False,
            foreignKey=ForeignKeyRef(referencedTable=root_table, referencedColumn=identifier),
        ),
        _text("document_type", isNullable=False),
        _text("document_name"),
        _text("file_path"),
        ColumnSpec(columnName="file_size", dataType=DataType.INTEGER),
        _text("mime_type"),
        _text("upload_date"),
        _text("verification_status", defaultValue="pending"),
        _text("verified_by"),
        _text("verified_at"),
        _text("notes"),
        ColumnSpec(columnName="is_required", dataType=DataType.BOOLEAN, defaultValue=False),
    ]

def bootstrap_store(ctx: "EngineContext") -> List[str]:
    """Create the root, document and metadata tables when missing. Returns the tables created."""
    s = ctx.settings
    created: List[str] = []
    ctx.overlay.ensure_table()
    wanted = (
        (s.ROOT_TABLE, root_table_specs(s.IDENTIFIER_COLUMN)),
        (s.DOCUMENT_TABLE, document_table_specs(s.IDENTIFIER_COLUMN, s.ROOT_TABLE)),
    )
    for name, specs in wanted:
        if ctx.catalog.table_exists(name):
            continue
        with ctx.engine.begin() as conn:
            create_table_from_specs(conn, name, specs, s.IDENTIFIER_COLUMN)
        created.append(name)
        logger.info("Created table %s", name)
    return created
