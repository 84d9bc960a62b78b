# profile_engine/meta_models.py
from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from profile_engine.errors import ErrorKind

class DataType(str, Enum):
    VARCHAR = "VARCHAR"
    TEXT = "TEXT"
    INTEGER = "INTEGER"
    BIGINT = "BIGINT"
    DECIMAL = "DECIMAL"
    FLOAT = "FLOAT"
    REAL = "REAL"
    BOOLEAN = "BOOLEAN"
    DATE = "DATE"
    TIMESTAMP = "TIMESTAMP"

def display_name(name: str) -> str:
    """contact_info -> Contact Info"""
    return " ".join(part.capitalize() for part in name.split("_") if part)

# ---- overlay -----------------------------------------------------------------

class ColumnMetadata(BaseModel):
    required: bool = False
    isEmail: bool = False
    minLength: Optional[int] = None
    maxLength: Optional[int] = None
    exactLength: Optional[int] = None
    hasDropdown: bool = False
    dropdownOptions: List[str] = Field(default_factory=list)
    minValue: Optional[float] = None
    maxValue: Optional[float] = None
    exactValue: Optional[float] = None

    def declares_constraints(self) -> bool:
        return self != ColumnMetadata()

# ---- introspected schema -----------------------------------------------------

class ForeignKeyRef(BaseModel):
    referencedTable: str
    referencedColumn: str

class Column(BaseModel):
    name: str
    type: str
    nullable: bool = True
    primaryKey: bool = False
    foreignKey: Optional[ForeignKeyRef] = None
    constraints: List[str] = Field(default_factory=list)
    defaultValue: Optional[Any] = None
    overlay: Optional[ColumnMetadata] = None

    @property
    def displayName(self) -> str:
        return display_name(self.name)

class TableSchema(BaseModel):
    tableName: str
    columns: List[Column]

    @property
    def displayName(self) -> str:
        return display_name(self.tableName)

    @property
    def primaryKey(self) -> List[str]:
        return [c.name for c in self.columns if c.primaryKey]

    def column(self, name: str) -> Optional[Column]:
        for c in self.columns:
            if c.name == name:
                return c
        return None

    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

# ---- DDL input ---------------------------------------------------------------

class ColumnSpec(BaseModel):
    """A column requested by create_table / add_column."""
    columnName: str
    dataType: DataType = DataType.TEXT
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    isNullable: bool = True
    isUnique: bool = False
    isPrimaryKey: bool = False
    defaultValue: Optional[Any] = None
    foreignKey: Optional[ForeignKeyRef] = None
    metadata: Optional[ColumnMetadata] = None

# ---- validation --------------------------------------------------------------

class FieldError(BaseModel):
    field: str
    kind: ErrorKind
    message: str
    expected: Optional[str] = None
    received: Optional[Any] = None

def format_table_errors(table: str, messages: List[str]) -> str:
    title = display_name(table)
    if not messages:
        return ""
    if len(messages) == 1:
        return f"Error in {title}: {messages[0]}"
    return f"Errors in {title}:\n" + "\n".join(f"• {m}" for m in messages)

class ValidationOutcome(BaseModel):
    table: str
    isValid: bool
    record: Dict[str, Any] = Field(default_factory=dict)
    errors: List[FieldError] = Field(default_factory=list)

    @property
    def message(self) -> str:
        return format_table_errors(self.table, [e.message for e in self.errors])

# ---- profile write-back ------------------------------------------------------

class DisassemblyReport(BaseModel):
    clientId: int
    created: bool = False
    inserted: Dict[str, int] = Field(default_factory=dict)
    errors: Dict[str, List[str]] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def message(self) -> str:
        return "\n\n".join(format_table_errors(t, msgs) for t, msgs in self.errors.items() if msgs)
