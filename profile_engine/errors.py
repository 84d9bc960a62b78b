# profile_engine/errors.py
from __future__ import annotations
from enum import Enum
from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from profile_engine.meta_models import ValidationOutcome


class ErrorKind(str, Enum):
    SCHEMA_NOT_FOUND = "SCHEMA_NOT_FOUND"
    FIELD_VALIDATION = "FIELD_VALIDATION"
    FOREIGN_KEY_VIOLATION = "FOREIGN_KEY_VIOLATION"
    UNIQUE_VIOLATION = "UNIQUE_VIOLATION"
    SCHEMA_MIGRATION_FAILURE = "SCHEMA_MIGRATION_FAILURE"


class EngineError(Exception):
    """Base class; every subclass pins one ErrorKind."""

    kind: ErrorKind = ErrorKind.FIELD_VALIDATION

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, **self.details()}


class SchemaNotFound(EngineError):
    kind = ErrorKind.SCHEMA_NOT_FOUND

    def __init__(self, table: str, column: Optional[str] = None) -> None:
        if column:
            msg = f"Column '{column}' does not exist in table '{table}'"
        else:
            msg = f"Table '{table}' does not exist"
        super().__init__(msg)
        self.table = table
        self.column = column

    def details(self) -> Dict[str, Any]:
        return {"table": self.table, "column": self.column}


class FieldValidationError(EngineError):
    kind = ErrorKind.FIELD_VALIDATION

    def __init__(self, field: str, expected: str, received: Any = None, message: Optional[str] = None) -> None:
        super().__init__(message or f"Invalid value for {field}: expected {expected}, got {received!r}")
        self.field = field
        self.expected = expected
        self.received = received

    def details(self) -> Dict[str, Any]:
        received = self.received if isinstance(self.received, (str, int, float, bool)) else repr(self.received)
        return {"field": self.field, "expected": self.expected, "received": received}


class RecordValidationFailed(EngineError):
    """A whole record was rejected; carries the full outcome with every field error."""

    kind = ErrorKind.FIELD_VALIDATION

    def __init__(self, outcome: "ValidationOutcome") -> None:
        super().__init__(outcome.message)
        self.outcome = outcome

    def details(self) -> Dict[str, Any]:
        return {
            "table": self.outcome.table,
            "errors": [e.model_dump(mode="json") for e in self.outcome.errors],
        }


class ForeignKeyViolation(EngineError):
    kind = ErrorKind.FOREIGN_KEY_VIOLATION

    def __init__(self, table: str, identifier: Any, message: Optional[str] = None) -> None:
        super().__init__(message or f"No row in '{table}' matches {identifier!r}")
        self.table = table
        self.identifier = identifier

    def details(self) -> Dict[str, Any]:
        return {"table": self.table, "identifier": self.identifier}


class UniqueViolation(EngineError):
    kind = ErrorKind.UNIQUE_VIOLATION

    def __init__(self, table: str, column: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Value for '{column}' already exists in '{table}'")
        self.table = table
        self.column = column

    def details(self) -> Dict[str, Any]:
        return {"table": self.table, "column": self.column}


class SchemaMigrationFailure(EngineError):
    kind = ErrorKind.SCHEMA_MIGRATION_FAILURE

    def __init__(self, operation: str, table: str, reason: str) -> None:
        super().__init__(f"{operation} on '{table}' failed: {reason}")
        self.operation = operation
        self.table = table
        self.reason = reason

    def details(self) -> Dict[str, Any]:
        return {"operation": self.operation, "table": self.table, "reason": self.reason}
