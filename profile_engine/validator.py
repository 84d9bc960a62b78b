# profile_engine/validator.py
#
# Record validation against a live TableSchema:
# - coercion is driven by the declared type string (see type_mapping.type_family)
# - column-name heuristics stand in for CHECK constraints the store cannot report
# - overlay constraints (dropdown, email, length, value bounds) come from the side table
# - FK / UNIQUE are emulated with one lookup query per field
# Errors accumulate; nothing here raises for bad input.

from __future__ import annotations
import logging
import re
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import column, select, table
from sqlalchemy.engine import Engine

from profile_engine.catalog import SchemaCatalog
from profile_engine.errors import ErrorKind, FieldValidationError, SchemaNotFound
from profile_engine.meta_models import Column, FieldError, TableSchema, ValidationOutcome
from profile_engine.type_mapping import BOOLEAN, DATE, INTEGER, REAL, declared_length, type_family

logger = logging.getLogger(__name__)

GENDER_VALUES = ("Male", "Female", "Other")
BLOOD_GROUP_VALUES = ("A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-")
STATUS_VALUES = ("pending", "verified", "rejected", "active", "inactive")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_INT_RE = re.compile(r"^[+-]?\d+$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}([T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?(Z|[+-]\d{2}:?\d{2})?)?$")
_TRUE_STRINGS = {"true", "1", "yes"}
_FALSE_STRINGS = {"false", "0", "no"}


def is_empty(value: Any) -> bool:
    return value is None or value == ""


# --------------------------- coercion -----------------------------------------

def coerce_value(col: Column, value: Any) -> Any:
    """
    Convert `value` to the storage form implied by the column's declared type.
    Raises FieldValidationError; callers collect it.
    """
    family = type_family(col.type)
    label = col.displayName

    if family == INTEGER:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and _INT_RE.match(value.strip()):
            return int(value.strip())
        raise FieldValidationError(col.name, "integer", value, f"{label} must be a whole number")

    if family == REAL:
        if isinstance(value, bool):
            raise FieldValidationError(col.name, "number", value, f"{label} must be a number")
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                pass
        raise FieldValidationError(col.name, "number", value, f"{label} must be a number")

    if family == BOOLEAN:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, (int, float)) and value in (0, 1):
            return int(value)
        if isinstance(value, str):
            v = value.strip().lower()
            if v in _TRUE_STRINGS:
                return 1
            if v in _FALSE_STRINGS:
                return 0
        raise FieldValidationError(col.name, "boolean", value, f"{label} must be true or false")

    if family == DATE:
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, str):
            v = value.strip()
            if _DATE_RE.match(v):
                try:
                    date.fromisoformat(v[:10])
                    if len(v) > 10:
                        datetime.fromisoformat(v)
                    return v
                except ValueError:
                    pass
        raise FieldValidationError(col.name, "date", value, f"{label} must be a valid date (YYYY-MM-DD)")

    # text
    if isinstance(value, (dict, list)):
        raise FieldValidationError(col.name, "text", value, f"{label} must be text")
    text_value = value if isinstance(value, str) else str(value)
    max_len = declared_length(col.type)
    if max_len is not None and len(text_value) > max_len:
        raise FieldValidationError(
            col.name, f"text(<= {max_len})", value, f"{label} must be at most {max_len} characters"
        )
    return text_value


def heuristic_errors(col: Column, value: Any) -> List[str]:
    """Allowed-value sets inferred from the column name."""
    name = col.name.lower()
    label = col.displayName
    errors: List[str] = []
    if "gender" in name and value not in GENDER_VALUES:
        errors.append(f"{label} must be one of: {', '.join(GENDER_VALUES)}")
    if "blood" in name and "group" in name and value not in BLOOD_GROUP_VALUES:
        errors.append(f"{label} must be one of: {', '.join(BLOOD_GROUP_VALUES)}")
    if "status" in name and value not in STATUS_VALUES:
        errors.append(f"{label} must be one of: {', '.join(STATUS_VALUES)}")
    return errors


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def overlay_errors(col: Column, value: Any) -> List[str]:
    meta = col.overlay
    if meta is None:
        return []
    label = col.displayName
    text_value = str(value)
    errors: List[str] = []

    if meta.hasDropdown and meta.dropdownOptions:
        if text_value.lower() not in {o.lower() for o in meta.dropdownOptions}:
            errors.append(f"{label} must be one of: {', '.join(meta.dropdownOptions)}")

    if meta.isEmail and not EMAIL_RE.match(text_value):
        errors.append(f"{label} must be a valid email address")

    if meta.exactLength is not None and len(text_value) != meta.exactLength:
        errors.append(f"{label} must be exactly {meta.exactLength} characters")
    if meta.minLength is not None and len(text_value) < meta.minLength:
        errors.append(f"{label} must be at least {meta.minLength} characters")
    if meta.maxLength is not None and len(text_value) > meta.maxLength:
        errors.append(f"{label} must be at most {meta.maxLength} characters")

    bounds = (meta.minValue, meta.maxValue, meta.exactValue)
    if any(b is not None for b in bounds):
        number = _as_number(value)
        if number is None:
            errors.append(f"{label} must be a number")
        else:
            if meta.exactValue is not None and number != meta.exactValue:
                errors.append(f"{label} must equal {meta.exactValue:g}")
            if meta.minValue is not None and number < meta.minValue:
                errors.append(f"{label} must be at least {meta.minValue:g}")
            if meta.maxValue is not None and number > meta.maxValue:
                errors.append(f"{label} must be at most {meta.maxValue:g}")
    return errors


# --------------------------- validator ----------------------------------------

class RecordValidator:
    def __init__(self, engine: Engine, catalog: SchemaCatalog) -> None:
        self.engine = engine
        self.catalog = catalog

    def _reference_exists(self, ref_table: str, ref_column: str, value: Any) -> bool:
        if not self.catalog.table_exists(ref_table):
            return False
        ref = column(ref_column)
        stmt = select(ref).select_from(table(ref_table, ref)).where(ref == value).limit(1)
        with self.engine.connect() as conn:
            return conn.execute(stmt).first() is not None

    def _value_taken(self, schema: TableSchema, col: Column, value: Any, exclude_row_id: Any) -> bool:
        target = column(col.name)
        pk = schema.primaryKey
        cols = [target] + ([column(pk[0])] if len(pk) == 1 and pk[0] != col.name else [])
        stmt = select(target).select_from(table(schema.tableName, *cols)).where(target == value)
        if exclude_row_id is not None and len(pk) == 1:
            stmt = stmt.where(column(pk[0]) != exclude_row_id)
        with self.engine.connect() as conn:
            return conn.execute(stmt.limit(1)).first() is not None

    def validate_record_data(
        self,
        record: Dict[str, Any],
        schema: TableSchema,
        exclude_row_id: Any = None,
    ) -> ValidationOutcome:
        """
        Coerce and check every field of `record` against `schema`.
        Returns the coerced record (valid fields only) with all errors found.
        `exclude_row_id` keeps an update from colliding with its own UNIQUE values.
        """
        out: Dict[str, Any] = {}
        errors: List[FieldError] = []
        table_name = schema.tableName

        for key, value in record.items():
            col = schema.column(key)
            if col is None:
                missing = SchemaNotFound(table_name, key)
                errors.append(FieldError(field=key, kind=missing.kind, message=missing.message))
                continue

            if is_empty(value):
                if col.nullable or col.primaryKey:
                    out[key] = None
                else:
                    errors.append(FieldError(
                        field=key, kind=ErrorKind.FIELD_VALIDATION,
                        message=f"{col.displayName} cannot be empty", expected="a value", received=value,
                    ))
                continue

            try:
                coerced = coerce_value(col, value)
            except FieldValidationError as e:
                errors.append(FieldError(
                    field=key, kind=e.kind, message=e.message, expected=e.expected, received=_jsonable(value),
                ))
                continue

            field_msgs = heuristic_errors(col, coerced) + overlay_errors(col, coerced)
            if field_msgs:
                for msg in field_msgs:
                    errors.append(FieldError(
                        field=key, kind=ErrorKind.FIELD_VALIDATION, message=msg, received=_jsonable(value),
                    ))
                continue
            out[key] = coerced

        # relational checks on the surviving, coerced values
        for key, value in out.items():
            if value is None:
                continue
            col = schema.column(key)
            if col.foreignKey is not None:
                fk = col.foreignKey
                if not self._reference_exists(fk.referencedTable, fk.referencedColumn, value):
                    errors.append(FieldError(
                        field=key, kind=ErrorKind.FOREIGN_KEY_VIOLATION,
                        message=f"{col.displayName} {value!r} does not exist in {fk.referencedTable}",
                        expected=f"{fk.referencedTable}.{fk.referencedColumn}", received=_jsonable(value),
                    ))
            if "UNIQUE" in col.constraints and self._value_taken(schema, col, value, exclude_row_id):
                errors.append(FieldError(
                    field=key, kind=ErrorKind.UNIQUE_VIOLATION,
                    message=f"{col.displayName} {value!r} already exists",
                    received=_jsonable(value),
                ))

        for e in errors:
            logger.debug("Validation error on %s.%s: %s", table_name, e.field, e.message)

        failed = {e.field for e in errors}
        return ValidationOutcome(
            table=table_name,
            isValid=not errors,
            record={k: v for k, v in out.items() if k not in failed},
            errors=errors,
        )


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return repr(value)
