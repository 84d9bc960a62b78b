# profile_engine/type_mapping.py
from __future__ import annotations
import json
import re
from typing import Optional
from sqlalchemy import types

INTEGER = "integer"
REAL = "real"
BOOLEAN = "boolean"
TEXT = "text"
DATE = "date"

_REAL_MARKERS = ("real", "numeric", "decimal", "float", "double")
_LENGTH_RE = re.compile(r"\((\d+)\)")

class JSONList(types.TypeDecorator):
    """
    A list of strings stored as JSON TEXT. Tolerates '', 'null', None and
    non-JSON strings on read (returns [] or a one-item list) and never raises.
    """
    impl = types.TEXT
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = [value]
        return json.dumps([str(v) for v in value])

    def process_result_value(self, value, dialect):
        if value is None:
            return []
        if isinstance(value, (bytes, bytearray)):
            value = value.decode("utf-8", errors="ignore")
        v = str(value).strip()
        if v in ("", "null", "NULL"):
            return []
        try:
            loaded = json.loads(v)
        except ValueError:
            return [v]
        if isinstance(loaded, list):
            return [str(x) for x in loaded]
        return [str(loaded)]

def type_family(declared_type: str) -> str:
    """
    Classify a declared column type string by substring, the way SQLite's
    own affinity rules read it, plus a date family for DATE, DATETIME and
    TIMESTAMP. Order matters: 'int' wins over everything.
    """
    t = (declared_type or "").lower()
    if "int" in t:
        return INTEGER
    if "date" in t or "time" in t:
        return DATE
    if any(m in t for m in _REAL_MARKERS):
        return REAL
    if "bool" in t:
        return BOOLEAN
    return TEXT

def declared_length(declared_type: str) -> Optional[int]:
    """VARCHAR(50) -> 50; None when the type carries no length."""
    m = _LENGTH_RE.search(declared_type or "")
    return int(m.group(1)) if m else None

def sqlalchemy_type(
    data_type: str,
    *,
    length: int | None = None,
    precision: int | None = None,
    scale: int | None = None,
):
    """
    Map a ColumnSpec DataType -> SQLAlchemy column type.
    Rendered names survive reflection, so type_family() classifies them again.
    """
    dt = (data_type or "").upper()

    if dt == "VARCHAR":
        return types.String(length or 255)
    if dt == "TEXT":
        return types.Text()
    if dt == "INTEGER":
        return types.Integer()
    if dt == "BIGINT":
        return types.BigInteger()
    if dt == "DECIMAL":
        return types.Numeric(precision or 18, scale or 6)
    if dt == "FLOAT":
        return types.Float()
    if dt == "REAL":
        return types.REAL()
    if dt == "BOOLEAN":
        return types.Boolean()
    if dt == "DATE":
        return types.Date()
    if dt == "TIMESTAMP":
        return types.DateTime()

    return types.Text()
