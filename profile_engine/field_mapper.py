# profile_engine/field_mapper.py
#
# Pure document -> record matching. No I/O: callers hand in the schema and
# the profile dict, and get flat column->value records back.

from __future__ import annotations
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from profile_engine.meta_models import TableSchema

TIMESTAMP_COLUMNS = ("created_at", "updated_at")

# Tried in this order when a table has no section of its own
SECTION_PREFIXES = ("personal", "contact", "family")

# Envelope keys of an assembled profile; never mapped onto columns
PROFILE_ENVELOPE_KEYS = frozenset({
    "id", "userId", "createdAt", "updatedAt", "completionPercentage", "status",
})

# Root column -> accepted document keys, most specific first
ROOT_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "first_name": ("firstName", "first_name"),
    "middle_name": ("middleName", "middle_name"),
    "last_name": ("lastName", "last_name"),
    "date_of_birth": ("dateOfBirth", "date_of_birth", "dob"),
    "gender": ("gender",),
    "nationality": ("nationality",),
    "religion": ("religion",),
    "blood_group": ("bloodGroup", "blood_group"),
    "aadhar_number": ("aadhaarNumber", "aadharNumber", "aadhar_number"),
    "pan_number": ("panNumber", "pan_number"),
    "passport_number": ("passportNumber", "passport_number"),
}

BLOOD_GROUPS = ("A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-")


# ---- name conversion ---------------------------------------------------------

def snake_to_camel(name: str) -> str:
    return re.sub(r"_([a-z])", lambda m: m.group(1).upper(), name.lower())

def camel_to_snake(key: str) -> str:
    return re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", key).lower()

def section_key(table_name: str) -> str:
    """contact_info -> contactInfo"""
    return snake_to_camel(table_name)


# ---- value matching ----------------------------------------------------------

def has_value(value: Any) -> bool:
    """Only non-empty scalars count as a mapped value."""
    if value is None or isinstance(value, (dict, list)):
        return False
    return value != ""

def find_value(column: str, section: Dict[str, Any]) -> Tuple[bool, Any]:
    """
    Look `column` up in one section:
      1. exact key
      2. camelCase form of the column
      3. any key whose snake_case form equals the column
      4. case-insensitive containment either way, first key wins
    """
    if has_value(section.get(column)):
        return True, section[column]

    camel = snake_to_camel(column)
    if has_value(section.get(camel)):
        return True, section[camel]

    for key, value in section.items():
        if has_value(value) and camel_to_snake(key) == column:
            return True, value

    low = column.lower()
    for key, value in section.items():
        k = key.lower()
        if k and has_value(value) and (low in k or k in low):
            return True, value

    return False, None


# ---- sections ----------------------------------------------------------------

def find_section(profile: Dict[str, Any], prefix: str) -> Optional[Dict[str, Any]]:
    """First dict-valued key whose normalized name starts with `prefix`."""
    for key, value in profile.items():
        if isinstance(value, dict) and key.replace("_", "").lower().startswith(prefix):
            return value
    return None

def candidate_sections(profile: Dict[str, Any], identifier_column: str) -> List[Dict[str, Any]]:
    sections: List[Dict[str, Any]] = []
    for prefix in SECTION_PREFIXES:
        s = find_section(profile, prefix)
        if s is not None and all(s is not seen for seen in sections):
            sections.append(s)
    envelope = PROFILE_ENVELOPE_KEYS | {identifier_column}
    sections.append({k: v for k, v in profile.items() if k not in envelope})
    return sections


# ---- record building ---------------------------------------------------------

def mappable_columns(schema: TableSchema, identifier_column: str, is_root: bool = False) -> List[str]:
    cols = []
    for c in schema.columns:
        if c.primaryKey or c.name == identifier_column:
            continue
        if not is_root and c.name in TIMESTAMP_COLUMNS:
            continue
        cols.append(c.name)
    return cols

def _map_columns(columns: Iterable[str], sections: Sequence[Dict[str, Any]]) -> Dict[str, Any]:
    record: Dict[str, Any] = {}
    for col in columns:
        for section in sections:
            found, value = find_value(col, section)
            if found:
                record[col] = value
                break
    return record

def map_record(
    columns: Iterable[str],
    sections: Sequence[Dict[str, Any]],
    identifier_column: str,
    client_id: Any,
) -> Optional[Dict[str, Any]]:
    """
    Build one record; earlier sections win. Returns None when nothing but
    the identifier would be stored.
    """
    record = _map_columns(columns, sections)
    if not record:
        return None
    record[identifier_column] = client_id
    return record

def claimed_keys(schema: TableSchema, item: Dict[str, Any]) -> set:
    """Keys of `item` that name one of the table's columns (exact, camelCase or snake_case form)."""
    names = set(schema.column_names())
    return {k for k in item if k in names or camel_to_snake(k) in names}

def find_own_value(column: str, item: Dict[str, Any], claimed: set) -> Tuple[bool, Any]:
    """
    Lookup inside a table's own section. A key naming the column decides,
    even when its value is null; only keys no column claims are left for the
    containment match.
    """
    camel = snake_to_camel(column)
    for key, value in item.items():
        if key in (column, camel) or camel_to_snake(key) == column:
            if isinstance(value, (dict, list)):
                continue
            return True, (None if value == "" else value)
    return find_value(column, {k: v for k, v in item.items() if k not in claimed})

def map_own_record(
    schema: TableSchema,
    columns: Iterable[str],
    item: Dict[str, Any],
    identifier_column: str,
    client_id: Any,
) -> Optional[Dict[str, Any]]:
    """One record from one own-section item; None when it carries no actual value."""
    claimed = claimed_keys(schema, item)
    record: Dict[str, Any] = {}
    for col in columns:
        found, value = find_own_value(col, item, claimed)
        if found:
            record[col] = value
    if not any(has_value(v) for v in record.values()):
        return None
    record[identifier_column] = client_id
    return record

def map_table_records(
    schema: TableSchema,
    profile: Dict[str, Any],
    identifier_column: str,
    client_id: Any,
) -> List[Dict[str, Any]]:
    """
    Records for one related table. A section named after the table is used on
    its own (one record per item when it carries `records`); otherwise the
    shared sections are searched in priority order.
    """
    columns = mappable_columns(schema, identifier_column)
    own = profile.get(section_key(schema.tableName))

    if isinstance(own, dict):
        items = own.get("records") if isinstance(own.get("records"), list) else [own]
        records = []
        for item in items:
            if not isinstance(item, dict):
                continue
            r = map_own_record(schema, columns, item, identifier_column, client_id)
            if r is not None:
                records.append(r)
        return records

    r = map_record(columns, candidate_sections(profile, identifier_column), identifier_column, client_id)
    return [r] if r is not None else []


# ---- root record -------------------------------------------------------------

def normalize_gender(value: Any) -> Optional[str]:
    if not has_value(value):
        return None
    v = str(value).strip().lower()
    if v == "male":
        return "Male"
    if v == "female":
        return "Female"
    return "Other"

def normalize_blood_group(value: Any) -> Optional[str]:
    if not has_value(value):
        return None
    v = str(value).strip().upper()
    return v if v in BLOOD_GROUPS else None

def split_full_name(full_name: str) -> Tuple[str, str]:
    parts = full_name.strip().split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])

def map_root_record(schema: TableSchema, profile: Dict[str, Any], identifier_column: str) -> Dict[str, Any]:
    """
    Root row fields: known aliases first (personal section, then the document
    root), then `fullName` split into first/last, then the generic matcher for
    any remaining root columns. Gender and blood group are de-normalized back
    to their stored spellings.
    """
    columns = mappable_columns(schema, identifier_column, is_root=True)
    personal = find_section(profile, "personal") or {}
    envelope = PROFILE_ENVELOPE_KEYS | {identifier_column}
    top = {k: v for k, v in profile.items() if k not in envelope}

    record: Dict[str, Any] = {}
    for col, aliases in ROOT_FIELD_ALIASES.items():
        if col not in columns:
            continue
        for source in (personal, top):
            hit = next((source[a] for a in aliases if has_value(source.get(a))), None)
            if hit is not None:
                record[col] = hit
                break

    full_name = personal.get("fullName") or top.get("fullName")
    if isinstance(full_name, str) and full_name.strip():
        first, last = split_full_name(full_name)
        if "first_name" in columns and "first_name" not in record and first:
            record["first_name"] = first
        if "last_name" in columns and "last_name" not in record and last:
            record["last_name"] = last

    remaining = [c for c in columns if c not in record and c not in ROOT_FIELD_ALIASES]
    record.update(_map_columns(remaining, candidate_sections(profile, identifier_column)))

    if "gender" in record:
        record["gender"] = normalize_gender(record["gender"])
    if "blood_group" in record:
        record["blood_group"] = normalize_blood_group(record["blood_group"])
    return record
