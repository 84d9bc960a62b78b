# profile_engine/completion.py
from __future__ import annotations
from typing import Any, Dict, List, Mapping

COMPLETION_FIELDS = (
    "first_name",
    "last_name",
    "date_of_birth",
    "gender",
    "nationality",
    "religion",
    "blood_group",
    "aadhar_number",
    "pan_number",
)

ROWS_PER_TABLE = 3
MIN_PERCENT = 25
MAX_PERCENT = 100

def _filled(value: Any) -> bool:
    return value is not None and str(value).strip() != ""

def calculate_completion_percentage(
    root_row: Mapping[str, Any],
    table_data: Mapping[str, List[Dict[str, Any]]],
) -> int:
    """
    Score = filled / total, rounded half-up and clamped to [25, 100].
    Each of the fixed root fields is worth 1; every related table that holds
    rows is worth 3, filled up to min(3, row count).
    """
    total = 0
    filled = 0
    for name in COMPLETION_FIELDS:
        total += 1
        if _filled(root_row.get(name)):
            filled += 1

    for rows in table_data.values():
        if rows:
            total += ROWS_PER_TABLE
            filled += min(ROWS_PER_TABLE, len(rows))

    if total == 0:
        return MIN_PERCENT
    percent = (filled * 200 + total) // (2 * total)
    return max(MIN_PERCENT, min(MAX_PERCENT, percent))
