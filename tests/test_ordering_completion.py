from profile_engine.completion import COMPLETION_FIELDS, calculate_completion_percentage
from profile_engine.ordering import order_tables

FULL_ROOT = {name: "x" for name in COMPLETION_FIELDS}


def test_order_tables_root_first_documents_last_creation_order_between():
    ordered = order_tables(
        ["notes", "documents", "addresses", "personal_details", "bank"],
        "personal_details",
        "documents",
        ["personal_details", "notes", "addresses"],
    )
    # bank is unknown to the creation order, so it trails the known tables
    assert ordered == ["personal_details", "notes", "addresses", "bank", "documents"]


def test_order_tables_falls_back_to_alphabetical():
    ordered = order_tables(["zeta", "documents", "alpha", "personal_details"], "personal_details", "documents")
    assert ordered == ["personal_details", "alpha", "zeta", "documents"]


def test_completion_floor_for_empty_profile():
    assert calculate_completion_percentage({}, {}) == 25


def test_completion_all_root_fields():
    assert calculate_completion_percentage(FULL_ROOT, {}) == 100


def test_completion_counts_tables_in_threes():
    # 9 + 1 filled of 9 + 3
    assert calculate_completion_percentage(FULL_ROOT, {"contact_info": [{"id": 1}]}) == 83
    # row count above three is capped
    rows = [{"id": i} for i in range(10)]
    assert calculate_completion_percentage(FULL_ROOT, {"family_details": rows}) == 100


def test_completion_ignores_empty_tables_and_blank_values():
    root = dict(FULL_ROOT, religion="", pan_number=None, blood_group="   ")
    # 6 of 9
    assert calculate_completion_percentage(root, {"contact_info": []}) == 67


def test_completion_rounds_half_up():
    root = {name: "x" for name in COMPLETION_FIELDS}
    tables = {f"t{i}": [{"id": 1}] for i in range(4)}
    tables["t4"] = [{"id": 1}, {"id": 2}]
    # 15 / 24 = 62.5
    assert calculate_completion_percentage(root, tables) == 63


def test_completion_is_bounded():
    for filled in range(len(COMPLETION_FIELDS) + 1):
        root = {name: "x" for name in COMPLETION_FIELDS[:filled]}
        pct = calculate_completion_percentage(root, {"a": [{}], "b": []})
        assert 25 <= pct <= 100
