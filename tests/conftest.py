import pytest
from sqlalchemy import text

from profile_engine.bootstrap import bootstrap_store
from profile_engine.context import open_context
from profile_engine.db import Settings

OLD_TS = "2024-01-01T00:00:00+00:00"

CONTACT_INFO_DDL = """
CREATE TABLE contact_info (
    id INTEGER PRIMARY KEY,
    client_id INTEGER NOT NULL REFERENCES personal_details(client_id) ON DELETE CASCADE,
    email TEXT UNIQUE,
    phone VARCHAR(15)
)
"""

FAMILY_DETAILS_DDL = """
CREATE TABLE family_details (
    id INTEGER PRIMARY KEY,
    client_id INTEGER NOT NULL REFERENCES personal_details(client_id) ON DELETE CASCADE,
    relation TEXT NOT NULL,
    name TEXT,
    status TEXT,
    created_at TEXT,
    updated_at TEXT
)
"""


def run_sql(ctx, *statements, **params):
    with ctx.engine.begin() as conn:
        for stmt in statements:
            conn.execute(text(stmt), params)


def fetch_all(ctx, sql, **params):
    with ctx.engine.connect() as conn:
        return [dict(r._mapping) for r in conn.execute(text(sql), params)]


@pytest.fixture
def settings(tmp_path):
    return Settings(f"sqlite:///{tmp_path / 'profiles.db'}")


@pytest.fixture
def ctx(settings):
    c = open_context(settings)
    bootstrap_store(c)
    yield c
    c.close()


@pytest.fixture
def related_tables(ctx):
    run_sql(ctx, CONTACT_INFO_DDL, FAMILY_DETAILS_DDL)
    return ["contact_info", "family_details"]


@pytest.fixture
def add_client(ctx):
    def _add(client_id=1, first_name="Asha", last_name="Rao", **extra):
        row = {
            "client_id": client_id,
            "first_name": first_name,
            "last_name": last_name,
            "created_at": OLD_TS,
            "updated_at": OLD_TS,
            **extra,
        }
        cols = ", ".join(row)
        params = ", ".join(f":{k}" for k in row)
        run_sql(ctx, f"INSERT INTO personal_details ({cols}) VALUES ({params})", **row)
        return row
    return _add
