import pytest
from conftest import CONTACT_INFO_DDL, run_sql
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from profile_engine.main import create_app


@pytest.fixture
def client(settings):
    app = create_app(settings)
    with TestClient(app) as c:
        run_sql(app.state.ctx, CONTACT_INFO_DDL)
        yield c


PROFILE = {
    "client_id": 7,
    "personalInfo": {"fullName": "Asha Rao", "gender": "female", "bloodGroup": "b+"},
    "contactInfo": {"email": "asha@example.com", "phone": "9876543210"},
}


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


class _DownEngine:
    def connect(self):
        raise OperationalError("SELECT 1", {}, Exception("store is down"))


def test_healthz_reports_store_down(client, monkeypatch):
    monkeypatch.setattr(client.app.state.ctx, "engine", _DownEngine())
    r = client.get("/healthz")
    assert r.status_code == 503
    assert r.json()["status"] == "error"


def test_tables(client):
    tables = client.get("/api/tables").json()["tables"]
    assert [t["tableName"] for t in tables] == ["personal_details", "contact_info", "documents"]
    assert tables[1] == {"tableName": "contact_info", "displayName": "Contact Info", "isProfileTable": True}

    assert client.get("/api/tables/profile-related").json() == {"tables": ["contact_info"]}
    assert client.get("/api/tables/contact_info/exists").json()["exists"] is True
    assert client.get("/api/tables/column_metadata/exists").json()["exists"] is True

    schema = client.get("/api/tables/contact_info/schema").json()
    assert schema["displayName"] == "Contact Info"
    assert [c["name"] for c in schema["columns"]] == ["id", "client_id", "email", "phone"]


def test_unknown_table_is_404_with_kind(client):
    r = client.get("/api/tables/nowhere/schema")
    assert r.status_code == 404
    assert r.json()["error"]["kind"] == "SCHEMA_NOT_FOUND"


def test_profile_lifecycle(client):
    r = client.post("/api/profiles", json=PROFILE)
    assert r.status_code == 201
    body = r.json()
    assert body["created"] is True
    assert body["profile"]["personalInfo"]["bloodGroup"] == "B+"
    assert body["profile"]["contactInfo"]["email"] == "asha@example.com"

    again = client.post("/api/profiles", json=PROFILE)
    assert again.status_code == 409
    assert again.json()["error"]["kind"] == "UNIQUE_VIOLATION"

    profile = client.get("/api/profiles/7").json()
    profile["contactInfo"]["phone"] = "1234567890"
    updated = client.put("/api/profiles/7", json=profile).json()
    assert updated["profile"]["contactInfo"]["phone"] == "1234567890"

    assert [p["id"] for p in client.get("/api/profiles").json()] == ["7"]
    assert client.get("/api/profiles/7/tables/contact_info").json()["items"][0]["client_id"] == 7

    assert client.delete("/api/profiles/7").json() == {"deleted": True}
    assert client.get("/api/profiles/7").status_code == 404
    assert client.delete("/api/profiles/7").status_code == 404


def test_bad_profile_id_is_400(client):
    r = client.post("/api/profiles", json={"personalInfo": {"fullName": "No Id"}})
    assert r.status_code == 400
    assert r.json()["error"]["kind"] == "FIELD_VALIDATION"


def test_validate_endpoint(client):
    r = client.post("/api/tables/contact_info/validate", json={"client_id": 3, "phone": "x" * 20})
    assert r.status_code == 200
    body = r.json()
    assert body["isValid"] is False
    assert {e["kind"] for e in body["errors"]} == {"FOREIGN_KEY_VIOLATION", "FIELD_VALIDATION"}
    assert body["message"].startswith("Errors in Contact Info:")


def test_row_endpoints(client):
    client.post("/api/profiles", json={"client_id": 1, "personalInfo": {"fullName": "Asha Rao"}})

    created = client.post("/api/tables/contact_info/rows", json={"client_id": 1, "email": "a@b.com"})
    assert created.status_code == 201
    row_id = created.json()["id"]

    dup = client.post("/api/tables/contact_info/rows", json={"client_id": 1, "email": "a@b.com"})
    assert dup.status_code == 400
    assert dup.json()["error"]["errors"][0]["kind"] == "UNIQUE_VIOLATION"

    assert client.put(f"/api/tables/contact_info/rows/{row_id}", json={"phone": "42"}).json()["phone"] == "42"
    assert client.put("/api/tables/contact_info/rows/999", json={"phone": "42"}).status_code == 404
    assert len(client.get("/api/tables/contact_info/rows").json()["items"]) == 1
    assert client.delete(f"/api/tables/contact_info/rows/{row_id}").json() == {"deleted": True}


def test_store_constraint_clash_is_409(client):
    run_sql(
        client.app.state.ctx,
        "CREATE TABLE phones (id INTEGER PRIMARY KEY, client_id INTEGER, kind TEXT, UNIQUE (client_id, kind))",
    )
    row = {"client_id": 1, "kind": "home"}
    assert client.post("/api/tables/phones/rows", json=row).status_code == 201

    clash = client.post("/api/tables/phones/rows", json=row)
    assert clash.status_code == 409
    assert clash.json()["error"]["kind"] == "UNIQUE_VIOLATION"


def test_table_and_column_operations(client):
    r = client.post("/api/tables", json={
        "tableName": "education",
        "columns": [
            {"columnName": "client_id", "dataType": "INTEGER",
             "foreignKey": {"referencedTable": "personal_details", "referencedColumn": "client_id"}},
            {"columnName": "degree", "dataType": "VARCHAR", "length": 50},
        ],
    })
    assert r.status_code == 201
    assert [c["name"] for c in r.json()["columns"]] == ["id", "client_id", "degree"]

    added = client.post("/api/tables/education/columns", json={"columnName": "year", "dataType": "INTEGER"})
    assert added.status_code == 201
    renamed = client.put("/api/tables/education/columns/year", json={"newName": "Passing Year"}).json()
    assert "passing_year" in [c["name"] for c in renamed["columns"]]
    dropped = client.delete("/api/tables/education/columns/passing_year").json()
    assert "passing_year" not in [c["name"] for c in dropped["columns"]]

    assert client.delete("/api/tables/education").json() == {"table": "education", "dropped": True}


def test_dropping_the_root_table_is_a_migration_failure(client):
    r = client.delete("/api/tables/personal_details")
    assert r.status_code == 500
    assert r.json()["error"]["kind"] == "SCHEMA_MIGRATION_FAILURE"


def test_metadata_endpoints(client):
    r = client.put("/api/metadata/contact_info/email", json={"isEmail": True, "maxLength": 40})
    assert r.status_code == 200
    assert client.get("/api/metadata/contact_info/email").json()["isEmail"] is True
    assert set(client.get("/api/metadata/contact_info").json()) == {"email"}

    client.put("/api/metadata/contact_info/phone", json={"hasDropdown": True, "dropdownOptions": ["home", "work"]})
    assert client.get("/api/metadata/contact_info/dropdowns").json() == {"phone": ["home", "work"]}
    check = client.post("/api/metadata/contact_info/phone/check", json={"value": "WORK"}).json()
    assert check["isValid"] is True

    assert client.put("/api/metadata/contact_info/fax", json={}).status_code == 404
    assert client.delete("/api/metadata/contact_info/email").json() == {"deleted": 1}
    assert client.get("/api/metadata/contact_info/email").json()["isEmail"] is False
