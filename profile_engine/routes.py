# profile_engine/routes.py
#
# Thin HTTP adapter over the engine:
# - every handler delegates to a profile_engine operation
# - EngineError subclasses surface through the app-level handler in main.py,
#   mapped to a status code by ErrorKind (never by message text)

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from profile_engine import migrate, profiles, row_store
from profile_engine.context import EngineContext
from profile_engine.errors import ErrorKind, SchemaNotFound
from profile_engine.meta_models import ColumnMetadata, ColumnSpec, TableSchema, ValidationOutcome

logger = logging.getLogger(__name__)

STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.SCHEMA_NOT_FOUND: 404,
    ErrorKind.FIELD_VALIDATION: 400,
    ErrorKind.FOREIGN_KEY_VIOLATION: 400,
    ErrorKind.UNIQUE_VIOLATION: 409,
    ErrorKind.SCHEMA_MIGRATION_FAILURE: 500,
}

router = APIRouter(prefix="/api")


def get_context(request: Request) -> EngineContext:
    return request.app.state.ctx


# ------------------------------ request bodies --------------------------------

class CreateTableRequest(BaseModel):
    tableName: str
    columns: List[ColumnSpec]

class RenameColumnRequest(BaseModel):
    newName: str

class DropdownCheckRequest(BaseModel):
    value: Any = None


# ------------------------------ serialization ---------------------------------

def _schema_out(schema: TableSchema) -> Dict[str, Any]:
    data = schema.model_dump(mode="json")
    data["displayName"] = schema.displayName
    for col, out in zip(schema.columns, data["columns"]):
        out["displayName"] = col.displayName
    return data

def _outcome_out(outcome: ValidationOutcome) -> Dict[str, Any]:
    data = outcome.model_dump(mode="json")
    data["message"] = outcome.message
    return data


# ---------------------------------- tables ------------------------------------

@router.get("/tables", tags=["tables"])
def list_tables(ctx: EngineContext = Depends(get_context)):
    return {"tables": ctx.catalog.describe()}

@router.get("/tables/profile-related", tags=["tables"])
def profile_related_tables(ctx: EngineContext = Depends(get_context)):
    return {"tables": ctx.catalog.get_profile_related_tables()}

@router.get("/tables/{table}/exists", tags=["tables"])
def table_exists(table: str, ctx: EngineContext = Depends(get_context)):
    return {"table": table, "exists": ctx.catalog.table_exists(table)}

@router.get("/tables/{table}/schema", tags=["tables"])
def table_schema(table: str, ctx: EngineContext = Depends(get_context)):
    return _schema_out(row_store.require_schema(ctx, table))

@router.post("/tables", tags=["tables"], status_code=201)
def create_table(body: CreateTableRequest, ctx: EngineContext = Depends(get_context)):
    return _schema_out(migrate.create_table(ctx, body.tableName, body.columns))

@router.delete("/tables/{table}", tags=["tables"])
def drop_table(table: str, ctx: EngineContext = Depends(get_context)):
    migrate.drop_table(ctx, table)
    return {"table": table, "dropped": True}

@router.post("/tables/{table}/columns", tags=["tables"], status_code=201)
def add_column(table: str, body: ColumnSpec, ctx: EngineContext = Depends(get_context)):
    return _schema_out(migrate.add_column(ctx, table, body))

@router.put("/tables/{table}/columns/{column}", tags=["tables"])
def rename_column(table: str, column: str, body: RenameColumnRequest, ctx: EngineContext = Depends(get_context)):
    return _schema_out(migrate.rename_column(ctx, table, column, body.newName))

@router.delete("/tables/{table}/columns/{column}", tags=["tables"])
def drop_column(table: str, column: str, ctx: EngineContext = Depends(get_context)):
    return _schema_out(migrate.drop_column(ctx, table, column))

@router.post("/tables/{table}/validate", tags=["tables"])
def validate_record(table: str, record: Dict[str, Any] = Body(...), ctx: EngineContext = Depends(get_context)):
    schema = row_store.require_schema(ctx, table)
    return _outcome_out(ctx.validator.validate_record_data(record, schema))


# ----------------------------------- rows -------------------------------------

@router.get("/tables/{table}/rows", tags=["rows"])
def list_rows(
    table: str,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    ctx: EngineContext = Depends(get_context),
):
    items = row_store.list_rows(ctx, table, limit=limit, offset=offset)
    return {"items": items, "limit": limit, "offset": offset}

@router.post("/tables/{table}/rows", tags=["rows"], status_code=201)
def add_row(table: str, data: Dict[str, Any] = Body(...), ctx: EngineContext = Depends(get_context)):
    return row_store.add_row(ctx, table, data)

@router.put("/tables/{table}/rows/{row_id}", tags=["rows"])
def update_row(table: str, row_id: str, data: Dict[str, Any] = Body(...), ctx: EngineContext = Depends(get_context)):
    row = row_store.update_row(ctx, table, row_id, data)
    if row is None:
        raise HTTPException(status_code=404, detail=f"{table} row {row_id} not found")
    return row

@router.delete("/tables/{table}/rows/{row_id}", tags=["rows"])
def delete_row(table: str, row_id: str, ctx: EngineContext = Depends(get_context)):
    if not row_store.delete_row(ctx, table, row_id):
        raise HTTPException(status_code=404, detail=f"{table} row {row_id} not found")
    return {"deleted": True}


# --------------------------------- metadata -----------------------------------

@router.get("/metadata/{table}", tags=["metadata"])
def table_metadata(table: str, ctx: EngineContext = Depends(get_context)):
    row_store.require_schema(ctx, table)
    return {c: m.model_dump(mode="json") for c, m in ctx.overlay.list_for_table(table).items()}

@router.get("/metadata/{table}/dropdowns", tags=["metadata"])
def dropdown_options(table: str, ctx: EngineContext = Depends(get_context)):
    return ctx.overlay.dropdown_options(table)

@router.get("/metadata/{table}/{column}", tags=["metadata"])
def column_metadata(table: str, column: str, ctx: EngineContext = Depends(get_context)):
    meta = ctx.overlay.get_metadata(table, column)
    return (meta or ColumnMetadata()).model_dump(mode="json")

@router.put("/metadata/{table}/{column}", tags=["metadata"])
def put_column_metadata(table: str, column: str, body: ColumnMetadata, ctx: EngineContext = Depends(get_context)):
    schema = row_store.require_schema(ctx, table)
    if schema.column(column) is None:
        raise SchemaNotFound(table, column)
    return ctx.overlay.upsert_metadata(table, column, body).model_dump(mode="json")

@router.delete("/metadata/{table}/{column}", tags=["metadata"])
def delete_column_metadata(table: str, column: str, ctx: EngineContext = Depends(get_context)):
    return {"deleted": ctx.overlay.delete_metadata(table, column)}

@router.post("/metadata/{table}/{column}/check", tags=["metadata"])
def check_dropdown(table: str, column: str, body: DropdownCheckRequest, ctx: EngineContext = Depends(get_context)):
    return ctx.overlay.check_dropdown_value(table, column, body.value)


# --------------------------------- profiles -----------------------------------

@router.get("/profiles", tags=["profiles"])
def list_profiles(ctx: EngineContext = Depends(get_context)):
    return profiles.list_profiles(ctx)

@router.get("/profiles/{client_id}", tags=["profiles"])
def get_profile(client_id: int, ctx: EngineContext = Depends(get_context)):
    profile = profiles.build_complete_profile(ctx, client_id)
    if profile is None:
        raise HTTPException(status_code=404, detail=f"Profile {client_id} not found")
    return profile

@router.post("/profiles", tags=["profiles"], status_code=201)
def create_profile(profile: Dict[str, Any] = Body(...), ctx: EngineContext = Depends(get_context)):
    report = profiles.create_profile(ctx, profile)
    return {**report.model_dump(mode="json"), "message": report.message,
            "profile": profiles.build_complete_profile(ctx, report.clientId)}

@router.put("/profiles/{client_id}", tags=["profiles"])
def put_profile(client_id: int, profile: Dict[str, Any] = Body(...), ctx: EngineContext = Depends(get_context)):
    payload = {**profile, ctx.settings.IDENTIFIER_COLUMN: client_id}
    report = profiles.disassemble_and_store(ctx, payload)
    return {**report.model_dump(mode="json"), "message": report.message,
            "profile": profiles.build_complete_profile(ctx, client_id)}

@router.delete("/profiles/{client_id}", tags=["profiles"])
def delete_profile(client_id: int, ctx: EngineContext = Depends(get_context)):
    if not profiles.delete_profile(ctx, client_id):
        raise HTTPException(status_code=404, detail=f"Profile {client_id} not found")
    return {"deleted": True}

@router.get("/profiles/{client_id}/tables/{table}", tags=["profiles"])
def client_table_rows(client_id: int, table: str, ctx: EngineContext = Depends(get_context)):
    return {"items": profiles.get_client_table_rows(ctx, client_id, table)}
