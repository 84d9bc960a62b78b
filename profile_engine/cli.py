# profile_engine/cli.py
import json
import logging
from typing import Optional

import typer

from profile_engine import migrate
from profile_engine.bootstrap import bootstrap_store
from profile_engine.context import EngineContext, open_context
from profile_engine.db import get_settings
from profile_engine.errors import EngineError
from profile_engine.meta_models import ColumnSpec, DataType
from profile_engine.overlay import InvalidOverlayFile
from profile_engine.profiles import build_complete_profile

app = typer.Typer(help="Profile Engine admin CLI")

# ---------------------------
# Core utilities
# ---------------------------
def _context() -> EngineContext:
    settings = get_settings()
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))
    return open_context(settings)

def _fail(message: str, code: int = 1) -> None:
    typer.echo(f"❌ {message}", err=True)
    raise typer.Exit(code=code)

# ---------------------------
# Commands
# ---------------------------
@app.command(help="Create the root, document and metadata tables when missing.")
def init():
    with _context() as ctx:
        created = bootstrap_store(ctx)
    if created:
        typer.echo(f"✅ Created: {', '.join(created)}")
    else:
        typer.echo("✅ Store already initialised.")

@app.command(help="List tables in display order.")
def tables():
    with _context() as ctx:
        for t in ctx.catalog.describe():
            marker = "*" if t["isProfileTable"] else " "
            typer.echo(f"{marker} {t['tableName']}  ({t['displayName']})")

@app.command(help="Print a table's columns and constraints.")
def schema(table: str = typer.Argument(..., help="Table name")):
    with _context() as ctx:
        s = ctx.catalog.get_table_schema(table)
        if s is None:
            _fail(f"Table '{table}' does not exist", code=2)
        typer.echo(f"{s.displayName} ({s.tableName})")
        for c in s.columns:
            flags = []
            if c.primaryKey:
                flags.append("PK")
            if c.foreignKey:
                flags.append(f"-> {c.foreignKey.referencedTable}.{c.foreignKey.referencedColumn}")
            flags.extend(c.constraints)
            typer.echo(f"  - {c.name} {c.type or '?'} {' '.join(flags)}".rstrip())

@app.command(help="Print the assembled profile for a client as JSON.")
def profile(client_id: int = typer.Argument(..., help="Client identifier")):
    with _context() as ctx:
        p = build_complete_profile(ctx, client_id)
    if p is None:
        _fail(f"Profile {client_id} not found", code=2)
    typer.echo(json.dumps(p, indent=2, default=str))

@app.command("load-overlay", help="Upsert column constraints from a JSON seed file.")
def load_overlay(path: str = typer.Argument(..., help="Seed file path")):
    with _context() as ctx:
        try:
            applied = ctx.overlay.load_overlay_file(path)
        except InvalidOverlayFile as e:
            _fail(str(e))
    typer.echo(f"✅ Applied {applied} overlay entr{'y' if applied == 1 else 'ies'}.")

@app.command("add-column", help="Add a column (table rebuild).")
def add_column(
    table: str,
    column: str,
    data_type: DataType = typer.Option(DataType.TEXT, "--type", help="Column data type"),
    length: Optional[int] = typer.Option(None, help="Length for VARCHAR"),
    nullable: bool = typer.Option(True, "--nullable/--not-null"),
):
    spec = ColumnSpec(columnName=column, dataType=data_type, length=length, isNullable=nullable)
    with _context() as ctx:
        try:
            migrate.add_column(ctx, table, spec)
        except EngineError as e:
            _fail(e.message)
    typer.echo(f"✅ Added {table}.{column}")

@app.command("rename-column", help="Rename a column (table rebuild).")
def rename_column(table: str, old: str, new: str):
    with _context() as ctx:
        try:
            s = migrate.rename_column(ctx, table, old, new)
        except EngineError as e:
            _fail(e.message)
    typer.echo(f"✅ Renamed {table}.{old} -> {migrate.sanitize_column_name(new)} ({len(s.columns)} columns)")

@app.command("drop-column", help="Drop a column (table rebuild).")
def drop_column(table: str, column: str):
    with _context() as ctx:
        try:
            migrate.drop_column(ctx, table, column)
        except EngineError as e:
            _fail(e.message)
    typer.echo(f"✅ Dropped {table}.{column}")

if __name__ == "__main__":
    app()
