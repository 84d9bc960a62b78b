# profile_engine/db.py
from __future__ import annotations
import os
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from dotenv import load_dotenv

load_dotenv()

class Settings:
    DATABASE_URL: str
    LOG_LEVEL: str
    ROOT_TABLE: str
    IDENTIFIER_COLUMN: str
    DOCUMENT_TABLE: str
    METADATA_TABLE: str
    OVERLAY_SEED_PATH: Optional[str]

    def __init__(
        self,
        database_url: Optional[str] = None,
        *,
        root_table: Optional[str] = None,
        identifier_column: Optional[str] = None,
        document_table: Optional[str] = None,
        metadata_table: Optional[str] = None,
        overlay_seed_path: Optional[str] = None,
        log_level: Optional[str] = None,
    ) -> None:
        self.DATABASE_URL = database_url or os.getenv("DATABASE_URL", "sqlite:///./profiles.db")
        self.LOG_LEVEL = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
        self.ROOT_TABLE = root_table or os.getenv("ROOT_TABLE", "personal_details")
        self.IDENTIFIER_COLUMN = identifier_column or os.getenv("IDENTIFIER_COLUMN", "client_id")
        self.DOCUMENT_TABLE = document_table or os.getenv("DOCUMENT_TABLE", "documents")
        self.METADATA_TABLE = metadata_table or os.getenv("METADATA_TABLE", "column_metadata")
        self.OVERLAY_SEED_PATH = overlay_seed_path or os.getenv("OVERLAY_SEED_PATH") or None

def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")

@lru_cache
def get_settings() -> Settings:
    return Settings()

def _enable_sqlite_transactional_ddl(engine: Engine) -> None:
    """
    pysqlite only opens a transaction before DML, so CREATE/DROP/ALTER issued
    first in a block would autocommit. Take BEGIN over from the driver so a
    table rebuild inside engine.begin() rolls back as one unit.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

def create_store_engine(settings: Settings) -> Engine:
    engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, future=True)
    if engine.dialect.name == "sqlite":
        _enable_sqlite_transactional_ddl(engine)
    return engine
