# profile_engine/context.py
from __future__ import annotations
import logging
from typing import Optional

from sqlalchemy.engine import Engine

from profile_engine.catalog import SchemaCatalog
from profile_engine.db import Settings, create_store_engine, get_settings
from profile_engine.overlay import MetadataOverlay
from profile_engine.validator import RecordValidator

logger = logging.getLogger(__name__)


class EngineContext:
    """
    Everything an operation needs, passed explicitly: settings, the store
    engine, the schema catalog, the metadata overlay (and its cache) and a
    validator bound to both.
    """

    def __init__(self, settings: Settings, engine: Optional[Engine] = None) -> None:
        self.settings = settings
        self.engine = engine or create_store_engine(settings)
        self.overlay = MetadataOverlay(self.engine, settings.METADATA_TABLE)
        self.catalog = SchemaCatalog(self.engine, settings, self.overlay)
        self.validator = RecordValidator(self.engine, self.catalog)
        self._closed = False

    def close(self) -> None:
        if self._closed:
            return
        self.overlay.invalidate()
        self.engine.dispose()
        self._closed = True
        logger.debug("Engine context closed (%s)", self.engine.url)

    def __enter__(self) -> "EngineContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def open_context(settings: Optional[Settings] = None, *, engine: Optional[Engine] = None) -> EngineContext:
    settings = settings or get_settings()
    ctx = EngineContext(settings, engine=engine)
    ctx.overlay.ensure_table()
    if settings.OVERLAY_SEED_PATH:
        ctx.overlay.load_overlay_file(settings.OVERLAY_SEED_PATH)
    logger.info("Engine context opened on %s", ctx.engine.url.render_as_string(hide_password=True))
    return ctx
