# profile_engine/main.py
from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from profile_engine.bootstrap import bootstrap_store
from profile_engine.context import open_context
from profile_engine.db import Settings, get_settings
from profile_engine.errors import EngineError
from profile_engine.routes import STATUS_BY_KIND, router

logger = logging.getLogger("profile_engine.main")

def _unique_op_id(route: APIRoute) -> str:
    method = next(iter(route.methods or {"GET"})).lower()
    tag = (route.tags[0] if route.tags else "default").lower().replace(" ", "_")
    name = (route.name or route.endpoint.__name__).lower().replace(" ", "_")
    return f"{tag}__{name}__{method}"

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx = open_context(settings)
        created = bootstrap_store(ctx)
        if created:
            logger.info("Bootstrapped tables: %s", ", ".join(created))
        app.state.ctx = ctx
        try:
            yield
        finally:
            ctx.close()

    app = FastAPI(
        title="Profile Engine",
        version="0.1.0",
        lifespan=lifespan,
        generate_unique_id_function=_unique_op_id,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten in prod
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(EngineError)
    async def _engine_error(request: Request, exc: EngineError):
        status = STATUS_BY_KIND.get(exc.kind, 500)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=status, content={"error": exc.to_dict()})

    app.include_router(router)

    @app.get("/healthz")
    def healthz(request: Request):
        try:
            with request.app.state.ctx.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return {"status": "ok"}
        except SQLAlchemyError as e:
            logger.error("Health check failed: %s", e)
            return JSONResponse(status_code=503, content={"status": "error", "detail": str(e)})

    return app

app = create_app()
