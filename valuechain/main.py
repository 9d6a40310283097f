from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from valuechain.api import deps
from valuechain.api.v1.router import api_router
from valuechain.config import APP_VERSION, settings
from valuechain.core.exceptions import ValueChainError, value_chain_error_handler
from valuechain.core.logging_config import configure_logging
from valuechain.core.metrics import app_info
from valuechain.database import engine
from valuechain.middleware.prometheus import PrometheusMiddleware
from valuechain.models import Base
from valuechain.services.entity_linker import HttpReferenceDirectory

logger = logging.getLogger(__name__)


def _run_alembic_stamp(alembic_cfg, revision):
    from alembic import command

    command.stamp(alembic_cfg, revision)


def _run_alembic_upgrade(alembic_cfg, revision):
    from alembic import command

    command.upgrade(alembic_cfg, revision)


async def _prepare_database() -> None:
    """Create or migrate the schema.

    A fresh database gets ``create_all`` and is stamped at head; an existing
    one is upgraded through Alembic.
    """
    from alembic.config import Config
    from sqlalchemy import inspect as sa_inspect

    alembic_cfg = Config("alembic.ini")

    if settings.RESET_DB:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        await asyncio.to_thread(_run_alembic_stamp, alembic_cfg, "head")
        return

    async with engine.connect() as conn:
        has_alembic = await conn.run_sync(
            lambda sync_conn: sa_inspect(sync_conn).has_table("alembic_version")
        )

    if not has_alembic:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await asyncio.to_thread(_run_alembic_stamp, alembic_cfg, "head")
    else:
        try:
            await asyncio.to_thread(_run_alembic_upgrade, alembic_cfg, "head")
        except Exception:
            logger.exception("Alembic migration failed")
            raise


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.ENVIRONMENT, settings.LOG_LEVEL)
    app_info.info({"version": APP_VERSION, "environment": settings.ENVIRONMENT})

    await _prepare_database()
    linker = deps.get_entity_linker()
    logger.info(
        "Value chain service %s started (link directories: %s)",
        APP_VERSION,
        ", ".join(k.value for k in linker.directories) or "none",
    )

    yield

    for directory in linker.directories.values():
        if isinstance(directory, HttpReferenceDirectory):
            await directory.close()
    await engine.dispose()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.ENVIRONMENT == "development" else None,
    redoc_url=None,
    openapi_url="/api/openapi.json" if settings.ENVIRONMENT == "development" else None,
)

app.add_exception_handler(ValueChainError, value_chain_error_handler)
app.add_middleware(PrometheusMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": APP_VERSION}


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
