from __future__ import annotations

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import uuid4

import sqlalchemy as sa
import structlog
from fastapi import APIRouter, Depends, FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from db.seed import seed_all
from services.seeder.app import observability
from services.seeder.app.db import create_engine, get_engine
from services.seeder.app.logging import configure_logging, logger
from services.seeder.app.schemas import HealthResponse, SeedErrorResponse, SeedResponse
from services.seeder.app.settings import SETTINGS, SeederSettings


SEED_SUCCESS_MESSAGE = "Database seeded successfully"

router = APIRouter()


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


@router.get("/healthz", response_model=HealthResponse)
async def healthz(engine: AsyncEngine = Depends(get_engine)) -> HealthResponse:
    async with engine.connect() as conn:
        await conn.execute(sa.text("SELECT 1"))
    return HealthResponse(ok=True)


async def _run_seed(engine: AsyncEngine) -> SeedResponse | JSONResponse:
    start = time.perf_counter()
    try:
        result = await seed_all(engine)
    except Exception as e:
        # Every failure kind (extension, DDL, insert, commit) surfaces the same way.
        elapsed_ms = _elapsed_ms(start)
        observability.record_seed_run("failure", elapsed_ms)
        logger.exception("seed_failed", error=str(e), elapsed_ms=elapsed_ms)
        return JSONResponse(status_code=500, content=SeedErrorResponse(error=str(e)).model_dump())

    elapsed_ms = _elapsed_ms(start)
    observability.record_seed_run("success", elapsed_ms, result.inserted)
    logger.info("seed_finished", elapsed_ms=elapsed_ms, inserted=result.inserted, counts=result.counts)
    return SeedResponse(message=SEED_SUCCESS_MESSAGE)


@router.get("/seed", response_model=SeedResponse, responses={500: {"model": SeedErrorResponse}})
async def seed_database(engine: AsyncEngine = Depends(get_engine)) -> SeedResponse | JSONResponse:
    # Events logged by db.seed during this run carry the same id.
    with structlog.contextvars.bound_contextvars(seed_run_id=uuid4().hex):
        return await _run_seed(engine)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await app.state.engine.dispose()


def create_app(settings: SeederSettings = SETTINGS) -> FastAPI:
    configure_logging(settings.log_level)
    app = FastAPI(title="Dashboard Seeder API", version="0.1.0", lifespan=_lifespan)
    app.state.engine = create_engine(settings)
    if settings.tracing_enabled:
        observability.setup_tracing(app, service_name="seeder")
        observability.instrument_sqlalchemy(app.state.engine)
    observability.add_metrics_middleware(app, service_name="seeder")
    app.include_router(router)
    return app


app = create_app()
