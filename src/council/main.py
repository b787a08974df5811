"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from council.api.dashboard import router as dashboard_router
from council.api.events import router as events_router
from council.api.proposals import router as proposals_router
from council.api.provinces import router as provinces_router
from council.api.scribe import router as scribe_router
from council.config import Settings
from council.core.errors import CouncilError
from council.core.event_bus import EventBus
from council.core.provinces import load_provinces_file, seed_provinces
from council.db.engine import create_engine, get_session
from council.db.models import Base
from council.db.repository import Repository

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: create engine/tables, seed provinces, start the expiry sweep."""
    settings: Settings = app.state.settings
    engine = create_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    app.state.engine = engine
    app.state.event_bus = EventBus()

    seed = (
        load_provinces_file(settings.council_provinces_file)
        if settings.council_provinces_file
        else None
    )
    async with get_session(engine) as session:
        await seed_provinces(Repository(session), seed)

    # APScheduler sweep resolving proposals whose window closed without a ballot
    scheduler = None
    if settings.council_expiry_sweep_seconds > 0:
        from apscheduler.schedulers.asyncio import AsyncIOScheduler
        from apscheduler.triggers.interval import IntervalTrigger

        from council.core.scheduler_runner import tick_expiry

        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            tick_expiry,
            trigger=IntervalTrigger(seconds=settings.council_expiry_sweep_seconds),
            kwargs={
                "engine": engine,
                "event_bus": app.state.event_bus,
                "settings": settings,
            },
            id="tick_expiry",
            name="Resolve expired proposals",
            replace_existing=True,
        )
        scheduler.start()
        app.state.scheduler = scheduler
        logger.info("scheduler_started interval=%ds", settings.council_expiry_sweep_seconds)
    else:
        app.state.scheduler = None
        logger.info("scheduler_disabled")

    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")

    await engine.dispose()


async def _council_error_handler(request: Request, exc: CouncilError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("request_failed path=%s error=%s: %s", request.url.path, exc.kind, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": str(exc), "retryable": exc.retryable},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the Council FastAPI application."""
    settings = settings or Settings()

    logging.basicConfig(
        level=getattr(logging, settings.council_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title="Council",
        version="0.1.0",
        description="Proposal, amendment and weighted voting service for a provincial council",
        docs_url="/docs" if settings.council_env != "production" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.add_exception_handler(CouncilError, _council_error_handler)

    app.include_router(proposals_router)
    app.include_router(dashboard_router)
    app.include_router(scribe_router)
    app.include_router(provinces_router)
    app.include_router(events_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "env": settings.council_env}

    return app


app = create_app()


def run() -> None:
    """Serve the app with uvicorn on the configured bind address."""
    settings = Settings()
    uvicorn.run(
        "council.main:app",
        host=settings.council_host,
        port=settings.council_port,
        log_level=settings.council_log_level.lower(),
    )
