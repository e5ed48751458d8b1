import asyncio
import logging
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from showcase.api.routes import health, projects, scrape
from showcase.core.config import Settings, get_settings
from showcase.core.db import DatabaseManager
from showcase.core.logging import setup_logging
from showcase.fetchers.screenshots import SCREENSHOT_PUBLIC_PREFIX
from showcase.workers.scrape_runner import ScrapeRunner, build_runner

LOGGER = logging.getLogger(__name__)


async def _scheduled_scrapes(runner: ScrapeRunner, interval_minutes: float) -> None:
    """Trigger a scrape every interval; the single-flight guard drops overlapping ticks."""
    while True:
        runner.trigger()
        await asyncio.sleep(interval_minutes * 60)


def create_app(
    settings: Settings | None = None,
    database: DatabaseManager | None = None,
    runner: ScrapeRunner | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings)
    database = database or DatabaseManager(settings.database_url)

    app = FastAPI(title=settings.app_name, version="0.1.0")
    app.state.settings = settings
    app.state.database = database
    app.state.runner = runner
    app.state.scheduler = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(scrape.router)
    app.include_router(projects.router)
    app.mount(
        f"/{SCREENSHOT_PUBLIC_PREFIX}",
        StaticFiles(directory=settings.screenshot_dir, check_dir=False),
        name=SCREENSHOT_PUBLIC_PREFIX,
    )

    @app.on_event("startup")
    async def on_startup() -> None:
        Path(settings.screenshot_dir).mkdir(parents=True, exist_ok=True)
        await database.init()
        await database.create_schema()
        if app.state.runner is None:
            app.state.runner = build_runner(settings, database)
        if settings.scrape_interval_minutes > 0:
            app.state.scheduler = asyncio.create_task(
                _scheduled_scrapes(app.state.runner, settings.scrape_interval_minutes)
            )
            LOGGER.info("Scheduled scrapes every %s minutes", settings.scrape_interval_minutes)
        LOGGER.info("Application startup complete (CORS allow_origins=%s)", settings.cors_origins)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        if app.state.scheduler is not None:
            app.state.scheduler.cancel()
            app.state.scheduler = None
        await app.state.runner.wait_idle()
        await database.dispose()
        LOGGER.info("Application shutdown complete")

    return app


app = create_app()


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run("showcase.api.main:app", host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
