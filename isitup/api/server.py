"""FastAPI server for the uptime monitor."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from isitup import __version__
from isitup.api.health_routes import health_router
from isitup.config import settings
from isitup.health.scheduler import MonitorScheduler, SchedulerConfig
from isitup.health.store import SQLiteStore
from isitup.notifications.discord import DiscordNotifier
from isitup.sites.registry import SiteRegistry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize shared resources on startup."""
    store = SQLiteStore(settings.db_path)
    app.state.store = store

    # Seed sites from the registry file, if present
    try:
        SiteRegistry(settings.sites_file).seed(store)
    except Exception:
        logger.exception("Failed to seed sites from %s", settings.sites_file)

    notifier = DiscordNotifier()
    scheduler = MonitorScheduler(
        store,
        store,
        notifier=notifier,
        config=SchedulerConfig.from_settings(),
        default_webhook_url=settings.discord_webhook_url,
    )
    app.state.scheduler = scheduler

    if settings.scheduler_enabled:
        try:
            await scheduler.start()
        except Exception:
            logger.exception("Monitor scheduler failed to start")
    else:
        logger.info("Scheduler disabled (SCHEDULER_ENABLED=false), on-demand checks only")

    yield

    # Shutdown
    await scheduler.stop()
    await notifier.close()
    store.close()


def create_app() -> FastAPI:
    app = FastAPI(
        title="isitup - Uptime Monitor",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router, prefix="/api")

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    return app


app = create_app()
