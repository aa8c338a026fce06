"""
Hearth - LAN home dashboard server

Holds the shared dashboard state, serves it to wall displays, pushes every
change to them over Server-Sent Events and accepts edits from paired
control clients. Calendar and weather are kept fresh by background syncs.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles

from hearth import __version__
from hearth.config import Config
from hearth.context import HearthContext
from hearth.routers import control_router, popups_router, public_router
from hearth.sync.calendar import make_calendar_job
from hearth.sync.scheduler import PeriodicSync
from hearth.sync.weather import make_weather_job

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_SECONDS = 20.0


def _mount_client(app: FastAPI, path: str, directory: Optional[str]) -> bool:
    """
    Serve a built client bundle under ``path`` if its directory exists.

    StaticFiles in html mode redirects ``path`` to ``path/`` itself.
    """
    if not directory or not os.path.isdir(directory):
        return False
    app.mount(path, StaticFiles(directory=directory, html=True), name=path.strip("/"))
    return True


def create_app(config: Optional[Config] = None) -> FastAPI:
    """Build the application; configuration defaults to the environment."""
    config = config or Config.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        # Startup: open storage, load identity, start syncs
        ctx = HearthContext.boot(config)
        client = httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)
        syncs = {
            "calendar": PeriodicSync(
                "calendar", make_calendar_job(ctx, client), config.sync_interval_seconds
            ),
            "weather": PeriodicSync(
                "weather", make_weather_job(ctx, client), config.sync_interval_seconds
            ),
        }
        app.state.context = ctx
        app.state.syncs = syncs

        if config.sync_enabled:
            for sync in syncs.values():
                sync.start()

        yield

        # Shutdown: stop syncs, end streams, release storage
        for sync in syncs.values():
            await sync.stop()
        await client.aclose()
        ctx.close()

    app = FastAPI(
        title="Hearth API",
        version=__version__,
        description="""
LAN home dashboard: shared state for wall displays, realtime pushes over
Server-Sent Events, and a paired control API.
        """,
        lifespan=lifespan,
    )
    app.state.config = config

    # Include routers
    app.include_router(public_router)
    app.include_router(control_router)
    app.include_router(popups_router)

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict:
        """Health check endpoint."""
        return {"status": "healthy"}

    has_display = _mount_client(app, "/display", config.display_dist)
    _mount_client(app, "/control", config.control_dist)

    if has_display:

        @app.get("/", include_in_schema=False)
        async def root() -> RedirectResponse:
            return RedirectResponse(url="/display/")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    config = app.state.config
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    uvicorn.run("hearth.main:app", host=config.host, port=config.port, reload=config.debug)
