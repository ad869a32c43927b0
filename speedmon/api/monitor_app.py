"""Monitor daemon application — runs the probe loop + serves health/results."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .. import __version__
from ..monitor.engine import MonitorEngine
from ..store import MetricsStore
from .errors import install_error_handlers
from .monitor_routes import monitor_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the monitor loop on startup; stop it and close the store on shutdown."""
    engine: MonitorEngine = app.state.engine
    store: MetricsStore = app.state.store

    await engine.start()

    yield

    # Loop exits at its next poll point; in-flight probes finish first
    await engine.stop()
    store.close()
    logger.info("Database closed")


def create_monitor_app(engine: MonitorEngine, store: MetricsStore) -> FastAPI:
    """Create the monitor daemon app around an already-built engine and store."""
    app = FastAPI(
        title="speedmon — Network Monitor",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine
    app.state.store = store

    install_error_handlers(app)
    app.include_router(monitor_router)

    return app
