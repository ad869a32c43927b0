"""Management API application — systemd control of the monitor service."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .. import __version__
from ..services.systemd import SystemdService
from ..store import MetricsStore
from .errors import install_error_handlers
from .monitor_routes import latest_result, list_results
from .service_routes import service_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "Management API ready for unit %s (db=%s)",
        app.state.systemd.service_name,
        app.state.store.path,
    )

    yield

    app.state.store.close()


def create_management_app(systemd: SystemdService, store: MetricsStore) -> FastAPI:
    """Create the management API app."""
    app = FastAPI(
        title="speedmon — Management API",
        version=__version__,
        description="Local API for managing the network monitoring service",
        lifespan=lifespan,
    )
    app.state.systemd = systemd
    app.state.store = store

    install_error_handlers(app)
    app.include_router(service_router)
    # Read-only access to stored results (written by the monitor daemon)
    app.add_api_route("/results/latest", latest_result, methods=["GET"])
    app.add_api_route("/results", list_results, methods=["GET"])

    return app
