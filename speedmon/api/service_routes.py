"""Service management routes — thin passthrough to systemd.

Endpoints:
  GET  /services/status   — current unit state
  POST /services/start    — start the unit
  POST /services/stop     — stop the unit
  POST /services/restart  — restart the unit
  GET  /services/logs     — last 100 management actions
  GET  /services/config   — installed unit file, parsed into sections

Handlers are sync so the blocking systemctl calls run in FastAPI's threadpool.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from fastapi import APIRouter, Request

from ..services.systemd import ServiceStatus, SystemdService

logger = logging.getLogger(__name__)

service_router = APIRouter(prefix="/services", tags=["services"])


def _record(request: Request, action: str, status: ServiceStatus) -> None:
    store = request.app.state.store
    try:
        store.log_service_action(status.name, action, status.active_state or "unknown")
    except sqlite3.Error:
        logger.exception("Failed to record service action: %s", action)


def _run_action(request: Request, action: str) -> dict[str, Any]:
    systemd: SystemdService = request.app.state.systemd
    status = getattr(systemd, action)()
    _record(request, action, status)
    logger.info("Service %s: %s → %s", action, status.name, status.active_state)
    return {"status": status.to_dict()}


@service_router.get("/status")
def service_status(request: Request) -> dict[str, Any]:
    systemd: SystemdService = request.app.state.systemd
    return {"status": systemd.get_status().to_dict()}


@service_router.post("/start")
def start_service(request: Request) -> dict[str, Any]:
    return _run_action(request, "start")


@service_router.post("/stop")
def stop_service(request: Request) -> dict[str, Any]:
    return _run_action(request, "stop")


@service_router.post("/restart")
def restart_service(request: Request) -> dict[str, Any]:
    return _run_action(request, "restart")


@service_router.get("/logs")
def service_logs(request: Request) -> dict[str, Any]:
    systemd: SystemdService = request.app.state.systemd
    logs = request.app.state.store.service_logs(systemd.service_name, limit=100)
    return {"logs": logs}


@service_router.get("/config")
def service_config(request: Request) -> dict[str, Any]:
    return {"config": request.app.state.systemd.read_config()}
