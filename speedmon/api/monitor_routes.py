"""Monitor daemon routes — health + stored results.

Endpoints:
  GET /health          — health report derived from the resilience state
  GET /results/latest  — most recent speed test result
  GET /results         — recent results, newest first
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request

from ..errors import NotFoundError
from ..monitor.health import HealthReport

monitor_router = APIRouter()


@monitor_router.get("/health", response_model=HealthReport)
def health(request: Request) -> HealthReport:
    """Always 200; degraded/unhealthy states are reported in the body."""
    return request.app.state.engine.health()


@monitor_router.get("/results/latest")
def latest_result(request: Request) -> dict[str, Any]:
    result = request.app.state.store.latest()
    if result is None:
        raise NotFoundError("No speed test results recorded yet")
    return {"result": result.to_dict()}


@monitor_router.get("/results")
def list_results(
    request: Request,
    limit: int = Query(default=100, ge=1, le=1000),
) -> dict[str, Any]:
    results = request.app.state.store.history(limit=limit)
    return {"results": [r.to_dict() for r in results], "count": len(results)}
