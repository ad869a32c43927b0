"""Health reporter — derives an external status from a resilience snapshot."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from .state import StateSnapshot


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthReport(BaseModel):
    status: HealthStatus
    last_test_time: str | None
    consecutive_failures: int
    circuit_open: bool
    circuit_reset_at: str | None
    uptime: float  # seconds


def determine_status(snapshot: StateSnapshot) -> HealthStatus:
    if not snapshot.running or snapshot.circuit_open:
        return HealthStatus.UNHEALTHY
    if snapshot.consecutive_failures > 0:
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


def report_health(snapshot: StateSnapshot, now: datetime) -> HealthReport:
    """Build the health report. Pure: same snapshot, same report (bar uptime)."""
    return HealthReport(
        status=determine_status(snapshot),
        last_test_time=snapshot.last_test_at.isoformat() if snapshot.last_test_at else None,
        consecutive_failures=snapshot.consecutive_failures,
        circuit_open=snapshot.circuit_open,
        circuit_reset_at=snapshot.circuit_reset_at.isoformat() if snapshot.circuit_reset_at else None,
        uptime=round(max(0.0, (now - snapshot.started_at).total_seconds()), 3),
    )
