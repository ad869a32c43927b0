"""Monitor subsystem — scheduling loop, resilience state, health reporting."""

from .engine import MonitorEngine, backoff_for_attempt
from .health import HealthReport, HealthStatus, report_health
from .state import ResilienceState, StateSnapshot
