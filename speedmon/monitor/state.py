"""Resilience state shared between the monitor loop and health/shutdown callers."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class StateSnapshot:
    """Immutable copy of the resilience counters at one instant."""

    running: bool
    started_at: datetime
    last_test_at: datetime | None
    consecutive_failures: int
    circuit_open: bool
    circuit_reset_at: datetime | None


class ResilienceState:
    """Lock-guarded state container owned by one MonitorEngine.

    The probe loop is the only writer of the counters; `request_stop()` and
    `snapshot()` may be called from any thread.
    """

    def __init__(self, started_at: datetime) -> None:
        self._lock = threading.Lock()
        self._running = False
        self._stop_requested = False
        self._started_at = started_at
        self._last_test_at: datetime | None = None
        self._consecutive_failures = 0
        self._circuit_open = False
        self._circuit_reset_at: datetime | None = None

    # -- lifecycle -------------------------------------------------------------

    def request_stop(self) -> None:
        """Stop and keep a pending start from turning the loop back on."""
        with self._lock:
            self._stop_requested = True
            self._running = False

    def clear_stop_request(self) -> None:
        with self._lock:
            self._stop_requested = False

    def start_unless_stopped(self) -> bool:
        """Atomically start unless a stop was requested. Returns True if started."""
        with self._lock:
            if self._stop_requested:
                return False
            self._running = True
            return True

    @property
    def stop_requested(self) -> bool:
        with self._lock:
            return self._stop_requested

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    # -- transitions -----------------------------------------------------------

    def record_success(self, now: datetime) -> None:
        with self._lock:
            self._last_test_at = now
            self._consecutive_failures = 0

    def record_failure(self, now: datetime, threshold: int, open_for: timedelta) -> bool:
        """Count a failed cycle; open the circuit at the threshold.

        Returns True if this failure opened the circuit.
        """
        with self._lock:
            self._consecutive_failures += 1
            if self._consecutive_failures >= threshold and not self._circuit_open:
                self._circuit_open = True
                self._circuit_reset_at = now + open_for
                return True
            return False

    def try_close_circuit(self, now: datetime) -> bool:
        """Close an open circuit once its cooldown has passed.

        Returns True if the circuit is closed after the call.
        """
        with self._lock:
            if not self._circuit_open:
                return True
            if self._circuit_reset_at is not None and now < self._circuit_reset_at:
                return False
            self._circuit_open = False
            self._circuit_reset_at = None
            self._consecutive_failures = 0
            return True

    # -- reads -----------------------------------------------------------------

    def snapshot(self) -> StateSnapshot:
        with self._lock:
            return StateSnapshot(
                running=self._running,
                started_at=self._started_at,
                last_test_at=self._last_test_at,
                consecutive_failures=self._consecutive_failures,
                circuit_open=self._circuit_open,
                circuit_reset_at=self._circuit_reset_at,
            )
