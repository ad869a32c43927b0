"""Monitor engine — interval scheduling, retry with backoff, circuit breaker.

Two failure layers at different timescales:
- within one probe cycle, a failed probe is retried up to `max_retries`
  times with exponential backoff (5s → 10s → 20s … capped);
- across cycles, `circuit_breaker_threshold` consecutive failed cycles open
  the circuit and suspend probing for `circuit_breaker_timeout`.

The loop polls in steps of at most 5 seconds, so a probe may start up to
5 seconds after its interval elapses.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Protocol

from ..config import RETENTION_DAYS, Settings
from ..probe.executor import ProbeError
from ..probe.models import ProbeResult
from ..store import MetricsStore
from .health import HealthReport, report_health
from .state import ResilienceState

logger = logging.getLogger(__name__)

# Longest single sleep between state checks (seconds)
POLL_INTERVAL = 5.0

Clock = Callable[[], datetime]
Sleeper = Callable[[float], Awaitable[None]]


class Probe(Protocol):
    """Anything that can produce one measurement."""

    async def execute(self) -> ProbeResult:
        ...


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def backoff_for_attempt(attempt: int, base_ms: int, max_ms: int) -> int:
    """Delay before retry `attempt` (1-indexed): base * 2^(attempt-1), capped."""
    if attempt < 1:
        raise ValueError("attempt is 1-indexed")
    return min(base_ms * 2 ** (attempt - 1), max_ms)


class MonitorEngine:
    """Drives periodic probes and owns the resilience state.

    Lifecycle:
        engine = MonitorEngine(settings, ProbeExecutor(...), store)
        await engine.start()
        ...
        await engine.stop()
    """

    def __init__(
        self,
        settings: Settings,
        probe: Probe,
        store: MetricsStore | None,
        clock: Clock = utc_now,
        sleep: Sleeper | None = None,
    ) -> None:
        self.settings = settings
        self.probe = probe
        self.store = store
        self._clock = clock
        self._sleeper = sleep  # test hook; default waits on the stop event
        self.state = ResilienceState(started_at=clock())
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    # -- public API ------------------------------------------------------------

    async def start(self) -> None:
        """Start the monitor loop as a background task."""
        if self._task is not None and not self._task.done():
            return
        # A previous stop() must not end the new loop immediately
        self.state.clear_stop_request()
        self._stop_event = None
        self._task = asyncio.create_task(self.run(), name="speedmon-monitor")
        logger.info(
            "Monitor started (interval=%dms, retries=%d, breaker=%d/%dms)",
            self.settings.interval,
            self.settings.max_retries,
            self.settings.circuit_breaker_threshold,
            self.settings.circuit_breaker_timeout,
        )

    async def stop(self) -> None:
        """Request shutdown and wait for the loop to reach a poll point."""
        self.request_shutdown()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Monitor stopped")

    def request_shutdown(self) -> None:
        """Ask the loop to exit. Safe to call from any thread or a signal handler."""
        self.state.request_stop()
        loop, event = self._loop, self._stop_event
        if loop is not None and event is not None and not loop.is_closed():
            loop.call_soon_threadsafe(event.set)

    def health(self) -> HealthReport:
        return report_health(self.state.snapshot(), self._clock())

    # -- loop ------------------------------------------------------------------

    async def run(self) -> None:
        """Run until shutdown is requested."""
        self._bind_loop()
        if not self.state.start_unless_stopped():
            return

        while self.state.running:
            try:
                await self.tick()
            except Exception:
                logger.exception("Error in monitor loop")
                self.record_failure()
                await self._sleep(POLL_INTERVAL)

        logger.debug("Monitor loop exited")

    async def tick(self) -> bool:
        """One pass of the main loop. Returns True if a probe cycle ran."""
        now = self._clock()
        snapshot = self.state.snapshot()

        if snapshot.circuit_open:
            if not self.state.try_close_circuit(now):
                remaining = (snapshot.circuit_reset_at - now).total_seconds()
                await self._sleep(min(POLL_INTERVAL, remaining))
                return False
            logger.info("Circuit breaker reset — resuming probes")
            snapshot = self.state.snapshot()

        if snapshot.last_test_at is not None:
            elapsed_ms = (now - snapshot.last_test_at).total_seconds() * 1000
            if elapsed_ms < self.settings.interval:
                remaining = (self.settings.interval - elapsed_ms) / 1000
                await self._sleep(min(POLL_INTERVAL, remaining))
                return False

        await self.run_cycle()
        self._prune()
        return True

    async def run_cycle(self) -> bool:
        """One scheduled probe including retries. Returns True on success."""
        attempt = 0
        while True:
            try:
                result = await self.probe.execute()
            except ProbeError as e:
                attempt += 1
                if attempt > self.settings.max_retries:
                    logger.error("Probe cycle failed after %d attempts: %s", attempt, e)
                    self.record_failure()
                    return False

                delay_ms = backoff_for_attempt(
                    attempt, self.settings.backoff_delay, self.settings.max_backoff_delay,
                )
                logger.warning(
                    "Probe attempt %d failed (%s): %s — retrying in %dms",
                    attempt, e.kind.value, e, delay_ms,
                )
                await self._sleep(delay_ms / 1000)
                if not self.state.running:
                    logger.info("Shutdown requested — abandoning probe cycle")
                    return False
                continue

            self._persist(result)
            self.state.record_success(self._clock())
            logger.info(
                "Speed test completed: %.1f/%.1f Mbps, ping %.1fms (%s)",
                result.download_mbps, result.upload_mbps, result.ping_ms,
                result.connection_quality.value,
            )
            return True

    def record_failure(self) -> None:
        """Count a failed cycle toward the circuit breaker."""
        opened = self.state.record_failure(
            self._clock(),
            threshold=self.settings.circuit_breaker_threshold,
            open_for=timedelta(milliseconds=self.settings.circuit_breaker_timeout),
        )
        snapshot = self.state.snapshot()
        logger.error("Speed test failed. Consecutive failures: %d", snapshot.consecutive_failures)
        if opened:
            logger.error(
                "Circuit breaker triggered. Pausing tests until %s",
                snapshot.circuit_reset_at.isoformat() if snapshot.circuit_reset_at else "?",
            )

    # -- helpers ---------------------------------------------------------------

    def _persist(self, result: ProbeResult) -> None:
        # Store errors never count toward the circuit breaker
        if self.store is None:
            return
        try:
            self.store.insert(result)
        except sqlite3.Error:
            logger.exception("Failed to store speed test result")

    def _prune(self) -> None:
        if self.store is None:
            return
        try:
            removed = self.store.prune(RETENTION_DAYS)
            if removed:
                logger.debug("Pruned %d results older than %d days", removed, RETENTION_DAYS)
        except sqlite3.Error:
            logger.exception("Failed to prune old results")

    def _bind_loop(self) -> None:
        loop = asyncio.get_running_loop()
        if self._loop is not loop or self._stop_event is None:
            self._loop = loop
            self._stop_event = asyncio.Event()
            if self.state.stop_requested:
                self._stop_event.set()

    async def _sleep(self, seconds: float) -> None:
        seconds = max(0.0, seconds)
        if self._sleeper is not None:
            await self._sleeper(seconds)
            return
        self._bind_loop()
        assert self._stop_event is not None
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
