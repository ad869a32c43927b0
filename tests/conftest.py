"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from speedmon.config import Settings, load_settings
from speedmon.monitor.engine import MonitorEngine
from speedmon.probe.executor import ProbeExecutionError
from speedmon.probe.models import ConnectionQuality, NetworkType, ProbeResult
from speedmon.store import MetricsStore


class FakeClock:
    """Manually advanced clock whose sleep() just moves time forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


class FakeProbe:
    """Probe that replays scripted outcomes; the last one repeats."""

    def __init__(self, outcomes: Iterable[ProbeResult | Exception]) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    async def execute(self) -> ProbeResult:
        outcome = self.outcomes[min(self.calls, len(self.outcomes) - 1)]
        self.calls += 1
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_result(**overrides) -> ProbeResult:
    fields = {
        "ping_ms": 12.5,
        "download_mbps": 250.0,
        "upload_mbps": 40.0,
        "jitter_ms": 1.2,
        "packet_loss_pct": 0.0,
        "network_ssid": "eth0",
        "network_type": NetworkType.ETHERNET,
        "ip_address": "203.0.113.7",
        "server_id": "1234",
        "server_location": "Amsterdam, Netherlands",
        "isp": "Example ISP",
        "connection_quality": ConnectionQuality.EXCELLENT,
        "device_name": "probe-host",
    }
    fields.update(overrides)
    return ProbeResult(**fields)


def probe_failure(message: str = "Speedtest failed with exit code 1: boom") -> ProbeExecutionError:
    return ProbeExecutionError(message)


@pytest.fixture
def settings() -> Settings:
    return load_settings(
        interval=60_000,
        max_retries=2,
        backoff_delay=100,
        max_backoff_delay=1_000,
        circuit_breaker_threshold=3,
        circuit_breaker_timeout=1_000,
        probe_timeout=1_000,
    )


@pytest.fixture
def store(tmp_path: Path) -> Iterator[MetricsStore]:
    s = MetricsStore(tmp_path / "test_speedtest.db")
    yield s
    s.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_engine(settings: Settings, store: MetricsStore, clock: FakeClock):
    """Factory for an engine wired to the fake clock and the tmp store."""

    def _make(probe: FakeProbe, **setting_overrides) -> MonitorEngine:
        cfg = settings.model_copy(update=setting_overrides) if setting_overrides else settings
        engine = MonitorEngine(cfg, probe, store, clock=clock, sleep=clock.sleep)
        engine.state.start_unless_stopped()
        return engine

    return _make
