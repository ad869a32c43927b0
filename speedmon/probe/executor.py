"""Probe executor — runs the Ookla speedtest CLI and normalizes its output.

The binary is invoked as `<binary> --format=json` with a hard timeout.
Parsing, quality classification and network-type detection are pure
functions so they can be exercised without a subprocess.
"""

from __future__ import annotations

import asyncio
import json
import logging
import socket
from collections.abc import Iterable
from enum import Enum
from typing import Any

from .models import ConnectionQuality, NetworkType, ProbeResult

logger = logging.getLogger(__name__)

# Interface-name keywords, in priority order
_NETWORK_KEYWORDS: tuple[tuple[NetworkType, tuple[str, ...]], ...] = (
    (NetworkType.WIFI, ("wlan", "wifi")),
    (NetworkType.ETHERNET, ("eth", "enp")),
    (NetworkType.CELLULAR, ("wwan", "cellular")),
)

# (quality, max ping ms, max jitter ms, max packet loss %), exclusive bounds
_QUALITY_TIERS: tuple[tuple[ConnectionQuality, float, float, float], ...] = (
    (ConnectionQuality.EXCELLENT, 20, 5, 0.1),
    (ConnectionQuality.GOOD, 50, 15, 1),
    (ConnectionQuality.FAIR, 100, 30, 2.5),
)

_MEASUREMENT_KEYS = ("ping", "download", "upload")


# ── Errors ───────────────────────────────────────────────────────────────────


class ProbeErrorKind(str, Enum):
    EXECUTION_FAILED = "execution_failed"
    TIMEOUT = "timeout"
    PARSE_ERROR = "parse_error"
    INCOMPLETE_DATA = "incomplete_data"


class ProbeError(Exception):
    """Base class for a failed probe run."""

    kind: ProbeErrorKind = ProbeErrorKind.EXECUTION_FAILED

    def __init__(self, message: str, output: str = "") -> None:
        self.output = output
        super().__init__(message)


class ProbeExecutionError(ProbeError):
    """The probe binary could not be run or exited non-zero."""

    kind = ProbeErrorKind.EXECUTION_FAILED


class ProbeTimeoutError(ProbeError):
    """The probe binary did not finish within the timeout."""

    kind = ProbeErrorKind.TIMEOUT


class ProbeParseError(ProbeError):
    """The probe output was empty or not a JSON object."""

    kind = ProbeErrorKind.PARSE_ERROR


class ProbeIncompleteDataError(ProbeError):
    """The probe output parsed but carried no measurement at all."""

    kind = ProbeErrorKind.INCOMPLETE_DATA


# ── Pure helpers ─────────────────────────────────────────────────────────────


def classify_connection(ping_ms: float, jitter_ms: float, packet_loss_pct: float) -> ConnectionQuality:
    """Rate a connection; the first tier whose bounds all hold wins."""
    for quality, max_ping, max_jitter, max_loss in _QUALITY_TIERS:
        if ping_ms < max_ping and jitter_ms < max_jitter and packet_loss_pct < max_loss:
            return quality
    return ConnectionQuality.POOR


def detect_network_type(interface_names: Iterable[str]) -> NetworkType:
    """Guess the link type from local interface names ("lo", "wlan0", …).

    Categories are checked in a fixed priority (wifi, ethernet, cellular),
    so the enumeration order of the interfaces never changes the answer.
    """
    lowered = [name.lower() for name in interface_names]
    for network_type, keywords in _NETWORK_KEYWORDS:
        if any(k in name for name in lowered for k in keywords):
            return network_type
    return NetworkType.UNKNOWN


def local_interface_names() -> list[str]:
    """Names of the host's network interfaces, empty if unavailable."""
    try:
        return [name for _, name in socket.if_nameindex()]
    except OSError:
        logger.debug("Interface enumeration unavailable", exc_info=True)
        return []


def bandwidth_to_mbps(bytes_per_sec: float | None) -> float:
    if not bytes_per_sec:
        return 0.0
    return bytes_per_sec * 8 / 1e6


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def parse_probe_output(
    output: str,
    network_type: NetworkType = NetworkType.UNKNOWN,
    device_name: str = "unknown",
) -> ProbeResult:
    """Turn the probe's JSON document into a ProbeResult.

    Absent optional fields fall back to 0 / "unknown". Raises
    ProbeParseError for empty or malformed output and
    ProbeIncompleteDataError when no measurement section is present.
    """
    if not output or not output.strip():
        raise ProbeParseError("No output received from speedtest command")

    try:
        data = json.loads(output)
    except json.JSONDecodeError as e:
        raise ProbeParseError(f"Invalid JSON from speedtest: {e}", output=output[:500]) from e

    if not isinstance(data, dict):
        raise ProbeParseError(
            f"Expected a JSON object, got {type(data).__name__}", output=output[:500],
        )

    missing = [k for k in _MEASUREMENT_KEYS if not isinstance(data.get(k), dict)]
    if len(missing) == len(_MEASUREMENT_KEYS):
        message = data.get("message") or data.get("error") or "no ping/download/upload data"
        raise ProbeIncompleteDataError(f"Speedtest returned no measurement: {message}", output=output[:500])
    if missing:
        logger.warning("Speedtest output missing %s — recorded as 0", ", ".join(missing))

    ping = _section(data, "ping")
    download = _section(data, "download")
    upload = _section(data, "upload")
    iface = _section(data, "interface")
    server = _section(data, "server")

    ping_ms = _number(ping.get("latency"))
    jitter_ms = _number(ping.get("jitter"))
    packet_loss = _number(data.get("packetLoss"))

    server_id = server.get("id")
    return ProbeResult(
        ping_ms=ping_ms,
        download_mbps=bandwidth_to_mbps(_number(download.get("bandwidth"))),
        upload_mbps=bandwidth_to_mbps(_number(upload.get("bandwidth"))),
        jitter_ms=jitter_ms,
        packet_loss_pct=packet_loss,
        network_ssid=iface.get("name"),
        network_type=network_type,
        ip_address=iface.get("externalIp") or "unknown",
        server_id=str(server_id) if server_id is not None else "unknown",
        server_location=f"{server.get('name') or 'unknown'}, {server.get('country') or 'unknown'}",
        server_distance_km=_number(server.get("distance")),
        isp=data.get("isp") or "unknown",
        connection_quality=classify_connection(ping_ms, jitter_ms, packet_loss),
        device_name=device_name,
    )


# ── Executor ─────────────────────────────────────────────────────────────────


async def _kill_and_reap(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        # Exited on its own after the deadline
        pass
    await proc.wait()


class ProbeExecutor:
    """Runs the speedtest binary once per `execute()` call."""

    def __init__(self, binary: str = "speedtest", timeout_ms: int = 120_000) -> None:
        if timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        self.binary = binary
        self.timeout_ms = timeout_ms

    @property
    def command(self) -> list[str]:
        return [self.binary, "--format=json"]

    async def execute(self) -> ProbeResult:
        """Run one probe. Raises a ProbeError subclass on any failure."""
        stdout = await self._run()
        return parse_probe_output(
            stdout,
            network_type=detect_network_type(local_interface_names()),
            device_name=socket.gethostname(),
        )

    async def _run(self) -> str:
        """Spawn the binary and return its stdout."""
        logger.debug("Executing probe: %s (timeout=%dms)", " ".join(self.command), self.timeout_ms)
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ProbeExecutionError(f"Probe binary not found: {self.binary}") from e
        except OSError as e:
            raise ProbeExecutionError(f"Failed to start probe: {type(e).__name__}: {e}") from e

        try:
            raw_out, raw_err = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            await _kill_and_reap(proc)
            raise ProbeTimeoutError(f"Speedtest timed out after {self.timeout_ms}ms") from e
        except asyncio.CancelledError:
            # Don't leave the child running when the monitor task is cancelled
            await _kill_and_reap(proc)
            raise

        stdout = raw_out.decode("utf-8", errors="replace")
        stderr = raw_err.decode("utf-8", errors="replace")

        if proc.returncode != 0:
            raise ProbeExecutionError(
                f"Speedtest failed with exit code {proc.returncode}: {stderr.strip()}",
                output=stderr,
            )
        return stdout
