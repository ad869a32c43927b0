"""Tests for the probe executor — parsing, classification, subprocess handling."""

from __future__ import annotations

import asyncio
import json
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from speedmon.probe.executor import (
    ProbeErrorKind,
    ProbeExecutionError,
    ProbeExecutor,
    ProbeIncompleteDataError,
    ProbeParseError,
    ProbeTimeoutError,
    bandwidth_to_mbps,
    classify_connection,
    detect_network_type,
    parse_probe_output,
)
from speedmon.probe.models import ConnectionQuality, NetworkType, ProbeResult

FULL_OUTPUT = {
    "type": "result",
    "timestamp": "2025-01-01T00:00:00Z",
    "ping": {"jitter": 1.5, "latency": 12.3, "low": 11.0, "high": 14.2},
    "download": {"bandwidth": 31_250_000, "bytes": 400_000_000, "elapsed": 12_000},
    "upload": {"bandwidth": 5_000_000, "bytes": 60_000_000, "elapsed": 10_000},
    "packetLoss": 0,
    "isp": "Example ISP",
    "interface": {
        "internalIp": "192.168.1.20",
        "name": "wlan0",
        "macAddr": "00:11:22:33:44:55",
        "isVpn": False,
        "externalIp": "203.0.113.7",
    },
    "server": {
        "id": 12345,
        "host": "speedtest.example.net",
        "port": 8080,
        "name": "Example Net",
        "location": "Amsterdam",
        "country": "Netherlands",
        "ip": "198.51.100.1",
        "distance": 4.2,
    },
}


# ── Classification ───────────────────────────────────────────────────────────


class TestClassifyConnection:
    @pytest.mark.parametrize(
        ("ping", "jitter", "loss", "expected"),
        [
            (10, 2, 0, ConnectionQuality.EXCELLENT),
            (30, 10, 0.5, ConnectionQuality.GOOD),
            (80, 20, 2, ConnectionQuality.FAIR),
            (150, 5, 0, ConnectionQuality.POOR),
            (10, 2, 5, ConnectionQuality.POOR),
        ],
    )
    def test_tiers(self, ping: float, jitter: float, loss: float, expected: ConnectionQuality) -> None:
        assert classify_connection(ping, jitter, loss) == expected

    def test_bounds_are_exclusive(self) -> None:
        assert classify_connection(20, 0, 0) == ConnectionQuality.GOOD
        assert classify_connection(10, 5, 0) == ConnectionQuality.GOOD
        assert classify_connection(10, 0, 0.1) == ConnectionQuality.GOOD
        assert classify_connection(100, 0, 0) == ConnectionQuality.POOR

    def test_worst_metric_decides(self) -> None:
        # Excellent ping and jitter, but fair-level packet loss
        assert classify_connection(5, 1, 2) == ConnectionQuality.FAIR


class TestDetectNetworkType:
    @pytest.mark.parametrize(
        ("names", "expected"),
        [
            (["lo", "wlan0"], NetworkType.WIFI),
            (["lo", "eth0"], NetworkType.ETHERNET),
            (["enp3s0"], NetworkType.ETHERNET),
            (["wwan0"], NetworkType.CELLULAR),
            (["lo", "docker0"], NetworkType.UNKNOWN),
            ([], NetworkType.UNKNOWN),
        ],
    )
    def test_detection(self, names: list[str], expected: NetworkType) -> None:
        assert detect_network_type(names) == expected

    def test_order_does_not_matter(self) -> None:
        assert detect_network_type(["eth0", "wlan0"]) == NetworkType.WIFI
        assert detect_network_type(["wlan0", "eth0"]) == NetworkType.WIFI

    def test_case_insensitive(self) -> None:
        assert detect_network_type(["WiFi0"]) == NetworkType.WIFI


def test_bandwidth_to_mbps() -> None:
    assert bandwidth_to_mbps(31_250_000) == pytest.approx(250.0)
    assert bandwidth_to_mbps(0) == 0.0
    assert bandwidth_to_mbps(None) == 0.0


# ── Parsing ──────────────────────────────────────────────────────────────────


class TestParseProbeOutput:
    def test_full_output(self) -> None:
        result = parse_probe_output(json.dumps(FULL_OUTPUT), NetworkType.WIFI, "probe-host")

        assert result.ping_ms == pytest.approx(12.3)
        assert result.jitter_ms == pytest.approx(1.5)
        assert result.download_mbps == pytest.approx(250.0)
        assert result.upload_mbps == pytest.approx(40.0)
        assert result.packet_loss_pct == 0.0
        assert result.network_ssid == "wlan0"
        assert result.network_type == NetworkType.WIFI
        assert result.ip_address == "203.0.113.7"
        assert result.server_id == "12345"
        assert result.server_location == "Example Net, Netherlands"
        assert result.server_distance_km == pytest.approx(4.2)
        assert result.isp == "Example ISP"
        assert result.connection_quality == ConnectionQuality.EXCELLENT
        assert result.device_name == "probe-host"

    def test_missing_optional_fields_default(self) -> None:
        data = {"ping": {"latency": 40}, "download": {"bandwidth": 1_000_000}, "upload": {}}
        result = parse_probe_output(json.dumps(data))

        assert result.jitter_ms == 0.0
        assert result.packet_loss_pct == 0.0
        assert result.upload_mbps == 0.0
        assert result.ip_address == "unknown"
        assert result.server_id == "unknown"
        assert result.server_location == "unknown, unknown"
        assert result.isp == "unknown"
        assert result.network_ssid is None
        assert result.connection_quality == ConnectionQuality.GOOD

    def test_partial_sections_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        data = {"ping": {"latency": 10, "jitter": 1}}
        with caplog.at_level("WARNING", logger="speedmon.probe.executor"):
            result = parse_probe_output(json.dumps(data))

        assert result.download_mbps == 0.0
        assert result.upload_mbps == 0.0
        assert "download, upload" in caplog.text

    def test_negative_values_clamped(self) -> None:
        data = dict(FULL_OUTPUT, packetLoss=-1)
        data["ping"] = {"latency": -5, "jitter": -1}
        result = parse_probe_output(json.dumps(data))
        assert result.ping_ms == 0.0
        assert result.jitter_ms == 0.0
        assert result.packet_loss_pct == 0.0

    @pytest.mark.parametrize("output", ["", "   \n"])
    def test_empty_output(self, output: str) -> None:
        with pytest.raises(ProbeParseError) as exc:
            parse_probe_output(output)
        assert exc.value.kind == ProbeErrorKind.PARSE_ERROR

    def test_invalid_json(self) -> None:
        with pytest.raises(ProbeParseError):
            parse_probe_output("Speedtest by Ookla\nServer: ...")

    def test_non_object_json(self) -> None:
        with pytest.raises(ProbeParseError, match="list"):
            parse_probe_output("[1, 2, 3]")

    def test_log_record_is_incomplete(self) -> None:
        data = {"type": "log", "level": "error", "message": "Configuration - Could not retrieve or read configuration"}
        with pytest.raises(ProbeIncompleteDataError, match="Could not retrieve") as exc:
            parse_probe_output(json.dumps(data))
        assert exc.value.kind == ProbeErrorKind.INCOMPLETE_DATA

    def test_empty_object_is_incomplete(self) -> None:
        with pytest.raises(ProbeIncompleteDataError):
            parse_probe_output("{}")


class TestProbeResult:
    def test_to_dict_uses_enum_values(self) -> None:
        d = ProbeResult(network_type=NetworkType.ETHERNET).to_dict()
        assert d["network_type"] == "ethernet"
        assert d["connection_quality"] == "poor"
        assert "timestamp" in d

    def test_from_row(self) -> None:
        row = {
            "timestamp": "2025-01-01T00:00:00+00:00",
            "ping": 12.0,
            "download": 100.0,
            "upload": 20.0,
            "latency_jitter": 2.0,
            "packet_loss": None,
            "network_ssid": "eth0",
            "network_type": "ethernet",
            "ip_address": None,
            "server_id": "99",
            "server_location": "Example, NL",
            "server_distance": 3.0,
            "isp": "ISP",
            "connection_quality": "excellent",
            "device_name": "host",
        }
        result = ProbeResult.from_row(row)
        assert result.jitter_ms == 2.0
        assert result.packet_loss_pct == 0.0
        assert result.ip_address == "unknown"
        assert result.network_type == NetworkType.ETHERNET
        assert result.connection_quality == ConnectionQuality.EXCELLENT


# ── Executor ─────────────────────────────────────────────────────────────────


def _fake_process(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> MagicMock:
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.wait = AsyncMock(return_value=returncode)
    proc.kill = MagicMock()
    return proc


class TestProbeExecutor:
    def test_command(self) -> None:
        assert ProbeExecutor("/usr/bin/speedtest").command == ["/usr/bin/speedtest", "--format=json"]

    def test_rejects_non_positive_timeout(self) -> None:
        with pytest.raises(ValueError):
            ProbeExecutor(timeout_ms=0)

    def test_success(self) -> None:
        proc = _fake_process(stdout=json.dumps(FULL_OUTPUT).encode())
        with (
            patch("speedmon.probe.executor.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as spawn,
            patch("speedmon.probe.executor.local_interface_names", return_value=["lo", "eth0"]),
            patch("speedmon.probe.executor.socket.gethostname", return_value="probe-host"),
        ):
            result = asyncio.run(ProbeExecutor("speedtest").execute())

        assert spawn.call_args.args == ("speedtest", "--format=json")
        assert result.network_type == NetworkType.ETHERNET
        assert result.device_name == "probe-host"
        assert result.download_mbps == pytest.approx(250.0)

    def test_missing_binary(self) -> None:
        executor = ProbeExecutor("/nonexistent/speedtest-binary")
        with pytest.raises(ProbeExecutionError, match="not found") as exc:
            asyncio.run(executor.execute())
        assert exc.value.kind == ProbeErrorKind.EXECUTION_FAILED

    def test_non_zero_exit(self) -> None:
        # The Python interpreter rejects the unknown flag with exit code 2
        executor = ProbeExecutor(sys.executable)
        with pytest.raises(ProbeExecutionError, match="exit code"):
            asyncio.run(executor.execute())

    def test_non_zero_exit_carries_stderr(self) -> None:
        proc = _fake_process(stderr=b"[error] No servers defined\n", returncode=1)
        with patch("speedmon.probe.executor.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(ProbeExecutionError) as exc:
                asyncio.run(ProbeExecutor().execute())

        assert "exit code 1" in str(exc.value)
        assert "No servers defined" in exc.value.output

    def test_timeout_kills_process(self) -> None:
        proc = _fake_process()

        async def hang() -> tuple[bytes, bytes]:
            await asyncio.sleep(10)
            return b"", b""

        proc.communicate = hang
        with patch("speedmon.probe.executor.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(ProbeTimeoutError) as exc:
                asyncio.run(ProbeExecutor(timeout_ms=50).execute())

        assert exc.value.kind == ProbeErrorKind.TIMEOUT
        proc.kill.assert_called_once()
        proc.wait.assert_awaited_once()

    def test_timeout_when_child_already_exited(self) -> None:
        proc = _fake_process()

        async def hang() -> tuple[bytes, bytes]:
            await asyncio.sleep(10)
            return b"", b""

        proc.communicate = hang
        proc.kill = MagicMock(side_effect=ProcessLookupError())
        with patch("speedmon.probe.executor.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(ProbeTimeoutError):
                asyncio.run(ProbeExecutor(timeout_ms=20).execute())

        proc.wait.assert_awaited_once()

    def test_cancel_kills_process(self) -> None:
        proc = _fake_process()

        async def hang() -> tuple[bytes, bytes]:
            await asyncio.sleep(10)
            return b"", b""

        proc.communicate = hang

        async def scenario() -> None:
            task = asyncio.create_task(ProbeExecutor(timeout_ms=5_000).execute())
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        with patch("speedmon.probe.executor.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            asyncio.run(scenario())

        proc.kill.assert_called_once()
        proc.wait.assert_awaited_once()

    def test_garbage_output_is_parse_error(self) -> None:
        proc = _fake_process(stdout=b"not json at all")
        with patch("speedmon.probe.executor.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            with pytest.raises(ProbeParseError):
                asyncio.run(ProbeExecutor().execute())
