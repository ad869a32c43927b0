"""Probe result model + derived classifications."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class NetworkType(str, Enum):
    WIFI = "wifi"
    ETHERNET = "ethernet"
    CELLULAR = "cellular"
    UNKNOWN = "unknown"


class ConnectionQuality(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ProbeResult:
    """A single speed test measurement.

    Built only by the probe executor after a successful run; every field
    has a zero/unknown fallback so a partial probe response still yields a
    complete record.
    """

    ping_ms: float = 0.0
    download_mbps: float = 0.0
    upload_mbps: float = 0.0
    jitter_ms: float = 0.0
    packet_loss_pct: float = 0.0
    network_ssid: str | None = None
    network_type: NetworkType = NetworkType.UNKNOWN
    ip_address: str = "unknown"
    server_id: str = "unknown"
    server_location: str = "unknown, unknown"
    server_distance_km: float = 0.0
    isp: str = "unknown"
    connection_quality: ConnectionQuality = ConnectionQuality.POOR
    device_name: str = "unknown"
    timestamp: str = field(default_factory=_utc_now_iso)

    def __post_init__(self) -> None:
        # Frozen dataclass: clamp through object.__setattr__
        for name in (
            "ping_ms", "download_mbps", "upload_mbps",
            "jitter_ms", "packet_loss_pct", "server_distance_km",
        ):
            value = getattr(self, name)
            if value is None or value < 0:
                object.__setattr__(self, name, 0.0)
            else:
                object.__setattr__(self, name, float(value))

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["network_type"] = self.network_type.value
        d["connection_quality"] = self.connection_quality.value
        return d

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ProbeResult":
        """Rebuild a result from a `speed_results` row."""
        return cls(
            timestamp=row["timestamp"],
            ping_ms=row.get("ping") or 0.0,
            download_mbps=row.get("download") or 0.0,
            upload_mbps=row.get("upload") or 0.0,
            jitter_ms=row.get("latency_jitter") or 0.0,
            packet_loss_pct=row.get("packet_loss") or 0.0,
            network_ssid=row.get("network_ssid"),
            network_type=NetworkType(row.get("network_type") or "unknown"),
            ip_address=row.get("ip_address") or "unknown",
            server_id=row.get("server_id") or "unknown",
            server_location=row.get("server_location") or "unknown, unknown",
            server_distance_km=row.get("server_distance") or 0.0,
            isp=row.get("isp") or "unknown",
            connection_quality=ConnectionQuality(row.get("connection_quality") or "poor"),
            device_name=row.get("device_name") or "unknown",
        )
