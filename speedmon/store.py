"""Metrics store — SQLite-backed speed test results + service action log.

Single writer (the monitor engine); the management API only reads results
and appends to `service_logs`.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from .config import RETENTION_DAYS
from .probe.models import ProbeResult

logger = logging.getLogger(__name__)

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS speed_results (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        ping REAL,
        download REAL,
        upload REAL,
        network_ssid TEXT,
        network_type TEXT,
        ip_address TEXT,
        server_id TEXT,
        server_location TEXT,
        server_distance REAL,
        isp TEXT,
        latency_jitter REAL,
        packet_loss REAL,
        connection_quality TEXT,
        device_name TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_results_timestamp
        ON speed_results (timestamp DESC);

    CREATE TABLE IF NOT EXISTS service_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        service_name TEXT NOT NULL,
        action TEXT NOT NULL,
        status TEXT NOT NULL,
        message TEXT,
        created_at TEXT NOT NULL
    );
"""


class MetricsStore:
    """SQLite storage for probe results."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    @property
    def path(self) -> Path:
        return self._db_path

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA busy_timeout=5000")
        return self._conn

    def _init_db(self) -> None:
        conn = self._get_conn()
        conn.executescript(_SCHEMA)
        conn.commit()

    # ── Results ──────────────────────────────────────────────────────────────

    def insert(self, result: ProbeResult) -> None:
        """Append one probe result."""
        conn = self._get_conn()
        conn.execute(
            "INSERT INTO speed_results "
            "(timestamp, ping, download, upload, network_ssid, network_type, ip_address, "
            "server_id, server_location, server_distance, isp, latency_jitter, packet_loss, "
            "connection_quality, device_name) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                result.timestamp, result.ping_ms, result.download_mbps, result.upload_mbps,
                result.network_ssid, result.network_type.value, result.ip_address,
                result.server_id, result.server_location, result.server_distance_km,
                result.isp, result.jitter_ms, result.packet_loss_pct,
                result.connection_quality.value, result.device_name,
            ),
        )
        conn.commit()

    def latest(self) -> ProbeResult | None:
        """Most recent result, or None on an empty store."""
        row = self._get_conn().execute(
            "SELECT * FROM speed_results ORDER BY timestamp DESC, id DESC LIMIT 1",
        ).fetchone()
        return ProbeResult.from_row(dict(row)) if row else None

    def history(self, limit: int = 100) -> list[ProbeResult]:
        """Recent results, newest first."""
        rows = self._get_conn().execute(
            "SELECT * FROM speed_results ORDER BY timestamp DESC, id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [ProbeResult.from_row(dict(r)) for r in rows]

    def count(self) -> int:
        row = self._get_conn().execute("SELECT COUNT(*) AS n FROM speed_results").fetchone()
        return int(row["n"])

    def prune(self, older_than_days: int = RETENTION_DAYS) -> int:
        """Delete results older than N days. Returns the number removed."""
        cutoff = (datetime.now(timezone.utc) - timedelta(days=older_than_days)).isoformat()
        conn = self._get_conn()
        cursor = conn.execute("DELETE FROM speed_results WHERE timestamp < ?", (cutoff,))
        conn.commit()
        return cursor.rowcount

    # ── Service action log ───────────────────────────────────────────────────

    def log_service_action(
        self, service_name: str, action: str, status: str, message: str | None = None,
    ) -> None:
        conn = self._get_conn()
        conn.execute(
            "INSERT INTO service_logs (service_name, action, status, message, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (service_name, action, status, message, datetime.now(timezone.utc).isoformat()),
        )
        conn.commit()

    def service_logs(self, service_name: str, limit: int = 100) -> list[dict[str, Any]]:
        rows = self._get_conn().execute(
            "SELECT * FROM service_logs WHERE service_name = ? "
            "ORDER BY created_at DESC, id DESC LIMIT ?",
            (service_name, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    def close(self) -> None:
        if self._conn:
            try:
                self._conn.close()
            except sqlite3.Error:
                logger.exception("Error closing database")
            self._conn = None
