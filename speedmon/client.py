"""httpx-based client for the monitor daemon's HTTP surface.

All methods return decoded JSON or raise DaemonOfflineError / DaemonError.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class DaemonOfflineError(Exception):
    """Raised when the monitor daemon is unreachable."""


class DaemonError(Exception):
    """Raised when the daemon answers with an error status."""

    def __init__(self, status_code: int, detail: str) -> None:
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Daemon error {status_code}: {detail}")


class DaemonClient:
    """Synchronous client for `speedmon monitor`."""

    def __init__(self, base_url: str, timeout: float = 5.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def _get(self, path: str, params: dict[str, Any] | None = None) -> httpx.Response:
        try:
            with httpx.Client(timeout=self._timeout) as client:
                resp = client.get(f"{self._base_url}{path}", params=params)
        except httpx.ConnectError as e:
            raise DaemonOfflineError("Monitor daemon is offline or unreachable") from e
        except httpx.TimeoutException as e:
            raise DaemonOfflineError("Monitor daemon request timed out") from e

        if resp.status_code >= 400:
            detail = resp.text
            try:
                detail = resp.json().get("error", {}).get("message", resp.text)
            except (ValueError, AttributeError):
                pass
            raise DaemonError(resp.status_code, str(detail))
        return resp

    def health(self) -> dict[str, Any]:
        """GET /health"""
        return self._get("/health").json()

    def latest_result(self) -> dict[str, Any]:
        """GET /results/latest"""
        return self._get("/results/latest").json()["result"]
