"""systemd passthrough — status / start / stop / restart of the monitor unit.

All operations shell out to `systemctl` (optionally via sudo, no shell)
with a timeout. Unit file generation and installation are handled by the
one-time setup step, not here.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from ..errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_SHOW_PROPERTIES = "Description,LoadState,ActiveState,SubState,UnitFile"


@dataclass
class ServiceStatus:
    """Unit state as reported by `systemctl show`."""

    name: str
    description: str = ""
    load_state: str = ""
    active_state: str = ""
    sub_state: str = ""
    unit_file: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def parse_show_output(output: str) -> dict[str, str]:
    """Parse `Key=Value` lines from `systemctl show`."""
    props: dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip():
            props[key.strip()] = value.strip()
    return props


def parse_unit_file(text: str) -> dict[str, dict[str, str]]:
    """Parse a unit file into {section: {key: value}}.

    Comments and blank lines are skipped; values may contain '='. Keys
    outside any section are ignored.
    """
    config: dict[str, dict[str, str]] = {}
    current: str | None = None
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith(("#", ";")):
            continue
        if line.startswith("[") and line.endswith("]"):
            current = line[1:-1]
            config[current] = {}
            continue
        if current is not None and "=" in line:
            key, _, value = line.partition("=")
            config[current][key.strip()] = value.strip()
    return config


class SystemdService:
    """Controls one systemd unit through systemctl."""

    def __init__(
        self,
        service_name: str,
        service_file_path: str | Path,
        use_sudo: bool = True,
        timeout_ms: int = 30_000,
    ) -> None:
        self.service_name = service_name
        self.service_file_path = Path(service_file_path)
        self.use_sudo = use_sudo
        self.timeout_ms = timeout_ms

    def _systemctl(self, args: list[str]) -> str:
        """Run systemctl and return trimmed stdout. Raises ValidationError on failure."""
        cmd = (["sudo", "-n"] if self.use_sudo else []) + ["systemctl", *args]
        logger.debug("Executing: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=self.timeout_ms / 1000,
                encoding="utf-8",
                errors="replace",
            )
        except subprocess.TimeoutExpired as e:
            raise ValidationError(f"systemctl timed out after {self.timeout_ms}ms") from e
        except FileNotFoundError as e:
            raise ValidationError(f"Command not found: {e}") from e

        if result.returncode != 0:
            detail = result.stderr.strip() or result.stdout.strip() or "Failed to execute systemctl command"
            raise ValidationError(f"systemctl error (exit code {result.returncode}): {detail}")
        return result.stdout.strip()

    def get_status(self) -> ServiceStatus:
        output = self._systemctl(["show", self.service_name, f"--property={_SHOW_PROPERTIES}"])
        props = parse_show_output(output)
        return ServiceStatus(
            name=self.service_name,
            description=props.get("Description", ""),
            load_state=props.get("LoadState", ""),
            active_state=props.get("ActiveState", ""),
            sub_state=props.get("SubState", ""),
            unit_file=props.get("UnitFile", ""),
        )

    def start(self) -> ServiceStatus:
        self._systemctl(["start", self.service_name])
        return self.get_status()

    def stop(self) -> ServiceStatus:
        self._systemctl(["stop", self.service_name])
        return self.get_status()

    def restart(self) -> ServiceStatus:
        self._systemctl(["restart", self.service_name])
        return self.get_status()

    def read_config(self) -> dict[str, dict[str, str]]:
        """Parsed unit file. Raises NotFoundError if it is not installed."""
        try:
            text = self.service_file_path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise NotFoundError(f"Service file not found: {self.service_file_path}") from e
        return parse_unit_file(text)
