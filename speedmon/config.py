from __future__ import annotations

from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings

# Results older than this are pruned after every probe cycle
RETENTION_DAYS = 30


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file.

    Durations are in milliseconds, matching the SPEEDTEST_* environment
    contract the service unit is written against.
    """

    model_config = {
        "env_prefix": "SPEEDTEST_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
        "frozen": True,
    }

    # Scheduling
    interval: int = Field(default=1_800_000, gt=0)  # 30 minutes
    max_retries: int = Field(default=3, gt=0)
    backoff_delay: int = Field(default=5_000, gt=0)  # 5 seconds
    max_backoff_delay: int = Field(default=300_000, gt=0)  # 5 minutes

    # Circuit breaker
    circuit_breaker_threshold: int = Field(default=5, gt=0)
    circuit_breaker_timeout: int = Field(default=1_800_000, gt=0)  # 30 minutes

    # Probe binary (Ookla CLI)
    probe_binary: str = "speedtest"
    probe_timeout: int = Field(default=120_000, gt=0)  # hard cap per run

    # Storage
    db_path: str = "data/speedtest.db"

    # Monitor daemon HTTP (health + results)
    monitor_host: str = "127.0.0.1"
    monitor_port: int = Field(default=3001, gt=0)

    # Management API (systemd passthrough)
    api_host: str = "127.0.0.1"
    api_port: int = Field(default=3000, gt=0)
    service_name: str = "network-monitor"
    service_file_path: str = "/etc/systemd/system/network-monitor.service"
    systemctl_sudo: bool = True
    systemctl_timeout: int = Field(default=30_000, gt=0)

    # Logging
    verbose: bool = False
    log_level: str = "INFO"

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.verbose else self.log_level.upper()


def load_settings(**overrides: Any) -> Settings:
    """Load and validate settings. Raises pydantic.ValidationError if invalid."""
    return Settings(**overrides)
