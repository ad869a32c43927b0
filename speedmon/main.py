"""Entry point — `speedmon` console script."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sqlite3
import sys

import uvicorn
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from speedmon import __version__
from speedmon.api.management_app import create_management_app
from speedmon.api.monitor_app import create_monitor_app
from speedmon.client import DaemonClient, DaemonError, DaemonOfflineError
from speedmon.config import Settings, load_settings
from speedmon.monitor.engine import MonitorEngine
from speedmon.probe.executor import ProbeError, ProbeExecutor
from speedmon.probe.models import ProbeResult
from speedmon.services.systemd import SystemdService
from speedmon.store import MetricsStore

console = Console()
logger = logging.getLogger("speedmon")

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.effective_log_level, logging.INFO),
        format=LOG_FORMAT,
        force=True,
    )


def _load_settings_or_exit() -> Settings:
    try:
        return load_settings()
    except ValidationError as e:
        console.print(f"[bold red]Invalid configuration[/bold red]\n{e}")
        sys.exit(1)


def _open_store_or_exit(settings: Settings) -> MetricsStore:
    try:
        return MetricsStore(settings.db_path)
    except (sqlite3.Error, OSError) as e:
        logger.error("Failed to open database %s: %s", settings.db_path, e)
        sys.exit(1)


def _build_executor(settings: Settings) -> ProbeExecutor:
    return ProbeExecutor(binary=settings.probe_binary, timeout_ms=settings.probe_timeout)


def run_monitor(settings: Settings) -> None:
    """Run the probe loop with its health/results HTTP surface."""
    store = _open_store_or_exit(settings)
    engine = MonitorEngine(settings, _build_executor(settings), store)
    app = create_monitor_app(engine, store)

    console.print(
        Panel.fit(
            f"[bold]speedmon monitor[/bold] v{__version__}\n"
            f"Bind:     {settings.monitor_host}:{settings.monitor_port}\n"
            f"Database: {settings.db_path}\n"
            f"Probe:    {settings.probe_binary} (timeout {settings.probe_timeout}ms)\n"
            f"Interval: {settings.interval}ms",
            title="speedmon",
            border_style="green",
        )
    )

    uvicorn.run(
        app,
        host=settings.monitor_host,
        port=settings.monitor_port,
        log_level=settings.effective_log_level.lower(),
    )


def run_server(settings: Settings) -> None:
    """Run the management API (systemd passthrough)."""
    store = _open_store_or_exit(settings)
    systemd = SystemdService(
        service_name=settings.service_name,
        service_file_path=settings.service_file_path,
        use_sudo=settings.systemctl_sudo,
        timeout_ms=settings.systemctl_timeout,
    )
    app = create_management_app(systemd, store)

    console.print(
        Panel.fit(
            f"[bold]speedmon management API[/bold] v{__version__}\n"
            f"Bind:    http://{settings.api_host}:{settings.api_port}\n"
            f"Unit:    {settings.service_name}\n"
            f"Docs:    http://{settings.api_host}:{settings.api_port}/docs",
            title="speedmon",
            border_style="blue",
        )
    )

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.effective_log_level.lower(),
    )


def _result_table(result: ProbeResult) -> Table:
    table = Table(title="Speed test", show_header=False)
    table.add_column("metric", style="bold")
    table.add_column("value")
    table.add_row("Download", f"{result.download_mbps:.2f} Mbps")
    table.add_row("Upload", f"{result.upload_mbps:.2f} Mbps")
    table.add_row("Ping", f"{result.ping_ms:.1f} ms (jitter {result.jitter_ms:.1f} ms)")
    table.add_row("Packet loss", f"{result.packet_loss_pct:.2f}%")
    table.add_row("Quality", result.connection_quality.value)
    table.add_row("Network", f"{result.network_type.value} ({result.network_ssid or '-'})")
    table.add_row("Server", f"{result.server_location} [{result.server_id}]")
    table.add_row("ISP", result.isp)
    return table


def run_probe(settings: Settings, save: bool = False) -> int:
    """Run a single probe and print it. Returns the process exit code."""
    executor = _build_executor(settings)
    with console.status("[bold green]Running speed test..."):
        try:
            result = asyncio.run(executor.execute())
        except ProbeError as e:
            console.print(f"[bold red]Probe failed ({e.kind.value}):[/bold red] {e}")
            return 1

    console.print(_result_table(result))

    if save:
        store = _open_store_or_exit(settings)
        try:
            store.insert(result)
        finally:
            store.close()
        console.print(f"[dim]Saved to {settings.db_path}[/dim]")
    return 0


def run_status(settings: Settings) -> int:
    """Query the monitor daemon's health. Exit 0 only when healthy."""
    client = DaemonClient(f"http://{settings.monitor_host}:{settings.monitor_port}")
    try:
        health = client.health()
    except (DaemonOfflineError, DaemonError) as e:
        console.print(f"[bold red]{e}[/bold red]")
        return 2

    style = {"healthy": "green", "degraded": "yellow"}.get(health["status"], "red")
    console.print(
        Panel.fit(
            f"Status:   [{style}]{health['status']}[/{style}]\n"
            f"Last test: {health.get('last_test_time') or 'never'}\n"
            f"Failures: {health['consecutive_failures']}\n"
            f"Circuit:  {'open until ' + str(health.get('circuit_reset_at')) if health['circuit_open'] else 'closed'}\n"
            f"Uptime:   {health['uptime']:.0f}s",
            title="speedmon status",
        )
    )
    return 0 if health["status"] == "healthy" else 1


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="speedmon — network quality monitor")
    parser.add_argument("--version", action="version", version=f"speedmon {__version__}")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("monitor", help="Run the monitoring daemon")
    sub.add_parser("serve", help="Start the management API server")
    probe_parser = sub.add_parser("probe", help="Run a single speed test")
    probe_parser.add_argument("--save", action="store_true", help="Store the result in the database")
    sub.add_parser("status", help="Show the monitor daemon's health")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    settings = _load_settings_or_exit()
    configure_logging(settings)

    if args.command == "monitor":
        run_monitor(settings)
    elif args.command == "serve":
        run_server(settings)
    elif args.command == "probe":
        sys.exit(run_probe(settings, save=args.save))
    elif args.command == "status":
        sys.exit(run_status(settings))


if __name__ == "__main__":
    main()
