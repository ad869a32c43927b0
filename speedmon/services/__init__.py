from .systemd import ServiceStatus, SystemdService, parse_show_output, parse_unit_file

__all__ = ["ServiceStatus", "SystemdService", "parse_show_output", "parse_unit_file"]
