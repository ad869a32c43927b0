"""Probe subsystem — speedtest subprocess, parsing, classification."""

from .executor import (
    ProbeError,
    ProbeErrorKind,
    ProbeExecutionError,
    ProbeExecutor,
    ProbeIncompleteDataError,
    ProbeParseError,
    ProbeTimeoutError,
    classify_connection,
    detect_network_type,
    parse_probe_output,
)
from .models import ConnectionQuality, NetworkType, ProbeResult
