"""Network scanning tools for portprobe."""

from .port_scanner import PortResult, PortScanner, ScanSession, ScanSummary, scan_ports
from .probes import CloseReason, PortState, ProbeResult, grab_banner, probe_port
from .services import COMMON_PORTS, KNOWN_SERVICES, resolve_service

__all__ = [
    "PortScanner",
    "PortState",
    "PortResult",
    "ProbeResult",
    "CloseReason",
    "ScanSession",
    "ScanSummary",
    "scan_ports",
    "probe_port",
    "grab_banner",
    "resolve_service",
    "KNOWN_SERVICES",
    "COMMON_PORTS",
]
