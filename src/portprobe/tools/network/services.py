"""
Well-known TCP port to service name lookup.
"""
from typing import Dict, List

UNKNOWN_SERVICE = "Unknown"

KNOWN_SERVICES: Dict[int, str] = {
    20: "FTP (Data)",
    21: "FTP (Control)",
    22: "SSH",
    23: "Telnet",
    25: "SMTP",
    53: "DNS",
    80: "HTTP",
    110: "POP3",
    119: "NNTP",
    123: "NTP",
    143: "IMAP",
    161: "SNMP",
    194: "IRC",
    443: "HTTPS",
    445: "SMB",
    465: "SMTPS",
    514: "Syslog",
    587: "SMTP (Submission)",
    993: "IMAPS",
    995: "POP3S",
    1080: "SOCKS Proxy",
    1433: "MSSQL",
    1521: "Oracle DB",
    3306: "MySQL",
    3389: "RDP",
    5432: "PostgreSQL",
    5900: "VNC",
    6379: "Redis",
    8080: "HTTP Proxy",
    8443: "HTTPS Alt",
    9090: "Prometheus",
    27017: "MongoDB",
}

# Ports used for the quick "common ports" scan
COMMON_PORTS: List[int] = [
    21, 22, 23, 25, 53, 80, 110, 119, 123, 143, 161, 194,
    443, 445, 465, 587, 993, 995, 1080, 1433, 1521, 3306,
    3389, 5432, 5900, 6379, 8080, 8443, 9090, 27017,
]


def resolve_service(port: int) -> str:
    """Return the well-known service name for a port, or "Unknown"."""
    return KNOWN_SERVICES.get(port, UNKNOWN_SERVICE)
