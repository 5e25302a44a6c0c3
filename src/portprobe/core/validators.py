"""Input validation for portprobe scan requests."""

import ipaddress
import re
from typing import List

from portprobe.utils.exceptions import InvalidTargetError, ValidationError
from portprobe.utils.logger import get_logger

logger = get_logger(__name__)

MIN_PORT = 1
MAX_PORT = 65535

_HOSTNAME_LABEL = re.compile(r"(?!-)[A-Z\d_-]{1,63}(?<!-)$", re.IGNORECASE)


def _parse_port(value: str) -> int:
    try:
        port = int(value)
    except ValueError:
        raise ValidationError(f"Invalid port: {value!r} is not a number") from None
    if port < MIN_PORT or port > MAX_PORT:
        raise ValidationError(f"Invalid port: {port} (must be {MIN_PORT}-{MAX_PORT})")
    return port


def parse_port_spec(spec: str) -> List[int]:
    """
    Parse a port specification string into an ordered list of ports.

    Supports:
    - Single ports: "80"
    - Ranges: "1-1024"
    - Comma-separated: "22,80,443"
    - Mixed: "1-1024,8080,9000-9005"

    Order is kept and duplicates are not removed.

    Raises:
        ValidationError: If the spec is empty or names a port outside 1-65535
    """
    spec = spec.strip()
    if not spec:
        raise ValidationError("Empty port spec")

    ports: List[int] = []
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start_s, end_s = part.split("-", 1)
            start = _parse_port(start_s.strip())
            end = _parse_port(end_s.strip())
            if start > end:
                raise ValidationError(f"Invalid port range: {part} (start is after end)")
            ports.extend(range(start, end + 1))
        else:
            ports.append(_parse_port(part))

    if not ports:
        raise ValidationError(f"No ports in spec: {spec!r}")

    logger.debug(f"Parsed port spec {spec!r} into {len(ports)} ports")
    return ports


def _is_valid_hostname(hostname: str) -> bool:
    if len(hostname) > 253:
        return False

    labels = hostname.rstrip(".").split(".")
    return all(_HOSTNAME_LABEL.match(label) for label in labels)


def validate_target(target: str) -> str:
    """
    Validate a scan target and return it stripped.

    Accepts IPv4/IPv6 addresses and hostnames. Resolution is left to the
    probes, so an unresolvable name is not rejected here.

    Raises:
        InvalidTargetError: If the target is empty or not a plausible host
    """
    if target is None or not target.strip():
        raise InvalidTargetError(target or "", "Target hostname or IP address cannot be empty")

    target = target.strip()
    try:
        ipaddress.ip_address(target)
        return target
    except ValueError:
        pass

    if not _is_valid_hostname(target):
        raise InvalidTargetError(target)
    return target


def validate_concurrency(concurrency: int) -> int:
    """Reject concurrency limits below one."""
    if concurrency < 1:
        raise ValidationError(f"Concurrency must be at least 1 (got {concurrency})")
    return concurrency


def validate_timeout_ms(timeout_ms: int, name: str = "timeout") -> int:
    """Reject non-positive timeouts given in milliseconds."""
    if timeout_ms <= 0:
        raise ValidationError(f"{name.capitalize()} must be a positive number of milliseconds (got {timeout_ms})")
    return timeout_ms
