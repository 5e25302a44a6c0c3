"""
TCP connect probing and banner collection.

Both helpers own exactly one connection for the duration of a call and
close it on every exit path before returning.
"""
import asyncio
import errno
import socket
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from portprobe.utils.logger import get_logger

logger = get_logger(__name__)

# Sent after connecting to nudge services that wait for client input
BANNER_TRIGGER = b"\r\n"
BANNER_READ_SIZE = 1024

_UNREACHABLE_ERRNOS = {
    getattr(errno, name)
    for name in ("ENETUNREACH", "EHOSTUNREACH", "EHOSTDOWN", "ENETDOWN")
    if hasattr(errno, name)
}


class PortState(Enum):
    """Reachability of a probed TCP port."""

    OPEN = "open"
    CLOSED = "closed"


class CloseReason(Enum):
    """Diagnostic cause of a CLOSED state. Never changes the reported state."""

    TIMEOUT = "timeout"
    REFUSED = "refused"
    RESET = "reset"
    UNREACHABLE = "unreachable"
    RESOLUTION = "resolution"
    ERROR = "error"


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a single connection attempt."""

    port: int
    state: PortState
    reason: Optional[CloseReason] = None
    elapsed: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.state is PortState.OPEN


def classify_error(exc: BaseException) -> CloseReason:
    """Map a connection failure to its diagnostic close reason."""
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return CloseReason.TIMEOUT
    if isinstance(exc, ConnectionRefusedError):
        return CloseReason.REFUSED
    if isinstance(exc, ConnectionResetError):
        return CloseReason.RESET
    if isinstance(exc, socket.gaierror):
        return CloseReason.RESOLUTION
    if isinstance(exc, OSError) and exc.errno in _UNREACHABLE_ERRNOS:
        return CloseReason.UNREACHABLE
    if isinstance(exc, OSError) and exc.errno == errno.ETIMEDOUT:
        return CloseReason.TIMEOUT
    return CloseReason.ERROR


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except OSError as e:
        logger.debug(f"Ignoring error while closing connection: {e}")


async def probe_port(host: str, port: int, timeout: float) -> ProbeResult:
    """
    Attempt one TCP connection to ``(host, port)``.

    Establishment alone marks the port open: nothing is sent or read, and the
    connection is closed straight away. A timeout or any transport error
    before establishment marks it closed, with the cause kept in ``reason``.

    Args:
        host: Hostname or IP address
        port: TCP port to probe
        timeout: Seconds to wait for the connection to establish

    Returns:
        ProbeResult for the port
    """
    start = time.perf_counter()
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout
        )
    except (asyncio.TimeoutError, OSError) as e:
        elapsed = time.perf_counter() - start
        reason = classify_error(e)
        logger.debug(f"Port {port} on {host} closed ({reason.value}) after {elapsed:.3f}s")
        return ProbeResult(
            port=port,
            state=PortState.CLOSED,
            reason=reason,
            elapsed=round(elapsed, 4),
        )

    elapsed = time.perf_counter() - start
    await _close_writer(writer)
    logger.debug(f"Port {port} on {host} open after {elapsed:.3f}s")
    return ProbeResult(port=port, state=PortState.OPEN, elapsed=round(elapsed, 4))


async def _read_banner(host: str, port: int, trigger: bytes) -> Optional[bytes]:
    reader, writer = await asyncio.open_connection(host, port)
    try:
        if trigger:
            try:
                writer.write(trigger)
                await writer.drain()
            except ConnectionError as e:
                logger.debug(f"Banner trigger not delivered to port {port}: {e}")

        # The first chunk is the banner; no waiting for more reads
        data = await reader.read(BANNER_READ_SIZE)
    finally:
        await _close_writer(writer)

    return data.strip() or None


async def grab_banner(
    host: str,
    port: int,
    timeout: float,
    trigger: bytes = BANNER_TRIGGER,
) -> Optional[bytes]:
    """
    Capture the first bytes a service sends on a fresh connection.

    A new connection is opened (the probe's connection is already gone), the
    trigger is written, and the first chunk received is returned stripped of
    surrounding whitespace. The whole exchange shares one timeout.

    Args:
        host: Hostname or IP address
        port: A port already known to be open
        timeout: Seconds allowed for connect, write and read together
        trigger: Bytes written after connecting (empty to send nothing)

    Returns:
        The stripped banner bytes, or None if nothing usable arrived
    """
    try:
        banner = await asyncio.wait_for(
            _read_banner(host, port, trigger),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        logger.debug(f"Banner grab timed out for port {port}")
        return None
    except OSError as e:
        logger.debug(f"Banner grab failed for port {port}: {e}")
        return None

    if banner:
        logger.debug(f"Banner from port {port}: {banner[:80]!r}")
    return banner
