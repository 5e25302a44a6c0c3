"""
Port Scanner Module for portprobe.

Drives TCP connect probes against a single host in fixed-size batches,
annotates each port with its well-known service and, optionally, a banner.
"""
import asyncio
import json
import time
from dataclasses import dataclass
from datetime import datetime as dt, timezone
from typing import Any, AsyncIterator, Dict, Iterable, Iterator, List, Optional, Tuple

from portprobe.tools.network.probes import (
    CloseReason,
    PortState,
    ProbeResult,
    grab_banner,
    probe_port,
)
from portprobe.tools.network.services import resolve_service
from portprobe.utils.exceptions import ScanError
from portprobe.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class PortResult:
    """Represents the annotated result of scanning a single port."""

    port: int
    state: PortState
    service: str
    banner: Optional[bytes] = None
    reason: Optional[CloseReason] = None
    elapsed: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.state is PortState.OPEN

    @property
    def banner_text(self) -> Optional[str]:
        """The banner decoded for display, or None."""
        if self.banner is None:
            return None
        return self.banner.decode("utf-8", errors="replace")

    def to_dict(self) -> Dict[str, Any]:
        """Convert the result to a dictionary."""
        return {
            "port": self.port,
            "state": self.state.value,
            "service": self.service,
            "banner": self.banner_text,
            "reason": self.reason.value if self.reason else None,
            "elapsed": self.elapsed,
        }


@dataclass
class ScanSession:
    """
    Mutable state of one scan run.

    Only the scanner's control coroutine updates the tally, one port at a
    time, after that port's probe (and banner grab) has settled.
    """

    ports: List[int]
    concurrency: int
    timeout: float
    banner_timeout: float
    grab_banners: bool = False
    include_closed: bool = False
    scanned: int = 0
    open_count: int = 0
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    cancelled: bool = False

    @property
    def total(self) -> int:
        return len(self.ports)

    @property
    def closed_count(self) -> int:
        return self.scanned - self.open_count

    @property
    def progress(self) -> float:
        if not self.ports:
            return 1.0
        return self.scanned / self.total

    @property
    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at

    def batches(self) -> Iterator[List[int]]:
        """Split the ports into consecutive batches of at most ``concurrency``."""
        for i in range(0, len(self.ports), self.concurrency):
            yield self.ports[i:i + self.concurrency]

    def record(self, result: "PortResult") -> None:
        self.scanned += 1
        if result.is_open:
            self.open_count += 1


@dataclass(frozen=True)
class ScanSummary:
    """Final counts of a scan run."""

    open_count: int
    closed_count: int
    total_count: int
    elapsed: float
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "open": self.open_count,
            "closed": self.closed_count,
            "total": self.total_count,
            "elapsed": round(self.elapsed, 3),
            "cancelled": self.cancelled,
        }


class PortScanner:
    """Asynchronous TCP connect scanner with batch-bounded concurrency."""

    def __init__(
        self,
        target: str,
        ports: Iterable[int],
        timeout: float = 2.0,
        concurrency: int = 100,
        include_closed: bool = False,
        grab_banners: bool = False,
        banner_timeout: Optional[float] = None,
    ):
        """
        Initialize the port scanner.

        The arguments are expected to be validated already (ports in range,
        concurrency of at least one).

        Args:
            target: Target hostname or IP address
            ports: Ports to scan, in the order they should be reported
            timeout: Connection timeout in seconds
            concurrency: Maximum number of probes in flight at once
            include_closed: Whether closed ports are kept in ``results``
            grab_banners: Whether to grab banners from open ports
            banner_timeout: Banner grab timeout in seconds (defaults to ``timeout``)
        """
        self.target = target
        self.ports: List[int] = list(ports)
        self.timeout = timeout
        self.concurrency = concurrency
        self.include_closed = include_closed
        self.grab_banners = grab_banners
        self.banner_timeout = banner_timeout if banner_timeout is not None else timeout

        self.results: List[PortResult] = []
        self.session = self._new_session()
        self._cancel_requested = False
        self._running = False

    def _new_session(self) -> ScanSession:
        return ScanSession(
            ports=self.ports,
            concurrency=self.concurrency,
            timeout=self.timeout,
            banner_timeout=self.banner_timeout,
            grab_banners=self.grab_banners,
            include_closed=self.include_closed,
        )

    def cancel(self) -> None:
        """Stop the running scan before its next batch; the batch in flight still completes."""
        if not self._cancel_requested:
            logger.info(f"Cancellation requested for scan of {self.target}")
        self._cancel_requested = True

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    async def _probe_batch(self, batch: List[int]) -> List[ProbeResult]:
        outcomes = await asyncio.gather(
            *(probe_port(self.target, port, self.timeout) for port in batch),
            return_exceptions=True,
        )

        # gather keeps argument order, so this is input order
        probes = []
        for port, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Error scanning port {port}: {outcome!r}")
                outcome = ProbeResult(port=port, state=PortState.CLOSED, reason=CloseReason.ERROR)
            probes.append(outcome)
        return probes

    async def _annotate(self, probe: ProbeResult) -> PortResult:
        banner = None
        if probe.is_open and self.grab_banners:
            try:
                banner = await grab_banner(self.target, probe.port, self.banner_timeout)
            except Exception as e:
                logger.error(f"Error grabbing banner from port {probe.port}: {e!r}")

        return PortResult(
            port=probe.port,
            state=probe.state,
            service=resolve_service(probe.port),
            banner=banner,
            reason=probe.reason,
            elapsed=probe.elapsed,
        )

    async def iter_scan(self) -> AsyncIterator[PortResult]:
        """
        Run the scan, yielding one result per port as it is processed.

        Every port is yielded, open or closed, in input order. Batch ``k + 1``
        is not started until every probe and banner grab of batch ``k`` has
        settled and been yielded.
        """
        if self._running:
            raise ScanError(f"A scan of {self.target} is already running")

        self._running = True
        self._cancel_requested = False
        self.results = []
        self.session = session = self._new_session()
        session.started_at = time.monotonic()

        logger.info(
            f"Starting port scan on {self.target}: {session.total} ports, "
            f"concurrency {self.concurrency}, timeout {self.timeout}s"
        )

        try:
            for index, batch in enumerate(session.batches(), start=1):
                if self._cancel_requested:
                    session.cancelled = True
                    logger.info(
                        f"Scan cancelled before batch {index}: "
                        f"{session.scanned}/{session.total} ports processed"
                    )
                    break

                logger.debug(f"Batch {index}: probing {len(batch)} ports starting at {batch[0]}")
                for probe in await self._probe_batch(batch):
                    result = await self._annotate(probe)
                    session.record(result)
                    if result.is_open or self.include_closed:
                        self.results.append(result)
                    yield result
        finally:
            session.finished_at = time.monotonic()
            self._running = False

        logger.info(
            f"Scan completed: {session.open_count} open, {session.closed_count} closed "
            f"in {session.elapsed:.2f}s"
        )
        if session.open_count > 0:
            logger.info(f"Open ports found: {[r.port for r in self.get_open_ports()]}")

    async def scan(self) -> List[PortResult]:
        """
        Perform the port scan.

        Returns:
            Open results, plus closed ones when ``include_closed`` is set
        """
        async for _ in self.iter_scan():
            pass
        return self.results

    def summary(self) -> ScanSummary:
        """Counts for the current (or last) scan run."""
        session = self.session
        return ScanSummary(
            open_count=session.open_count,
            closed_count=session.closed_count,
            total_count=session.scanned,
            elapsed=session.elapsed,
            cancelled=session.cancelled,
        )

    def get_open_ports(self) -> List[PortResult]:
        """Get a list of open ports."""
        return [r for r in self.results if r.is_open]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "timestamp": dt.now(timezone.utc).isoformat(),
            "summary": self.summary().to_dict(),
            "results": [r.to_dict() for r in self.results],
        }

    def to_json(self) -> str:
        """Convert scan results to JSON."""
        return json.dumps(self.to_dict(), indent=2)


# Helper function for programmatic usage
async def scan_ports(
    target: str,
    ports: Iterable[int],
    timeout: float = 2.0,
    concurrency: int = 100,
    include_closed: bool = False,
    grab_banners: bool = False,
    banner_timeout: Optional[float] = None,
) -> Tuple[List[PortResult], ScanSummary]:
    """Scan ports on a target and return the results with their summary.

    Args:
        target: Target hostname or IP address
        ports: Ports to scan, in reporting order
        timeout: Connection timeout in seconds
        concurrency: Maximum number of probes in flight at once
        include_closed: Whether closed ports are included in the results
        grab_banners: Whether to grab banners from open ports
        banner_timeout: Banner grab timeout in seconds

    Returns:
        Tuple of (results, summary)
    """
    scanner = PortScanner(
        target=target,
        ports=ports,
        timeout=timeout,
        concurrency=concurrency,
        include_closed=include_closed,
        grab_banners=grab_banners,
        banner_timeout=banner_timeout,
    )
    results = await scanner.scan()
    return results, scanner.summary()
