import asyncio
import json
import random
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from portprobe.tools.network.port_scanner import PortResult, PortScanner, scan_ports
from portprobe.tools.network.probes import CloseReason, PortState, ProbeResult
from portprobe.utils.exceptions import ScanError

SCANNER = "portprobe.tools.network.port_scanner"


class ProbeRecorder:
    """Fake prober that records timing events and tracks probes in flight."""

    def __init__(self, open_ports=(), delays=None, on_start=None):
        self.open_ports = set(open_ports)
        self.delays = delays or {}
        self.on_start = on_start
        self.events = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls = []

    async def probe(self, host, port, timeout):
        self.calls.append(port)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.events.append(("start", port))
        if self.on_start:
            self.on_start(port)
        try:
            await asyncio.sleep(self.delays.get(port, 0))
        finally:
            self.in_flight -= 1
            self.events.append(("end", port))
        state = PortState.OPEN if port in self.open_ports else PortState.CLOSED
        reason = None if state == PortState.OPEN else CloseReason.REFUSED
        return ProbeResult(port=port, state=state, reason=reason)

    async def banner(self, host, port, timeout):
        self.events.append(("banner_start", port))
        await asyncio.sleep(0.01)
        self.events.append(("banner_end", port))
        return f"banner-{port}".encode()


def _index(events, kind, port):
    return events.index((kind, port))


class TestBatchScheduling:
    """Test the batch barrier and concurrency ceiling."""

    @pytest.mark.asyncio
    async def test_never_exceeds_concurrency(self):
        ports = list(range(1000, 1023))
        delays = {p: random.uniform(0, 0.02) for p in ports}
        recorder = ProbeRecorder(delays=delays)

        with patch(f"{SCANNER}.probe_port", new=recorder.probe):
            scanner = PortScanner("127.0.0.1", ports, timeout=1.0, concurrency=5, include_closed=True)
            await scanner.scan()

        assert recorder.max_in_flight <= 5
        assert sorted(recorder.calls) == ports

    @pytest.mark.asyncio
    async def test_next_batch_starts_after_previous_settles(self):
        ports = list(range(1, 12))
        delays = {p: random.uniform(0, 0.03) for p in ports}
        recorder = ProbeRecorder(delays=delays)

        with patch(f"{SCANNER}.probe_port", new=recorder.probe):
            scanner = PortScanner("127.0.0.1", ports, timeout=1.0, concurrency=4)
            await scanner.scan()

        batches = [ports[i:i + 4] for i in range(0, len(ports), 4)]
        for previous, following in zip(batches, batches[1:]):
            last_end = max(_index(recorder.events, "end", p) for p in previous)
            first_start = min(_index(recorder.events, "start", p) for p in following)
            assert last_end < first_start

    @pytest.mark.asyncio
    async def test_banner_grabs_finish_before_next_batch(self):
        ports = [21, 22, 23, 24, 25, 26]
        recorder = ProbeRecorder(open_ports={22, 23, 25})

        with patch(f"{SCANNER}.probe_port", new=recorder.probe), \
                patch(f"{SCANNER}.grab_banner", new=recorder.banner):
            scanner = PortScanner("127.0.0.1", ports, timeout=1.0, concurrency=3, grab_banners=True)
            results = await scanner.scan()

        # Batch one is 21-23; its banner grabs end before 24 starts
        assert _index(recorder.events, "banner_end", 23) < _index(recorder.events, "start", 24)
        # Banner grabs within a batch never overlap
        assert _index(recorder.events, "banner_end", 22) < _index(recorder.events, "banner_start", 23)
        assert [r.port for r in results] == [22, 23, 25]
        assert results[0].banner == b"banner-22"

    @pytest.mark.asyncio
    async def test_single_port_is_one_batch(self):
        probe = AsyncMock(return_value=ProbeResult(port=443, state=PortState.OPEN))

        with patch(f"{SCANNER}.probe_port", new=probe):
            scanner = PortScanner("127.0.0.1", [443], timeout=1.0, concurrency=100)
            results = await scanner.scan()

        probe.assert_awaited_once_with("127.0.0.1", 443, 1.0)
        assert [r.port for r in results] == [443]
        assert list(scanner.session.batches()) == [[443]]

    @pytest.mark.asyncio
    async def test_empty_port_list(self):
        probe = AsyncMock()

        with patch(f"{SCANNER}.probe_port", new=probe):
            scanner = PortScanner("127.0.0.1", [], timeout=1.0, concurrency=10)
            results = await scanner.scan()

        probe.assert_not_awaited()
        assert results == []
        summary = scanner.summary()
        assert (summary.open_count, summary.closed_count, summary.total_count) == (0, 0, 0)


class TestResultOrdering:
    """Test that reporting follows input order, not completion order."""

    @pytest.mark.asyncio
    async def test_order_matches_input_under_random_delays(self):
        ports = [8080, 22, 443, 21, 3306, 80, 25, 9090, 53]
        delays = {p: random.uniform(0, 0.05) for p in ports}
        # Make completion order the reverse of input order in the first batch
        delays.update({8080: 0.06, 22: 0.04, 443: 0.02, 21: 0.0})
        recorder = ProbeRecorder(open_ports=ports, delays=delays)

        with patch(f"{SCANNER}.probe_port", new=recorder.probe):
            scanner = PortScanner("127.0.0.1", ports, timeout=1.0, concurrency=4)
            streamed = [r.port async for r in scanner.iter_scan()]

        assert streamed == ports
        assert [r.port for r in scanner.results] == ports

    @pytest.mark.asyncio
    async def test_duplicates_reported_independently(self):
        recorder = ProbeRecorder(open_ports={80})

        with patch(f"{SCANNER}.probe_port", new=recorder.probe):
            scanner = PortScanner("127.0.0.1", [80, 22, 80], timeout=1.0, concurrency=2, include_closed=True)
            results = await scanner.scan()

        assert [r.port for r in results] == [80, 22, 80]
        assert recorder.calls.count(80) == 2
        assert scanner.summary().open_count == 2


class TestSessionTally:
    """Test the running counters kept on the scan session."""

    @pytest.mark.asyncio
    async def test_tally_advances_per_port(self):
        ports = list(range(100, 110))
        recorder = ProbeRecorder(open_ports={101, 105, 106})
        observed = []

        with patch(f"{SCANNER}.probe_port", new=recorder.probe):
            scanner = PortScanner("127.0.0.1", ports, timeout=1.0, concurrency=3)
            async for result in scanner.iter_scan():
                observed.append((scanner.session.scanned, scanner.session.open_count))

        assert [scanned for scanned, _ in observed] == list(range(1, 11))
        open_counts = [count for _, count in observed]
        assert open_counts == sorted(open_counts)
        assert open_counts[-1] == 3
        assert scanner.session.progress == 1.0

    @pytest.mark.asyncio
    async def test_include_closed_filters_results_not_stream(self):
        recorder = ProbeRecorder(open_ports={80})

        with patch(f"{SCANNER}.probe_port", new=recorder.probe):
            scanner = PortScanner("127.0.0.1", [79, 80, 81], timeout=1.0, concurrency=10)
            streamed = [r async for r in scanner.iter_scan()]

        assert len(streamed) == 3
        assert [r.port for r in scanner.results] == [80]
        summary = scanner.summary()
        assert (summary.open_count, summary.closed_count, summary.total_count) == (1, 2, 3)

    @pytest.mark.asyncio
    async def test_closed_results_keep_reason(self):
        recorder = ProbeRecorder()

        with patch(f"{SCANNER}.probe_port", new=recorder.probe):
            scanner = PortScanner("127.0.0.1", [81], timeout=1.0, concurrency=1, include_closed=True)
            results = await scanner.scan()

        assert results[0].state == PortState.CLOSED
        assert results[0].reason == CloseReason.REFUSED
        assert results[0].banner is None


class TestFaultIsolation:
    """Test that per-port failures never abort the scan."""

    @pytest.mark.asyncio
    async def test_unexpected_probe_error_marks_port_closed(self):
        async def flaky(host, port, timeout):
            if port == 2:
                raise ValueError("boom")
            return ProbeResult(port=port, state=PortState.OPEN)

        with patch(f"{SCANNER}.probe_port", new=flaky):
            scanner = PortScanner("127.0.0.1", [1, 2, 3], timeout=1.0, concurrency=3, include_closed=True)
            results = await scanner.scan()

        assert [r.state for r in results] == [PortState.OPEN, PortState.CLOSED, PortState.OPEN]
        assert results[1].reason == CloseReason.ERROR

    @pytest.mark.asyncio
    async def test_missing_banner_keeps_port_open(self):
        probe = AsyncMock(return_value=ProbeResult(port=22, state=PortState.OPEN))
        banner = AsyncMock(return_value=None)

        with patch(f"{SCANNER}.probe_port", new=probe), patch(f"{SCANNER}.grab_banner", new=banner):
            scanner = PortScanner("127.0.0.1", [22], timeout=1.0, concurrency=1, grab_banners=True)
            results = await scanner.scan()

        assert results[0].is_open
        assert results[0].banner is None
        assert results[0].service == "SSH"

    @pytest.mark.asyncio
    async def test_banner_only_for_open_ports_when_enabled(self):
        recorder = ProbeRecorder(open_ports={80})
        banner = AsyncMock(return_value=b"HTTP/1.1 400 Bad Request")

        with patch(f"{SCANNER}.probe_port", new=recorder.probe), patch(f"{SCANNER}.grab_banner", new=banner):
            scanner = PortScanner("127.0.0.1", [79, 80], timeout=1.0, concurrency=2)
            await scanner.scan()
            banner.assert_not_awaited()

            scanner.grab_banners = True
            results = await scanner.scan()

        banner.assert_awaited_once_with("127.0.0.1", 80, 1.0)
        assert results[0].banner_text == "HTTP/1.1 400 Bad Request"

    @pytest.mark.asyncio
    async def test_concurrent_runs_rejected(self):
        recorder = ProbeRecorder(delays={1: 0.05})

        with patch(f"{SCANNER}.probe_port", new=recorder.probe):
            scanner = PortScanner("127.0.0.1", [1], timeout=1.0, concurrency=1)
            first = asyncio.ensure_future(scanner.scan())
            await asyncio.sleep(0)
            with pytest.raises(ScanError):
                await scanner.scan()
            await first


class TestCancellation:
    """Test cooperative cancellation between batches."""

    @pytest.mark.asyncio
    async def test_cancel_drains_current_batch(self):
        ports = list(range(1, 10))
        scanner = None

        def cancel_on_second_port(port):
            if port == 2:
                scanner.cancel()

        recorder = ProbeRecorder(delays={p: 0.01 for p in ports}, on_start=cancel_on_second_port)

        with patch(f"{SCANNER}.probe_port", new=recorder.probe):
            scanner = PortScanner("127.0.0.1", ports, timeout=1.0, concurrency=3, include_closed=True)
            results = await scanner.scan()

        assert recorder.calls == [1, 2, 3]
        assert [r.port for r in results] == [1, 2, 3]
        summary = scanner.summary()
        assert summary.cancelled is True
        assert summary.total_count == 3

    @pytest.mark.asyncio
    async def test_cancel_during_last_batch_is_not_reported(self):
        scanner = None

        def cancel_now(port):
            scanner.cancel()

        recorder = ProbeRecorder(on_start=cancel_now)

        with patch(f"{SCANNER}.probe_port", new=recorder.probe):
            scanner = PortScanner("127.0.0.1", [1, 2], timeout=1.0, concurrency=2)
            await scanner.scan()

        assert scanner.cancel_requested
        assert scanner.summary().cancelled is False
        assert scanner.summary().total_count == 2

    @pytest.mark.asyncio
    async def test_rerun_after_cancelled_scan_probes_all_ports(self):
        ports = [1, 2, 3, 4]
        scanner = None

        def cancel_on_first_port(port):
            if port == 1:
                scanner.cancel()

        recorder = ProbeRecorder(open_ports=ports, on_start=cancel_on_first_port)

        with patch(f"{SCANNER}.probe_port", new=recorder.probe):
            scanner = PortScanner("127.0.0.1", ports, timeout=1.0, concurrency=2)
            first = await scanner.scan()
            assert [r.port for r in first] == [1, 2]
            assert scanner.summary().cancelled is True

            recorder.on_start = None
            results = await scanner.scan()

        assert [r.port for r in results] == ports
        assert not scanner.cancel_requested
        summary = scanner.summary()
        assert summary.cancelled is False
        assert summary.total_count == 4


class TestEndToEnd:
    """End-to-end scans through the real prober."""

    @staticmethod
    def _fake_network(open_port):
        """open_connection replacement: one port accepts, every other port drops packets."""
        async def open_connection(host, port):
            if port == open_port:
                writer = MagicMock()
                writer.wait_closed = AsyncMock(return_value=None)
                return MagicMock(), writer
            await asyncio.sleep(3600)
        return open_connection

    @pytest.mark.asyncio
    async def test_open_and_silent_port(self):
        with patch("portprobe.tools.network.probes.asyncio.open_connection", new=self._fake_network(80)):
            scanner = PortScanner("192.0.2.10", [80, 81], timeout=0.2, concurrency=10)
            results = await scanner.scan()

        assert [(r.port, r.state) for r in results] == [(80, PortState.OPEN)]
        assert results[0].service == "HTTP"

    @pytest.mark.asyncio
    async def test_open_and_silent_port_with_closed(self):
        with patch("portprobe.tools.network.probes.asyncio.open_connection", new=self._fake_network(80)):
            scanner = PortScanner("192.0.2.10", [80, 81], timeout=0.2, concurrency=10, include_closed=True)
            start = time.perf_counter()
            results = await scanner.scan()
            elapsed = time.perf_counter() - start

        assert [(r.port, r.state) for r in results] == [(80, PortState.OPEN), (81, PortState.CLOSED)]
        assert results[1].reason == CloseReason.TIMEOUT
        assert elapsed >= 0.18
        assert results[1].elapsed >= 0.18

    @pytest.mark.asyncio
    async def test_local_listener_scan(self, tcp_listener, closed_port):
        listener = await tcp_listener(payload=b"SSH-2.0-OpenSSH_8.9\r\n", wait_for_input=True)

        results, summary = await scan_ports(
            "127.0.0.1",
            [closed_port, listener.port],
            timeout=1.0,
            concurrency=10,
            include_closed=True,
            grab_banners=True,
        )

        assert [r.port for r in results] == [closed_port, listener.port]
        assert results[0].state == PortState.CLOSED
        assert results[1].state == PortState.OPEN
        assert results[1].banner == b"SSH-2.0-OpenSSH_8.9"
        assert (summary.open_count, summary.closed_count, summary.total_count) == (1, 1, 2)


class TestSerialization:
    """Test dictionary and JSON views of results."""

    def test_port_result_to_dict(self):
        result = PortResult(port=22, state=PortState.OPEN, service="SSH", banner=b"SSH-2.0-x\xff")

        data = result.to_dict()

        assert data["state"] == "open"
        assert data["service"] == "SSH"
        assert data["banner"] == "SSH-2.0-x�"
        assert data["reason"] is None

    @pytest.mark.asyncio
    async def test_scanner_to_json(self):
        recorder = ProbeRecorder(open_ports={443})

        with patch(f"{SCANNER}.probe_port", new=recorder.probe):
            scanner = PortScanner("127.0.0.1", [442, 443], timeout=1.0, concurrency=2)
            await scanner.scan()

        document = json.loads(scanner.to_json())
        assert document["target"] == "127.0.0.1"
        assert document["summary"]["open"] == 1
        assert document["summary"]["total"] == 2
        assert [r["port"] for r in document["results"]] == [443]
        assert document["results"][0]["service"] == "HTTPS"
