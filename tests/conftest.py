import asyncio
import os
import socket
import sys
from typing import List, Optional

import pytest
import pytest_asyncio

# Add the src directory to the Python path to make portprobe importable
# when the package is not installed in editable mode
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.join(project_root, "src"))

from portprobe.config import Config, OutputConfig, UIConfig  # noqa: E402


class Listener:
    """Local TCP server used as a scan target."""

    def __init__(self, payload: Optional[bytes] = None, wait_for_input: bool = False,
                 close_immediately: bool = False):
        self.payload = payload
        self.wait_for_input = wait_for_input
        self.close_immediately = close_immediately
        self.received: List[bytes] = []
        self.connections = 0
        self.disconnected = asyncio.Event()
        self.server: Optional[asyncio.AbstractServer] = None
        self._writers: List[asyncio.StreamWriter] = []

    @property
    def port(self) -> int:
        return self.server.sockets[0].getsockname()[1]

    async def start(self) -> "Listener":
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        return self

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.connections += 1
        self._writers.append(writer)
        try:
            if self.close_immediately:
                return
            if self.wait_for_input:
                data = await reader.read(64)
                self.received.append(data)
            if self.payload is not None:
                writer.write(self.payload)
                await writer.drain()
            # Hold the connection until the client goes away
            while True:
                data = await reader.read(64)
                if not data:
                    break
                self.received.append(data)
        except ConnectionError:
            pass
        finally:
            writer.close()
            self.disconnected.set()

    async def stop(self) -> None:
        for writer in self._writers:
            writer.close()
        self.server.close()
        await self.server.wait_closed()


@pytest_asyncio.fixture
async def tcp_listener():
    """Factory fixture starting local listeners; all are stopped on teardown."""
    listeners: List[Listener] = []

    async def _start(**kwargs) -> Listener:
        listener = await Listener(**kwargs).start()
        listeners.append(listener)
        return listener

    yield _start

    for listener in listeners:
        await listener.stop()


@pytest.fixture
def closed_port() -> int:
    """A local port with nothing listening on it (connections are refused)."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def test_settings():
    """Default settings with the progress bar turned off."""
    return Config(ui=UIConfig(show_progress=False, color_output=False), output=OutputConfig())
