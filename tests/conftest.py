"""
pytest configuration and fixtures.
"""

import asyncio
import socket
from typing import Callable, Dict, List, Optional, Union
from urllib.parse import urlsplit

import pytest
import pytest_asyncio

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from httpclient.core.resolver import Address
from httpclient.core.transport import Transport
from httpclient.errors import HTTPClientError
from httpclient.http.codec import receive_request
from httpclient.http.headers import Headers
from httpclient.http.request import Request
from httpclient.http.status_codes import HTTPStatus


# Reply that never comes: the handler waits until the server stops.
HANG = None

Reply = Union[bytes, Callable[[Request], bytes], None]


def http_response(
    status: int = 200,
    body: bytes = b"",
    headers=None,
    version: str = "HTTP/1.1",
) -> bytes:
    """Raw response bytes; Content-Length is added unless framing is given."""
    headers = Headers(headers)
    if "content-length" not in headers and "transfer-encoding" not in headers:
        headers["Content-Length"] = str(len(body))
    lines = [f"{version} {status} {HTTPStatus.phrase_for(status)}"]
    lines.extend(f"{name}: {value}" for name, value in headers.multi_items())
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body


class ScriptedServer:
    """
    Loopback HTTP/1.1 server answering by request path.

    Routes map a path to raw response bytes, a callable building them
    from the decoded Request, or HANG. Unknown paths get a 404.
    """

    def __init__(self):
        self.routes: Dict[str, Reply] = {}
        self.requests: List[Request] = []
        self.connections = 0
        self.port: Optional[int] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._transports: List[Transport] = []
        self._stopping = asyncio.Event()

    @property
    def base_url(self) -> str:
        return f"http://127.0.0.1:{self.port}"

    def url(self, path: str) -> str:
        return self.base_url + path

    def route(self, path: str, reply: Reply) -> None:
        self.routes[path] = reply

    async def start(self) -> "ScriptedServer":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def wait_for_connections(self, count: int, timeout: float = 1.0) -> None:
        """Wait until `count` connections have been accepted."""
        loop = asyncio.get_running_loop()
        give_up = loop.time() + timeout
        while self.connections < count and loop.time() < give_up:
            await asyncio.sleep(0.01)

    def drop_connections(self) -> None:
        """Close every accepted connection from the server side."""
        for transport in self._transports:
            transport.close()

    async def stop(self) -> None:
        self._stopping.set()
        self.drop_connections()
        self._server.close()
        try:
            await asyncio.wait_for(self._server.wait_closed(), timeout=1.0)
        except asyncio.TimeoutError:
            pass

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        transport = Transport(reader, writer)
        self._transports.append(transport)
        try:
            while True:
                request = await receive_request(transport)
                if request is None:
                    break
                self.requests.append(request)

                reply = self.routes.get(urlsplit(request.url).path, http_response(404))
                if callable(reply):
                    reply = reply(request)
                if reply is HANG:
                    await self._stopping.wait()
                    break

                transport.write(reply)
                await transport.drain()
                if b"connection: close" in reply.lower() or reply.startswith(b"HTTP/1.0"):
                    break
        except (HTTPClientError, ConnectionError):
            pass
        finally:
            transport.close()


@pytest_asyncio.fixture
async def server():
    """A started ScriptedServer, stopped after the test."""
    srv = await ScriptedServer().start()
    yield srv
    await srv.stop()


@pytest_asyncio.fixture
async def other_server():
    """A second server, i.e. a different origin."""
    srv = await ScriptedServer().start()
    yield srv
    await srv.stop()


@pytest_asyncio.fixture
async def transport_pair():
    """
    A connected (client, peer) pair of Transports over loopback TCP.

    Tests write raw bytes on one end and decode them on the other.
    """
    accepted = asyncio.get_running_loop().create_future()

    async def on_connect(reader, writer):
        accepted.set_result(Transport(reader, writer))

    listener = await asyncio.start_server(on_connect, "127.0.0.1", 0)
    port = listener.sockets[0].getsockname()[1]
    client = await Transport.open(Address("127.0.0.1", port))
    peer = await accepted

    yield client, peer

    client.close()
    peer.close()
    listener.close()
    try:
        await asyncio.wait_for(listener.wait_closed(), timeout=1.0)
    except asyncio.TimeoutError:
        pass


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing (nothing listens on it)."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


class FakeClock:
    """Manually advanced clock for TTL and expiry tests."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
