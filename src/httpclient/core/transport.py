"""
=============================================================================
TRANSPORT
=============================================================================

A Transport is ONE duplex byte stream to ONE peer: a TCP connection,
optionally wrapped in TLS. It knows nothing about HTTP.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL!
=============================================================================

    Server sends:                 Client might read:
        "HTTP/1.1 200 OK\\r\\n"       read() -> "HTTP/1.1 2"
        "Content-Length: 5\\r\\n"     read() -> "00 OK\\r\\nContent-Le"
        "\\r\\nhello"                 read() -> "ngth: 5\\r\\n\\r\\nhello"

The codec above us looks for delimiters (CRLF, blank line) and counts
bytes. The Transport only buffers and hands bytes over.

=============================================================================
TRANSPORT STATE MACHINE
=============================================================================

    CONNECTING ──────► OPEN ◄──────► DRAINING
        │               │                │
        │               ▼                │
        └─────────► CLOSED ◄─────────────┘

    CONNECTING  TCP connect / TLS handshake in progress
    OPEN        usable; reads and buffered writes allowed
    DRAINING    waiting for the write buffer to reach the OS
    CLOSED      socket released; every further call fails

=============================================================================
OWNERSHIP
=============================================================================

A Transport is never shared. While idle it belongs to the Connector;
while busy it is lent to exactly one request. At most one read and one
write may be outstanding at a time. A second concurrent read (or write)
is a caller bug and raises RuntimeError.

=============================================================================
"""

import asyncio
import logging
import ssl
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from ..errors import ConnectError, ProtocolError, TransportError
from .resolver import Address


logger = logging.getLogger(__name__)

# Stream buffer limit; also bounds a single readline().
STREAM_LIMIT = 64 * 1024


class TransportState(Enum):
    """Transport lifecycle states."""
    CONNECTING = "connecting"
    OPEN = "open"
    DRAINING = "draining"
    CLOSED = "closed"


@dataclass(frozen=True)
class TransportInfo:
    """
    Metadata about an open connection.

    A closed set of typed fields rather than an open map of "extra info".
    TLS fields are None for plain TCP.
    """
    peer_address: Optional[Tuple] = None
    local_address: Optional[Tuple] = None
    tls_version: Optional[str] = None
    cipher: Optional[str] = None
    alpn_protocol: Optional[str] = None

    @property
    def is_tls(self) -> bool:
        return self.tls_version is not None


class Transport:
    """
    A buffered, flow-controlled duplex byte stream.

    Built on asyncio streams: StreamReader holds received bytes until
    they are read, StreamWriter buffers outgoing bytes and drain() waits
    until the OS send buffer has room.

    Attributes:
        id: Short unique id, used in log lines.
        key: The pool key this transport was opened for (set by Connector).
        state: Current TransportState.
        info: TransportInfo captured at connect time.
        created_at: Monotonic timestamp of creation.
        last_activity: Monotonic timestamp of the last read or write.
        requests_served: Number of times a Connector lent this transport out.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        key=None,
    ):
        self.id = str(uuid.uuid4())[:8]
        self.key = key
        self.state = TransportState.OPEN
        self.created_at = time.monotonic()
        self.last_activity = self.created_at
        self.requests_served = 0

        self._reader = reader
        self._writer = writer
        self._reading = False
        self._writing = False
        self.info = _collect_info(writer)

    # =========================================================================
    # OPENING
    # =========================================================================

    @classmethod
    async def open(
        cls,
        address: Address,
        key=None,
        ssl_context: Optional[ssl.SSLContext] = None,
        server_hostname: Optional[str] = None,
    ) -> "Transport":
        """
        Connect to `address`, performing the TLS handshake when
        ssl_context is given (SNI and certificate checks use
        server_hostname).

        Raises:
            ConnectError: TCP connect or TLS handshake failed.
        """
        logger.debug(f"Connecting to {address.ip}:{address.port}")
        try:
            reader, writer = await asyncio.open_connection(
                host=address.ip,
                port=address.port,
                family=address.family,
                ssl=ssl_context,
                server_hostname=server_hostname if ssl_context else None,
                limit=STREAM_LIMIT,
            )
        except ssl.SSLError as e:
            raise ConnectError(
                f"TLS handshake with {address.ip}:{address.port} failed: {e}"
            ) from e
        except OSError as e:
            raise ConnectError(
                f"Cannot connect to {address.ip}:{address.port}: {e}"
            ) from e

        transport = cls(reader, writer, key=key)
        logger.debug(f"[{transport.id}] Connected to {address.ip}:{address.port}")
        return transport

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def closed(self) -> bool:
        return self.state is TransportState.CLOSED

    @property
    def idle_time(self) -> float:
        """Seconds since the last read or write."""
        return time.monotonic() - self.last_activity

    # =========================================================================
    # READING
    # =========================================================================

    async def read(self, max_bytes: int = STREAM_LIMIT) -> bytes:
        """
        Read up to max_bytes. Suspends until data arrives.

        Returns:
            Received bytes, or b"" on EOF.

        Raises:
            TransportError: Connection reset or transport closed.
        """
        self._begin_read()
        try:
            data = await self._reader.read(max_bytes)
        except OSError as e:
            raise TransportError(f"Read failed: {e}") from e
        finally:
            self._reading = False
        self.last_activity = time.monotonic()
        return data

    async def readline(self) -> bytes:
        """
        Read one line including its trailing b"\\n".

        Returns:
            The line, a partial line if EOF came first, or b"" on EOF.

        Raises:
            TransportError: Connection reset or transport closed.
            ProtocolError: The peer sent a line longer than STREAM_LIMIT.
        """
        self._begin_read()
        try:
            line = await self._reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            line = e.partial
        except asyncio.LimitOverrunError as e:
            raise ProtocolError(f"Line exceeds {STREAM_LIMIT} bytes") from e
        except OSError as e:
            raise TransportError(f"Read failed: {e}") from e
        finally:
            self._reading = False
        self.last_activity = time.monotonic()
        return line

    def _begin_read(self) -> None:
        if self.closed:
            raise TransportError(f"[{self.id}] Transport is closed")
        if self._reading:
            raise RuntimeError(f"[{self.id}] A read is already in progress")
        self._reading = True

    # =========================================================================
    # WRITING
    # =========================================================================

    def write(self, data: bytes) -> None:
        """Queue bytes for sending. Never blocks; call drain() to flush."""
        if self.closed:
            raise TransportError(f"[{self.id}] Transport is closed")
        if not data:
            return
        self._writer.write(data)
        self.last_activity = time.monotonic()

    async def drain(self) -> None:
        """
        Suspend until buffered bytes have been handed to the OS.

        Raises:
            TransportError: Broken pipe, reset, or transport closed.
        """
        if self.closed:
            raise TransportError(f"[{self.id}] Transport is closed")
        if self._writing:
            raise RuntimeError(f"[{self.id}] A write is already in progress")
        self._writing = True
        self.state = TransportState.DRAINING
        try:
            await self._writer.drain()
        except OSError as e:
            raise TransportError(f"Write failed: {e}") from e
        finally:
            self._writing = False
            if self.state is TransportState.DRAINING:
                self.state = TransportState.OPEN
        self.last_activity = time.monotonic()

    # =========================================================================
    # LIVENESS & CLOSING
    # =========================================================================

    def is_alive(self) -> bool:
        """
        Cheap, non-blocking probe used before reusing a pooled transport.

        A peer that closed an idle keep-alive connection has already
        delivered its FIN to our StreamReader (the loop keeps reading idle
        sockets), so at_eof() reflects it without any syscall here.
        """
        if self.closed:
            return False
        if self._reader.at_eof() or self._reader.exception() is not None:
            return False
        return not self._writer.is_closing()

    def close(self) -> None:
        """Release the socket. Idempotent."""
        if self.closed:
            return
        self.state = TransportState.CLOSED
        self._writer.close()
        logger.debug(f"[{self.id}] Closed after {self.requests_served} request(s)")

    async def wait_closed(self) -> None:
        """Close and wait until the socket is released."""
        self.close()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            logger.debug(f"[{self.id}] Error while closing: {e}")

    def __repr__(self) -> str:
        return f"<Transport {self.id} {self.key} {self.state.value}>"


def _collect_info(writer: asyncio.StreamWriter) -> TransportInfo:
    ssl_object = writer.get_extra_info("ssl_object")
    tls_version = cipher = alpn = None
    if ssl_object is not None:
        tls_version = ssl_object.version()
        cipher_info = ssl_object.cipher()
        cipher = cipher_info[0] if cipher_info else None
        alpn = ssl_object.selected_alpn_protocol()
    return TransportInfo(
        peer_address=writer.get_extra_info("peername"),
        local_address=writer.get_extra_info("sockname"),
        tls_version=tls_version,
        cipher=cipher,
        alpn_protocol=alpn,
    )
