"""
=============================================================================
HTTP/1.1 CODEC
=============================================================================

Encodes requests onto a Transport and decodes responses from it
(RFC 7230 message syntax).

=============================================================================
RESPONSE ANATOMY
=============================================================================

    HTTP/1.1 200 OK\\r\\n                     ← status line
    Content-Type: text/plain\\r\\n            ← headers (CRLF terminated)
    Transfer-Encoding: chunked\\r\\n
    \\r\\n                                    ← end of head
    5\\r\\n                                   ← chunk size (hex)
    hello\\r\\n                               ← chunk data
    0\\r\\n                                   ← last chunk
    \\r\\n                                    ← end of trailers

=============================================================================
BODY FRAMING (how do we know where the body ends?)
=============================================================================

    ┌─────────────────────────────────┬──────────────────────────────────┐
    │  Condition                      │  Framing                         │
    ├─────────────────────────────────┼──────────────────────────────────┤
    │  HEAD request, 1xx, 204, 304    │  NONE: no body at all            │
    │  Transfer-Encoding: chunked     │  CHUNKED: until the 0-size chunk │
    │  Content-Length: N              │  LENGTH: exactly N bytes         │
    │  none of the above              │  CLOSE: until the server closes  │
    └─────────────────────────────────┴──────────────────────────────────┘

Only NONE, CHUNKED and LENGTH bodies have a declared end. A connection
that closes BEFORE that end is a TransportError. With CLOSE framing EOF
is the normal end, and the connection can never be reused.

=============================================================================
PARSING CHALLENGES
=============================================================================

1. Conflicting Content-Length values are a request smuggling vector:
   rejected with ProtocolError.
2. Transfer-Encoding wins over Content-Length.
3. Interim 1xx responses (100 Continue, 103 Early Hints) precede the
   real one and are skipped.
4. Obsolete line folding (a header line starting with whitespace)
   continues the previous header value.

=============================================================================
"""

import logging
import re
from enum import Enum
from typing import Callable, List, Optional, Tuple
from urllib.parse import quote

from ..core.eventloop import Deadline
from ..core.transport import Transport
from ..errors import Phase, ProtocolError, StreamConsumedError, TransportError
from .headers import Headers
from .request import Request
from .response import Response, is_keep_alive
from .status_codes import HTTPStatus, NO_BODY_CODES


logger = logging.getLogger(__name__)

MAX_LINE_SIZE = 8190
MAX_HEADERS = 100
READ_CHUNK_SIZE = 64 * 1024

_STATUS_LINE = re.compile(r"^(HTTP/1\.[01]) ([0-9]{3})(?: (.*))?$")
_REQUEST_LINE = re.compile(r"^([A-Z]+) (\S+) (HTTP/1\.[01])$")
_TOKEN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
# Bare CR, LF and NUL may not appear inside a field value.
_BAD_VALUE_CHARS = re.compile(r"[\r\n\x00]")

# Characters left alone when re-quoting a request target.
_TARGET_SAFE = "/?#[]@!$&'()*+,;=:%~"


class Framing(Enum):
    """How the end of a message body is found."""
    NONE = "none"
    LENGTH = "length"
    CHUNKED = "chunked"
    CLOSE = "close"


ReleaseCallback = Callable[[bool], None]


# =============================================================================
# ENCODING
# =============================================================================

def build_request_head(request: Request) -> bytes:
    """
    Serialize the request line and headers, including Host and framing.

    Caller-supplied Content-Length / Transfer-Encoding are replaced for
    fixed bodies; for streamed bodies a caller Content-Length is honoured,
    otherwise chunked encoding is used.
    """
    headers = request.headers.copy()
    body = request.body

    if isinstance(body, (bytes, bytearray)):
        headers.pop("transfer-encoding", None)
        if body or request.expects_body or "content-length" in headers:
            headers["Content-Length"] = str(len(body))
    elif body is None:
        headers.pop("transfer-encoding", None)
        if request.expects_body and "content-length" not in headers:
            headers["Content-Length"] = "0"
    elif "content-length" not in headers:
        headers["Transfer-Encoding"] = "chunked"

    target = quote(request.target, safe=_TARGET_SAFE)
    lines = [f"{request.method} {target} HTTP/1.1"]
    if "host" not in headers:
        lines.append(f"Host: {request.host_header}")
    lines.extend(f"{name}: {value}" for name, value in headers.multi_items())
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")


async def send_request(transport: Transport, request: Request) -> None:
    """
    Write a complete request (head and body) and drain it to the OS.

    Raises:
        TransportError: The connection broke while writing.
        ProtocolError: A streamed body did not match its Content-Length.
    """
    head = build_request_head(request)
    transport.write(head)

    body = request.body
    if body is None:
        pass
    elif isinstance(body, (bytes, bytearray)):
        transport.write(bytes(body))
    else:
        declared = request.headers.get("content-length")
        chunked = declared is None
        sent = 0
        async for chunk in _iterate_body(body):
            if not chunk:
                continue
            sent += len(chunk)
            if chunked:
                transport.write(b"%x\r\n" % len(chunk) + chunk + b"\r\n")
            else:
                transport.write(chunk)
            # Flow control: do not buffer an unbounded stream in memory.
            await transport.drain()
        if chunked:
            transport.write(b"0\r\n\r\n")
        elif sent != int(declared):
            raise ProtocolError(
                f"Streamed body was {sent} bytes but Content-Length is {declared}"
            )

    await transport.drain()
    logger.debug(f"[{transport.id}] Sent {request.method} {request.target}")


async def _iterate_body(body):
    if hasattr(body, "__aiter__"):
        async for chunk in body:
            yield chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)
    else:
        for chunk in body:
            yield chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)


# =============================================================================
# DECODING
# =============================================================================

def parse_status_line(line: bytes) -> Tuple[str, int, str]:
    """
    Parse "HTTP/1.1 200 OK" into ("HTTP/1.1", 200, "OK").

    Raises:
        ProtocolError: Malformed status line.
    """
    text = line.rstrip(b"\r\n").decode("latin-1")
    match = _STATUS_LINE.match(text)
    if not match:
        raise ProtocolError(f"Malformed status line: {text[:100]!r}")
    version, code, reason = match.groups()
    return version, int(code), reason or ""


def parse_header_lines(lines: List[bytes]) -> Headers:
    """
    Parse raw header lines (without the blank terminator) into Headers.

    Raises:
        ProtocolError: Malformed line, invalid name, or too many headers.
    """
    if len(lines) > MAX_HEADERS:
        raise ProtocolError(f"Too many headers ({len(lines)} > {MAX_HEADERS})")

    fields: List[List[str]] = []
    for raw in lines:
        line = raw.rstrip(b"\r\n").decode("latin-1")
        if line[:1] in (" ", "\t"):
            if not fields:
                raise ProtocolError("Header continuation without a preceding header")
            if _BAD_VALUE_CHARS.search(line):
                raise ProtocolError(f"Invalid character in header {fields[-1][0]!r}")
            fields[-1][1] = f"{fields[-1][1]} {line.strip()}"
            continue
        name, sep, value = line.partition(":")
        if not sep or not _TOKEN.match(name):
            raise ProtocolError(f"Malformed header line: {line[:100]!r}")
        if _BAD_VALUE_CHARS.search(value):
            raise ProtocolError(f"Invalid character in header {name!r}")
        fields.append([name, value.strip()])

    return Headers((name, value) for name, value in fields)


async def _read_line(transport: Transport, what: str) -> bytes:
    line = await transport.readline()
    if len(line) > MAX_LINE_SIZE:
        raise ProtocolError(f"{what} exceeds {MAX_LINE_SIZE} bytes")
    if line and not line.endswith(b"\n"):
        raise TransportError(f"Connection closed in the middle of the {what}")
    return line


async def _read_headers(transport: Transport) -> Headers:
    lines: List[bytes] = []
    while True:
        line = await _read_line(transport, "header section")
        if not line:
            raise TransportError("Connection closed in the middle of the header section")
        if line in (b"\r\n", b"\n"):
            return parse_header_lines(lines)
        lines.append(line)
        if len(lines) > MAX_HEADERS:
            raise ProtocolError(f"Too many headers (> {MAX_HEADERS})")


def body_framing(method: str, status: Optional[int], headers: Headers) -> Tuple[Framing, int]:
    """
    Decide how the body of a message ends.

    Args:
        method: Request method (a HEAD response never has a body).
        status: Response status, or None when framing a request body.
        headers: Message headers.

    Returns:
        (framing, content_length); content_length is only meaningful
        for Framing.LENGTH.

    Raises:
        ProtocolError: Invalid or conflicting Content-Length.
    """
    if status is not None and (
        method == "HEAD" or HTTPStatus.is_informational(status) or status in NO_BODY_CODES
    ):
        return Framing.NONE, 0

    transfer_encoding = headers.get("transfer-encoding")
    if transfer_encoding:
        codings = [c.strip().lower() for c in transfer_encoding.split(",")]
        if codings[-1] == "chunked":
            return Framing.CHUNKED, 0
        if status is None:
            raise ProtocolError(f"Unsupported request Transfer-Encoding: {transfer_encoding}")
        return Framing.CLOSE, 0

    values = headers.get_all("content-length")
    if values:
        lengths = set()
        for value in ",".join(values).split(","):
            value = value.strip()
            if not value.isdigit():
                raise ProtocolError(f"Invalid Content-Length: {value!r}")
            lengths.add(int(value))
        if len(lengths) != 1:
            raise ProtocolError(f"Conflicting Content-Length values: {sorted(lengths)}")
        length = lengths.pop()
        return (Framing.LENGTH, length) if length else (Framing.NONE, 0)

    # A request without framing headers has no body.
    return (Framing.CLOSE, 0) if status is not None else (Framing.NONE, 0)


class BodyStream:
    """
    Lazy, single-pass async iterator over a message body.

    Calls `release(reusable)` exactly once: with the connection's
    keep-alive flag when the body reaches its declared end, with False
    on any error, early close or cancellation.
    """

    def __init__(
        self,
        transport: Transport,
        framing: Framing,
        length: int = 0,
        release: Optional[ReleaseCallback] = None,
        keep_alive: bool = True,
        deadline: Optional[Deadline] = None,
    ):
        self.transport = transport
        self.framing = framing
        self.length = length
        self._release = release
        self._keep_alive = keep_alive and framing is not Framing.CLOSE
        self._deadline = deadline or Deadline(None)

        self._remaining = length
        self._chunk_remaining = 0
        self._need_chunk_crlf = False
        self._started = False
        self._released = False
        self.done = False
        self.bytes_read = 0

        if framing is Framing.NONE:
            self._finish(self._keep_alive)

    def __aiter__(self) -> "BodyStream":
        if self._started:
            raise StreamConsumedError("Response body was already consumed")
        self._started = True
        return self

    async def __anext__(self) -> bytes:
        if self.done:
            raise StopAsyncIteration
        try:
            chunk = await self._deadline.run(self._next_chunk(), Phase.RECEIVE)
        except BaseException:
            self._finish(False)
            raise
        if chunk is None:
            self._finish(self._keep_alive)
            raise StopAsyncIteration
        self.bytes_read += len(chunk)
        return chunk

    async def aclose(self) -> None:
        """Abandon the rest of the body. The connection is not reused."""
        self._started = True
        self._finish(False)

    def _finish(self, reusable: bool) -> None:
        if not self.done:
            self.done = True
        if not self._released:
            self._released = True
            if self._release is not None:
                self._release(reusable)

    async def _next_chunk(self) -> Optional[bytes]:
        if self.framing is Framing.LENGTH:
            return await self._next_length_chunk()
        if self.framing is Framing.CHUNKED:
            return await self._next_chunked_chunk()
        if self.framing is Framing.CLOSE:
            data = await self.transport.read(READ_CHUNK_SIZE)
            return data or None
        return None

    async def _next_length_chunk(self) -> Optional[bytes]:
        if self._remaining == 0:
            return None
        data = await self.transport.read(min(self._remaining, READ_CHUNK_SIZE))
        if not data:
            raise TransportError(
                f"Connection closed with {self._remaining} of "
                f"{self.length} body bytes outstanding"
            )
        self._remaining -= len(data)
        return data

    async def _next_chunked_chunk(self) -> Optional[bytes]:
        if self._chunk_remaining == 0:
            if self._need_chunk_crlf:
                line = await _read_line(self.transport, "chunk terminator")
                if not line:
                    raise TransportError("Connection closed inside a chunked body")
                if line not in (b"\r\n", b"\n"):
                    raise ProtocolError("Missing CRLF after chunk data")
                self._need_chunk_crlf = False

            size = await self._read_chunk_size()
            if size == 0:
                await self._read_trailers()
                return None
            self._chunk_remaining = size

        data = await self.transport.read(min(self._chunk_remaining, READ_CHUNK_SIZE))
        if not data:
            raise TransportError("Connection closed inside a chunked body")
        self._chunk_remaining -= len(data)
        if self._chunk_remaining == 0:
            self._need_chunk_crlf = True
        return data

    async def _read_chunk_size(self) -> int:
        line = await _read_line(self.transport, "chunk size line")
        if not line:
            raise TransportError("Connection closed inside a chunked body")
        size_text = line.split(b";", 1)[0].strip()
        try:
            if not size_text or size_text.startswith((b"-", b"+", b"0x", b"0X")):
                raise ValueError(size_text)
            return int(size_text, 16)
        except ValueError:
            raise ProtocolError(f"Invalid chunk size: {size_text[:20]!r}") from None

    async def _read_trailers(self) -> None:
        count = 0
        while True:
            line = await _read_line(self.transport, "trailer section")
            if not line:
                raise TransportError("Connection closed inside the chunked trailer")
            if line in (b"\r\n", b"\n"):
                return
            count += 1
            if count > MAX_HEADERS:
                raise ProtocolError("Too many trailer fields")


async def receive_response(
    transport: Transport,
    request: Request,
    release: Optional[ReleaseCallback] = None,
    deadline: Optional[Deadline] = None,
) -> Response:
    """
    Read a response head and return a Response whose body is lazy.

    Interim 1xx responses are skipped. `release(reusable)` is called once
    the body is finished (immediately for bodiless responses).

    Raises:
        ProtocolError: Malformed status line, header or framing.
        TransportError: Connection closed before the head was complete.
    """
    while True:
        line = await _read_line(transport, "status line")
        if not line:
            raise TransportError("Connection closed before a response was received")
        version, status, reason = parse_status_line(line)
        headers = await _read_headers(transport)
        if HTTPStatus.is_informational(status) and status != HTTPStatus.SWITCHING_PROTOCOLS:
            logger.debug(f"[{transport.id}] Skipping interim {status} response")
            continue
        break

    framing, length = body_framing(request.method, status, headers)
    # An upgraded connection belongs to the upgrade handler, never to the pool.
    keep_alive = is_keep_alive(version, headers) and status != HTTPStatus.SWITCHING_PROTOCOLS

    stream = BodyStream(
        transport,
        framing,
        length,
        release=release,
        keep_alive=keep_alive,
        deadline=deadline,
    )
    response = Response(
        status_code=status,
        reason=reason,
        headers=headers,
        version=version,
        url=request.url,
        request=request,
        stream=stream,
    )
    if framing is Framing.NONE:
        response.stream = None
        response._content = b""

    logger.debug(
        f"[{transport.id}] {version} {status} {reason} "
        f"({framing.value}{f' {length}' if framing is Framing.LENGTH else ''})"
    )
    return response


async def receive_request(transport: Transport, scheme: str = "http") -> Optional[Request]:
    """
    Read a complete request, body included (the server side of the codec).

    Used to decode what send_request() wrote, e.g. on a loopback
    connection in tests.

    Returns:
        The Request, or None if the peer closed before sending anything.

    Raises:
        ProtocolError: Malformed request line, header or framing.
        TransportError: Connection closed mid-message.
    """
    line = await _read_line(transport, "request line")
    if not line:
        return None
    text = line.rstrip(b"\r\n").decode("latin-1")
    match = _REQUEST_LINE.match(text)
    if not match:
        raise ProtocolError(f"Malformed request line: {text[:100]!r}")
    method, target, _version = match.groups()

    headers = await _read_headers(transport)
    framing, length = body_framing(method, None, headers)
    stream = BodyStream(transport, framing, length)
    body = b"".join([chunk async for chunk in stream]) if framing is not Framing.NONE else b""

    host = headers.get("host", "localhost")
    return Request(method=method, url=f"{scheme}://{host}{target}", headers=headers, body=body)
