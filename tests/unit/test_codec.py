"""
Unit tests for the HTTP/1.1 codec.
"""

import pytest

from httpclient.errors import ProtocolError, StreamConsumedError, TransportError
from httpclient.http.codec import (
    Framing,
    body_framing,
    build_request_head,
    parse_header_lines,
    parse_status_line,
    receive_request,
    receive_response,
    send_request,
)
from httpclient.http.headers import Headers
from httpclient.http.request import Request


def get(url: str = "http://example.com/") -> Request:
    return Request("GET", url)


async def feed(peer, data: bytes, close: bool = False) -> None:
    peer.write(data)
    await peer.drain()
    if close:
        peer.close()


class TestBuildRequestHead:
    """Tests for request serialization."""

    def test_get_request_line_and_host(self):
        """Test the request line, origin-form target and Host header."""
        head = build_request_head(Request("GET", "http://example.com:8080/a b?x=1"))

        assert head.startswith(b"GET /a%20b?x=1 HTTP/1.1\r\nHost: example.com:8080\r\n")
        assert head.endswith(b"\r\n\r\n")
        assert b"Content-Length" not in head

    def test_default_port_omitted(self):
        """Test that the default port does not appear in Host."""
        head = build_request_head(get("https://example.com/"))

        assert b"Host: example.com\r\n" in head

    def test_fixed_body_gets_content_length(self):
        """Test Content-Length for a bytes body."""
        head = build_request_head(Request("POST", "http://example.com/", body=b"abc"))

        assert b"Content-Length: 3\r\n" in head
        assert b"Transfer-Encoding" not in head

    def test_empty_post_gets_zero_length(self):
        """Test that a bodiless POST announces an empty body."""
        head = build_request_head(Request("POST", "http://example.com/"))

        assert b"Content-Length: 0\r\n" in head

    def test_stream_body_is_chunked(self):
        """Test that a streamed body without a length is chunked."""
        head = build_request_head(Request("PUT", "http://example.com/", body=[b"a", b"b"]))

        assert b"Transfer-Encoding: chunked\r\n" in head
        assert b"Content-Length" not in head

    def test_caller_host_kept(self):
        """Test that a caller Host header is not duplicated."""
        request = Request("GET", "http://127.0.0.1/", headers={"Host": "virtual.example"})
        head = build_request_head(request)

        assert head.count(b"Host:") == 1
        assert b"Host: virtual.example\r\n" in head


class TestParsing:
    """Tests for status line, header and framing parsing."""

    def test_status_line(self):
        """Test parsing a status line."""
        assert parse_status_line(b"HTTP/1.1 404 Not Found\r\n") == ("HTTP/1.1", 404, "Not Found")
        assert parse_status_line(b"HTTP/1.0 200\r\n") == ("HTTP/1.0", 200, "")

    @pytest.mark.parametrize("line", [b"HTTP/2 200 OK\r\n", b"HTTP/1.1 20 OK\r\n", b"garbage\r\n"])
    def test_malformed_status_line(self, line: bytes):
        """Test that malformed status lines are rejected."""
        with pytest.raises(ProtocolError):
            parse_status_line(line)

    def test_header_lines(self):
        """Test header parsing with obsolete line folding."""
        headers = parse_header_lines([
            b"Content-Type: text/plain\r\n",
            b"X-Folded: first\r\n",
            b"  second\r\n",
            b"Set-Cookie: a=1\r\n",
            b"Set-Cookie: b=2\r\n",
        ])

        assert headers["content-type"] == "text/plain"
        assert headers["x-folded"] == "first second"
        assert headers.get_all("set-cookie") == ["a=1", "b=2"]

    def test_malformed_header_line(self):
        """Test that a line without a colon is rejected."""
        with pytest.raises(ProtocolError):
            parse_header_lines([b"no colon here\r\n"])

    @pytest.mark.parametrize("lines", [
        [b"X-A: a\rb\r\n"],
        [b"X-A: a\x00b\r\n"],
        [b"X-A: a\r\n", b"  b\rc\r\n"],
    ])
    def test_control_characters_in_value(self, lines):
        """Test that bare CR and NUL inside a value are rejected."""
        with pytest.raises(ProtocolError):
            parse_header_lines(lines)

    def test_framing_rules(self):
        """Test how the end of a body is found."""
        length = Headers({"Content-Length": "10"})
        chunked = Headers({"Transfer-Encoding": "chunked", "Content-Length": "10"})

        assert body_framing("GET", 200, length) == (Framing.LENGTH, 10)
        assert body_framing("HEAD", 200, length) == (Framing.NONE, 0)
        assert body_framing("GET", 204, length) == (Framing.NONE, 0)
        assert body_framing("GET", 304, length) == (Framing.NONE, 0)
        assert body_framing("GET", 200, chunked) == (Framing.CHUNKED, 0)
        assert body_framing("GET", 200, Headers()) == (Framing.CLOSE, 0)
        assert body_framing("GET", None, Headers()) == (Framing.NONE, 0)

    def test_conflicting_content_length(self):
        """Test that differing Content-Length values are rejected."""
        headers = Headers([("Content-Length", "5"), ("Content-Length", "6")])

        with pytest.raises(ProtocolError):
            body_framing("GET", 200, headers)

    def test_invalid_content_length(self):
        """Test that a non-numeric Content-Length is rejected."""
        with pytest.raises(ProtocolError):
            body_framing("GET", 200, Headers({"Content-Length": "-1"}))


class TestRoundTrip:
    """Tests that what send_request() writes decodes back to the same request."""

    @pytest.mark.asyncio
    async def test_request_with_fixed_body(self, transport_pair):
        """Test a POST with headers and a bytes body."""
        client, peer = transport_pair
        sent = Request(
            "POST",
            "http://example.com/users?page=2",
            headers=[("Content-Type", "application/json"), ("X-Tag", "a"), ("X-Tag", "b")],
            body=b'{"name": "alice"}',
        )

        await send_request(client, sent)
        received = await receive_request(peer)

        assert received.method == "POST"
        assert received.url == "http://example.com/users?page=2"
        assert received.headers.multi_items() == [
            ("Host", "example.com"),
            ("Content-Type", "application/json"),
            ("X-Tag", "a"),
            ("X-Tag", "b"),
            ("Content-Length", "17"),
        ]
        assert received.body == b'{"name": "alice"}'

    @pytest.mark.asyncio
    async def test_request_with_streamed_body(self, transport_pair):
        """Test a chunked request body built from an async iterator."""
        client, peer = transport_pair

        async def parts():
            yield b"hello "
            yield b""
            yield b"world"

        await send_request(client, Request("PUT", "http://example.com/f", body=parts()))
        received = await receive_request(peer)

        assert received.headers["transfer-encoding"] == "chunked"
        assert received.body == b"hello world"

    @pytest.mark.asyncio
    async def test_stream_length_mismatch(self, transport_pair):
        """Test that a stream shorter than its Content-Length fails."""
        client, _ = transport_pair
        request = Request(
            "PUT", "http://example.com/", headers={"Content-Length": "10"}, body=[b"short"]
        )

        with pytest.raises(ProtocolError):
            await send_request(client, request)

    @pytest.mark.asyncio
    async def test_clean_eof_returns_none(self, transport_pair):
        """Test that a closed idle connection yields no request."""
        client, peer = transport_pair
        client.close()

        assert await receive_request(peer) is None


class TestReceiveResponse:
    """Tests for response decoding."""

    @pytest.mark.asyncio
    async def test_content_length_body(self, transport_pair):
        """Test a fixed-length body and the keep-alive release."""
        client, peer = transport_pair
        releases = []
        await feed(peer, b"HTTP/1.1 200 OK\r\nContent-Length: 5\r\n\r\nhello")

        response = await receive_response(client, get(), release=releases.append)
        assert response.status_code == 200
        assert releases == []

        assert await response.read() == b"hello"
        assert releases == [True]

    @pytest.mark.asyncio
    async def test_chunked_body(self, transport_pair):
        """Test chunked decoding with extensions and trailers."""
        client, peer = transport_pair
        releases = []
        await feed(
            peer,
            b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n"
            b"5;ext=1\r\nhello\r\n6\r\n world\r\n0\r\nX-Trailer: t\r\n\r\n",
        )

        response = await receive_response(client, get(), release=releases.append)

        assert await response.read() == b"hello world"
        assert releases == [True]

    @pytest.mark.asyncio
    async def test_close_delimited_body(self, transport_pair):
        """Test a body ending at EOF; the connection is never reused."""
        client, peer = transport_pair
        releases = []
        await feed(peer, b"HTTP/1.1 200 OK\r\n\r\nuntil the end", close=True)

        response = await receive_response(client, get(), release=releases.append)

        assert await response.read() == b"until the end"
        assert releases == [False]

    @pytest.mark.asyncio
    async def test_head_response_has_no_body(self, transport_pair):
        """Test that a HEAD response is complete after its headers."""
        client, peer = transport_pair
        releases = []
        await feed(peer, b"HTTP/1.1 200 OK\r\nContent-Length: 100\r\n\r\n")

        response = await receive_response(
            client, Request("HEAD", "http://example.com/"), release=releases.append
        )

        assert response.stream is None
        assert response.content == b""
        assert releases == [True]

    @pytest.mark.asyncio
    async def test_interim_responses_skipped(self, transport_pair):
        """Test that 1xx responses before the final one are skipped."""
        client, peer = transport_pair
        await feed(
            peer,
            b"HTTP/1.1 100 Continue\r\n\r\n"
            b"HTTP/1.1 103 Early Hints\r\nLink: </a.css>\r\n\r\n"
            b"HTTP/1.1 201 Created\r\nContent-Length: 2\r\n\r\nok",
        )

        response = await receive_response(client, get())

        assert response.status_code == 201
        assert await response.read() == b"ok"

    @pytest.mark.asyncio
    async def test_connection_close_not_reused(self, transport_pair):
        """Test that "Connection: close" prevents reuse."""
        client, peer = transport_pair
        releases = []
        await feed(peer, b"HTTP/1.1 200 OK\r\nConnection: close\r\nContent-Length: 2\r\n\r\nok")

        response = await receive_response(client, get(), release=releases.append)
        await response.read()

        assert releases == [False]

    @pytest.mark.asyncio
    async def test_http10_not_reused(self, transport_pair):
        """Test that HTTP/1.0 defaults to closing."""
        client, peer = transport_pair
        releases = []
        await feed(peer, b"HTTP/1.0 200 OK\r\nContent-Length: 2\r\n\r\nok")

        response = await receive_response(client, get(), release=releases.append)
        await response.read()

        assert response.version == "HTTP/1.0"
        assert releases == [False]

    @pytest.mark.asyncio
    async def test_eof_mid_body(self, transport_pair):
        """Test that EOF before the declared end is a TransportError."""
        client, peer = transport_pair
        releases = []
        await feed(peer, b"HTTP/1.1 200 OK\r\nContent-Length: 10\r\n\r\nabc", close=True)

        response = await receive_response(client, get(), release=releases.append)

        with pytest.raises(TransportError):
            await response.read()
        assert releases == [False]

    @pytest.mark.asyncio
    async def test_eof_before_response(self, transport_pair):
        """Test that EOF instead of a status line is a TransportError."""
        client, peer = transport_pair
        peer.close()

        with pytest.raises(TransportError):
            await receive_response(client, get())

    @pytest.mark.asyncio
    async def test_bare_cr_in_header_value(self, transport_pair):
        """Test that a header value with a bare CR is a ProtocolError."""
        client, peer = transport_pair
        await feed(peer, b"HTTP/1.1 200 OK\r\nX-A: a\rb\r\nContent-Length: 0\r\n\r\n")

        with pytest.raises(ProtocolError):
            await receive_response(client, get())

    @pytest.mark.asyncio
    async def test_header_line_over_stream_limit(self, transport_pair):
        """Test that a header line longer than the stream buffer is a ProtocolError."""
        client, peer = transport_pair
        await feed(peer, b"HTTP/1.1 200 OK\r\nX-Big: " + b"a" * 70000 + b"\r\n\r\n")

        with pytest.raises(ProtocolError):
            await receive_response(client, get())

    @pytest.mark.asyncio
    async def test_header_line_over_max_line_size(self, transport_pair):
        """Test that a header line above MAX_LINE_SIZE is a ProtocolError."""
        client, peer = transport_pair
        await feed(peer, b"HTTP/1.1 200 OK\r\nX-Big: " + b"a" * 9000 + b"\r\n\r\n")

        with pytest.raises(ProtocolError):
            await receive_response(client, get())

    @pytest.mark.asyncio
    async def test_bad_chunk_size(self, transport_pair):
        """Test that an invalid chunk size is a ProtocolError."""
        client, peer = transport_pair
        releases = []
        await feed(peer, b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\nzz\r\n")

        response = await receive_response(client, get(), release=releases.append)

        with pytest.raises(ProtocolError):
            await response.read()
        assert releases == [False]

    @pytest.mark.asyncio
    async def test_second_iteration_fails(self, transport_pair):
        """Test that a streamed body is single-pass."""
        client, peer = transport_pair
        await feed(peer, b"HTTP/1.1 200 OK\r\nContent-Length: 4\r\n\r\ndata")

        response = await receive_response(client, get())
        chunks = [chunk async for chunk in response.aiter_bytes()]
        assert b"".join(chunks) == b"data"

        with pytest.raises(StreamConsumedError):
            async for _ in response.aiter_bytes():
                pass

    @pytest.mark.asyncio
    async def test_aclose_releases_unusable(self, transport_pair):
        """Test that abandoning a body closes the connection."""
        client, peer = transport_pair
        releases = []
        await feed(peer, b"HTTP/1.1 200 OK\r\nContent-Length: 100\r\n\r\npartial")

        response = await receive_response(client, get(), release=releases.append)
        await response.aclose()
        await response.aclose()

        assert releases == [False]
