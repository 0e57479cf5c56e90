"""
=============================================================================
HTTP RESPONSE
=============================================================================

A Response is returned as soon as the status line and headers have been
parsed. The body is NOT read yet:

    response = await session.get(url)      # headers only
    response.status_code                   # 200
    data = await response.read()           # now the body is read

=============================================================================
THE BODY IS A LAZY, SINGLE-PASS STREAM
=============================================================================

    ┌──────────────────────┬──────────────────────────────────────────────┐
    │  await read()        │ drains the stream, caches the bytes          │
    │  async for chunk in  │ streams chunks; a second pass raises         │
    │   aiter_bytes()      │ StreamConsumedError (unless read() cached it)│
    │  await aclose()      │ abandons the rest; connection is closed      │
    └──────────────────────┴──────────────────────────────────────────────┘

The connection goes back to the pool only when the body has been read to
its declared end. Callers that stream must either drain the body or
close the response (`async with response:` does that).

=============================================================================
REDIRECT HISTORY
=============================================================================

    response.history    →  [<Response 301>, <Response 301>]   (oldest first)
    response            →  <Response 200>

Each history entry was fully drained before the next hop, so its
content is available without awaiting.

=============================================================================
"""

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, List, Optional

from ..errors import StreamConsumedError
from .headers import Headers
from .request import Request
from .status_codes import HTTPStatus

if TYPE_CHECKING:
    from .codec import BodyStream


@dataclass
class Response:
    """
    A received HTTP response.

    Attributes:
        status_code: Numeric status.
        reason: Reason phrase as sent by the server (may be empty).
        headers: Response headers, duplicates preserved.
        version: "HTTP/1.1" or "HTTP/1.0".
        url: URL that produced this response.
        request: The Request that was sent.
        history: Earlier responses of the redirect chain, oldest first.
        stream: Lazy body; None once no more bytes will be read.
    """

    status_code: int
    reason: str = ""
    headers: Headers = field(default_factory=Headers)
    version: str = "HTTP/1.1"
    url: str = ""
    request: Optional[Request] = field(default=None, repr=False)
    history: List["Response"] = field(default_factory=list, repr=False)
    stream: Optional["BodyStream"] = field(default=None, repr=False)

    # Cached body once read() has run.
    _content: Optional[bytes] = field(default=None, repr=False)

    # =========================================================================
    # STATUS
    # =========================================================================

    @property
    def ok(self) -> bool:
        """True for statuses below 400."""
        return self.status_code < 400

    @property
    def is_redirect(self) -> bool:
        """A followable redirect status carrying a Location header."""
        return HTTPStatus.is_redirect(self.status_code) and "location" in self.headers

    @property
    def reason_phrase(self) -> str:
        return self.reason or HTTPStatus.phrase_for(self.status_code)

    @property
    def keep_alive(self) -> bool:
        """
        Whether the server allows reusing the connection.

            HTTP/1.1: keep-alive unless "Connection: close"
            HTTP/1.0: close unless "Connection: keep-alive"
        """
        return is_keep_alive(self.version, self.headers)

    # =========================================================================
    # BODY
    # =========================================================================

    async def read(self) -> bytes:
        """Read the whole body (once) and cache it."""
        if self._content is None:
            if self.stream is None:
                self._content = b""
            else:
                chunks = [chunk async for chunk in self.stream]
                self._content = b"".join(chunks)
                self.stream = None
        return self._content

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        """
        Yield the body in chunks as they arrive.

        Raises:
            StreamConsumedError: The stream was already iterated.
        """
        if self._content is not None:
            if self._content:
                yield self._content
            return
        if self.stream is None:
            raise StreamConsumedError("Response body was already consumed")
        async for chunk in self.stream:
            yield chunk

    async def aclose(self) -> None:
        """Stop reading the body. An unread body makes the connection unusable."""
        if self.stream is not None:
            await self.stream.aclose()

    @property
    def is_closed(self) -> bool:
        return self.stream is None or self.stream.done

    @property
    def content(self) -> bytes:
        if self._content is None:
            raise RuntimeError("Response body has not been read; await response.read() first")
        return self._content

    @property
    def encoding(self) -> str:
        content_type = self.headers.get("content-type", "")
        for param in content_type.split(";")[1:]:
            name, _, value = param.strip().partition("=")
            if name.lower() == "charset" and value:
                return value.strip('"')
        return "utf-8"

    @property
    def text(self) -> str:
        try:
            return self.content.decode(self.encoding, errors="replace")
        except LookupError:
            return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.content)

    async def __aenter__(self) -> "Response":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"<Response [{self.status_code} {self.reason_phrase}]>"


def is_keep_alive(version: str, headers: Headers) -> bool:
    tokens = {t.strip().lower() for t in headers.get("connection", "").split(",")}
    if version == "HTTP/1.1":
        return "close" not in tokens
    return "keep-alive" in tokens
