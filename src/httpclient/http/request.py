"""
=============================================================================
HTTP REQUEST
=============================================================================

The outgoing side of an exchange:

    Request(method="POST", url="http://api.example.com/users?page=1",
            headers=Headers({"Content-Type": "application/json"}),
            body=b'{"name": "alice"}')

On the wire it becomes:

    POST /users?page=1 HTTP/1.1\\r\\n          ← request line, origin-form target
    Host: api.example.com\\r\\n                ← added by the codec
    Content-Type: application/json\\r\\n
    Content-Length: 17\\r\\n                   ← computed by the codec
    \\r\\n
    {"name": "alice"}

=============================================================================
BODY TYPES
=============================================================================

    None                    no body
    bytes / str             fixed body, sent with Content-Length
    iterable of bytes       streamed with Transfer-Encoding: chunked
    async iterable of bytes streamed with Transfer-Encoding: chunked

A streamed body is single-pass. It cannot be replayed on a 307/308
redirect.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import AsyncIterable, Iterable, Optional, Union
from urllib.parse import urlsplit

from ..core.connector import PoolKey
from .headers import Headers


Body = Union[bytes, str, Iterable[bytes], AsyncIterable[bytes], None]

METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "TRACE"})

# Methods that carry a body by convention; an empty one is sent as
# Content-Length: 0 so servers do not wait for one.
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


@dataclass
class Request:
    """
    An HTTP request to send.

    Attributes:
        method: Uppercase method name.
        url: Absolute http or https URL.
        headers: Request headers (order preserved, case-insensitive).
        body: See module docstring for accepted types.
    """

    method: str
    url: str
    headers: Headers = field(default_factory=Headers)
    body: Body = None

    def __post_init__(self):
        self.method = self.method.upper()
        if not self.method.isalpha():
            raise ValueError(f"Invalid HTTP method: {self.method!r}")
        if not isinstance(self.headers, Headers):
            self.headers = Headers(self.headers)
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")
        # Validates scheme and host.
        self.pool_key = PoolKey.from_url(self.url)

    @property
    def target(self) -> str:
        """Origin-form request target: path plus query, "/" when empty."""
        parts = urlsplit(self.url)
        target = parts.path or "/"
        if parts.query:
            target += "?" + parts.query
        return target

    @property
    def host_header(self) -> str:
        """Host header value; the port is omitted when it is the default."""
        key = self.pool_key
        host = f"[{key.host}]" if ":" in key.host else key.host
        default_port = 443 if key.is_secure else 80
        return host if key.port == default_port else f"{host}:{key.port}"

    @property
    def is_streaming(self) -> bool:
        return self.body is not None and not isinstance(self.body, (bytes, bytearray))

    @property
    def expects_body(self) -> bool:
        return self.method in BODY_METHODS

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.url}>"
