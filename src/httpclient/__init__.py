"""
=============================================================================
HTTPCLIENT - Asynchronous HTTP/1.1 Client Built on asyncio Streams
=============================================================================

This package implements an HTTP/1.1 client on top of raw asyncio streams:
connection pooling, DNS caching, request encoding, response decoding,
redirects and cookies, with no third-party runtime dependencies.

=============================================================================
PROJECT OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     HTTPCLIENT ARCHITECTURE                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. SESSION (session.py)                                            │
    │      - Default headers, cookie jar, redirect following               │
    │      - One Deadline per logical request                              │
    │                                                                      │
    │   2. HTTP/1.1 PROTOCOL (http/)                                       │
    │      - Request encoding (Host, Content-Length, chunked bodies)       │
    │      - Response decoding (framing, 1xx, keep-alive)                  │
    │      - Lazy, single-pass response bodies                             │
    │                                                                      │
    │   3. CONNECTIONS (core/)                                             │
    │      - Connector: pool with global / per-host limits and a reaper    │
    │      - Resolver: TTL cache and in-flight lookup coalescing           │
    │      - Transport: one TCP or TLS stream                              │
    │      - WorkerPool: bounded threads for blocking calls                │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
DIRECTORY STRUCTURE
=============================================================================

    httpclient/
    ├── __init__.py          # Package exports (this file)
    ├── __main__.py          # CLI entry point
    ├── config.py            # ConnectorConfig / SessionConfig
    ├── errors.py            # Error taxonomy with request phases
    ├── log.py               # Access log (text / JSON)
    ├── session.py           # Session: redirects, cookies, headers
    ├── core/                # Connections
    │   ├── eventloop.py     # WorkerPool, Deadline, run()
    │   ├── resolver.py      # Caching DNS resolver
    │   ├── transport.py     # TCP / TLS stream wrapper
    │   └── connector.py     # Connection pool
    └── http/                # HTTP/1.1 messages
        ├── headers.py       # Case-insensitive multi-map
        ├── request.py       # Outgoing request
        ├── response.py      # Response with lazy body
        ├── codec.py         # Wire encoding / decoding
        ├── cookies.py       # Cookie jar (RFC 6265)
        └── status_codes.py  # HTTP status enums

=============================================================================
QUICK START
=============================================================================

    import asyncio
    from httpclient import Session

    async def main():
        async with Session(default_headers={"Accept": "application/json"}) as session:
            response = await session.get("http://example.com/")
            print(response.status_code, len(response.history))
            print(await response.read())

    asyncio.run(main())

    # Share one pool between sessions:
    connector = Connector(ConnectorConfig(limit=50, limit_per_host=8))
    async with Session(connector=connector) as a, Session(connector=connector) as b:
        ...
    await connector.shutdown()

=============================================================================
"""

import logging

__version__ = "1.0.0"

from .config import ConnectorConfig, SessionConfig
from .core.connector import Connector, PoolKey
from .core.eventloop import Deadline, WorkerPool, run
from .core.resolver import Resolver
from .errors import (
    ConnectError,
    HTTPClientError,
    Phase,
    PoolClosedError,
    ProtocolError,
    RequestTimeoutError,
    ResolutionError,
    StreamConsumedError,
    TooManyRedirectsError,
    TransportError,
)
from .http.cookies import CookieJar
from .http.headers import Headers
from .http.request import Request
from .http.response import Response
from .session import Session

# Library code never configures handlers; applications do.
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "Session",
    "SessionConfig",
    "Connector",
    "ConnectorConfig",
    "PoolKey",
    "Resolver",
    "WorkerPool",
    "Deadline",
    "run",
    "CookieJar",
    "Headers",
    "Request",
    "Response",
    "HTTPClientError",
    "Phase",
    "ResolutionError",
    "ConnectError",
    "TransportError",
    "ProtocolError",
    "PoolClosedError",
    "StreamConsumedError",
    "TooManyRedirectsError",
    "RequestTimeoutError",
    "__version__",
]
