"""
=============================================================================
CLIENT ERROR TAXONOMY
=============================================================================

Every failure the client can surface is a subclass of HTTPClientError.
Errors carry the PHASE of the request in which they happened, so the
caller can decide whether a retry makes sense:

    ┌─────────────┬───────────────────────────────────────────────────────┐
    │  Phase      │  Typical errors                                       │
    ├─────────────┼───────────────────────────────────────────────────────┤
    │  RESOLVE    │  ResolutionError, RequestTimeoutError                  │
    │  CONNECT    │  ConnectError, PoolClosedError, RequestTimeoutError    │
    │  SEND       │  TransportError, RequestTimeoutError                   │
    │  RECEIVE    │  ProtocolError, TransportError, TooManyRedirectsError  │
    └─────────────┴───────────────────────────────────────────────────────┘

The client itself never retries. Retry policy belongs to the caller.

Cancellation is NOT part of this hierarchy: asyncio.CancelledError is
propagated untouched so task cancellation keeps its usual semantics.

=============================================================================
"""

from enum import Enum
from typing import Optional


class Phase(Enum):
    """The step of a request during which an error was raised."""
    RESOLVE = "resolve"
    CONNECT = "connect"
    SEND = "send"
    RECEIVE = "receive"


class HTTPClientError(Exception):
    """
    Base class for all client errors.

    Attributes:
        phase: Request phase the error belongs to, or None when the error
               was raised outside of a request (e.g. parsing a buffer).
    """

    def __init__(self, message: str, phase: Optional[Phase] = None):
        super().__init__(message)
        self.phase = phase

    def with_phase(self, phase: Phase) -> "HTTPClientError":
        """Tag the error with a phase unless an inner layer already did."""
        if self.phase is None:
            self.phase = phase
        return self

    def __str__(self) -> str:
        message = super().__str__()
        if self.phase is not None:
            return f"[{self.phase.value}] {message}"
        return message


class ResolutionError(HTTPClientError):
    """No addresses found for a hostname, or the lookup timed out."""


class ConnectError(HTTPClientError):
    """TCP connect or TLS handshake failed."""


class TransportError(HTTPClientError):
    """I/O failure on an established connection (reset, broken pipe, early EOF)."""


class ProtocolError(HTTPClientError):
    """The peer sent something that is not valid HTTP/1.1."""


class PoolClosedError(HTTPClientError):
    """The connector has been shut down."""


class StreamConsumedError(HTTPClientError):
    """A response body was iterated a second time."""


class TooManyRedirectsError(HTTPClientError):
    """
    Raised when a redirect chain exceeds max_redirects.

    Attributes:
        history: Responses received so far, oldest first. The last one is
                 the redirect that was not followed.
    """

    def __init__(self, message: str, history=None, phase: Optional[Phase] = None):
        super().__init__(message, phase)
        self.history = list(history or [])


class RequestTimeoutError(HTTPClientError, TimeoutError):
    """The request deadline passed. Also catchable as builtin TimeoutError."""
