"""
=============================================================================
SESSION
=============================================================================

A Session runs logical requests. It keeps state BETWEEN requests:

    - default headers        merged into every request
    - a cookie jar           filled from Set-Cookie, sent back as Cookie
    - a connector            shared connection pool (owned or injected)

=============================================================================
ONE LOGICAL REQUEST
=============================================================================

    START ──► SENT ──► AWAITING_RESPONSE ──► GOT_RESPONSE
      ▲                                           │
      │                                  redirect?│
      └──────────────── REDIRECT ◄────── yes ─────┤
                                                  │ no
                                                  ▼
                                                DONE

    START               merge headers, attach cookies, acquire a transport
    SENT                request written and drained
    AWAITING_RESPONSE   reading the status line and headers
    GOT_RESPONSE        jar updated from Set-Cookie
    REDIRECT            body drained, response appended to history,
                        new URL resolved from Location
    DONE                final response returned with its history

=============================================================================
REDIRECT RULES
=============================================================================

    303 (any method but HEAD)    → GET, body dropped
    301 / 302 with POST          → GET, body dropped
    307 / 308                    → same method, same body
    cross-origin hop             → Authorization header dropped
    missing / bad Location       → ProtocolError
    more than max_redirects      → TooManyRedirectsError

=============================================================================
"""

import dataclasses
import logging
import time
import uuid
from enum import Enum
from typing import List, Optional
from urllib.parse import urljoin, urlsplit

from .config import SessionConfig
from .core.connector import Connector, PoolKey
from .core.eventloop import Deadline
from .core.transport import Transport
from .errors import HTTPClientError, Phase, ProtocolError, TooManyRedirectsError
from .http.codec import receive_response, send_request
from .http.cookies import CookieJar
from .http.headers import Headers, HeadersInit, merge_headers
from .http.request import Body, Request
from .http.response import Response
from .http.status_codes import HTTPStatus
from .log import RequestLog, emit


logger = logging.getLogger(__name__)

_UNSET = object()

# Headers describing a body; dropped when a redirect drops the body.
_BODY_HEADERS = ("content-type", "content-length", "transfer-encoding")


class RequestState(Enum):
    """Steps of one logical request."""
    START = "start"
    SENT = "sent"
    AWAITING_RESPONSE = "awaiting_response"
    GOT_RESPONSE = "got_response"
    REDIRECT = "redirect"
    DONE = "done"


class _Lease:
    """A transport lent to one exchange; released exactly once."""

    def __init__(self, connector: Connector, transport: Transport):
        self.connector = connector
        self.transport = transport
        self.released = False

    def release(self, reusable: bool) -> None:
        if not self.released:
            self.released = True
            self.connector.release(self.transport, reusable)


class Session:
    """
    Stateful HTTP client.

    Usage:
        async with Session(default_headers={"Accept": "application/json"}) as session:
            response = await session.get("http://example.com/")
            data = await response.read()

    Args:
        config: SessionConfig; keyword arguments below override its fields.
        connector: Shared Connector. When omitted the Session creates one
                   and shuts it down on close().
        cookie_jar: Jar to use (a fresh one by default).
    """

    def __init__(
        self,
        config: Optional[SessionConfig] = None,
        *,
        connector: Optional[Connector] = None,
        cookie_jar: Optional[CookieJar] = None,
        default_headers: HeadersInit = None,
        follow_redirects: Optional[bool] = None,
        max_redirects: Optional[int] = None,
        request_timeout: Optional[float] = None,
    ):
        config = config or SessionConfig()
        overrides = {
            name: value
            for name, value in (
                ("follow_redirects", follow_redirects),
                ("max_redirects", max_redirects),
                ("request_timeout", request_timeout),
            )
            if value is not None
        }
        self.config = dataclasses.replace(config, **overrides)
        self.config.validate()

        self.headers = merge_headers(self.config.default_headers, default_headers)
        if self.config.user_agent and "user-agent" not in self.headers:
            self.headers["User-Agent"] = self.config.user_agent

        self._owns_connector = connector is None
        self.connector = connector or Connector()
        self.cookie_jar = cookie_jar if cookie_jar is not None else CookieJar()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    # =========================================================================
    # REQUESTS
    # =========================================================================

    async def request(
        self,
        method: str,
        url: str,
        headers: HeadersInit = None,
        body: Body = None,
        *,
        follow_redirects: Optional[bool] = None,
        timeout=_UNSET,
    ) -> Response:
        """
        Perform a request, following redirects, and return the final Response.

        The body of the returned Response is not read yet: await
        response.read(), iterate response.aiter_bytes(), or close it.

        Args:
            timeout: Deadline for this call in seconds (None = unbounded);
                     defaults to config.request_timeout.

        Raises:
            ResolutionError, ConnectError, TransportError, ProtocolError,
            PoolClosedError, TooManyRedirectsError, RequestTimeoutError:
                tagged with the phase they occurred in.
            asyncio.CancelledError: The calling task was cancelled.
        """
        if self._closed:
            raise RuntimeError("Session is closed")

        follow = self.config.follow_redirects if follow_redirects is None else follow_redirects
        deadline = Deadline(self.config.request_timeout if timeout is _UNSET else timeout)
        request_id = str(uuid.uuid4())[:8]
        started = time.monotonic()

        method = method.upper()
        call_headers = Headers(headers)
        history: List[Response] = []
        cross_origin = False
        body_dropped = False

        try:
            while True:
                request = self._prepare(method, url, call_headers, body, cross_origin, body_dropped)
                response = await self._exchange(request, deadline, request_id)
                self.cookie_jar.extract(response.headers, request.url)

                if not (follow and HTTPStatus.is_redirect(response.status_code)):
                    break

                next_url = await self._redirect_target(response, history)
                await response.read()
                history.append(response)
                self._trace(request_id, RequestState.REDIRECT, f"{response.status_code} -> {next_url}")

                method, body, dropped = self._redirect_method(response.status_code, method, body)
                body_dropped = body_dropped or dropped
                if _origin(next_url) != _origin(url):
                    cross_origin = True
                url = next_url
        except Exception as e:
            self._log(request_id, method, url, None, len(history), started, e)
            raise

        response.history = history
        self._trace(request_id, RequestState.DONE, str(response.status_code))
        self._log(request_id, method, url, response.status_code, len(history), started)
        return response

    async def get(self, url: str, **kwargs) -> Response:
        return await self.request("GET", url, **kwargs)

    async def head(self, url: str, **kwargs) -> Response:
        return await self.request("HEAD", url, **kwargs)

    async def options(self, url: str, **kwargs) -> Response:
        return await self.request("OPTIONS", url, **kwargs)

    async def post(self, url: str, body: Body = None, **kwargs) -> Response:
        return await self.request("POST", url, body=body, **kwargs)

    async def put(self, url: str, body: Body = None, **kwargs) -> Response:
        return await self.request("PUT", url, body=body, **kwargs)

    async def patch(self, url: str, body: Body = None, **kwargs) -> Response:
        return await self.request("PATCH", url, body=body, **kwargs)

    async def delete(self, url: str, **kwargs) -> Response:
        return await self.request("DELETE", url, **kwargs)

    # =========================================================================
    # ONE HOP
    # =========================================================================

    def _prepare(
        self,
        method: str,
        url: str,
        call_headers: Headers,
        body: Body,
        cross_origin: bool = False,
        body_dropped: bool = False,
    ) -> Request:
        """Merge default and per-call headers (per-call wins), attach cookies."""
        headers = merge_headers(self.headers, call_headers)
        if body_dropped:
            for name in _BODY_HEADERS:
                headers.pop(name, None)
        if cross_origin:
            # Credentials never follow a redirect to another origin.
            headers.pop("authorization", None)
        cookies = self.cookie_jar.header_for(url)
        if cookies:
            existing = headers.get("cookie")
            headers["Cookie"] = f"{existing}; {cookies}" if existing else cookies
        return Request(method=method, url=url, headers=headers, body=body)

    async def _exchange(self, request: Request, deadline: Deadline, request_id: str) -> Response:
        """
        Send one request and read the response head on a pooled transport.

        Any failure closes the transport; it never goes back to the pool
        in an unknown state.
        """
        self._trace(request_id, RequestState.START, f"{request.method} {request.url}")
        transport = await self.connector.acquire(request.pool_key, deadline)
        lease = _Lease(self.connector, transport)
        try:
            await deadline.run(send_request(transport, request), Phase.SEND)
            self._trace(request_id, RequestState.SENT, transport.id)

            self._trace(request_id, RequestState.AWAITING_RESPONSE, transport.id)
            response = await deadline.run(
                receive_response(transport, request, release=lease.release, deadline=deadline),
                Phase.RECEIVE,
            )
        except BaseException:
            lease.release(reusable=False)
            raise

        self._trace(request_id, RequestState.GOT_RESPONSE, str(response.status_code))
        return response

    # =========================================================================
    # REDIRECTS
    # =========================================================================

    async def _redirect_target(self, response: Response, history: List[Response]) -> str:
        """Validate a redirect and return the absolute URL to follow."""
        location = response.headers.get("location", "").strip()
        target = None
        if location:
            try:
                target = urljoin(response.url, location)
                # Checks scheme, host and port.
                PoolKey.from_url(target)
            except ValueError:
                target = None

        if target is None:
            await response.aclose()
            raise ProtocolError(
                f"Redirect {response.status_code} with invalid Location: {location!r}",
                Phase.RECEIVE,
            )

        if len(history) >= self.config.max_redirects:
            await response.aclose()
            raise TooManyRedirectsError(
                f"Exceeded {self.config.max_redirects} redirects",
                history=history + [response],
                phase=Phase.RECEIVE,
            )
        return target.split("#", 1)[0]

    def _redirect_method(self, status: int, method: str, body: Body):
        """
        Method and body for the next hop, and whether the body was dropped
        (its headers are then dropped too).
        """
        if (status == HTTPStatus.SEE_OTHER and method != "HEAD") or (
            status in (HTTPStatus.MOVED_PERMANENTLY, HTTPStatus.FOUND) and method == "POST"
        ):
            return "GET", None, True

        if body is not None and not isinstance(body, (bytes, bytearray, str)):
            raise ProtocolError(
                f"Cannot replay a streamed request body on a {status} redirect",
                Phase.RECEIVE,
            )
        return method, body, False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def close(self) -> None:
        """Close the session; shuts down the connector only if we created it."""
        if self._closed:
            return
        self._closed = True
        if self._owns_connector:
            await self.connector.shutdown()

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # =========================================================================
    # LOGGING
    # =========================================================================

    def _trace(self, request_id: str, state: RequestState, detail: str) -> None:
        logger.debug(f"[{request_id}] {state.value}: {detail}")

    def _log(
        self,
        request_id: str,
        method: str,
        url: str,
        status: Optional[int],
        redirects: int,
        started: float,
        error: Optional[BaseException] = None,
    ) -> None:
        phase = None
        if isinstance(error, HTTPClientError) and error.phase is not None:
            phase = error.phase.value
        emit(
            RequestLog(
                request_id=request_id,
                method=method,
                url=url,
                status_code=status,
                redirects=redirects,
                duration_ms=(time.monotonic() - started) * 1000,
                error=f"{type(error).__name__}: {error}" if error is not None else None,
                phase=phase,
            ),
            self.config.log_format,
        )


def _origin(url: str):
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    return scheme, (parts.hostname or "").lower(), parts.port or (443 if scheme == "https" else 80)
