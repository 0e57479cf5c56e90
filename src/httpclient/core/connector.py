"""
=============================================================================
CONNECTION POOL (CONNECTOR)
=============================================================================

Opening a connection costs a DNS lookup, a TCP handshake (1 RTT) and, for
HTTPS, a TLS handshake (1-2 more RTTs). The Connector keeps finished
connections around and lends them out again.

=============================================================================
POOL STRUCTURE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                            Connector                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   PoolKey(https, api.example.com, 443)                               │
    │       idle:   [T1 (expires 12:00:15), T2 (expires 12:00:20)]         │
    │       in_use: 3                                                      │
    │                                                                      │
    │   PoolKey(http, cdn.example.com, 80)                                 │
    │       idle:   []                                                     │
    │       in_use: 1                                                      │
    │                                                                      │
    │   waiters (FIFO): [W1 -> api, W2 -> cdn, W3 -> api]                  │
    │                                                                      │
    │   reaper: closes idle transports whose expiry has passed             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
ACQUIRE
=============================================================================

Every acquire() joins the FIFO queue and the queue is dispatched at once.
Dispatch walks the queue from the head; for each waiter that fits under
`limit` and `limit_per_host` it either

    1. hands over an idle transport that passes the liveness probe, or
    2. reserves a slot so the waiter can open a new transport.

A waiter blocked by its own host's limit is skipped, so it does not block
waiters for other hosts. Earlier waiters are always served before later
ones for the same capacity. Dispatch runs again on every release().

=============================================================================
"""

import asyncio
import logging
import ssl
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Optional, Set
from urllib.parse import urlsplit

from ..config import ConnectorConfig
from ..errors import ConnectError, PoolClosedError, Phase
from .eventloop import Deadline, WorkerPool
from .resolver import Resolver
from .transport import Transport


logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class PoolKey:
    """Identifies interchangeable connections: (scheme, host, port)."""
    scheme: str
    host: str
    port: int

    @property
    def is_secure(self) -> bool:
        return self.scheme == "https"

    @classmethod
    def from_url(cls, url: str) -> "PoolKey":
        """
        Build the key for an absolute http(s) URL.

        Raises:
            ValueError: Unsupported scheme or missing host.
        """
        parts = urlsplit(url)
        scheme = parts.scheme.lower()
        if scheme not in DEFAULT_PORTS:
            raise ValueError(f"Unsupported URL scheme: {parts.scheme!r}")
        if not parts.hostname:
            raise ValueError(f"URL has no host: {url!r}")
        return cls(scheme, parts.hostname.lower(), parts.port or DEFAULT_PORTS[scheme])

    def __str__(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"


@dataclass
class _IdleEntry:
    transport: Transport
    expires_at: float


@dataclass
class _HostPool:
    idle: Deque[_IdleEntry] = field(default_factory=deque)
    in_use: int = 0


@dataclass
class _Waiter:
    key: PoolKey
    future: asyncio.Future


class Connector:
    """
    Pool of reusable Transports with global and per-host limits.

    A Connector is confined to the event loop that first uses it.

    Usage:
        async with Connector(ConnectorConfig(limit_per_host=4)) as connector:
            transport = await connector.acquire(PoolKey.from_url(url))
            try:
                ...
            finally:
                connector.release(transport, reusable=True)
    """

    def __init__(
        self,
        config: Optional[ConnectorConfig] = None,
        *,
        resolver: Optional[Resolver] = None,
        ssl_context: Optional[ssl.SSLContext] = None,
        worker_pool: Optional[WorkerPool] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or ConnectorConfig()
        self.config.validate()
        self._clock = clock

        self._owns_worker_pool = worker_pool is None
        self._worker_pool = worker_pool or WorkerPool(self.config.worker_threads)
        self._owns_resolver = resolver is None
        self.resolver = resolver or Resolver(
            ttl=self.config.dns_ttl,
            lookup_timeout=self.config.lookup_timeout,
            worker_pool=self._worker_pool,
        )
        self._ssl_context = ssl_context

        self._pools: Dict[PoolKey, _HostPool] = {}
        self._waiters: Deque[_Waiter] = deque()
        self._lent: Set[Transport] = set()
        self._in_use = 0
        self._closed = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._reaper: Optional[asyncio.Task] = None

        # Statistics
        self.opened = 0
        self.reused = 0
        self.discarded = 0

    @property
    def closed(self) -> bool:
        return self._closed

    # =========================================================================
    # ACQUIRE / RELEASE
    # =========================================================================

    async def acquire(self, key: PoolKey, deadline: Optional[Deadline] = None) -> Transport:
        """
        Get a transport for `key`, reusing an idle one when possible.

        Waits (FIFO) while the pool is at its limits. The wait, the DNS
        lookup and the connect all count against `deadline`.

        Raises:
            PoolClosedError: The connector is shut down.
            ResolutionError / ConnectError: Opening a new transport failed.
            RequestTimeoutError: The deadline passed while waiting or opening.
        """
        self._check_open()
        self._bind_loop()
        self._start_reaper()
        deadline = deadline or Deadline(None)

        waiter = _Waiter(key, self._loop.create_future())
        self._waiters.append(waiter)
        self._dispatch()
        if not waiter.future.done():
            logger.debug(
                f"Waiting for a connection to {key} "
                f"({self._in_use} in use, {len(self._waiters)} waiting)"
            )

        try:
            granted = await deadline.run(waiter.future, Phase.CONNECT)
        except BaseException:
            self._abandon(waiter)
            raise

        if granted is not None:
            self.reused += 1
            granted.requests_served += 1
            logger.debug(f"[{granted.id}] Reusing connection to {key}")
            return granted

        # A slot was reserved for us; open a new transport in it.
        try:
            transport = await self._open(key, deadline)
        except BaseException:
            self._release_slot(key)
            raise
        if self._closed:
            transport.close()
            self._release_slot(key)
            raise PoolClosedError("Connector was shut down while connecting", Phase.CONNECT)

        transport.requests_served += 1
        self._lent.add(transport)
        return transport

    def release(self, transport: Transport, reusable: bool = True) -> None:
        """
        Return a transport previously obtained from acquire().

        A reusable, live transport goes back to the idle set (if there is
        idle capacity for its key) with a fresh idle expiry. Anything else
        is closed.
        """
        if transport not in self._lent:
            raise RuntimeError(f"{transport!r} was not acquired from this connector")
        self._lent.discard(transport)

        pool = self._pools[transport.key]
        pool.in_use -= 1
        self._in_use -= 1

        if (
            reusable
            and not self._closed
            and transport.is_alive()
            and len(pool.idle) < self.config.keepalive_per_host
        ):
            expires_at = self._clock() + self.config.idle_timeout
            pool.idle.append(_IdleEntry(transport, expires_at))
            logger.debug(f"[{transport.id}] Returned to pool {transport.key}")
        else:
            self._discard(transport)

        self._dispatch()

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def _dispatch(self) -> None:
        """Serve queued waiters, earliest first, while capacity allows."""
        if not self._waiters:
            return
        now = self._clock()
        blocked: Deque[_Waiter] = deque()

        while self._waiters:
            if self.config.limit and self._in_use >= self.config.limit:
                break
            waiter = self._waiters.popleft()
            if waiter.future.done():
                continue
            if not self._has_host_capacity(waiter.key):
                blocked.append(waiter)
                continue

            transport = self._take_idle(waiter.key, now)
            self._mark_in_use(waiter.key)
            if transport is not None:
                self._lent.add(transport)
            waiter.future.set_result(transport)

        blocked.extend(self._waiters)
        self._waiters = blocked

    def _has_host_capacity(self, key: PoolKey) -> bool:
        if not self.config.limit_per_host:
            return True
        pool = self._pools.get(key)
        return pool is None or pool.in_use < self.config.limit_per_host

    def _take_idle(self, key: PoolKey, now: float) -> Optional[Transport]:
        pool = self._pools.get(key)
        while pool is not None and pool.idle:
            entry = pool.idle.pop()
            if entry.expires_at > now and entry.transport.is_alive():
                return entry.transport
            if entry.expires_at <= now:
                logger.debug(f"[{entry.transport.id}] Idle connection expired")
            else:
                logger.info(f"[{entry.transport.id}] Pooled connection to {key} is dead, replacing")
            self._discard(entry.transport)
        return None

    def _mark_in_use(self, key: PoolKey) -> None:
        pool = self._pools.get(key)
        if pool is None:
            pool = self._pools[key] = _HostPool()
        pool.in_use += 1
        self._in_use += 1

    def _release_slot(self, key: PoolKey) -> None:
        self._pools[key].in_use -= 1
        self._in_use -= 1
        self._dispatch()

    def _abandon(self, waiter: _Waiter) -> None:
        """Undo a wait that ended in cancellation, timeout or error."""
        future = waiter.future
        if future.done() and not future.cancelled() and future.exception() is None:
            # Granted just before we were cancelled: give it back.
            granted = future.result()
            if granted is None:
                self._release_slot(waiter.key)
            else:
                self.release(granted, reusable=True)
            return
        future.cancel()
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass

    # =========================================================================
    # OPENING
    # =========================================================================

    async def _open(self, key: PoolKey, deadline: Deadline) -> Transport:
        addresses = await deadline.run(
            self.resolver.resolve(key.host, key.port), Phase.RESOLVE
        )
        ssl_context = self._ssl_context_for(key)

        last_error: Optional[ConnectError] = None
        for address in addresses:
            try:
                transport = await deadline.run(
                    Transport.open(address, key, ssl_context, server_hostname=key.host),
                    Phase.CONNECT,
                )
            except ConnectError as e:
                logger.debug(f"Connect to {address.ip}:{address.port} failed: {e}")
                last_error = e
                continue
            self.opened += 1
            logger.debug(f"[{transport.id}] Opened connection to {key}")
            return transport

        raise last_error or ConnectError(f"No addresses for {key}", Phase.CONNECT)

    def _ssl_context_for(self, key: PoolKey) -> Optional[ssl.SSLContext]:
        if not key.is_secure:
            return None
        if self._ssl_context is None:
            self._ssl_context = ssl.create_default_context()
        return self._ssl_context

    # =========================================================================
    # IDLE REAPER
    # =========================================================================

    def _start_reaper(self) -> None:
        if self._reaper is None:
            self._reaper = self._loop.create_task(self._reap_forever())

    async def _reap_forever(self) -> None:
        interval = self.config.effective_reaper_interval
        while True:
            await asyncio.sleep(interval)
            self.reap_idle()

    def reap_idle(self) -> int:
        """
        Close idle transports past their expiry or found dead.

        Returns:
            Number of transports closed.
        """
        now = self._clock()
        reaped = 0
        for key, pool in list(self._pools.items()):
            keep: Deque[_IdleEntry] = deque()
            for entry in pool.idle:
                if entry.expires_at <= now or not entry.transport.is_alive():
                    self._discard(entry.transport)
                    reaped += 1
                else:
                    keep.append(entry)
            pool.idle = keep
            if not pool.idle and not pool.in_use:
                del self._pools[key]
        if reaped:
            logger.debug(f"Reaper closed {reaped} idle connection(s)")
        return reaped

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    async def shutdown(self) -> None:
        """
        Close idle transports and refuse further acquires.

        In-use transports are closed when they are released. Idempotent.
        """
        if self._closed:
            return
        self._closed = True
        logger.debug(f"Shutting down connector ({self._in_use} in use)")

        if self._reaper is not None:
            self._reaper.cancel()

        for pool in self._pools.values():
            while pool.idle:
                self._discard(pool.idle.popleft().transport)

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.future.done():
                waiter.future.set_exception(
                    PoolClosedError("Connector is closed", Phase.CONNECT)
                )

        if self._owns_resolver:
            self.resolver.close()
        if self._owns_worker_pool:
            self._worker_pool.shutdown()

        # Let the transports process their close.
        await asyncio.sleep(0)

    async def __aenter__(self) -> "Connector":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.shutdown()

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _discard(self, transport: Transport) -> None:
        transport.close()
        self.discarded += 1

    def _check_open(self) -> None:
        if self._closed:
            raise PoolClosedError("Connector is closed", Phase.CONNECT)

    def _bind_loop(self) -> None:
        loop = asyncio.get_running_loop()
        if self._loop is None:
            self._loop = loop
        elif self._loop is not loop:
            raise RuntimeError("Connector is bound to a different event loop")

    def idle_count(self, key: Optional[PoolKey] = None) -> int:
        if key is not None:
            pool = self._pools.get(key)
            return len(pool.idle) if pool else 0
        return sum(len(pool.idle) for pool in self._pools.values())

    def in_use_count(self, key: Optional[PoolKey] = None) -> int:
        if key is not None:
            pool = self._pools.get(key)
            return pool.in_use if pool else 0
        return self._in_use

    def stats(self) -> dict:
        return {
            "in_use": self._in_use,
            "idle": self.idle_count(),
            "waiting": sum(1 for w in self._waiters if not w.future.done()),
            "opened": self.opened,
            "reused": self.reused,
            "discarded": self.discarded,
        }

    def __repr__(self) -> str:
        return f"<Connector {self.stats()}>"
