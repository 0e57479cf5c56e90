"""
=============================================================================
ADDRESS RESOLVER
=============================================================================

Turns hostnames into socket addresses, with two optimisations:

1. TTL CACHE
   A successful lookup is reused for `ttl` seconds. An expired entry is
   never returned; it triggers a fresh lookup.

2. IN-FLIGHT COALESCING
   If ten requests for "api.example.com" start at the same moment, only
   ONE getaddrinfo() call is made. The others await the same task:

        request A ──┐
        request B ──┼──► lookup task ──► getaddrinfo() (worker thread)
        request C ──┘         │
                              ▼
                     result shared by A, B, C

   The shared task is shielded: cancelling request A does not cancel the
   lookup that B and C are still waiting for.

=============================================================================
"""

import asyncio
import ipaddress
import logging
import socket
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from ..errors import ResolutionError
from .eventloop import WorkerPool


logger = logging.getLogger(__name__)

# (family, ip) pairs as returned by a lookup, before a port is attached.
_Records = List[Tuple[int, str]]


@dataclass(frozen=True)
class Address:
    """
    One resolved socket address.

    Attributes:
        ip: Textual IPv4 or IPv6 address.
        port: TCP port.
        family: socket.AF_INET or socket.AF_INET6.
        expires_at: Monotonic time after which the address must be
                    re-resolved. None for IP literals, which never expire.
    """
    ip: str
    port: int
    family: int = socket.AF_INET
    expires_at: Optional[float] = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass
class _CacheEntry:
    records: _Records
    expires_at: float


def _system_lookup(host: str) -> _Records:
    """Blocking lookup. Runs on a worker thread."""
    infos = socket.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    records: _Records = []
    for family, _, _, _, sockaddr in infos:
        record = (family, sockaddr[0])
        if record not in records:
            records.append(record)
    return records


class Resolver:
    """
    Caching, coalescing hostname resolver.

    A Resolver is confined to the event loop that uses it.

    Args:
        ttl: Seconds a successful result is cached (0 disables caching).
        lookup_timeout: Seconds before an upstream lookup is abandoned.
        worker_pool: Pool that runs the blocking lookup. A private
                     one-thread pool is created when omitted.
        lookup: Blocking function host -> [(family, ip), ...].
                Replaceable for tests and custom name services.
        clock: Monotonic clock, replaceable for tests.
    """

    def __init__(
        self,
        ttl: float = 300.0,
        lookup_timeout: float = 10.0,
        worker_pool: Optional[WorkerPool] = None,
        lookup: Callable[[str], _Records] = _system_lookup,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.lookup_timeout = lookup_timeout
        self._owns_pool = worker_pool is None
        self._worker_pool = worker_pool or WorkerPool(max_workers=1)
        self._lookup = lookup
        self._clock = clock
        self._cache: Dict[str, _CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Task] = {}

        # Number of upstream queries actually issued.
        self.lookups = 0

    async def resolve(self, host: str, port: int = 0) -> List[Address]:
        """
        Resolve `host` to an ordered list of addresses.

        Raises:
            ResolutionError: No entries, lookup failure or lookup timeout.
        """
        host = host.lower().rstrip(".")
        literal = _ip_literal(host)
        if literal is not None:
            return [Address(ip=literal[1], port=port, family=literal[0])]

        now = self._clock()
        entry = self._cache.get(host)
        if entry is not None:
            if now < entry.expires_at:
                return _to_addresses(entry.records, port, entry.expires_at)
            del self._cache[host]

        task = self._inflight.get(host)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._query(host))
            self._inflight[host] = task
            task.add_done_callback(lambda _t, h=host: self._inflight.pop(h, None))
        else:
            logger.debug(f"Joining in-flight lookup for {host}")

        entry = await asyncio.shield(task)
        return _to_addresses(entry.records, port, entry.expires_at)

    async def _query(self, host: str) -> _CacheEntry:
        self.lookups += 1
        started = self._clock()
        try:
            records = await asyncio.wait_for(
                self._worker_pool.run(self._lookup, host),
                timeout=self.lookup_timeout,
            )
        except asyncio.TimeoutError:
            raise ResolutionError(
                f"Lookup for {host} timed out after {self.lookup_timeout}s"
            ) from None
        except (OSError, UnicodeError) as e:
            raise ResolutionError(f"Cannot resolve {host}: {e}") from e

        if not records:
            raise ResolutionError(f"No addresses found for {host}")

        entry = _CacheEntry(records=list(records), expires_at=self._clock() + self.ttl)
        if self.ttl > 0:
            self._cache[host] = entry
        logger.debug(
            f"Resolved {host} -> {[ip for _, ip in records]} "
            f"in {(self._clock() - started) * 1000:.1f}ms"
        )
        return entry

    def flush(self, host: Optional[str] = None) -> None:
        """Drop the cache entry for `host`, or every entry when None."""
        if host is None:
            self._cache.clear()
        else:
            self._cache.pop(host.lower().rstrip("."), None)

    def cached(self, host: str) -> bool:
        """True if a live (unexpired) entry exists for `host`."""
        entry = self._cache.get(host.lower().rstrip("."))
        return entry is not None and self._clock() < entry.expires_at

    def close(self) -> None:
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
        if self._owns_pool:
            self._worker_pool.shutdown()


def _ip_literal(host: str) -> Optional[Tuple[int, str]]:
    try:
        ip = ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return None
    family = socket.AF_INET6 if ip.version == 6 else socket.AF_INET
    return family, str(ip)


def _to_addresses(records: _Records, port: int, expires_at: float) -> List[Address]:
    return [
        Address(ip=ip, port=port, family=family, expires_at=expires_at)
        for family, ip in records
    ]
