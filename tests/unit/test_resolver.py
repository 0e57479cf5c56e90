"""
Unit tests for the caching resolver.
"""

import asyncio
import socket
import threading
import time

import pytest

from httpclient.core.resolver import Address, Resolver
from httpclient.errors import ResolutionError


class FakeLookup:
    """Blocking lookup stand-in that counts calls and can be slowed down."""

    def __init__(self, records=None, delay: float = 0.0, error: Exception = None):
        self.records = records if records is not None else [(socket.AF_INET, "10.0.0.1")]
        self.delay = delay
        self.error = error
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, host: str):
        with self._lock:
            self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.records


@pytest.fixture
def lookup() -> FakeLookup:
    return FakeLookup()


class TestResolve:
    """Tests for Resolver.resolve()."""

    @pytest.mark.asyncio
    async def test_returns_addresses_with_port(self, lookup, clock):
        """Test that records become Addresses carrying the port and expiry."""
        lookup.records = [(socket.AF_INET, "10.0.0.1"), (socket.AF_INET6, "::1")]
        resolver = Resolver(ttl=30, lookup=lookup, clock=clock)
        try:
            addresses = await resolver.resolve("Example.COM.", 8080)
        finally:
            resolver.close()

        assert addresses == [
            Address("10.0.0.1", 8080, socket.AF_INET, clock.now + 30),
            Address("::1", 8080, socket.AF_INET6, clock.now + 30),
        ]

    @pytest.mark.asyncio
    async def test_ip_literal_skips_lookup(self, lookup):
        """Test that IP literals are returned without a lookup."""
        resolver = Resolver(lookup=lookup)
        try:
            v4 = await resolver.resolve("127.0.0.1", 80)
            v6 = await resolver.resolve("[::1]", 443)
        finally:
            resolver.close()

        assert v4 == [Address("127.0.0.1", 80, socket.AF_INET)]
        assert v6 == [Address("::1", 443, socket.AF_INET6)]
        assert resolver.lookups == 0
        assert lookup.calls == 0

    @pytest.mark.asyncio
    async def test_concurrent_lookups_coalesce(self, lookup):
        """Test that simultaneous resolves of one host share one lookup."""
        lookup.delay = 0.05
        resolver = Resolver(lookup=lookup)
        try:
            results = await asyncio.gather(*(resolver.resolve("example.com", 80) for _ in range(10)))
        finally:
            resolver.close()

        assert resolver.lookups == 1
        assert lookup.calls == 1
        assert all(result == results[0] for result in results)

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_shared_lookup(self, lookup):
        """Test that one cancelled waiter leaves the others unaffected."""
        lookup.delay = 0.05
        resolver = Resolver(lookup=lookup)
        try:
            first = asyncio.ensure_future(resolver.resolve("example.com", 80))
            second = asyncio.ensure_future(resolver.resolve("example.com", 80))
            await asyncio.sleep(0)
            first.cancel()

            addresses = await second
        finally:
            resolver.close()

        assert first.cancelled()
        assert addresses[0].ip == "10.0.0.1"
        assert resolver.lookups == 1


class TestCache:
    """Tests for TTL caching."""

    @pytest.mark.asyncio
    async def test_cached_until_ttl(self, lookup, clock):
        """Test that a cached entry is reused, then refreshed after the TTL."""
        resolver = Resolver(ttl=60, lookup=lookup, clock=clock)
        try:
            await resolver.resolve("example.com", 80)
            clock.advance(59)
            await resolver.resolve("example.com", 443)
            assert resolver.lookups == 1
            assert resolver.cached("example.com")

            clock.advance(1)
            assert not resolver.cached("example.com")
            await resolver.resolve("example.com", 80)
        finally:
            resolver.close()

        assert resolver.lookups == 2

    @pytest.mark.asyncio
    async def test_zero_ttl_disables_cache(self, lookup):
        """Test that ttl=0 looks up every time."""
        resolver = Resolver(ttl=0, lookup=lookup)
        try:
            await resolver.resolve("example.com")
            await resolver.resolve("example.com")
        finally:
            resolver.close()

        assert resolver.lookups == 2

    @pytest.mark.asyncio
    async def test_flush(self, lookup):
        """Test that flush() forces a fresh lookup."""
        resolver = Resolver(lookup=lookup)
        try:
            await resolver.resolve("example.com")
            resolver.flush("example.com")
            await resolver.resolve("example.com")
        finally:
            resolver.close()

        assert resolver.lookups == 2


class TestFailures:
    """Tests for lookup failures."""

    @pytest.mark.asyncio
    async def test_lookup_error(self, lookup):
        """Test that a failed lookup is a ResolutionError and is not cached."""
        lookup.error = socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        resolver = Resolver(lookup=lookup)
        try:
            with pytest.raises(ResolutionError):
                await resolver.resolve("nope.invalid")
            with pytest.raises(ResolutionError):
                await resolver.resolve("nope.invalid")
        finally:
            resolver.close()

        assert resolver.lookups == 2
        assert not resolver.cached("nope.invalid")

    @pytest.mark.asyncio
    async def test_no_records(self, lookup):
        """Test that an empty result is a ResolutionError."""
        lookup.records = []
        resolver = Resolver(lookup=lookup)
        try:
            with pytest.raises(ResolutionError):
                await resolver.resolve("empty.example")
        finally:
            resolver.close()

    @pytest.mark.asyncio
    async def test_lookup_timeout(self, lookup):
        """Test that a slow lookup is abandoned after lookup_timeout."""
        lookup.delay = 0.5
        resolver = Resolver(lookup_timeout=0.05, lookup=lookup)
        try:
            with pytest.raises(ResolutionError, match="timed out"):
                await resolver.resolve("slow.example")
        finally:
            resolver.close()
