"""
=============================================================================
CORE MODULE - Connections, Pooling and the Event Loop
=============================================================================

This module contains everything below HTTP: how bytes get to a server.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     CORE ARCHITECTURE                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Session (one logical request)                                      │
    │      │                                                               │
    │      │  acquire(PoolKey)                                             │
    │      ▼                                                               │
    │   ┌──────────────┐   idle?    ┌─────────────────────────────┐        │
    │   │  Connector   │ ─────────► │ reuse a pooled Transport     │        │
    │   │  (pool)      │            └─────────────────────────────┘        │
    │   └──────┬───────┘                                                   │
    │          │ no idle transport, capacity left                          │
    │          ▼                                                           │
    │   ┌──────────────┐  getaddrinfo  ┌──────────────┐                    │
    │   │  Resolver    │ ────────────► │  WorkerPool  │ (blocking calls)   │
    │   └──────┬───────┘               └──────────────┘                    │
    │          │ addresses                                                 │
    │          ▼                                                           │
    │   ┌──────────────┐                                                   │
    │   │  Transport   │  TCP (+TLS) stream on the asyncio loop            │
    │   └──────────────┘                                                   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
KEY CONCEPTS
=============================================================================

1. ONE THREAD, MANY CONNECTIONS
   All sockets are multiplexed on a single asyncio event loop. Only
   blocking calls (DNS) leave the loop thread, through the WorkerPool.

2. DEADLINES, NOT PER-CALL TIMEOUTS
   A Deadline covers a whole logical request: queueing for a slot,
   resolving, connecting, sending and receiving all draw from one budget.

3. POOLING
   Connections are keyed by (scheme, host, port). Limits count in-use
   connections; idle ones expire after idle_timeout.

=============================================================================
"""

from .eventloop import Deadline, WorkerPool, run
from .resolver import Address, Resolver
from .transport import Transport, TransportInfo, TransportState
from .connector import Connector, PoolKey

__all__ = [
    "Address",          # One resolved socket address
    "Resolver",         # Caching, coalescing DNS resolver
    "Transport",        # One TCP/TLS byte stream
    "TransportState",   # Enum for transport lifecycle states
    "TransportInfo",    # Peer / TLS details captured at connect time
    "PoolKey",          # (scheme, host, port) pool identity
    "Connector",        # Connection pool with limits and a reaper
    "WorkerPool",       # Bounded thread pool for blocking calls
    "Deadline",         # Request-wide timeout budget
    "run",              # Run a coroutine on a fresh loop
]
