"""
=============================================================================
EVENT LOOP INTEGRATION
=============================================================================

The client runs on asyncio's selector event loop: ONE thread, many
connections, cooperative scheduling.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        One loop iteration                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. select()/epoll() with timeout = nearest pending timer           │
    │   2. wake tasks whose sockets became readable / writable             │
    │   3. fire expired timers (sleeps, deadlines)                         │
    │   4. drain the thread-safe call queue (worker pool completions)      │
    │   5. run every ready task until its next `await`                     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Between two `await`s nothing else runs, so pool bookkeeping only needs
to be consistent at suspension points. The suspension points used by
this package are:

    await readable      Transport.read / readline
    await writable      Transport.drain
    await timer         asyncio.sleep, Deadline
    await worker        WorkerPool.run (getaddrinfo and other blocking calls)

=============================================================================
WHY A WORKER POOL?
=============================================================================

getaddrinfo() blocks. Calling it on the loop thread would freeze every
connection. So blocking calls go to a small, BOUNDED thread pool and the
result comes back through loop.call_soon_threadsafe (which is what
run_in_executor does under the hood).

Each Connector owns its own pool. No global pool is shared.

=============================================================================
"""

import asyncio
import itertools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..errors import HTTPClientError, Phase, RequestTimeoutError


logger = logging.getLogger(__name__)

T = TypeVar("T")

_pool_ids = itertools.count(1)


class WorkerPool:
    """
    Bounded thread pool for blocking calls.

    Usage:
        pool = WorkerPool(max_workers=4)
        infos = await pool.run(socket.getaddrinfo, "example.com", 80)
        pool.shutdown()
    """

    def __init__(self, max_workers: int = 4, name: Optional[str] = None):
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.max_workers = max_workers
        self.name = name or f"httpclient-worker-{next(_pool_ids)}"
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix=self.name,
        )
        self._lock = threading.Lock()
        self._closed = False

        # Statistics
        self.submitted = 0
        self.completed = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """
        Run fn(*args) on a worker thread and await its result.

        Cancelling the awaiting task does not interrupt the worker thread;
        its result is discarded.

        Raises:
            RuntimeError: If the pool has been shut down.
        """
        if self._closed:
            raise RuntimeError(f"{self.name} is shut down")

        loop = asyncio.get_running_loop()
        with self._lock:
            self.submitted += 1
        try:
            return await loop.run_in_executor(self._executor, fn, *args)
        finally:
            with self._lock:
                self.completed += 1

    def shutdown(self, wait: bool = False) -> None:
        """Stop accepting work. Idempotent."""
        if self._closed:
            return
        self._closed = True
        logger.debug(f"{self.name}: shutting down ({self.submitted} calls served)")
        self._executor.shutdown(wait=wait, cancel_futures=True)


class Deadline:
    """
    An absolute deadline covering a whole logical request.

    A timeout is NOT applied per syscall. Resolution, connect, every send
    and every receive draw from the same budget:

        deadline = Deadline(10.0)
        addrs = await deadline.run(resolver.resolve(host), Phase.RESOLVE)
        await deadline.run(transport.drain(), Phase.SEND)

    Deadline(None) never expires.
    """

    def __init__(
        self,
        timeout: Optional[float],
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout = timeout
        self._clock = clock
        self.expires_at = None if timeout is None else clock() + timeout

    @property
    def remaining(self) -> Optional[float]:
        """Seconds left, 0.0 when expired, None when unbounded."""
        if self.expires_at is None:
            return None
        return max(self.expires_at - self._clock(), 0.0)

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and self._clock() >= self.expires_at

    async def run(self, awaitable: Awaitable[T], phase: Phase) -> T:
        """
        Await `awaitable` within the remaining budget.

        Raises:
            RequestTimeoutError: If the deadline passes (tagged with phase).
            HTTPClientError: Any client error from the awaitable, tagged
                             with phase if no inner layer tagged it.
        """
        if self.expired:
            # Never started, so close it to avoid "never awaited" warnings.
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RequestTimeoutError(
                f"Deadline of {self.timeout}s exceeded", phase=phase
            )

        try:
            if self.expires_at is None:
                return await awaitable
            return await asyncio.wait_for(awaitable, timeout=self.remaining)
        except HTTPClientError as e:
            # Checked first: RequestTimeoutError is also an asyncio.TimeoutError.
            raise e.with_phase(phase)
        except asyncio.TimeoutError:
            raise RequestTimeoutError(
                f"Deadline of {self.timeout}s exceeded", phase=phase
            ) from None

    def __repr__(self) -> str:
        return f"Deadline(timeout={self.timeout}, remaining={self.remaining})"


def run(main: Awaitable[T], *, debug: bool = False) -> T:
    """
    Run a coroutine on a fresh event loop and close the loop afterwards.

    This is the entry point for callers that are not already inside an
    event loop (scripts, the CLI):

        response = run(fetch("http://example.com/"))
    """
    return asyncio.run(main, debug=debug)
