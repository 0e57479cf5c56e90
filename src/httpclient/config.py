"""
=============================================================================
CLIENT CONFIGURATION
=============================================================================

Two configuration objects, one per layer:

    ConnectorConfig     connection pool, DNS cache, worker threads
    SessionConfig       default headers, redirects, request timeout

Collaborators (resolver, ssl context, cookie jar, a shared connector) are
not configuration values. They are injected into the Connector or Session
constructor directly.

=============================================================================
USAGE
=============================================================================

    config = ConnectorConfig(limit=50, limit_per_host=8)
    config.validate()

    # Or from the environment (12-factor style):
    #   HTTPCLIENT_LIMIT=50 HTTPCLIENT_LIMIT_PER_HOST=8 python app.py
    config = ConnectorConfig.from_env()

=============================================================================
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional


DEFAULT_USER_AGENT = "httpclient/1.0"


@dataclass
class ConnectorConfig:
    """
    Configuration for the connection pool.

    =========================================================================
    LIMITS
    =========================================================================

    Limits count IN-USE connections only. Idle pooled connections are
    bounded separately by keepalive_per_host.

        limit              total in-use connections (0 = unlimited)
        limit_per_host     in-use connections per (scheme, host, port)
                           (0 = unlimited)

    When a limit is reached, acquire() waits in a FIFO queue instead of
    failing.

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # POOL LIMITS
    # ─────────────────────────────────────────────────────────────────────

    limit: int = 100
    """Maximum number of in-use connections across all hosts."""

    limit_per_host: int = 0
    """Maximum number of in-use connections to a single pool key."""

    keepalive_per_host: int = 10
    """Maximum number of idle connections kept for a single pool key."""

    # ─────────────────────────────────────────────────────────────────────
    # TIMERS
    # ─────────────────────────────────────────────────────────────────────

    idle_timeout: float = 15.0
    """
    Seconds an idle connection may stay pooled.
    Servers close idle sockets on their own schedule, so keep this
    below the server's keep-alive timeout.
    """

    reaper_interval: Optional[float] = None
    """Seconds between reaper passes. None = idle_timeout / 2."""

    # ─────────────────────────────────────────────────────────────────────
    # DNS
    # ─────────────────────────────────────────────────────────────────────

    dns_ttl: float = 300.0
    """Seconds a successful resolution stays cached."""

    lookup_timeout: float = 10.0
    """Seconds before an upstream lookup is abandoned."""

    # ─────────────────────────────────────────────────────────────────────
    # WORKER POOL
    # ─────────────────────────────────────────────────────────────────────

    worker_threads: int = 4
    """Threads for blocking calls (getaddrinfo). One pool per connector."""

    @property
    def effective_reaper_interval(self) -> float:
        if self.reaper_interval is not None:
            return self.reaper_interval
        return max(self.idle_timeout / 2, 0.1)

    @classmethod
    def from_env(cls) -> "ConnectorConfig":
        """
        Create configuration from environment variables.

        HTTPCLIENT_LIMIT            total in-use limit (default: 100)
        HTTPCLIENT_LIMIT_PER_HOST   per-host in-use limit (default: 0)
        HTTPCLIENT_IDLE_TIMEOUT     idle timeout seconds (default: 15)
        HTTPCLIENT_DNS_TTL          DNS cache TTL seconds (default: 300)
        HTTPCLIENT_WORKERS          worker threads (default: 4)
        """
        return cls(
            limit=int(os.getenv("HTTPCLIENT_LIMIT", "100")),
            limit_per_host=int(os.getenv("HTTPCLIENT_LIMIT_PER_HOST", "0")),
            idle_timeout=float(os.getenv("HTTPCLIENT_IDLE_TIMEOUT", "15")),
            dns_ttl=float(os.getenv("HTTPCLIENT_DNS_TTL", "300")),
            worker_threads=int(os.getenv("HTTPCLIENT_WORKERS", "4")),
        )

    def validate(self) -> None:
        """Fail fast on values that cannot work."""
        if self.limit < 0:
            raise ValueError("limit must be >= 0")
        if self.limit_per_host < 0:
            raise ValueError("limit_per_host must be >= 0")
        if self.keepalive_per_host < 0:
            raise ValueError("keepalive_per_host must be >= 0")
        if self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")
        if self.reaper_interval is not None and self.reaper_interval <= 0:
            raise ValueError("reaper_interval must be > 0")
        if self.dns_ttl < 0:
            raise ValueError("dns_ttl must be >= 0")
        if self.lookup_timeout <= 0:
            raise ValueError("lookup_timeout must be > 0")
        if self.worker_threads < 1:
            raise ValueError("worker_threads must be >= 1")


@dataclass
class SessionConfig:
    """Configuration for a Session."""

    default_headers: Dict[str, str] = field(default_factory=dict)
    """Headers sent with every request. Per-call headers win on conflict."""

    follow_redirects: bool = True

    max_redirects: int = 10
    """Redirects followed before TooManyRedirectsError."""

    request_timeout: Optional[float] = None
    """
    Deadline in seconds for a whole request: resolution, connect and every
    read and write, across all redirect hops. None = no deadline.
    """

    user_agent: Optional[str] = DEFAULT_USER_AGENT
    """Sent as User-Agent unless default or per-call headers set one."""

    log_format: str = "text"
    """Access log format: "text" or "json"."""

    @classmethod
    def from_env(cls) -> "SessionConfig":
        """
        Create configuration from environment variables.

        HTTPCLIENT_MAX_REDIRECTS    (default: 10)
        HTTPCLIENT_TIMEOUT          request deadline seconds (default: none)
        HTTPCLIENT_USER_AGENT       (default: httpclient/1.0)
        """
        timeout = os.getenv("HTTPCLIENT_TIMEOUT")
        return cls(
            max_redirects=int(os.getenv("HTTPCLIENT_MAX_REDIRECTS", "10")),
            request_timeout=float(timeout) if timeout else None,
            user_agent=os.getenv("HTTPCLIENT_USER_AGENT", DEFAULT_USER_AGENT),
        )

    def validate(self) -> None:
        if self.max_redirects < 0:
            raise ValueError("max_redirects must be >= 0")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ValueError("request_timeout must be > 0")
        if self.log_format not in ("text", "json"):
            raise ValueError("log_format must be 'text' or 'json'")
