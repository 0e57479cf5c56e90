"""
=============================================================================
REQUEST LOGGING
=============================================================================

Module loggers (logging.getLogger(__name__)) report connection lifecycle
at DEBUG. On top of that, every Session.request() emits ONE structured
line on a namespaced access logger:

    logging.getLogger("httpclient.access").setLevel(logging.INFO)
    logging.getLogger("httpclient.access").addHandler(file_handler)

Text format:

    a1b2c3d4 "GET http://example.com/" 200 redirects=2 41.73ms

JSON format (for log aggregators):

    {"request_id": "a1b2c3d4", "method": "GET", "url": "...", ...}

=============================================================================
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional


access_logger = logging.getLogger("httpclient.access")


@dataclass
class RequestLog:
    """
    Structured log entry for one logical request (all redirect hops).

    status_code is None and error is set when the request failed.
    """

    request_id: str
    method: str
    url: str
    status_code: Optional[int]
    redirects: int
    duration_ms: float
    error: Optional[str] = None
    phase: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "method": self.method,
            "url": self.url,
            "status_code": self.status_code,
            "redirects": self.redirects,
            "duration_ms": round(self.duration_ms, 2),
            "error": self.error,
            "phase": self.phase,
        }

    def to_text(self) -> str:
        outcome = self.status_code if self.error is None else f"failed[{self.phase or '-'}] {self.error}"
        return (
            f'{self.request_id} "{self.method} {self.url}" {outcome} '
            f"redirects={self.redirects} {self.duration_ms:.2f}ms"
        )


def emit(entry: RequestLog, log_format: str = "text") -> None:
    """Write an entry to the access logger (WARNING for failures)."""
    level = logging.INFO if entry.error is None else logging.WARNING
    if not access_logger.isEnabledFor(level):
        return
    if log_format == "json":
        access_logger.log(level, json.dumps(entry.to_dict()))
    else:
        access_logger.log(level, entry.to_text())


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging for scripts and the CLI."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("httpclient").setLevel(numeric)
