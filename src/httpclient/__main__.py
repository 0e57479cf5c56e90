"""
=============================================================================
HTTP CLIENT CLI ENTRY POINT
=============================================================================

A small curl-like front end for the Session API.

=============================================================================
USAGE
=============================================================================

    # Simple GET, body to stdout
    python -m httpclient http://example.com/

    # POST with a header and a body
    python -m httpclient -X POST -H "Content-Type: application/json" \\
        -d '{"name": "alice"}' http://localhost:8080/users

    # Show status line, headers and the redirect chain
    python -m httpclient -i http://example.com/old-path

    # Do not follow redirects; give up after 5 seconds
    python -m httpclient --no-redirects --timeout 5 http://example.com/

Exit status is 0 for a response below 400, 1 for an error status and 2
for a client error (resolution, connect, timeout, protocol).

=============================================================================
"""

import argparse
import sys
from typing import List, Optional

from . import __version__
from .config import SessionConfig
from .core.eventloop import run
from .errors import HTTPClientError
from .http.headers import Headers
from .log import setup_logging
from .session import Session


def _parse_header(value: str):
    name, sep, field_value = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected 'Name: value', got {value!r}")
    return name.strip(), field_value.strip()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m httpclient",
        description="Asynchronous HTTP/1.1 client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m httpclient http://example.com/
  python -m httpclient -X POST -d 'a=1' http://localhost:8080/form
  python -m httpclient -i --max-redirects 3 http://example.com/old
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # REQUEST ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("url", help="Absolute http:// or https:// URL")
    parser.add_argument(
        "--request", "-X",
        dest="method",
        default=None,
        help="Request method (default: GET, or POST when --data is given)",
    )
    parser.add_argument(
        "--header", "-H",
        dest="headers",
        action="append",
        type=_parse_header,
        default=[],
        help="Extra header 'Name: value' (repeatable)",
    )
    parser.add_argument("--data", "-d", default=None, help="Request body")

    # ─────────────────────────────────────────────────────────────────────
    # BEHAVIOUR ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--no-redirects",
        action="store_true",
        help="Return 3xx responses instead of following them",
    )
    parser.add_argument(
        "--max-redirects",
        type=int,
        default=10,
        help="Redirects to follow before giving up (default: 10)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Deadline in seconds for the whole request (default: none)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # OUTPUT ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument(
        "--include", "-i",
        action="store_true",
        help="Print the redirect chain, status line and headers",
    )
    parser.add_argument(
        "--log-level", "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Logging level (default: WARNING)",
    )
    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"httpclient {__version__}",
    )
    return parser


async def fetch(args: argparse.Namespace) -> int:
    config = SessionConfig(
        follow_redirects=not args.no_redirects,
        max_redirects=args.max_redirects,
        request_timeout=args.timeout,
    )
    method = args.method or ("POST" if args.data is not None else "GET")

    async with Session(config) as session:
        response = await session.request(
            method, args.url, headers=Headers(args.headers), body=args.data
        )
        body = await response.read()

    if args.include:
        for hop in response.history:
            print(f"{hop.version} {hop.status_code} {hop.reason_phrase} -> {hop.headers.get('location', '')}")
        print(f"{response.version} {response.status_code} {response.reason_phrase}")
        for name, value in response.headers.multi_items():
            print(f"{name}: {value}")
        print()

    sys.stdout.buffer.write(body)
    sys.stdout.flush()
    return 0 if response.ok else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        return run(fetch(args))
    except HTTPClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except KeyboardInterrupt:
        return 130


# =============================================================================
# ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    sys.exit(main())
