"""
=============================================================================
COOKIE JAR (RFC 6265)
=============================================================================

Servers set cookies with Set-Cookie; the client sends back the ones that
MATCH the request URL in a single Cookie header:

    ← Set-Cookie: session=abc; Path=/app; Secure; HttpOnly
    → Cookie: session=abc                (only for https://host/app...)

=============================================================================
MATCHING RULES
=============================================================================

    DOMAIN   No Domain attribute  → host-only: exact host match
             Domain=example.com   → example.com and any subdomain
             A server may not set a cookie for a domain it is not part of.

    PATH     Path=/app matches /app, /app/, /app/x   but not /application
             No Path attribute → directory of the request path

    SECURE   only sent over https

    EXPIRY   Max-Age wins over Expires; Max-Age <= 0 deletes the cookie;
             no expiry = session cookie (lives as long as the jar)

Cookies are keyed by (domain, path, name): setting the same key again
replaces the old value.

=============================================================================
"""

import ipaddress
import logging
import time
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import urlsplit

from .headers import Headers


logger = logging.getLogger(__name__)

CookieKey = Tuple[str, str, str]


@dataclass
class Cookie:
    """
    One stored cookie.

    Attributes:
        expires: Unix timestamp, or None for a session cookie.
        host_only: True when set without a Domain attribute.
    """
    name: str
    value: str
    domain: str
    path: str = "/"
    secure: bool = False
    httponly: bool = False
    expires: Optional[float] = None
    host_only: bool = True
    samesite: Optional[str] = None
    created: float = field(default_factory=time.time)

    @property
    def key(self) -> CookieKey:
        return (self.domain, self.path, self.name)

    def is_expired(self, now: float) -> bool:
        return self.expires is not None and self.expires <= now

    def matches(self, host: str, path: str, secure: bool, now: float) -> bool:
        if self.is_expired(now):
            return False
        if self.secure and not secure:
            return False
        if self.host_only:
            if host != self.domain:
                return False
        elif not domain_match(host, self.domain):
            return False
        return path_match(path, self.path)


class CookieJar:
    """
    Stores cookies across requests of a Session.

    Args:
        clock: Wall clock returning Unix time; replaceable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._cookies: Dict[CookieKey, Cookie] = {}
        self._clock = clock

    # =========================================================================
    # STORING
    # =========================================================================

    def extract(self, headers: Headers, url: str) -> int:
        """
        Store the cookies from every Set-Cookie header of a response.

        Returns:
            Number of cookies stored or deleted.
        """
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
        changed = 0
        for header in headers.get_all("set-cookie"):
            cookie = parse_set_cookie(header, host, parts.path, now=self._clock())
            if cookie is None:
                logger.debug(f"Rejected Set-Cookie from {host}: {header[:80]!r}")
                continue
            if cookie.is_expired(self._clock()):
                self._cookies.pop(cookie.key, None)
            else:
                old = self._cookies.get(cookie.key)
                if old is not None:
                    cookie.created = old.created
                self._cookies[cookie.key] = cookie
            changed += 1
        return changed

    def set(self, name: str, value: str, domain: str, path: str = "/", **attributes) -> Cookie:
        """Store a cookie directly. Without a leading "." the domain is host-only."""
        host_only = not domain.startswith(".")
        cookie = Cookie(
            name=name,
            value=value,
            domain=domain.lstrip(".").lower(),
            path=path,
            host_only=host_only,
            **attributes,
        )
        self._cookies[cookie.key] = cookie
        return cookie

    # =========================================================================
    # SENDING
    # =========================================================================

    def cookies_for(self, url: str) -> List[Cookie]:
        """
        Cookies to send to `url`, longest path first, then oldest first.
        Expired cookies are purged on the way.
        """
        parts = urlsplit(url)
        host = (parts.hostname or "").lower()
        path = parts.path or "/"
        secure = parts.scheme.lower() == "https"
        now = self._clock()

        self.clear_expired()
        matching = [c for c in self._cookies.values() if c.matches(host, path, secure, now)]
        matching.sort(key=lambda c: (-len(c.path), c.created))
        return matching

    def header_for(self, url: str) -> Optional[str]:
        """Cookie header value for `url`, or None when nothing matches."""
        cookies = self.cookies_for(url)
        if not cookies:
            return None
        return "; ".join(f"{c.name}={c.value}" for c in cookies)

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def clear_expired(self) -> None:
        now = self._clock()
        for key in [k for k, c in self._cookies.items() if c.is_expired(now)]:
            del self._cookies[key]

    def clear(self, domain: Optional[str] = None) -> None:
        if domain is None:
            self._cookies.clear()
            return
        domain = domain.lstrip(".").lower()
        for key in [k for k in self._cookies if k[0] == domain]:
            del self._cookies[key]

    def get(self, name: str, domain: Optional[str] = None) -> Optional[str]:
        """Value of the first cookie called `name` (optionally on `domain`)."""
        for cookie in self._cookies.values():
            if cookie.name == name and (domain is None or cookie.domain == domain):
                return cookie.value
        return None

    def load_netscape(self, cookie_file: str) -> int:
        """
        Load cookies from a Netscape cookie file (curl / browser export).

        Format, tab separated:
            # domain  include_subdomains  path  secure  expires  name  value
            .example.com  TRUE  /  FALSE  1735689600  sessionid  abc123

        Returns:
            Number of cookies loaded. A missing file loads nothing.
        """
        cookie_path = Path(cookie_file)
        if not cookie_path.exists():
            return 0

        loaded = 0
        with open(cookie_path, "r") as f:
            for line in f:
                line = line.strip()
                httponly = line.startswith("#HttpOnly_")
                if httponly:
                    line = line[len("#HttpOnly_"):]
                if not line or line.startswith("#"):
                    continue

                parts = line.split("\t")
                if len(parts) < 7:
                    continue
                domain, flag, path, secure, expiration, name, value = parts[:7]

                try:
                    expires = float(expiration) or None
                except ValueError:
                    expires = None

                include_subdomains = flag.upper() == "TRUE"
                cookie = Cookie(
                    name=name,
                    value=value,
                    domain=domain.lstrip(".").lower(),
                    path=path or "/",
                    secure=secure.upper() == "TRUE",
                    httponly=httponly,
                    expires=expires,
                    host_only=not include_subdomains,
                )
                self._cookies[cookie.key] = cookie
                loaded += 1
        return loaded

    def __len__(self) -> int:
        return len(self._cookies)

    def __iter__(self) -> Iterator[Cookie]:
        return iter(list(self._cookies.values()))

    def __repr__(self) -> str:
        return f"<CookieJar {len(self)} cookie(s)>"


# =============================================================================
# PARSING & MATCHING
# =============================================================================

def parse_set_cookie(header: str, host: str, request_path: str, now: float) -> Optional[Cookie]:
    """
    Parse one Set-Cookie value received from `host`.

    Returns:
        The Cookie, or None when the header must be ignored (no "=",
        empty name, or a Domain the host does not belong to).
    """
    pairs = header.split(";")
    name, sep, value = pairs[0].partition("=")
    name, value = name.strip(), value.strip()
    if not sep or not name:
        return None
    if len(value) >= 2 and value[0] == value[-1] == '"':
        value = value[1:-1]

    cookie = Cookie(name=name, value=value, domain=host, path=default_path(request_path))
    max_age: Optional[int] = None

    for attribute in pairs[1:]:
        attr_name, _, attr_value = attribute.partition("=")
        attr_name, attr_value = attr_name.strip().lower(), attr_value.strip()

        if attr_name == "domain" and attr_value:
            domain = attr_value.lstrip(".").lower()
            if not domain_match(host, domain):
                return None
            cookie.domain = domain
            cookie.host_only = False
        elif attr_name == "path":
            cookie.path = attr_value if attr_value.startswith("/") else default_path(request_path)
        elif attr_name == "max-age":
            try:
                max_age = int(attr_value)
            except ValueError:
                continue
        elif attr_name == "expires":
            try:
                cookie.expires = parsedate_to_datetime(attr_value).timestamp()
            except (TypeError, ValueError, IndexError):
                continue
        elif attr_name == "secure":
            cookie.secure = True
        elif attr_name == "httponly":
            cookie.httponly = True
        elif attr_name == "samesite":
            cookie.samesite = attr_value or None

    if max_age is not None:
        cookie.expires = now + max_age if max_age > 0 else now - 1
    return cookie


def default_path(request_path: str) -> str:
    """Directory of the request path ("/a/b/c" → "/a/b", "/a" → "/")."""
    if not request_path.startswith("/") or request_path.count("/") <= 1:
        return "/"
    return request_path[: request_path.rindex("/")]


def domain_match(host: str, domain: str) -> bool:
    """host is `domain` or a subdomain of it; IP hosts only match exactly."""
    if host == domain:
        return True
    if _is_ip(host):
        return False
    return host.endswith("." + domain)


def path_match(request_path: str, cookie_path: str) -> bool:
    """"/app" matches "/app", "/app/" and "/app/x", not "/application"."""
    if request_path == cookie_path:
        return True
    if not request_path.startswith(cookie_path):
        return False
    return cookie_path.endswith("/") or request_path[len(cookie_path)] == "/"


def _is_ip(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True
