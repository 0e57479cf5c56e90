"""
HTTP module - Protocol handling components.

This module contains the HTTP/1.1 message layer:
- Headers: ordered, case-insensitive header multi-map
- Request: outgoing request
- Response: received response with a lazy body
- Codec: request encoding and response decoding on a Transport
- CookieJar: RFC 6265 cookie storage and matching
- HTTPStatus: status code enum
"""

from .headers import Headers, merge_headers
from .status_codes import HTTPStatus
from .request import Request
from .response import Response
from .codec import BodyStream, Framing, receive_request, receive_response, send_request
from .cookies import Cookie, CookieJar

__all__ = [
    "Headers",
    "merge_headers",
    "HTTPStatus",
    "Request",
    "Response",
    "BodyStream",
    "Framing",
    "send_request",
    "receive_response",
    "receive_request",
    "Cookie",
    "CookieJar",
]
