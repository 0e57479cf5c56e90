"""
=============================================================================
HTTP STATUS CODES (CLIENT VIEW)
=============================================================================

A client mostly cares about the CLASS of a status code:

    ┌────────┬───────────────────────────────────────────────────────────┐
    │  1xx   │ INTERIM: skip and keep reading (except 101)               │
    │  2xx   │ SUCCESS                                                    │
    │  3xx   │ REDIRECT: 301 302 303 307 308 are followed                │
    │        │           304 Not Modified has NO body                     │
    │  4xx   │ CLIENT ERROR                                               │
    │  5xx   │ SERVER ERROR                                               │
    └────────┴───────────────────────────────────────────────────────────┘

Redirect methods:

    301 Moved Permanently   POST becomes GET (what browsers do)
    302 Found               POST becomes GET (what browsers do)
    303 See Other           always GET (except HEAD)
    307 Temporary Redirect  method and body preserved
    308 Permanent Redirect  method and body preserved

Unknown codes are legal on the wire: use HTTPStatus.phrase_for(code)
rather than HTTPStatus(code), which raises ValueError for them.

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    Status codes and reason phrases.

        >>> HTTPStatus.FOUND == 302
        True
        >>> HTTPStatus.FOUND.phrase
        'Found'
    """

    # 1xx
    CONTINUE = 100
    SWITCHING_PROTOCOLS = 101
    EARLY_HINTS = 103

    # 2xx
    OK = 200
    CREATED = 201
    ACCEPTED = 202
    NO_CONTENT = 204
    PARTIAL_CONTENT = 206

    # 3xx
    MULTIPLE_CHOICES = 300
    MOVED_PERMANENTLY = 301
    FOUND = 302
    SEE_OTHER = 303
    NOT_MODIFIED = 304
    TEMPORARY_REDIRECT = 307
    PERMANENT_REDIRECT = 308

    # 4xx
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    REQUEST_TIMEOUT = 408
    CONFLICT = 409
    GONE = 410
    PAYLOAD_TOO_LARGE = 413
    TOO_MANY_REQUESTS = 429

    # 5xx
    INTERNAL_SERVER_ERROR = 500
    BAD_GATEWAY = 502
    SERVICE_UNAVAILABLE = 503
    GATEWAY_TIMEOUT = 504

    @property
    def phrase(self) -> str:
        return _PHRASES.get(self.value) or self.name.replace("_", " ").title()

    @classmethod
    def phrase_for(cls, code: int) -> str:
        """Reason phrase for any code, "" when unknown."""
        try:
            return cls(code).phrase
        except ValueError:
            return ""

    @staticmethod
    def is_informational(code: int) -> bool:
        return 100 <= code < 200

    @staticmethod
    def is_success(code: int) -> bool:
        return 200 <= code < 300

    @staticmethod
    def is_redirect(code: int) -> bool:
        """True for the redirect codes a client follows."""
        return code in REDIRECT_CODES

    @staticmethod
    def is_client_error(code: int) -> bool:
        return 400 <= code < 500

    @staticmethod
    def is_server_error(code: int) -> bool:
        return 500 <= code < 600


REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})

# Statuses whose responses never carry a body, whatever the headers say.
NO_BODY_CODES = frozenset({204, 304})

# Phrases that title-casing the member name gets wrong.
_PHRASES = {
    200: "OK",
}
