"""Error taxonomy and HTTP status mapping.

Every failure raised by the transport derives from TransportError. Status
driven failures carry an HttpErrorKind tag so callers can branch on the
variant without isinstance chains; the subclasses exist for callers that
prefer ``except NotFoundException``.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from jsonrpc_transport.models import Response


class TransportError(Exception):
    """Base class for transport errors."""


class ConnectionFailureException(TransportError):
    """Raised when the socket cannot be opened or written to."""

    def __init__(self, message: str, errno: int | None = None) -> None:
        super().__init__(message)
        self.errno = errno


class ResponseException(TransportError):
    """Raised when the response is malformed, truncated, oversized or late."""

    def __init__(self, message: str, response: Response | None = None) -> None:
        super().__init__(message)
        self.response = response


class ResponseTimeoutException(ResponseException):
    """Raised when the configured timeout elapses while waiting for data."""


class ResponseTooLargeException(ResponseException):
    """Raised when the body exceeds max_body_size and abort is requested."""


class TooManyRedirectsException(ResponseException):
    """Raised when a redirect chain exceeds max_redirects."""


class HttpErrorKind(str, Enum):
    """Classification of an erroring HTTP status code."""

    AUTHENTICATION_FAILURE = "authentication_failure"
    ACCESS_DENIED = "access_denied"
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    HTTP_ERROR = "http_error"


class HttpErrorException(TransportError):
    """Raised for a syntactically valid response with an error status."""

    kind: HttpErrorKind = HttpErrorKind.HTTP_ERROR

    def __init__(
        self,
        message: str,
        status_code: int,
        response: Response | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class AuthenticationFailureException(HttpErrorException):
    kind = HttpErrorKind.AUTHENTICATION_FAILURE


class AccessDeniedException(HttpErrorException):
    kind = HttpErrorKind.ACCESS_DENIED


class NotFoundException(HttpErrorException):
    kind = HttpErrorKind.NOT_FOUND


class ServerErrorException(HttpErrorException):
    kind = HttpErrorKind.SERVER_ERROR


_STATUS_KINDS: dict[int, HttpErrorKind] = {
    401: HttpErrorKind.AUTHENTICATION_FAILURE,
    403: HttpErrorKind.ACCESS_DENIED,
    404: HttpErrorKind.NOT_FOUND,
    500: HttpErrorKind.SERVER_ERROR,
}

_KIND_EXCEPTIONS: dict[HttpErrorKind, type[HttpErrorException]] = {
    HttpErrorKind.AUTHENTICATION_FAILURE: AuthenticationFailureException,
    HttpErrorKind.ACCESS_DENIED: AccessDeniedException,
    HttpErrorKind.NOT_FOUND: NotFoundException,
    HttpErrorKind.SERVER_ERROR: ServerErrorException,
    HttpErrorKind.HTTP_ERROR: HttpErrorException,
}


def classify_status(status_code: int) -> HttpErrorKind | None:
    """Map a status code to an error kind, or None when it is not an error.

    2xx and 3xx (304 included) are not errors; redirects are handled by the
    client. Everything else is an error, with the four well-known codes
    getting their own kind.
    """
    if 200 <= status_code < 400:
        return None
    return _STATUS_KINDS.get(status_code, HttpErrorKind.HTTP_ERROR)


def error_for_status(
    status_code: int,
    status_line: str,
    response: Response | None = None,
) -> HttpErrorException | None:
    """Build (but do not raise) the exception matching a status code."""
    kind = classify_status(status_code)
    if kind is None:
        return None
    return _KIND_EXCEPTIONS[kind](status_line.strip(), status_code, response)


def raise_for_status(
    status_code: int,
    status_line: str,
    response: Response | None = None,
) -> None:
    """Raise the mapped HttpErrorException for an erroring status code.

    Raises:
        HttpErrorException: Or one of its subclasses, with the trimmed status
            line as message.
    """
    error = error_for_status(status_code, status_line, response)
    if error is not None:
        raise error
