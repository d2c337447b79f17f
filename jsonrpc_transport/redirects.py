"""Redirect controller - follows 301/302 responses as GET requests."""

from __future__ import annotations

import posixpath
import re

from jsonrpc_transport.connector import default_port, split_url
from jsonrpc_transport.errors import ResponseException, TooManyRedirectsException
from jsonrpc_transport.headers import remove_header
from jsonrpc_transport.models import Request, Response

REDIRECT_STATUSES = frozenset({301, 302})

_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)


def is_redirect(response: Response) -> bool:
    return response.status_code in REDIRECT_STATUSES


def resolve_location(original_url: str, location: str) -> str:
    """Resolve a Location header against the URL that produced it.

    Absolute URLs are used unchanged. An absolute path replaces the path of
    the original URL; a relative path replaces its last segment. The result
    always names the port explicitly.

    >>> resolve_location("http://h:80/a/b?x=1", "c")
    'http://h:80/a/c'
    >>> resolve_location("http://h:80/a/b?x=1", "/d")
    'http://h:80/d'
    """
    if _ABSOLUTE_URL.match(location):
        return location
    parts = split_url(original_url)
    port = parts.port or default_port(parts.scheme)
    host = parts.hostname or ""
    if ":" in host:
        host = f"[{host}]"
    base = f"{parts.scheme}://{host}:{port}"
    if location.startswith("/"):
        return base + location
    directory = posixpath.dirname(parts.path or "/")
    return f"{base}{directory.rstrip('/')}/{location}"


def redirect_request(request: Request, response: Response, redirect_count: int) -> Request:
    """Build the follow-up GET request for a redirect response.

    The new request carries no body, so Content-Type and Content-Length
    are dropped from the caller headers.

    Args:
        request: The request that produced *response*.
        response: A 301/302 response.
        redirect_count: Redirects already followed in this chain.

    Raises:
        ResponseException: If the response has no Location header.
        TooManyRedirectsException: If redirect_count reached max_redirects.
    """
    location = response.header("location")
    if not location:
        raise ResponseException("Redirect but no Location Header found", response)
    if redirect_count >= request.max_redirects:
        raise TooManyRedirectsException("Maximum number of redirects exceeded", response)
    headers = dict(request.headers)
    remove_header(headers, "Content-Type")
    remove_header(headers, "Content-Length")
    return request.model_copy(
        update={
            "url": resolve_location(request.url, location),
            "method": "GET",
            "body": None,
            "headers": headers,
            "referer": request.url,
        }
    )
