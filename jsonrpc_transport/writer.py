"""Request writer - frames a Request as bytes and pushes them to a connection."""

from __future__ import annotations

import base64
import time

from jsonrpc_transport.body import encode_body
from jsonrpc_transport.connector import Connection, Target
from jsonrpc_transport.errors import ConnectionFailureException
from jsonrpc_transport.headers import HTTP_NL, build_headers, get_header, remove_header, set_header
from jsonrpc_transport.models import Credentials, Request


def _basic_auth(user: str, password: str) -> str:
    token = base64.b64encode(f"{user}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def effective_credentials(request: Request, target: Target) -> Credentials | None:
    """Credentials from the URL userinfo win over the request's own."""
    if target.url.username is not None:
        return Credentials(user=target.url.username, password=target.url.password or "")
    return request.credentials


def build_request_headers(request: Request, target: Target) -> tuple[dict[str, str], bytes]:
    """Compute the header set and encoded body for a request.

    Caller headers come first; Host, User-Agent, Referer and Connection
    are always set by the transport. POST adds Content-Type and
    Content-Length for the encoded body. GET never carries a body.

    Returns:
        Tuple of (headers in send order, encoded body).
    """
    headers = dict(request.headers)

    # A truncated gzip stream cannot be inflated
    if (
        request.max_body_size
        and not request.abort_on_oversize
        and (get_header(headers, "Accept-Encoding") or "").lower() == "gzip"
    ):
        remove_header(headers, "Accept-Encoding")

    set_header(headers, "Host", target.host_header)
    set_header(headers, "User-Agent", request.agent)
    set_header(headers, "Referer", request.referer)
    set_header(headers, "Connection", "Close")

    data = b""
    if request.method == "POST":
        data, content_type = encode_body(request.body, get_header(headers, "Content-Type"))
        if content_type:
            set_header(headers, "Content-Type", content_type)
        set_header(headers, "Content-Length", str(len(data)))

    credentials = effective_credentials(request, target)
    if credentials is not None and credentials.user:
        set_header(headers, "Authorization", _basic_auth(credentials.user, credentials.password))
    if request.proxy is not None and request.proxy.user:
        set_header(
            headers,
            "Proxy-Authorization",
            _basic_auth(request.proxy.user, request.proxy.password),
        )
    return headers, data


def build_request(request: Request, target: Target, cookie_line: str = "") -> bytes:
    """Assemble the full request: request line, headers, cookies, blank line, body."""
    headers, data = build_request_headers(request, target)
    head = (
        f"{request.method} {target.request_target} HTTP/{request.http_version}{HTTP_NL}"
        + build_headers(headers)
        + cookie_line
        + HTTP_NL
    )
    return head.encode("latin-1", errors="replace") + data


def write_all(conn: Connection, data: bytes, deadline: float | None = None) -> int:
    """Write every byte of *data*, retrying the unwritten tail on short writes.

    Args:
        conn: Open connection.
        data: Bytes to send.
        deadline: time.monotonic() value after which writing is abandoned.

    Returns:
        Number of bytes written (always len(data)).

    Raises:
        ConnectionFailureException: If a write fails, writes nothing, or the
            deadline passes.
    """
    view = memoryview(data)
    written = 0
    while written < len(data):
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ConnectionFailureException("Failed writing to socket: timeout")
            conn.settimeout(remaining)
        try:
            sent = conn.send(view[written:])
        except OSError as e:
            raise ConnectionFailureException(f"Failed writing to socket: {e}", errno=e.errno) from e
        if not sent:
            raise ConnectionFailureException("Failed writing to socket: connection closed")
        written += sent
    return written
