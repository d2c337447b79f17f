"""HTTP client - runs the connect, write, read, redirect pipeline.

HttpClient is a session: it owns the cookie jar and the redirect counter
for one caller. It is not thread-safe; use one client per thread.
"""

from __future__ import annotations

import re
import ssl
import time
from collections.abc import Callable, Mapping
from typing import Any, Protocol

from jsonrpc_transport.connector import (
    Connection,
    Target,
    build_ssl_context,
    open_connection,
    resolve_target,
)
from jsonrpc_transport.errors import ResponseException, TransportError, raise_for_status
from jsonrpc_transport.headers import CookieJar, parse_headers, set_header
from jsonrpc_transport.models import ClientConfig, Credentials, Request, RequestBody, Response
from jsonrpc_transport.reader import (
    ResponseStream,
    check_declared_length,
    decode_content,
    parse_status_line,
    read_body,
)
from jsonrpc_transport.redirects import is_redirect, redirect_request
from jsonrpc_transport.trace import ConsoleTraceSink, NullTraceSink, TraceSink, Tracer, make_trace_sink
from jsonrpc_transport.writer import build_request, write_all


class ByteSink(Protocol):
    """A binary stream the raw request/response bytes are copied to."""

    def write(self, data: bytes, /) -> Any: ...


class HttpClient:
    """Sends HTTP requests over raw sockets and follows redirects.

    Usage:
        client = HttpClient("http://localhost:8080/jsonrpc")
        raw = client.execute(b'{"jsonrpc": "2.0", "method": "ping", "id": 1}')

    Or with full control over the exchange:
        response = client.perform("GET", "http://example.com/", timeout=5)
        response.status_code, response.headers, response.body
    """

    def __init__(
        self,
        url: str | None = None,
        config: ClientConfig | None = None,
        *,
        trace_sink: TraceSink | None = None,
        request_sink: ByteSink | None = None,
        response_sink: ByteSink | None = None,
        ssl_context: ssl.SSLContext | None = None,
        cookies: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            url: Default target URL (falls back to config.url).
            config: Session defaults. A default ClientConfig when None.
            trace_sink: Where debug trace records go. Built from
                config.trace when None.
            request_sink: Receives the raw bytes of every request sent.
            response_sink: Receives the raw bytes of every response read.
            ssl_context: TLS context for secure connections. Built from
                config.verify_ssl / config.ca_bundle when None.
            cookies: Initial cookie jar contents.
        """
        self.config = config or ClientConfig()
        self.url = url or self.config.url
        self.headers: dict[str, str] = dict(self.config.headers)
        self.referer = ""
        self.cookies = CookieJar(cookies)
        self.tracer = Tracer(trace_sink if trace_sink is not None else make_trace_sink(self.config.trace))
        self.request_sink = request_sink
        self.response_sink = response_sink
        self._ssl_context = ssl_context
        self._user = self.config.credentials.user if self.config.credentials else None
        self._password = self.config.credentials.password if self.config.credentials else ""
        self._before_request: Callable[[Request], None] | None = None
        self._after_request: Callable[[Response], None] | None = None

        # Readable after a call, including a failed one
        self.redirect_count = 0
        self.status = 0
        self.response: Response | None = None

    # -------------------------------------------------------------------------
    # Fluent configuration
    # -------------------------------------------------------------------------

    def with_username(self, user: str) -> HttpClient:
        self._user = user
        return self

    def with_password(self, password: str) -> HttpClient:
        self._password = password
        return self

    def with_headers(self, headers: Mapping[str, str]) -> HttpClient:
        for key, value in headers.items():
            set_header(self.headers, key, value)
        return self

    def with_debug(self, flag: bool = True) -> HttpClient:
        """Stream trace records to stderr, or stop tracing."""
        self.tracer.sink = ConsoleTraceSink() if flag else NullTraceSink()
        return self

    def with_before_request_callback(self, callback: Callable[[Request], None]) -> HttpClient:
        """Call *callback* with every request just before it is sent (each redirect hop too)."""
        self._before_request = callback
        return self

    def with_after_request_callback(self, callback: Callable[[Response], None]) -> HttpClient:
        """Call *callback* with every response once it has been read."""
        self._after_request = callback
        return self

    def set_timeout(self, timeout: float) -> None:
        if timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {timeout}")
        self.config.timeout = timeout

    # -------------------------------------------------------------------------
    # Convenience calls
    # -------------------------------------------------------------------------

    def get(self, url: str | None = None, sloppy304: bool = False) -> bytes | None:
        """GET a URL and return the body.

        Returns None for non-2xx statuses that are not errors (3xx other
        than followed redirects), except 304 when sloppy304 is set.
        """
        response = self.perform("GET", url)
        if response.status_code == 304 and sloppy304:
            return response.body
        if not 200 <= response.status_code <= 206:
            return None
        return response.body

    def post(self, data: RequestBody, url: str | None = None) -> bytes:
        """POST raw data or form fields and return the body."""
        return self.perform("POST", url, body=data).body

    def execute(self, payload: bytes | str, headers: Mapping[str, str] | None = None) -> bytes:
        """POST a serialized JSON-RPC payload to the default URL and return the raw reply."""
        merged = {"Content-Type": "application/json"}
        for key, value in (headers or {}).items():
            set_header(merged, key, value)
        return self.perform("POST", body=payload, headers=merged).body

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def build_request(
        self,
        method: str = "GET",
        url: str | None = None,
        body: RequestBody = None,
        headers: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> Request:
        """Combine session defaults with per-call values into a Request.

        Keyword overrides name Request fields (timeout, max_redirects,
        max_body_size, abort_on_oversize, proxy, credentials, ...).
        """
        target_url = url or self.url
        if not target_url:
            raise ValueError("No URL given and no default URL configured")

        merged = dict(self.headers)
        for key, value in (headers or {}).items():
            set_header(merged, key, value)

        credentials = Credentials(user=self._user, password=self._password) if self._user else None
        fields: dict[str, Any] = {
            "url": target_url,
            "method": method,
            "headers": merged,
            "body": body,
            "referer": self.referer,
            "credentials": credentials,
            "proxy": self.config.proxy,
            "timeout": self.config.timeout,
            "max_redirects": self.config.max_redirects,
            "max_body_size": self.config.max_body_size,
            "abort_on_oversize": self.config.abort_on_oversize,
            "http_version": self.config.http_version,
            "agent": self.config.agent,
            "header_pattern": self.config.header_pattern,
        }
        fields.update(overrides)
        return Request(**fields)

    def perform(
        self,
        method: str = "GET",
        url: str | None = None,
        body: RequestBody = None,
        headers: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> Response:
        """Send a request and return the final response of its redirect chain.

        Raises:
            ConnectionFailureException: If connecting or writing fails.
            ResponseException: If the response is malformed, truncated,
                too large, too slow, or redirects too often.
            HttpErrorException: If the server answers with an error status.
        """
        return self.send(self.build_request(method, url, body, headers, **overrides))

    def send(self, request: Request) -> Response:
        """Send a prepared Request, following 301/302 redirects as GET."""
        self.redirect_count = 0
        self.status = 0
        self.response = None
        while True:
            response = self._send_once(request)
            if not is_redirect(response):
                return response
            try:
                next_request = redirect_request(request, response, self.redirect_count)
            except ResponseException as e:
                self.tracer.warn(str(e))
                raise
            self.redirect_count += 1
            self.tracer.info(f"redirect {self.redirect_count} to {next_request.url}")
            request = next_request

    def _connect(self, target: Target, timeout: float) -> Connection:
        context = None
        if target.secure:
            if self._ssl_context is None:
                self._ssl_context = build_ssl_context(self.config.verify_ssl, self.config.ca_bundle)
            context = self._ssl_context
        return open_connection(target, timeout, context)

    def _send_once(self, request: Request) -> Response:
        """One hop: connect, write, read headers and (unless redirecting) the body."""
        target = resolve_target(request.url, request.proxy)
        if self._before_request is not None:
            self._before_request(request)

        payload = build_request(request, target, self.cookies.header_line())
        self._audit(self.request_sink, payload)
        self.tracer.info(f"sending request to {request.url}")
        self.tracer.debug("request", payload)

        started = time.monotonic()
        deadline = started + request.timeout
        try:
            with self._connect(target, request.timeout) as conn:
                write_all(conn, payload, deadline)
                self.tracer.info("request finished sending.")
                stream = ResponseStream(conn, deadline, started, on_data=self._response_tap())
                response = self._read_response(stream, request)
        except TransportError as e:
            self.tracer.warn(str(e))
            raise

        self.tracer.info("Response received.")
        if response.body:
            self.tracer.debug("Response body", response.body)
        if self._after_request is not None:
            self._after_request(response)
        return response

    def _read_response(self, stream: ResponseStream, request: Request) -> Response:
        head = stream.read_head()
        self.tracer.debug("response headers", head)

        headers = parse_headers(head)
        check_declared_length(headers, request.max_body_size, request.abort_on_oversize)

        version, status_code, status_line = parse_status_line(head)
        self.status = status_code
        response = Response(
            url=request.url,
            status_code=status_code,
            status_line=status_line,
            http_version=version,
            raw_headers=head,
            headers=headers,
        )
        self.response = response
        raise_for_status(status_code, status_line, response)

        self.cookies.update_from_headers(headers)

        if is_redirect(response):
            response.elapsed = stream.elapsed()
            return response

        if request.header_pattern and not re.search(request.header_pattern, head):
            raise ResponseException("The received headers did not match the given regexp", response)

        body = read_body(
            stream,
            headers,
            request.max_body_size,
            request.abort_on_oversize,
            self.tracer,
        )
        response.body = decode_content(body, headers, self.tracer)
        response.elapsed = stream.elapsed()
        return response

    # -------------------------------------------------------------------------
    # Audit sinks
    # -------------------------------------------------------------------------

    def _audit(self, sink: ByteSink | None, data: bytes) -> None:
        if sink is None:
            return
        try:
            sink.write(data)
        except (OSError, ValueError) as e:
            self.tracer.warn(f"audit sink write failed: {e}")

    def _response_tap(self) -> Callable[[bytes], None] | None:
        """Copy received bytes to response_sink, separated from the request when both share a sink."""
        sink = self.response_sink
        if sink is None:
            return None
        first = True

        def tap(data: bytes) -> None:
            nonlocal first
            if first and sink is self.request_sink:
                self._audit(sink, b"\n\n")
            first = False
            self._audit(sink, data)

        return tap
