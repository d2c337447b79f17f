"""Response reader - status line, header block and body strategies.

Reading goes through ResponseStream, which enforces a wall-clock deadline on
every read and reports end of stream. The header block is read first; the
body is then read by exactly one strategy: chunked when the response says
``Transfer-Encoding: chunked``, otherwise content-length bounded or until
the server closes the connection.
"""

from __future__ import annotations

import gzip
import re
import time
import zlib
from collections.abc import Callable, Mapping

from jsonrpc_transport.connector import Connection
from jsonrpc_transport.errors import (
    ResponseException,
    ResponseTimeoutException,
    ResponseTooLargeException,
)
from jsonrpc_transport.headers import HeaderValue, header_values
from jsonrpc_transport.trace import Tracer

BLOCK_SIZE = 4096
MAX_HEADER_BYTES = 64 * 1024
MAX_LINE_BYTES = 4 * 1024
GZIP_MAGIC = b"\x1f\x8b\x08"

_HEADER_END = re.compile(rb"\r?\n\r?\n")
_STATUS_LINE = re.compile(r"^HTTP/(\d+(?:\.\d+)?)\s+(\d{3})(?:\s.*)?$")


class ResponseStream:
    """Buffered, deadline-aware reader over a Connection.

    Args:
        conn: Connection to read from.
        deadline: time.monotonic() value after which reads fail.
        started: time.monotonic() value the send began at (for messages).
        on_data: Called with every chunk of raw bytes received.
    """

    def __init__(
        self,
        conn: Connection,
        deadline: float,
        started: float | None = None,
        on_data: Callable[[bytes], None] | None = None,
    ) -> None:
        self._conn = conn
        self._buffer = bytearray()
        self._on_data = on_data
        self.deadline = deadline
        self.started = time.monotonic() if started is None else started
        self.eof = False

    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def check_deadline(self, activity: str) -> float:
        """Raise when the deadline has passed; return the time left otherwise."""
        remaining = self.deadline - time.monotonic()
        if remaining <= 0:
            raise ResponseTimeoutException(f"Timeout {activity} ({self.elapsed():.3f}s)")
        return remaining

    def _fill(self, activity: str) -> bool:
        """Receive more bytes into the buffer. False once the stream is at EOF."""
        if self.eof:
            return False
        self._conn.settimeout(self.check_deadline(activity))
        try:
            data = self._conn.recv(BLOCK_SIZE)
        except TimeoutError as e:
            raise ResponseTimeoutException(f"Timeout {activity} ({self.elapsed():.3f}s)") from e
        except OSError as e:
            raise ResponseException(f"Error reading from socket: {e}") from e
        if not data:
            self.eof = True
            return False
        if self._on_data is not None:
            self._on_data(data)
        self._buffer += data
        return True

    def _take(self, size: int) -> bytes:
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def read_head(self) -> str:
        """Read up to and including the blank line that ends the header block."""
        activity = "waiting for response headers"
        while True:
            match = _HEADER_END.search(self._buffer)
            if match:
                return self._take(match.end()).decode("latin-1")
            if len(self._buffer) > MAX_HEADER_BYTES:
                raise ResponseException("Response headers too large")
            if not self._fill(activity):
                raise ResponseException("Premature End of File (socket)")

    def read_line(self, activity: str, limit: int = MAX_LINE_BYTES) -> bytes:
        """Read one line, including its terminating newline.

        Raises:
            ResponseException: If *limit* bytes arrive without a newline.
        """
        while True:
            index = self._buffer.find(b"\n")
            if index >= 0:
                return self._take(index + 1)
            if len(self._buffer) > limit:
                raise ResponseException("Response line too long")
            if not self._fill(activity):
                raise ResponseException("Premature End of File (socket)")

    def read_exact(self, size: int, activity: str) -> bytes:
        while len(self._buffer) < size:
            if not self._fill(activity):
                raise ResponseException("Premature End of File (socket)")
        return self._take(size)

    def read_some(self, size: int, activity: str) -> bytes:
        """Up to *size* buffered or freshly received bytes; b"" at EOF."""
        if not self._buffer and not self._fill(activity):
            return b""
        return self._take(size)


# =============================================================================
# Header phase
# =============================================================================


def parse_status_line(head: str) -> tuple[str, int, str]:
    """Parse ``HTTP/<version> <code> <reason>`` from the first header line.

    Returns:
        Tuple of (version, status code, trimmed status line).

    Raises:
        ResponseException: If the first line is not an HTTP status line.
    """
    first = head.split("\n", 1)[0].strip()
    match = _STATUS_LINE.match(first)
    if not match:
        raise ResponseException("Server returned bad answer")
    return match.group(1), int(match.group(2)), first


def declared_length(headers: Mapping[str, HeaderValue]) -> int | None:
    """Content-Length of a parsed header mapping, or None when absent."""
    values = header_values(headers, "content-length")
    if not values:
        return None
    try:
        length = int(values[0])
    except ValueError as e:
        raise ResponseException(f"Invalid Content-Length '{values[0]}'") from e
    if length < 0:
        raise ResponseException(f"Invalid Content-Length '{values[0]}'")
    return length


def is_chunked(headers: Mapping[str, HeaderValue]) -> bool:
    values = header_values(headers, "transfer-encoding")
    if not values:
        return False
    codings = [c.strip().lower() for c in ",".join(values).split(",")]
    return "chunked" in codings


def check_declared_length(
    headers: Mapping[str, HeaderValue],
    max_body_size: int,
    abort_on_oversize: bool,
) -> None:
    """Fail before reading the body when Content-Length is already too large."""
    if not max_body_size or not abort_on_oversize:
        return
    length = declared_length(headers)
    if length is not None and length > max_body_size:
        raise ResponseTooLargeException("Reported content length exceeds allowed response size")


# =============================================================================
# Body phase
# =============================================================================


def _over_limit(size: int, max_body_size: int, abort_on_oversize: bool, tracer: Tracer) -> bool:
    """Apply the size policy to a body of *size* bytes. True means stop reading (truncate)."""
    if not max_body_size or size <= max_body_size:
        return False
    message = "Allowed response size exceeded"
    tracer.warn(message)
    if abort_on_oversize:
        raise ResponseTooLargeException(message)
    return True


def read_chunked_body(
    stream: ResponseStream,
    max_body_size: int = 0,
    abort_on_oversize: bool = True,
    tracer: Tracer | None = None,
) -> bytes:
    """Decode a chunked body: ``<hex size>\\r\\n<payload>\\r\\n`` until a zero-size chunk.

    Chunk extensions after ``;`` are ignored. Trailers after the last chunk
    are not read; the connection is closed afterwards anyway. The size policy
    is applied to each declared chunk size before its payload is read, so no
    more than max_body_size payload bytes are ever requested.
    """
    tracer = tracer or Tracer()
    activity = "while reading chunk"
    body = bytearray()
    while True:
        stream.check_deadline(activity)
        line = stream.read_line(activity)
        size_text = line.split(b";", 1)[0].strip()
        try:
            size = int(size_text, 16)
        except ValueError as e:
            raise ResponseException(f"Invalid chunk size {size_text!r}") from e
        if size < 0:
            raise ResponseException(f"Invalid chunk size {size_text!r}")
        if size == 0:
            break
        if _over_limit(len(body) + size, max_body_size, abort_on_oversize, tracer):
            body += stream.read_exact(max_body_size - len(body), activity)
            return bytes(body)
        body += stream.read_exact(size, activity)
        stream.read_line(activity)
    return bytes(body)


def read_plain_body(
    stream: ResponseStream,
    content_length: int | None = None,
    max_body_size: int = 0,
    abort_on_oversize: bool = True,
    tracer: Tracer | None = None,
) -> bytes:
    """Read a body in blocks until Content-Length bytes arrived or the stream ends."""
    tracer = tracer or Tracer()
    activity = "while reading response"
    body = bytearray()
    while content_length is None or len(body) < content_length:
        stream.check_deadline(activity)
        want = BLOCK_SIZE if content_length is None else min(BLOCK_SIZE, content_length - len(body))
        data = stream.read_some(want, activity)
        if not data:
            if content_length is not None:
                tracer.warn(
                    f"Premature End of File: got {len(body)} of {content_length} bytes"
                )
            break
        body += data
        if _over_limit(len(body), max_body_size, abort_on_oversize, tracer):
            return bytes(body[:max_body_size])
    return bytes(body)


def read_body(
    stream: ResponseStream,
    headers: Mapping[str, HeaderValue],
    max_body_size: int = 0,
    abort_on_oversize: bool = True,
    tracer: Tracer | None = None,
) -> bytes:
    """Pick the body strategy for a response and run it.

    Chunked transfer encoding always wins over Content-Length.
    """
    if is_chunked(headers):
        return read_chunked_body(stream, max_body_size, abort_on_oversize, tracer)
    return read_plain_body(
        stream, declared_length(headers), max_body_size, abort_on_oversize, tracer
    )


def decode_content(
    body: bytes,
    headers: Mapping[str, HeaderValue],
    tracer: Tracer | None = None,
) -> bytes:
    """Inflate a gzip body; on failure keep the raw bytes and report a warning."""
    encodings = [v.strip().lower() for v in header_values(headers, "content-encoding")]
    if "gzip" not in encodings or len(body) <= 10 or not body.startswith(GZIP_MAGIC):
        return body
    try:
        return gzip.decompress(body)
    except (OSError, EOFError, zlib.error) as e:
        (tracer or Tracer()).warn(f"gzip decoding failed, returning raw body: {e}")
        return body
