"""Transport connector - resolves where to connect and opens the stream.

One Connection per request: it is opened by the send in flight, owned by
it, and closed when that send finishes, whichever way it finishes.
"""

from __future__ import annotations

import socket
import ssl
from dataclasses import dataclass
from types import TracebackType
from urllib.parse import SplitResult, urlsplit

from jsonrpc_transport.errors import ConnectionFailureException
from jsonrpc_transport.models import ProxyConfig

SECURE_PORT = 443


@dataclass(frozen=True)
class Target:
    """Where a request goes and how it is addressed.

    ``server``/``port`` is what we connect to (the proxy when one is set),
    ``request_target`` is what goes on the request line: the path for a
    direct connection, the absolute URL through a proxy.
    """

    server: str
    port: int
    secure: bool
    request_target: str
    host_header: str
    url: SplitResult


def default_port(scheme: str) -> int:
    return SECURE_PORT if scheme.lower() == "https" else 80


def split_url(url: str) -> SplitResult:
    """Split an absolute URL, rejecting ones without a host or with a bad port."""
    parts = urlsplit(url)
    try:
        parts.port
    except ValueError as e:
        raise ConnectionFailureException(f"Invalid port in URL '{url}': {e}") from e
    if not parts.hostname:
        raise ConnectionFailureException(f"No host in URL '{url}'")
    return parts


def request_path(parts: SplitResult) -> str:
    """Path plus query string of a split URL, ``/`` when empty."""
    path = parts.path or "/"
    if parts.query:
        path += "?" + parts.query
    return path


def resolve_target(url: str, proxy: ProxyConfig | None = None) -> Target:
    """Work out server, port, and request line target for a URL.

    Without a proxy the port comes from the URL, defaulting to 443 for
    https and 80 otherwise. With a proxy the proxy's host and port are used
    and the absolute URL becomes the request target. The connection is
    secure when the resolved port is 443 or the proxy asks for SSL.
    """
    parts = split_url(url)
    host = parts.hostname or ""
    host_header = host if parts.port is None else f"{host}:{parts.port}"

    if proxy is not None:
        server = proxy.host
        port = proxy.port
        target = url
        secure = port == SECURE_PORT or proxy.ssl
    else:
        server = host
        port = parts.port or default_port(parts.scheme)
        target = request_path(parts)
        secure = port == SECURE_PORT

    return Target(
        server=server,
        port=port,
        secure=secure,
        request_target=target,
        host_header=host_header,
        url=parts,
    )


def build_ssl_context(verify: bool = True, ca_bundle: str | None = None) -> ssl.SSLContext:
    """Default client TLS context, optionally pinned to a CA bundle or unverified."""
    context = ssl.create_default_context()
    if ca_bundle:
        context.load_verify_locations(ca_bundle)
    elif not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class Connection:
    """A blocking byte stream to one (server, port) pair."""

    def __init__(self, sock: socket.socket, server: str, port: int, secure: bool = False) -> None:
        self.sock = sock
        self.server = server
        self.port = port
        self.secure = secure
        self.closed = False

    def send(self, data: bytes | memoryview) -> int:
        """Write some of *data*, returning the number of bytes written."""
        return self.sock.send(data)

    def recv(self, size: int) -> bytes:
        """Read up to *size* bytes; b"" at end of stream."""
        return self.sock.recv(size)

    def settimeout(self, timeout: float | None) -> None:
        self.sock.settimeout(timeout)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.sock.close()

    def __enter__(self) -> Connection:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def __repr__(self) -> str:
        scheme = "ssl" if self.secure else "tcp"
        return f"Connection({scheme}://{self.server}:{self.port})"


def open_connection(
    target: Target,
    timeout: float,
    ssl_context: ssl.SSLContext | None = None,
) -> Connection:
    """Open a connection to a resolved target, upgrading to TLS when needed.

    Raises:
        ConnectionFailureException: If the socket cannot be opened or the
            TLS handshake fails. No retry is attempted.
    """
    scheme = "ssl://" if target.secure else ""
    try:
        sock = socket.create_connection((target.server, target.port), timeout=timeout)
    except OSError as e:
        raise ConnectionFailureException(
            f"Could not connect to {scheme}{target.server}:{target.port}\n{e.strerror or e} ({e.errno})",
            errno=e.errno,
        ) from e

    if target.secure:
        context = ssl_context or build_ssl_context()
        try:
            sock = context.wrap_socket(sock, server_hostname=target.server)
        except OSError as e:
            sock.close()
            raise ConnectionFailureException(
                f"Could not connect to {scheme}{target.server}:{target.port}\n{e.strerror or e} ({e.errno})",
                errno=e.errno,
            ) from e

    return Connection(sock, target.server, target.port, secure=target.secure)
