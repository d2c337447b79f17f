"""Pytest configuration and fixtures for jsonrpc-transport tests.

This file provides:
- FakeConnection: In-memory connection serving scripted response bytes
- ScriptedServer: Real socket server answering with scripted raw responses
- PortReservation: Race-free port allocation for test servers
- MockServer: Subprocess management for the FastAPI mock server
- Fixtures: Shared test infrastructure
"""

from __future__ import annotations

import socket
import subprocess
import sys
import threading
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, Generator

import pytest

from jsonrpc_transport.connector import Target

# Project root for fixture paths
PROJECT_ROOT = Path(__file__).parent.parent
MOCK_SERVER_MODULE = "tests.integration.mock_server"


def http_response(
    status: str = "200 OK",
    headers: dict[str, str] | None = None,
    body: bytes = b"",
    version: str = "1.1",
    content_length: bool = True,
) -> bytes:
    """Build raw response bytes for scripted connections.

    Prefer this over writing byte strings by hand - it gets the CRLFs right
    and adds Content-Length unless told not to.
    """
    lines = [f"HTTP/{version} {status}"]
    for key, value in (headers or {}).items():
        lines.append(f"{key}: {value}")
    if content_length and not any(k.lower() == "content-length" for k in (headers or {})):
        lines.append(f"Content-Length: {len(body)}")
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1") + body


def chunked(*payloads: bytes) -> bytes:
    """Encode payloads as a chunked transfer body."""
    out = b""
    for payload in payloads:
        out += f"{len(payload):x}\r\n".encode("ascii") + payload + b"\r\n"
    return out + b"0\r\n\r\n"


class FakeConnection:
    """In-memory stand-in for jsonrpc_transport.connector.Connection.

    Serves *response* in pieces of at most recv_size bytes and records
    everything written. send_size limits how much one send() accepts, to
    exercise short writes.
    """

    def __init__(
        self,
        response: bytes = b"",
        recv_size: int = 4096,
        send_size: int | None = None,
        fail_send: bool = False,
    ) -> None:
        self._data = bytearray(response)
        self.recv_size = recv_size
        self.send_size = send_size
        self.fail_send = fail_send
        self.sent = bytearray()
        self.send_calls = 0
        self.received = 0
        self.timeouts: list[float | None] = []
        self.closed = False
        self.target: Target | None = None

    def send(self, data: bytes | memoryview) -> int:
        self.send_calls += 1
        if self.fail_send:
            raise BrokenPipeError(32, "Broken pipe")
        size = len(data) if self.send_size is None else min(self.send_size, len(data))
        self.sent += bytes(data[:size])
        return size

    def recv(self, size: int) -> bytes:
        size = min(size, self.recv_size)
        data = bytes(self._data[:size])
        del self._data[:size]
        self.received += len(data)
        return data

    def settimeout(self, timeout: float | None) -> None:
        self.timeouts.append(timeout)

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> FakeConnection:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


@pytest.fixture
def scripted_connections(monkeypatch: pytest.MonkeyPatch) -> Callable[..., list[FakeConnection]]:
    """Replace open_connection so each hop gets the next scripted response.

    Example:
        def test_x(scripted_connections):
            conns = scripted_connections(http_response(body=b"hi"))
            HttpClient("http://h/").perform()
            assert conns[0].closed
    """

    def install(*responses: bytes | FakeConnection) -> list[FakeConnection]:
        queue = list(responses)
        created: list[FakeConnection] = []

        def fake_open(target: Target, timeout: float, ssl_context: Any = None) -> FakeConnection:
            if not queue:
                raise AssertionError(f"Unexpected connection to {target.server}:{target.port}")
            item = queue.pop(0)
            conn = item if isinstance(item, FakeConnection) else FakeConnection(item)
            conn.target = target
            created.append(conn)
            return conn

        monkeypatch.setattr("jsonrpc_transport.client.open_connection", fake_open)
        return created

    return install


class ScriptedServer:
    """Threaded TCP server answering each connection with scripted raw bytes.

    Each accepted connection consumes one entry of *responses*. An entry of
    None holds the connection open without answering until the server
    stops, to simulate a stalled peer. Received requests are kept in
    ``requests``.
    """

    def __init__(self, responses: list[bytes | None]) -> None:
        self._responses = list(responses)
        self._stop = threading.Event()
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(8)
        self._sock.settimeout(0.1)
        self.port = self._sock.getsockname()[1]
        self.url = f"http://127.0.0.1:{self.port}"
        self.requests: list[bytes] = []
        self._thread = threading.Thread(target=self._run, daemon=True)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            with conn:
                self.requests.append(self._read_request(conn))
                response = self._responses.pop(0) if self._responses else None
                if response is None:
                    self._stop.wait(timeout=10.0)
                else:
                    conn.sendall(response)

    @staticmethod
    def _read_request(conn: socket.socket) -> bytes:
        conn.settimeout(2.0)
        data = b""
        try:
            while b"\r\n\r\n" not in data:
                chunk = conn.recv(4096)
                if not chunk:
                    return data
                data += chunk
            head, _, body = data.partition(b"\r\n\r\n")
            length = 0
            for line in head.split(b"\r\n")[1:]:
                name, _, value = line.partition(b":")
                if name.strip().lower() == b"content-length":
                    length = int(value.strip())
            while len(body) < length:
                chunk = conn.recv(4096)
                if not chunk:
                    break
                body += chunk
            return head + b"\r\n\r\n" + body
        except socket.timeout:
            return data

    def start(self) -> ScriptedServer:
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stop.set()
        self._thread.join(timeout=5)
        self._sock.close()

    def __enter__(self) -> ScriptedServer:
        return self.start()

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


class PortReservation:
    """Holds a reserved port with socket kept open to prevent races.

    The socket stays bound until release(), just before the server starts,
    so no other process can take the port in between.
    """

    def __init__(self) -> None:
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind(("127.0.0.1", 0))
        self._port = self._socket.getsockname()[1]
        self._released = False

    @property
    def port(self) -> int:
        return self._port

    def release(self) -> int:
        """Release the socket and return the port for server use.

        Safe to call multiple times - subsequent calls are no-ops.
        """
        if not self._released:
            self._socket.close()
            self._released = True
        return self._port

    def __enter__(self) -> PortReservation:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.release()


def wait_for_server_ready(host: str, port: int, timeout: float = 10.0) -> bool:
    """Block until server accepts TCP connections, or timeout expires."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return True
        except (ConnectionRefusedError, socket.timeout, OSError):
            time.sleep(0.1)
    return False


class MockServer:
    """Manages the FastAPI mock server subprocess for integration tests."""

    def __init__(self, port: int | PortReservation) -> None:
        if isinstance(port, PortReservation):
            self._reservation = port
            self.port = port.port
        else:
            self._reservation = None
            self.port = port
        self.host = "127.0.0.1"
        self.base_url = f"http://{self.host}:{self.port}"
        self._process: subprocess.Popen | None = None

    def start(self) -> None:
        """Start the mock server subprocess.

        Raises:
            RuntimeError: If server fails to start within 10 seconds.
        """
        if self._reservation:
            self._reservation.release()

        self._process = subprocess.Popen(
            [
                sys.executable, "-m", MOCK_SERVER_MODULE,
                "--host", self.host,
                "--port", str(self.port),
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=PROJECT_ROOT,
        )

        if not wait_for_server_ready(self.host, self.port):
            stderr = ""
            if self._process and self._process.stderr:
                stderr = self._process.stderr.read().decode(errors="replace")
            self.stop()
            raise RuntimeError(
                f"MockServer failed to start on port {self.port}. stderr: {stderr or '(empty)'}"
            )

    def stop(self) -> None:
        """Stop the mock server subprocess, SIGKILL after 5s if SIGTERM is ignored."""
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    pass  # Process is unkillable (zombie?), nothing more we can do
            self._process = None

    def __enter__(self) -> MockServer:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


# =============================================================================
# Pytest Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def mock_server() -> Generator[MockServer, None, None]:
    """Start the FastAPI mock server once per test session."""
    with MockServer(PortReservation()) as server:
        yield server


# =============================================================================
# Pytest Hooks
# =============================================================================


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Automatically apply markers based on test location.

    Enables running subsets via:
        pytest -m integration  # only integration tests
        pytest -m unit         # only unit tests
    """
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
