"""Debug trace sinks.

The transport reports what it does as TraceRecord events. Where they go is
decided by the sink handed to the client: nowhere, an in-memory buffer, a
console stream, or the standard ``logging`` module under the
``jsonrpc_transport.wire`` logger. Enabling
``logging.getLogger("jsonrpc_transport.wire").setLevel(logging.DEBUG)``
together with a LoggingTraceSink shows the raw bytes on the wire.
"""

from __future__ import annotations

import logging
import sys
import time
from typing import Literal, Protocol, TextIO

from jsonrpc_transport.models import TraceRecord

TraceLevel = Literal["info", "warn", "debug"]

wire_logger = logging.getLogger("jsonrpc_transport.wire")

_LOGGING_LEVELS: dict[str, int] = {
    "info": logging.INFO,
    "warn": logging.WARNING,
    "debug": logging.DEBUG,
}


class TraceSink(Protocol):
    """Anything that can take a trace record."""

    def append(self, record: TraceRecord) -> None: ...


class NullTraceSink:
    """Discards every record."""

    def append(self, record: TraceRecord) -> None:
        return None


class BufferTraceSink:
    """Collects records in memory, in order."""

    def __init__(self) -> None:
        self.records: list[TraceRecord] = []

    def append(self, record: TraceRecord) -> None:
        self.records.append(record)

    def messages(self, level: TraceLevel | None = None) -> list[str]:
        return [r.message for r in self.records if level is None or r.level == level]

    def clear(self) -> None:
        self.records.clear()


class ConsoleTraceSink:
    """Writes each record to a text stream as it happens."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream
        self._start = time.time()

    def append(self, record: TraceRecord) -> None:
        stream = self._stream or sys.stderr
        elapsed = record.timestamp - self._start
        stream.write(f"[{record.level}] {elapsed:.3f}s -- {record.message}\n")
        stream.flush()


class LoggingTraceSink:
    """Forwards records to a ``logging.Logger``."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or wire_logger

    def append(self, record: TraceRecord) -> None:
        level = _LOGGING_LEVELS[record.level]
        if self._logger.isEnabledFor(level):
            self._logger.log(level, "%s", record.message, extra={"trace_timestamp": record.timestamp})


def make_trace_sink(kind: str) -> TraceSink:
    """Build a sink from a ClientConfig.trace setting."""
    if kind == "none":
        return NullTraceSink()
    if kind == "buffer":
        return BufferTraceSink()
    if kind == "console":
        return ConsoleTraceSink()
    if kind == "logging":
        return LoggingTraceSink()
    raise ValueError(f"Unknown trace sink '{kind}'")


class Tracer:
    """Formats events and hands them to a sink."""

    def __init__(self, sink: TraceSink | None = None) -> None:
        self.sink: TraceSink = sink if sink is not None else NullTraceSink()

    def emit(self, level: TraceLevel, message: str, payload: object = None) -> None:
        if isinstance(self.sink, NullTraceSink):
            return
        if payload is not None:
            if isinstance(payload, bytes):
                payload = payload.decode("utf-8", errors="replace")
            message = f"{message} -->\n{payload}"
        self.sink.append(TraceRecord(level=level, message=message))

    def info(self, message: str, payload: object = None) -> None:
        self.emit("info", message, payload)

    def warn(self, message: str, payload: object = None) -> None:
        self.emit("warn", message, payload)

    def debug(self, message: str, payload: object = None) -> None:
        self.emit("debug", message, payload)
