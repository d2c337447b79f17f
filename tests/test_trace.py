"""Tests for trace sinks and the Tracer."""

import io
import logging

import pytest

from jsonrpc_transport.models import TraceRecord
from jsonrpc_transport.trace import (
    BufferTraceSink,
    ConsoleTraceSink,
    LoggingTraceSink,
    NullTraceSink,
    Tracer,
    make_trace_sink,
)


class TestTracer:
    def test_records_in_order(self):
        sink = BufferTraceSink()
        tracer = Tracer(sink)
        tracer.info("one")
        tracer.warn("two")
        tracer.debug("three")
        assert [(r.level, r.message) for r in sink.records] == [
            ("info", "one"),
            ("warn", "two"),
            ("debug", "three"),
        ]

    def test_payload_appended(self):
        sink = BufferTraceSink()
        Tracer(sink).debug("request", b"GET / HTTP/1.0\r\n")
        assert sink.messages() == ["request -->\nGET / HTTP/1.0\r\n"]

    def test_undecodable_payload_replaced(self):
        sink = BufferTraceSink()
        Tracer(sink).debug("body", b"\xff\xfe")
        assert sink.messages()[0].startswith("body -->\n")

    def test_default_sink_discards(self):
        tracer = Tracer()
        assert isinstance(tracer.sink, NullTraceSink)
        tracer.info("nothing happens")

    def test_sink_can_be_swapped(self):
        tracer = Tracer()
        sink = BufferTraceSink()
        tracer.sink = sink
        tracer.info("now recorded")
        assert sink.messages() == ["now recorded"]


class TestBufferTraceSink:
    def test_filter_by_level(self):
        sink = BufferTraceSink()
        tracer = Tracer(sink)
        tracer.info("a")
        tracer.warn("b")
        assert sink.messages("warn") == ["b"]

    def test_clear(self):
        sink = BufferTraceSink()
        Tracer(sink).info("a")
        sink.clear()
        assert sink.records == []


class TestConsoleTraceSink:
    def test_line_format(self):
        stream = io.StringIO()
        sink = ConsoleTraceSink(stream)
        sink.append(TraceRecord(level="warn", message="slow"))
        line = stream.getvalue()
        assert line.startswith("[warn] ")
        assert line.endswith(" -- slow\n")


class TestLoggingTraceSink:
    def test_levels_mapped(self, caplog):
        logger = logging.getLogger("tests.trace")
        sink = LoggingTraceSink(logger)
        with caplog.at_level(logging.DEBUG, logger="tests.trace"):
            tracer = Tracer(sink)
            tracer.info("i")
            tracer.warn("w")
            tracer.debug("d")
        assert [(r.levelno, r.getMessage()) for r in caplog.records] == [
            (logging.INFO, "i"),
            (logging.WARNING, "w"),
            (logging.DEBUG, "d"),
        ]

    def test_disabled_levels_skipped(self, caplog):
        logger = logging.getLogger("tests.trace.quiet")
        with caplog.at_level(logging.WARNING, logger="tests.trace.quiet"):
            tracer = Tracer(LoggingTraceSink(logger))
            tracer.debug("hidden")
            tracer.warn("shown")
        assert [r.getMessage() for r in caplog.records] == ["shown"]

    def test_defaults_to_wire_logger(self, caplog):
        with caplog.at_level(logging.INFO, logger="jsonrpc_transport.wire"):
            Tracer(LoggingTraceSink()).info("on the wire")
        assert caplog.records[0].name == "jsonrpc_transport.wire"


class TestMakeTraceSink:
    @pytest.mark.parametrize(
        "kind,expected",
        [
            ("none", NullTraceSink),
            ("buffer", BufferTraceSink),
            ("console", ConsoleTraceSink),
            ("logging", LoggingTraceSink),
        ],
    )
    def test_known_kinds(self, kind, expected):
        assert isinstance(make_trace_sink(kind), expected)

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown trace sink"):
            make_trace_sink("syslog")
