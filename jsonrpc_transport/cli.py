"""CLI entry point for jsonrpc-transport.

Sends one request and prints the response body, optionally saving the raw
bytes of the exchange for inspection.
"""

from __future__ import annotations

import argparse
import contextlib
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from jsonrpc_transport.client import HttpClient
from jsonrpc_transport.config_loader import ConfigError, load_client_config
from jsonrpc_transport.errors import HttpErrorException, TransportError
from jsonrpc_transport.models import ClientConfig
from jsonrpc_transport.trace import LoggingTraceSink

logger = logging.getLogger(__name__)


@dataclass
class RequestArgs:
    url: str | None
    config: Path | None = None
    method: str | None = None
    data: str | None = None
    data_file: Path | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None
    max_redirects: int | None = None
    max_body_size: int | None = None
    truncate: bool = False
    http_version: str | None = None
    dump_request: Path | None = None
    dump_response: Path | None = None
    include: bool = False
    verbose: bool = False

    @property
    def effective_method(self) -> str:
        if self.method:
            return self.method
        return "POST" if self.data is not None or self.data_file is not None else "GET"


def positive_float(value: str) -> float:
    """Parse a positive float for argparse.

    Raises:
        argparse.ArgumentTypeError: If value is not a positive number.
    """
    try:
        result = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number '{value}'.")
    if result <= 0:
        raise argparse.ArgumentTypeError(f"Value must be positive, got {result}.")
    return result


def non_negative_int(value: str) -> int:
    """Parse a non-negative int for argparse.

    Raises:
        argparse.ArgumentTypeError: If value is not an integer >= 0.
    """
    try:
        result = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid integer '{value}'.")
    if result < 0:
        raise argparse.ArgumentTypeError(f"Value must not be negative, got {result}.")
    return result


def parse_header(value: str) -> tuple[str, str]:
    """Parse NAME:VALUE for --header.

    Raises:
        argparse.ArgumentTypeError: If there is no colon or no name.
    """
    name, sep, header_value = value.partition(":")
    name = name.strip()
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"Invalid header '{value}'. Expected NAME:VALUE")
    return name, header_value.strip()


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="jsonrpc-transport",
        description="Send one HTTP request over a raw socket and print the response body.",
    )
    parser.add_argument(
        "url",
        nargs="?",
        default=None,
        help="Target URL (defaults to 'url' from --config)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to client configuration file (YAML)",
    )
    parser.add_argument(
        "--method",
        "-X",
        type=str.upper,
        choices=["GET", "POST"],
        default=None,
        help="HTTP method (default: POST when data is given, GET otherwise)",
    )
    data_group = parser.add_mutually_exclusive_group()
    data_group.add_argument(
        "--data",
        "-d",
        type=str,
        default=None,
        help="Request body, e.g. a serialized JSON-RPC payload",
    )
    data_group.add_argument(
        "--data-file",
        type=Path,
        default=None,
        dest="data_file",
        help="Read the request body from a file",
    )
    parser.add_argument(
        "--header",
        "-H",
        type=parse_header,
        action="append",
        default=[],
        metavar="NAME:VALUE",
        dest="headers",
        help="Extra request header (can be repeated)",
    )
    parser.add_argument(
        "--timeout",
        type=positive_float,
        default=None,
        help="Timeout in seconds for each request",
    )
    parser.add_argument(
        "--max-redirects",
        type=non_negative_int,
        default=None,
        dest="max_redirects",
        help="Maximum number of redirects to follow",
    )
    parser.add_argument(
        "--max-body-size",
        type=non_negative_int,
        default=None,
        dest="max_body_size",
        help="Maximum response body size in bytes (0 = unlimited)",
    )
    parser.add_argument(
        "--truncate",
        action="store_true",
        help="Truncate bodies larger than --max-body-size instead of failing",
    )
    parser.add_argument(
        "--http-version",
        choices=["1.0", "1.1"],
        default=None,
        dest="http_version",
        help="HTTP version for the request line",
    )
    parser.add_argument(
        "--dump-request",
        type=Path,
        default=None,
        dest="dump_request",
        help="Write the raw request bytes to this file",
    )
    parser.add_argument(
        "--dump-response",
        type=Path,
        default=None,
        dest="dump_response",
        help="Write the raw response bytes to this file",
    )
    parser.add_argument(
        "--include",
        "-i",
        action="store_true",
        help="Print the status line and headers before the body",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log the transport trace to stderr",
    )
    return parser


def parse_args(args: list[str] | None = None) -> RequestArgs:
    """Parse command-line arguments into RequestArgs.

    Raises:
        SystemExit: If arguments are invalid (argparse behavior).
    """
    namespace = build_parser().parse_args(args)
    return RequestArgs(
        url=namespace.url,
        config=namespace.config,
        method=namespace.method,
        data=namespace.data,
        data_file=namespace.data_file,
        headers=dict(namespace.headers or []),
        timeout=namespace.timeout,
        max_redirects=namespace.max_redirects,
        max_body_size=namespace.max_body_size,
        truncate=namespace.truncate,
        http_version=namespace.http_version,
        dump_request=namespace.dump_request,
        dump_response=namespace.dump_response,
        include=namespace.include,
        verbose=namespace.verbose,
    )


def build_config(args: RequestArgs) -> ClientConfig:
    """Load --config (if any) and apply command-line overrides on top."""
    config = load_client_config(args.config) if args.config else ClientConfig()
    overrides: dict[str, Any] = {}
    if args.timeout is not None:
        overrides["timeout"] = args.timeout
    if args.max_redirects is not None:
        overrides["max_redirects"] = args.max_redirects
    if args.max_body_size is not None:
        overrides["max_body_size"] = args.max_body_size
    if args.truncate:
        overrides["abort_on_oversize"] = False
    if args.http_version is not None:
        overrides["http_version"] = args.http_version
    if args.url is not None:
        overrides["url"] = args.url
    return config.model_copy(update=overrides)


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    try:
        return run_request(parse_args(argv))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 1


def run_request(args: RequestArgs) -> int:
    """Send the request described by args. Returns the process exit code."""
    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    try:
        config = build_config(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if not config.url:
        print("Error: no URL given on the command line or in the config file", file=sys.stderr)
        return 1

    body: bytes | None = None
    if args.data is not None:
        body = args.data.encode("utf-8")
    elif args.data_file is not None:
        try:
            body = args.data_file.read_bytes()
        except OSError as e:
            print(f"Error: cannot read {args.data_file}: {e}", file=sys.stderr)
            return 1

    with contextlib.ExitStack() as stack:
        request_sink = stack.enter_context(open(args.dump_request, "wb")) if args.dump_request else None
        response_sink = stack.enter_context(open(args.dump_response, "wb")) if args.dump_response else None

        client = HttpClient(
            config=config,
            trace_sink=LoggingTraceSink() if args.verbose else None,
            request_sink=request_sink,
            response_sink=response_sink,
        )
        try:
            response = client.perform(args.effective_method, body=body, headers=args.headers)
        except HttpErrorException as e:
            print(f"Error: HTTP {e.status_code}: {e}", file=sys.stderr)
            return 1
        except TransportError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    logger.info(
        "HTTP %d from %s (%d bytes, %.3fs, %d redirects)",
        response.status_code,
        response.url,
        len(response.body),
        response.elapsed,
        client.redirect_count,
    )
    out = sys.stdout.buffer
    if args.include:
        out.write(response.raw_headers.encode("latin-1"))
    out.write(response.body)
    out.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
