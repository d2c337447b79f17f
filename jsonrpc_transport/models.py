"""Internal data models for jsonrpc-transport.

All models use Pydantic v2. Requests are frozen: a send never mutates the
request it was given, and redirect handling derives a new one.
"""

from __future__ import annotations

import platform
import re
import time
from typing import Literal, Self

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


DEFAULT_AGENT = f"Mozilla/4.0 (compatible; jsonrpc-transport HTTP Client; {platform.system()})"
DEFAULT_TIMEOUT = 15.0
DEFAULT_MAX_REDIRECTS = 3


def default_headers() -> dict[str, str]:
    """Headers sent with every request unless overridden."""
    return {
        "Accept": "text/xml,application/xml,application/xhtml+xml,"
                  "text/html,text/plain,image/png,image/jpeg,image/gif,*/*",
        "Accept-Language": "en-us",
    }


# =============================================================================
# Credentials and Proxy
# =============================================================================


class Credentials(BaseModel):
    """Basic-auth user and password."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    user: str = Field(description="User name")
    password: str = Field(default="", description="Password")


class ProxyConfig(BaseModel):
    """HTTP proxy settings."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    host: str = Field(description="Proxy host name")
    port: int = Field(default=8080, description="Proxy port")
    user: str | None = Field(default=None, description="Proxy-Authorization user")
    password: str = Field(default="", description="Proxy-Authorization password")
    ssl: bool = Field(default=False, description="Connect to the proxy over TLS")


# =============================================================================
# Request / Response
# =============================================================================


class FilePart(BaseModel):
    """A file field of a multipart/form-data body."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    body: bytes = Field(description="Raw file content")
    filename: str | None = Field(default=None, description="Filename sent in Content-Disposition")
    mimetype: str | None = Field(default=None, description="Content-Type of the part")


FormValue = str | FilePart
RequestBody = bytes | str | dict[str, FormValue] | None


class Request(BaseModel):
    """One HTTP request as sent over a single connection.

    Header keys keep the case they were given; lookups that need to be case
    insensitive go through jsonrpc_transport.headers.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    url: str = Field(description="Absolute target URL")
    method: Literal["GET", "POST"] = Field(default="GET", description="HTTP method")
    headers: dict[str, str] = Field(default_factory=dict, description="Request headers")
    body: RequestBody = Field(default=None, description="Raw bytes, text or form fields")
    referer: str = Field(default="", description="Referer header value")
    credentials: Credentials | None = Field(default=None, description="Basic-auth credentials")
    proxy: ProxyConfig | None = Field(default=None, description="Proxy settings")
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0, description="Timeout in seconds")
    max_redirects: int = Field(default=DEFAULT_MAX_REDIRECTS, ge=0, description="Maximum redirect hops")
    max_body_size: int = Field(default=0, ge=0, description="Maximum body size in bytes (0 = unlimited)")
    abort_on_oversize: bool = Field(default=True, description="Fail instead of truncating oversized bodies")
    http_version: Literal["1.0", "1.1"] = Field(default="1.0", description="Protocol version to request")
    agent: str = Field(default=DEFAULT_AGENT, description="User-Agent header value")
    header_pattern: str | None = Field(
        default=None, description="Regexp the raw response headers must match"
    )

    @field_validator("method", mode="before")
    @classmethod
    def upper_method(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    @field_validator("header_pattern")
    @classmethod
    def check_header_pattern(cls, v: str | None) -> str | None:
        if v is not None:
            try:
                re.compile(v)
            except re.error as e:
                raise ValueError(f"invalid header_pattern: {e}") from e
        return v


class Response(BaseModel):
    """One HTTP response read from a connection.

    Header keys are lowercase. A value is a list when the header repeats.
    The body is only complete once the body strategy has finished.
    """

    model_config = ConfigDict(extra="forbid")

    url: str = Field(description="URL the response was read from")
    status_code: int = Field(description="HTTP status code")
    status_line: str = Field(default="", description="Status line as received")
    http_version: str = Field(default="1.0", description="Protocol version of the response")
    raw_headers: str = Field(default="", description="Header block as received")
    headers: dict[str, str | list[str]] = Field(
        default_factory=dict, description="Parsed headers (lowercase keys)"
    )
    body: bytes = Field(default=b"", description="Decoded body")
    elapsed: float = Field(default=0.0, description="Seconds from connect to last byte")

    def header(self, name: str) -> str | None:
        """First value of a header, or None."""
        value = self.headers.get(name.lower())
        if isinstance(value, list):
            return value[0] if value else None
        return value


# =============================================================================
# Trace
# =============================================================================


class TraceRecord(BaseModel):
    """One debug trace event."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    timestamp: float = Field(default_factory=time.time, description="Unix time of the event")
    level: Literal["info", "warn", "debug"] = Field(default="info", description="Severity")
    message: str = Field(description="Event text")


# =============================================================================
# Client Configuration
# =============================================================================


class ClientConfig(BaseModel):
    """Defaults for a client session, loadable from YAML."""

    model_config = ConfigDict(extra="forbid")

    url: str | None = Field(default=None, description="Default target URL")
    agent: str = Field(default=DEFAULT_AGENT, description="User-Agent header value")
    http_version: Literal["1.0", "1.1"] = Field(default="1.0", description="Protocol version")
    timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0, description="Timeout in seconds")
    max_redirects: int = Field(default=DEFAULT_MAX_REDIRECTS, ge=0, description="Maximum redirect hops")
    max_body_size: int = Field(default=0, ge=0, description="Maximum body size (0 = unlimited)")
    abort_on_oversize: bool = Field(default=True, description="Fail instead of truncating")
    headers: dict[str, str] = Field(default_factory=default_headers, description="Default headers")
    credentials: Credentials | None = Field(default=None, description="Basic-auth credentials")
    proxy: ProxyConfig | None = Field(default=None, description="Proxy settings")
    header_pattern: str | None = Field(default=None, description="Regexp response headers must match")
    verify_ssl: bool = Field(default=True, description="Verify server certificates")
    ca_bundle: str | None = Field(default=None, description="CA bundle path for verification")
    trace: Literal["none", "console", "buffer", "logging"] = Field(
        default="none", description="Debug trace sink"
    )

    @model_validator(mode="after")
    def check_ca_bundle(self) -> Self:
        if self.ca_bundle is not None and not self.verify_ssl:
            raise ValueError("ca_bundle is meaningless with verify_ssl disabled")
        return self
