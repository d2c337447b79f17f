"""Header and cookie codec.

Converts header mappings to wire format and back, and keeps the cookie jar
up to date from ``Set-Cookie`` response headers.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, MutableMapping

HTTP_NL = "\r\n"

HeaderValue = str | list[str]


def set_header(headers: MutableMapping[str, str], name: str, value: str) -> None:
    """Set a header, replacing any existing key that differs only in case."""
    for key in [k for k in headers if k.lower() == name.lower()]:
        del headers[key]
    headers[name] = value


def get_header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup."""
    lower = name.lower()
    for key, value in headers.items():
        if key.lower() == lower:
            return value
    return None


def remove_header(headers: MutableMapping[str, str], name: str) -> None:
    for key in [k for k in headers if k.lower() == name.lower()]:
        del headers[key]


def build_headers(headers: Mapping[str, object]) -> str:
    """Render headers as ``Name: value`` lines, each CRLF terminated.

    Headers with an empty value (None, "", 0) are left out.
    """
    lines = []
    for key, value in headers.items():
        if not value:
            continue
        lines.append(f"{key}: {value}{HTTP_NL}")
    return "".join(lines)


def parse_headers(block: str) -> dict[str, HeaderValue]:
    """Parse a received header block into a mapping.

    Keys are lowercased and stripped. A key seen more than once maps to the
    list of its values in arrival order. A leading ``HTTP/`` status line and
    lines without a value (the terminating blank lines) are skipped.
    """
    headers: dict[str, HeaderValue] = {}
    lines = block.split("\n")
    if lines and lines[0].lstrip().startswith("HTTP/"):
        lines = lines[1:]
    for line in lines:
        key, sep, value = line.partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        value = value.strip()
        if not key or not value:
            continue
        existing = headers.get(key)
        if existing is None:
            headers[key] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            headers[key] = [existing, value]
    return headers


def header_values(headers: Mapping[str, HeaderValue], name: str) -> list[str]:
    """All values of a parsed header as a list (empty when absent)."""
    value = headers.get(name.lower())
    if value is None:
        return []
    if isinstance(value, list):
        return list(value)
    return [value]


class CookieJar(MutableMapping[str, str]):
    """Cookie name -> value mapping, replayed on every request of a client.

    Only the name and value of a ``Set-Cookie`` line are kept; attributes
    such as Path or Expires are ignored. A value of ``deleted`` removes the
    cookie.
    """

    def __init__(self, cookies: Mapping[str, str] | None = None) -> None:
        self._cookies: dict[str, str] = dict(cookies or {})

    def __getitem__(self, key: str) -> str:
        return self._cookies[key]

    def __setitem__(self, key: str, value: str) -> None:
        self._cookies[key] = value

    def __delitem__(self, key: str) -> None:
        del self._cookies[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._cookies)

    def __len__(self) -> int:
        return len(self._cookies)

    def __repr__(self) -> str:
        return f"CookieJar({self._cookies!r})"

    def set_cookie(self, line: str) -> None:
        """Apply one ``Set-Cookie`` header value."""
        pair = line.split(";", 1)[0]
        key, _, value = pair.partition("=")
        key = key.strip()
        if value == "deleted":
            self._cookies.pop(key, None)
        elif key:
            self._cookies[key] = value

    def update_from_headers(self, headers: Mapping[str, HeaderValue]) -> None:
        """Apply every ``Set-Cookie`` value of a parsed header mapping."""
        for line in header_values(headers, "set-cookie"):
            self.set_cookie(line)

    def header_line(self) -> str:
        """The ``Cookie:`` request header line, or "" for an empty jar."""
        if not self._cookies:
            return ""
        pairs = "; ".join(f"{key}={value}" for key, value in self._cookies.items())
        return f"Cookie: {pairs}{HTTP_NL}"
