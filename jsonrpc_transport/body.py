"""POST body encoding: URL-encoded forms and multipart/form-data."""

from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import quote_plus

from jsonrpc_transport.models import FilePart, FormValue

BOUNDARY = "---JsonRpcTransport--4523452351"

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
MULTIPART_CONTENT_TYPE = "multipart/form-data"

_NL = b"\r\n"


def encode_form(data: Mapping[str, FormValue]) -> bytes:
    """Encode fields as ``application/x-www-form-urlencoded``.

    File parts have no urlencoded representation; their raw body is sent
    as the field value.
    """
    pairs = []
    for key, value in data.items():
        if isinstance(value, FilePart):
            value = value.body.decode("utf-8", errors="replace")
        pairs.append(f"{quote_plus(key)}={quote_plus(value)}")
    return "&".join(pairs).encode("ascii")


def encode_multipart(data: Mapping[str, FormValue], boundary: str = BOUNDARY) -> bytes:
    """Encode fields as ``multipart/form-data`` using a fixed boundary.

    Plain string values become simple parts; FilePart values carry a
    filename and Content-Type when those are set.
    """
    delimiter = b"--" + boundary.encode("ascii")
    out = bytearray()
    for key, value in data.items():
        out += delimiter + _NL
        disposition = f'Content-Disposition: form-data; name="{quote_plus(key)}"'
        if isinstance(value, FilePart):
            if value.filename:
                disposition += f'; filename="{quote_plus(value.filename)}"'
            out += disposition.encode("utf-8") + _NL
            if value.mimetype:
                out += f"Content-Type: {value.mimetype}".encode("utf-8") + _NL
            out += _NL
            out += value.body
        else:
            out += disposition.encode("utf-8") + _NL
            out += _NL
            out += value.encode("utf-8")
        out += _NL
    out += delimiter + b"--" + _NL
    return bytes(out)


def encode_body(
    body: bytes | str | Mapping[str, FormValue] | None,
    content_type: str | None,
) -> tuple[bytes, str | None]:
    """Serialize a POST body and work out its Content-Type.

    Structured fields are multipart encoded when the caller asked for
    ``multipart/form-data``, URL-encoded otherwise. Raw bytes and text are
    sent as is under the caller's Content-Type.

    Returns:
        Tuple of (encoded body, Content-Type to send).
    """
    if body is None:
        return b"", content_type
    if isinstance(body, bytes):
        return body, content_type
    if isinstance(body, str):
        return body.encode("utf-8"), content_type
    if content_type and content_type.split(";", 1)[0].strip().lower() == MULTIPART_CONTENT_TYPE:
        return encode_multipart(body), f"{MULTIPART_CONTENT_TYPE}; boundary={BOUNDARY}"
    return encode_form(body), FORM_CONTENT_TYPE
