from __future__ import annotations

import json
from typing import Any, Tuple

from common.errors import CodecError
from state.models import FileMetadata


JSON_MIME = "application/json"
APP_DATA_FOLDER = "appDataFolder"

# Compact JSON never contains a raw CRLF, so a fixed boundary cannot collide
BOUNDARY = "-------314159265358979323846"
DELIMITER = f"\r\n--{BOUNDARY}\r\n"
CLOSE_DELIMITER = f"\r\n--{BOUNDARY}--"
PART_HEADERS = f"Content-Type: {JSON_MIME}\r\n\r\n"


def content_type_header() -> str:
    return f'multipart/related; boundary="{BOUNDARY}"'


def build_metadata(name: str, *, creating: bool) -> FileMetadata:
    """Metadata for an upload; only a create pins the file under appDataFolder."""
    return FileMetadata(
        name=name,
        mime_type=JSON_MIME,
        parents=[APP_DATA_FOLDER] if creating else None,
    )


def _dumps(value: Any) -> str:
    try:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as ex:
        raise CodecError(f"Payload is not JSON-serializable: {ex}") from ex


def encode(metadata: FileMetadata, payload: Any) -> Tuple[bytes, str]:
    """
    Build a `multipart/related` body with a JSON metadata part and a JSON
    payload part.

    Returns: (body, content_type_header)
    Raises:
    - CodecError if the payload is not JSON-serializable.
    """
    content = _dumps(payload)
    body = (
        DELIMITER
        + PART_HEADERS
        + _dumps(metadata.to_wire())
        + DELIMITER
        + PART_HEADERS
        + content
        + CLOSE_DELIMITER
    )
    return body.encode("utf-8"), content_type_header()


def decode(raw: bytes | str) -> Any:
    """Parse a downloaded file body; the payload is returned unchanged."""
    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
        return json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as ex:
        raise CodecError("Remote file is not valid JSON") from ex


def _split_parts(body: bytes | str) -> Tuple[str, str]:
    text = body.decode("utf-8") if isinstance(body, (bytes, bytearray)) else body
    if not text.startswith(DELIMITER) or not text.endswith(CLOSE_DELIMITER):
        raise CodecError("Body is not delimited by the expected boundary")
    inner = text[len(DELIMITER) : -len(CLOSE_DELIMITER)]
    parts = inner.split(DELIMITER)
    if len(parts) != 2:
        raise CodecError(f"Expected 2 multipart parts, found {len(parts)}")

    out = []
    for part in parts:
        _, sep, content = part.partition("\r\n\r\n")
        if not sep:
            raise CodecError("Multipart part is missing its header separator")
        out.append(content)
    return out[0], out[1]


def extract_metadata_part(body: bytes | str) -> FileMetadata:
    meta, _ = _split_parts(body)
    return FileMetadata.model_validate(decode(meta))


def extract_payload_part(body: bytes | str) -> bytes:
    _, content = _split_parts(body)
    return content.encode("utf-8")


__all__ = [
    "APP_DATA_FOLDER",
    "BOUNDARY",
    "build_metadata",
    "content_type_header",
    "decode",
    "encode",
    "extract_metadata_part",
    "extract_payload_part",
]
