"""Path, byte-range and modification-time helpers for serving static files."""

from __future__ import annotations

import os
from datetime import datetime, timezone

_BYTES_UNIT = "bytes"
INVALID_HOST = "invalid-host"


class ByteRangeError(ValueError):
    """Raised when a 'Range: bytes=...' header value cannot be satisfied or parsed."""


def _parse_uint(value: str, byte_range: str) -> int:
    if not value:
        raise ByteRangeError(f"cannot parse empty number in byte range {byte_range!r}")
    if not (value.isascii() and value.isdigit()):
        raise ByteRangeError(f"unexpected non-digit in {value!r}. Byte range {byte_range!r}")
    return int(value)


def parse_byte_range(byte_range: str | bytes, content_length: int) -> tuple[int, int]:
    """Parse a 'Range: bytes=...' header value into inclusive (start, end) positions."""
    if isinstance(byte_range, (bytes, bytearray)):
        byte_range = bytes(byte_range).decode("latin-1")

    if not byte_range.startswith(_BYTES_UNIT):
        raise ByteRangeError(
            f"unsupported range units: {byte_range!r}. Expecting {_BYTES_UNIT!r}"
        )
    rest = byte_range[len(_BYTES_UNIT):]
    if not rest.startswith("="):
        raise ByteRangeError(f"missing byte range in {byte_range!r}")
    rest = rest[1:]

    start_str, dash, end_str = rest.partition("-")
    if not dash:
        raise ByteRangeError(f"missing the end position of byte range in {byte_range!r}")

    if not start_str:
        suffix_len = _parse_uint(end_str, byte_range)
        return max(content_length - suffix_len, 0), content_length - 1

    start_pos = _parse_uint(start_str, byte_range)
    if start_pos >= content_length:
        raise ByteRangeError(
            f"the start position of byte range cannot exceed {content_length - 1}. "
            f"byte range {byte_range!r}"
        )
    if not end_str:
        return start_pos, content_length - 1

    end_pos = min(_parse_uint(end_str, byte_range), content_length - 1)
    if end_pos < start_pos:
        raise ByteRangeError(
            "the start position of byte range cannot exceed the end position. "
            f"byte range {byte_range!r}"
        )
    return start_pos, end_pos


def strip_leading_slashes(path: str, strip_slashes: int) -> str:
    """Drop the first strip_slashes path segments from an absolute path."""
    while strip_slashes > 0 and path:
        if not path.startswith("/"):
            raise ValueError(f"path must start with slash: {path!r}")
        n = path.find("/", 1)
        if n < 0:
            return ""
        path = path[n:]
        strip_slashes -= 1
    return path


def strip_trailing_slashes(path: str) -> str:
    """Remove all trailing slashes from path."""
    return path.rstrip("/")


def file_extension(path: str, compressed: bool, compressed_file_suffix: str) -> str:
    """Return the extension of path, ignoring the compressed-file suffix if compressed."""
    if compressed and compressed_file_suffix and path.endswith(compressed_file_suffix):
        path = path[: -len(compressed_file_suffix)]
    n = path.rfind(".")
    if n < 0:
        return ""
    return path[n:]


def fs_mod_time(t: datetime | float) -> datetime:
    """Convert a modification time to UTC truncated to whole seconds."""
    if not isinstance(t, datetime):
        t = datetime.fromtimestamp(t, tz=timezone.utc)
    return t.astimezone(timezone.utc).replace(microsecond=0)


def file_last_modified(path: str | os.PathLike) -> datetime:
    """Return the last modification time of the file at path, in UTC."""
    return fs_mod_time(os.stat(path).st_mtime)


def vhost_path(host: str, path: str, slashes_count: int) -> str:
    """Prefix path with the request host after stripping slashes_count segments.

    Hosts containing a slash, and empty hosts, are replaced with 'invalid-host'.
    """
    path = strip_leading_slashes(path, slashes_count)
    if "/" in host or not host:
        host = INVALID_HOST
    return "/" + host + path


def prefix_stripped_path(path: str, prefix_size: int) -> str:
    """Remove prefix_size characters from the start of path if it is long enough."""
    if len(path) >= prefix_size:
        return path[prefix_size:]
    return path