"""Opening files for serving: gzip caching, content-type detection and index pages."""

from __future__ import annotations

import gzip
import mimetypes
import os
import shutil
import threading
import time
import zlib
from datetime import datetime, timezone

from fasthttpkit.fscache import FSFile
from fasthttpkit.fsutil import file_extension, fs_mod_time

FS_COMPRESSED_FILE_SUFFIX = ".fasthttp.gz"
FS_MIN_COMPRESS_RATIO = 0.8
FS_MAX_COMPRESSIBLE_FILE_SIZE = 8 * 1024 * 1024

_GZIP_LEVEL = 6
_SNIFF_LEN = 512
_COMPRESSIBLE_PROBE_LEN = 4096
_DIR_INDEX_CONTENT_TYPE = "text/html; charset=utf-8"


class DirIndexRequiredError(IsADirectoryError):
    """Raised when the requested path is a directory and needs an index page."""

    def __init__(self, message: str = "directory index required") -> None:
        super().__init__(message)


class NoCreatePermissionError(PermissionError):
    """Raised when a compressed copy of a file cannot be created."""

    def __init__(self, message: str = "no 'create file' permissions") -> None:
        super().__init__(message)


_file_locks: dict[str, threading.Lock] = {}
_file_locks_guard = threading.Lock()


def get_file_lock(abs_path: str) -> threading.Lock:
    """Return the lock guarding creation of the file at abs_path."""
    with _file_locks_guard:
        lock = _file_locks.get(abs_path)
        if lock is None:
            lock = _file_locks[abs_path] = threading.Lock()
        return lock


_HTML_ESCAPES = str.maketrans(
    {"&": "&amp;", "'": "&#39;", "<": "&lt;", ">": "&gt;", '"': "&#34;"}
)


def _html_escape(s: str) -> str:
    return s.translate(_HTML_ESCAPES)


_HTML_SIGNATURES = (
    b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME", b"<H1",
    b"<DIV", b"<FONT", b"<TABLE", b"<A", b"<STYLE", b"<TITLE", b"<B",
    b"<BODY", b"<BR", b"<P", b"<!--",
)

_EXACT_SIGNATURES = (
    (b"%PDF-", "application/pdf"),
    (b"%!PS-Adobe-", "application/postscript"),
    (b"\xfe\xff", "text/plain; charset=utf-16be"),
    (b"\xff\xfe", "text/plain; charset=utf-16le"),
    (b"\xef\xbb\xbf", "text/plain; charset=utf-8"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"BM", "image/bmp"),
    (b"\x1f\x8b\x08", "application/x-gzip"),
    (b"PK\x03\x04", "application/zip"),
    (b"Rar!\x1a\x07\x00", "application/x-rar-compressed"),
    (b"\x00asm", "application/wasm"),
)

_BINARY_BYTES = frozenset(
    list(range(0x00, 0x09)) + [0x0B] + list(range(0x0E, 0x1B)) + list(range(0x1C, 0x20))
)


def _sniff(data: bytes) -> str:
    stripped = data.lstrip(b"\t\n\x0c\r ")
    upper = stripped.upper()
    for sig in _HTML_SIGNATURES:
        if upper.startswith(sig) and len(stripped) > len(sig) and stripped[len(sig)] in b" >":
            return "text/html; charset=utf-8"
    if stripped.startswith(b"<?xml"):
        return "text/xml; charset=utf-8"
    for sig, content_type in _EXACT_SIGNATURES:
        if data.startswith(sig):
            return content_type
    if data[:4] == b"RIFF" and data[8:14] == b"WEBPVP":
        return "image/webp"
    if any(b in _BINARY_BYTES for b in data):
        return "application/octet-stream"
    return "text/plain; charset=utf-8"


def _type_by_extension(ext: str) -> str:
    if not ext:
        return ""
    content_type = mimetypes.types_map.get(ext) or mimetypes.types_map.get(ext.lower())
    if not content_type:
        guessed, _ = mimetypes.guess_type("file" + ext.lower(), strict=False)
        content_type = guessed or ""
    if content_type.startswith("text/") and "charset" not in content_type:
        content_type += "; charset=utf-8"
    return content_type


def _read_header(path: str, compressed: bool) -> bytes:
    try:
        if compressed:
            with gzip.open(path, "rb") as zf:
                return zf.read(_SNIFF_LEN)
        with open(path, "rb") as f:
            return f.read(_SNIFF_LEN)
    except (OSError, EOFError, zlib.error) as exc:
        raise OSError(f"cannot read header of the file {path!r}: {exc}") from exc


def detect_content_type(path: str, compressed: bool, compressed_file_suffix: str) -> str:
    """Guess the content type of the file at path from its extension or contents."""
    ext = file_extension(os.path.basename(path), compressed, compressed_file_suffix)
    content_type = _type_by_extension(ext)
    if content_type:
        return content_type
    return _sniff(_read_header(path, compressed))


def _is_compressible(path: str, min_ratio: float) -> bool:
    with open(path, "rb") as f:
        data = f.read(_COMPRESSIBLE_PROBE_LEN)
    if not data:
        return False
    return len(zlib.compress(data, _GZIP_LEVEL)) <= min_ratio * len(data)


def compress_file(file_path: str, compressed_file_path: str) -> str:
    """Write a gzip copy of file_path to compressed_file_path unless it exists.

    The copy gets the original's modification time. Returns the copy's path.
    """
    if os.path.exists(compressed_file_path):
        return compressed_file_path

    original_stat = os.stat(file_path)
    tmp_path = compressed_file_path + ".tmp"
    try:
        zf = open(tmp_path, "wb")
    except PermissionError as exc:
        raise NoCreatePermissionError() from exc
    except OSError as exc:
        raise OSError(f"cannot create temporary file {tmp_path!r}: {exc}") from exc

    try:
        with zf, open(file_path, "rb") as src, gzip.GzipFile(
            filename="", fileobj=zf, mode="wb", compresslevel=_GZIP_LEVEL
        ) as zw:
            shutil.copyfileobj(src, zw)
    except OSError as exc:
        raise OSError(
            f"error when compressing file {file_path!r} to {tmp_path!r}: {exc}"
        ) from exc

    try:
        os.utime(tmp_path, ns=(time.time_ns(), original_stat.st_mtime_ns))
    except OSError as exc:
        raise OSError(f"cannot change modification time for tmp file {tmp_path!r}: {exc}") from exc
    try:
        os.replace(tmp_path, compressed_file_path)
    except OSError as exc:
        raise OSError(
            f"cannot move compressed file from {tmp_path!r} to {compressed_file_path!r}: {exc}"
        ) from exc
    return compressed_file_path


def _normalize_path(path: str) -> str:
    parts: list[str] = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if parts:
                parts.pop()
            continue
        parts.append(segment)
    return "/" + "/".join(parts)


def _format_time(t: datetime) -> str:
    return t.strftime("%Y-%m-%d %H:%M:%S +0000 UTC")


class FileOpener:
    """Opens files below root, optionally through cached gzip copies.

    Paths given to the methods are relative to root and start with '/'.
    """

    def __init__(
        self,
        root: str | os.PathLike = "",
        index_names: list[str] | None = None,
        generate_index_pages: bool = False,
        compressed_file_suffix: str = "",
    ) -> None:
        root = os.fspath(root) or "."
        self.root = root.rstrip("/")
        self.index_names = list(index_names or [])
        self.generate_index_pages = generate_index_pages
        self.compressed_file_suffix = compressed_file_suffix or FS_COMPRESSED_FILE_SUFFIX

    def _fs_path(self, path: str) -> str:
        return self.root + path

    def open_file(self, file_path: str, must_compress: bool) -> FSFile:
        """Open file_path, serving a gzip copy if must_compress and it pays off.

        Raises DirIndexRequiredError for directories.
        """
        return self._open(self._fs_path(file_path), must_compress)

    def _open(self, full_path: str, must_compress: bool) -> FSFile:
        target = full_path + self.compressed_file_suffix if must_compress else full_path
        try:
            st = os.stat(target)
        except FileNotFoundError:
            if must_compress:
                return self._compress_and_open(full_path)
            raise

        if os.path.isdir(target):
            if must_compress:
                raise OSError(
                    f"directory with unexpected suffix found: {target!r}. "
                    f"Suffix: {self.compressed_file_suffix!r}"
                )
            raise DirIndexRequiredError()

        if must_compress:
            try:
                original = os.stat(full_path)
            except OSError as exc:
                raise OSError(
                    f"cannot obtain info for original file {full_path!r}: {exc}"
                ) from exc
            if original.st_mtime_ns != st.st_mtime_ns:
                # The compressed copy is stale.
                try:
                    os.remove(target)
                except OSError:
                    pass
                return self._compress_and_open(full_path)

        return self._new_fs_file(target, st, must_compress)

    def _compress_and_open(self, full_path: str) -> FSFile:
        st = os.stat(full_path)
        if os.path.isdir(full_path):
            raise DirIndexRequiredError()

        if (
            full_path.endswith(self.compressed_file_suffix)
            or st.st_size > FS_MAX_COMPRESSIBLE_FILE_SIZE
            or not _is_compressible(full_path, FS_MIN_COMPRESS_RATIO)
        ):
            return self._new_fs_file(full_path, st, False)

        compressed_path = full_path + self.compressed_file_suffix
        with get_file_lock(os.path.abspath(compressed_path)):
            compress_file(full_path, compressed_path)
        try:
            compressed_st = os.stat(compressed_path)
        except OSError as exc:
            raise OSError(f"cannot open compressed file {compressed_path!r}: {exc}") from exc
        return self._new_fs_file(compressed_path, compressed_st, True)

    def _new_fs_file(self, path: str, st: os.stat_result, compressed: bool) -> FSFile:
        content_type = detect_content_type(path, compressed, self.compressed_file_suffix)
        last_modified = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)
        return FSFile(path, content_type, st.st_size, last_modified, compressed)

    def open_index_file(self, dir_path: str, base_path: str, must_compress: bool) -> FSFile:
        """Open the first existing index file in dir_path, or generate an index page."""
        for index_name in self.index_names:
            index_path = dir_path + "/" + index_name
            try:
                return self.open_file(index_path, must_compress)
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise OSError(
                    f"cannot open file {self._fs_path(index_path)!r}: {exc}"
                ) from exc

        if not self.generate_index_pages:
            raise PermissionError(
                "cannot access directory without index page. "
                f"Directory {self._fs_path(dir_path)!r}"
            )
        return self.create_dir_index(base_path, dir_path, must_compress)

    def create_dir_index(self, base_path: str, dir_path: str, must_compress: bool) -> FSFile:
        """Build an HTML listing of dir_path, with links relative to base_path."""
        base_escaped = _html_escape(base_path)
        parts = [
            f"<html><head><title>{base_escaped}</title>"
            "<style>.dir { font-weight: bold }</style></head><body>",
            f"<h1>{base_escaped}</h1>",
            "<ul>",
        ]
        if len(base_escaped) > 1:
            parent = _html_escape(_normalize_path(base_path + "/.."))
            parts.append(f'<li><a href="{parent}" class="dir">..</a></li>')

        with os.scandir(self._fs_path(dir_path)) as it:
            entries = {
                entry.name: entry
                for entry in it
                if not entry.name.endswith(self.compressed_file_suffix)
            }

        for name in sorted(entries):
            entry = entries[name]
            st = entry.stat(follow_symlinks=False)
            href = _html_escape(_normalize_path(base_path + "/" + name))
            if entry.is_dir(follow_symlinks=False):
                aux, class_name = "dir", "dir"
            else:
                aux, class_name = f"file, {st.st_size} bytes", "file"
            modified = _format_time(fs_mod_time(st.st_mtime))
            parts.append(
                f'<li><a href="{href}" class="{class_name}">{_html_escape(name)}</a>, '
                f"{aux}, last modified {modified}</li>"
            )
        parts.append("</ul></body></html>")

        dir_index = "".join(parts).encode("utf-8")
        if must_compress:
            dir_index = gzip.compress(dir_index, compresslevel=_GZIP_LEVEL)

        return FSFile(
            None,
            _DIR_INDEX_CONTENT_TYPE,
            len(dir_index),
            datetime.now(timezone.utc),
            must_compress,
            dir_index,
        )