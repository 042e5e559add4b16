"""Cached file handles and the readers that stream their contents.

An FSFile wraps either an open file on disk or a generated directory index
page. Readers are handed out per request; each reader holds a reference to
its FSFile that is dropped when the reader is closed. FileCache keeps FSFile
objects alive while they are in use and releases stale ones.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import BinaryIO, Protocol

# Files bigger than this are streamed through a dedicated file handle.
MAX_SMALL_FILE_SIZE = 2 * 4096

# Default expiration, in seconds, for inactive cached files.
FS_HANDLER_CACHE_DURATION = 10.0

_COPY_CHUNK_SIZE = 4096
_BIG_COPY_CHUNK_SIZE = 64 * 1024


class _Writer(Protocol):
    def write(self, data: bytes, /) -> object: ...


def _http_date(t: datetime) -> str:
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    return format_datetime(t.astimezone(timezone.utc), usegmt=True)


class FSFile:
    """A file, or generated directory index, ready to be served.

    References are counted: FileCache takes one for each acquire() or put(),
    and every reader obtained from new_reader() gives one back on close().
    """

    def __init__(
        self,
        path: str | None,
        content_type: str,
        content_length: int,
        last_modified: datetime,
        compressed: bool = False,
        dir_index: bytes | None = None,
    ) -> None:
        if path is None and dir_index is None:
            raise ValueError("either path or dir_index must be given")
        self.path = path
        self.content_type = content_type
        self.content_length = content_length
        self.last_modified = last_modified
        self.last_modified_str = _http_date(last_modified)
        self.compressed = compressed
        self.dir_index = bytes(dir_index) if dir_index is not None else b""
        self.created = time.monotonic()

        self._file: BinaryIO | None = open(path, "rb") if path is not None else None
        self._io_lock = threading.Lock()
        self._count_lock = threading.Lock()
        self._readers_count = 0
        self._big_readers: list[BigFileReader] = []
        self._big_lock = threading.Lock()

    @property
    def readers_count(self) -> int:
        """Number of outstanding references to this file."""
        with self._count_lock:
            return self._readers_count

    def _inc_readers(self) -> None:
        with self._count_lock:
            self._readers_count += 1

    def _dec_readers(self) -> None:
        with self._count_lock:
            self._readers_count -= 1
            if self._readers_count < 0:
                self._readers_count = 0
                raise RuntimeError("negative FSFile readers count")

    def _read_at(self, pos: int, size: int) -> bytes:
        if self._file is None:
            raise RuntimeError("FSFile has no underlying file")
        with self._io_lock:
            self._file.seek(pos)
            return self._file.read(size)

    def is_big(self) -> bool:
        """Whether the file is served through a dedicated file handle."""
        return self.content_length > MAX_SMALL_FILE_SIZE and not self.dir_index

    def new_reader(self) -> SmallFileReader | BigFileReader:
        """Return a reader over the whole content.

        The reader consumes one reference when it is closed.
        """
        if not self.is_big():
            return SmallFileReader(self)
        with self._big_lock:
            reader = self._big_readers.pop() if self._big_readers else None
        if reader is not None:
            return reader
        try:
            return BigFileReader(self)
        except OSError as exc:
            self._dec_readers()
            raise OSError(f"cannot open already opened file: {exc}") from exc

    def release(self) -> None:
        """Close the underlying file and any pooled big-file handles."""
        if self._file is None:
            return
        self._file.close()
        if self.is_big():
            with self._big_lock:
                pooled, self._big_readers = self._big_readers, []
            for reader in pooled:
                reader._file.close()


class SmallFileReader:
    """Reader over a small file or a directory index page."""

    def __init__(self, ff: FSFile) -> None:
        self._ff: FSFile | None = ff
        self.start_pos = 0
        self.end_pos = ff.content_length

    def _fsfile(self) -> FSFile:
        if self._ff is None:
            raise ValueError("reader is closed")
        return self._ff

    def update_byte_range(self, start_pos: int, end_pos: int) -> None:
        """Restrict reading to the inclusive range [start_pos, end_pos]."""
        self.start_pos = start_pos
        self.end_pos = end_pos + 1

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes (all remaining if negative); b"" at the end."""
        ff = self._fsfile()
        tail = self.end_pos - self.start_pos
        if tail <= 0:
            return b""
        if size < 0 or size > tail:
            size = tail
        if ff._file is not None:
            data = ff._read_at(self.start_pos, size)
        else:
            data = ff.dir_index[self.start_pos:self.start_pos + size]
        self.start_pos += len(data)
        return data

    def write_to(self, writer: _Writer) -> int:
        """Write the remaining range to writer and return the bytes written."""
        ff = self._fsfile()
        if ff._file is None:
            data = ff.dir_index[self.start_pos:self.end_pos]
            writer.write(data)
            return len(data)

        pos = self.start_pos
        while pos < self.end_pos:
            chunk = ff._read_at(pos, min(_COPY_CHUNK_SIZE, self.end_pos - pos))
            if not chunk:
                break
            writer.write(chunk)
            pos += len(chunk)
        return pos - self.start_pos

    def close(self) -> None:
        """Give back the reference to the file."""
        ff = self._fsfile()
        self._ff = None
        self.start_pos = 0
        self.end_pos = 0
        ff._dec_readers()

    def __enter__(self) -> SmallFileReader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        if self._ff is not None:
            self.close()


class BigFileReader:
    """Reader with its own file handle; returned to a pool on close."""

    def __init__(self, ff: FSFile) -> None:
        if ff.path is None:
            raise RuntimeError("BigFileReader requires a file on disk")
        self._ff = ff
        self._file: BinaryIO = open(ff.path, "rb")
        self._limit: int | None = None

    def update_byte_range(self, start_pos: int, end_pos: int) -> None:
        """Restrict reading to the inclusive range [start_pos, end_pos]."""
        self._file.seek(start_pos)
        self._limit = end_pos - start_pos + 1

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes (all remaining if negative); b"" at the end."""
        if self._limit is None:
            return self._file.read(size)
        n = self._limit if size < 0 else min(size, self._limit)
        if n <= 0:
            return b""
        data = self._file.read(n)
        self._limit -= len(data)
        return data

    def write_to(self, writer: _Writer) -> int:
        """Write the remaining range to writer and return the bytes written."""
        total = 0
        while chunk := self.read(_BIG_COPY_CHUNK_SIZE):
            writer.write(chunk)
            total += len(chunk)
        return total

    def close(self) -> None:
        """Rewind and return the handle to the file's pool, then drop the reference."""
        ff = self._ff
        self._limit = None
        try:
            self._file.seek(0)
        except (OSError, ValueError):
            self._file.close()
            ff._dec_readers()
            raise
        with ff._big_lock:
            ff._big_readers.append(self)
        ff._dec_readers()

    def __enter__(self) -> BigFileReader:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class FileCache:
    """Map of request paths to FSFile objects with expiry of stale entries."""

    def __init__(self, cache_duration: float = FS_HANDLER_CACHE_DURATION) -> None:
        if cache_duration <= 0:
            cache_duration = FS_HANDLER_CACHE_DURATION
        self.cache_duration = cache_duration
        self._files: dict[str, FSFile] = {}
        self._pending: list[FSFile] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._files)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._files

    def acquire(self, key: str) -> FSFile | None:
        """Return the cached file for key with a new reference, or None."""
        with self._lock:
            ff = self._files.get(key)
            if ff is not None:
                ff._inc_readers()
            return ff

    def put(self, key: str, ff: FSFile) -> FSFile:
        """Cache ff under key and return it with a new reference.

        If another file is already cached under key, ff is released and the
        cached one is returned instead.
        """
        with self._lock:
            existing = self._files.get(key)
            if existing is None:
                self._files[key] = ff
                ff._inc_readers()
                return ff
            existing._inc_readers()
        ff.release()
        return existing

    def clean(self) -> list[FSFile]:
        """Drop stale entries and release every file no longer in use.

        Stale files that still have readers are kept aside and released by a
        later call once their readers are closed. Returns the released files.
        """
        to_release: list[FSFile] = []
        with self._lock:
            remaining: list[FSFile] = []
            for ff in self._pending:
                (remaining if ff.readers_count > 0 else to_release).append(ff)
            now = time.monotonic()
            for key, ff in list(self._files.items()):
                if now - ff.created > self.cache_duration:
                    (remaining if ff.readers_count > 0 else to_release).append(ff)
                    del self._files[key]
            self._pending = remaining
        for ff in to_release:
            ff.release()
        return to_release