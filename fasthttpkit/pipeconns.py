"""In-memory bidirectional connection pipes with read and write deadlines.

Writes are buffered, so a writer does not need a concurrent reader to make
progress until the internal buffer of pending chunks fills up.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime

_CHANNEL_CAPACITY = 4


class PipeTimeoutError(TimeoutError):
    """Raised from read() or write() when the deadline has passed."""

    def __init__(self, message: str = "timeout") -> None:
        super().__init__(message)


class ConnectionClosedError(ConnectionError):
    """Raised from write() once the pipe has been closed."""

    def __init__(self, message: str = "connection closed") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class _PipeAddr:
    network: str = "pipe"

    def __str__(self) -> str:
        return "pipe"


def _to_timestamp(deadline: float | datetime | None) -> float | None:
    if deadline is None:
        return None
    if isinstance(deadline, datetime):
        return deadline.timestamp()
    return float(deadline)


def _remaining(deadline: float | None) -> float | None:
    if deadline is None:
        return None
    return deadline - time.time()


class PipeConns:
    """A pair of connected in-memory connections.

    Data written to conn1() is read from conn2() and vice versa.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._stopped = False
        first_to_second: deque[bytes] = deque()
        second_to_first: deque[bytes] = deque()
        self._c1 = PipeConn(self, read_queue=second_to_first, write_queue=first_to_second)
        self._c2 = PipeConn(self, read_queue=first_to_second, write_queue=second_to_first)

    def conn1(self) -> PipeConn:
        """Return the first end of the pipe."""
        return self._c1

    def conn2(self) -> PipeConn:
        """Return the second end of the pipe."""
        return self._c2

    def close(self) -> None:
        """Close both ends of the pipe. Closing twice is harmless."""
        with self._cond:
            self._stopped = True
            self._cond.notify_all()

    def __enter__(self) -> PipeConns:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class PipeConn:
    """One end of a PipeConns pair."""

    def __init__(self, pipe: PipeConns, read_queue: deque, write_queue: deque) -> None:
        self._pipe = pipe
        self._rq = read_queue
        self._wq = write_queue
        self._pending = b""
        self._read_deadline: float | None = None
        self._write_deadline: float | None = None

    def write(self, data: bytes) -> int:
        """Queue data for the other end and return the number of bytes written."""
        chunk = bytes(data)
        pipe = self._pipe
        cond = pipe._cond
        with cond:
            if pipe._stopped:
                raise ConnectionClosedError()
            while len(self._wq) >= _CHANNEL_CAPACITY:
                if pipe._stopped:
                    raise ConnectionClosedError()
                remaining = _remaining(self._write_deadline)
                if remaining is not None and remaining <= 0:
                    raise PipeTimeoutError()
                cond.wait(remaining)
            self._wq.append(chunk)
            cond.notify_all()
        return len(chunk)

    def read(self, size: int) -> bytes:
        """Read up to size bytes.

        Blocks only until the first chunk arrives, then gathers whatever else
        is already buffered. Returns b"" at end of stream once the pipe is
        closed and drained.
        """
        if size < 0:
            raise ValueError("size must be non-negative")
        parts: list[bytes] = []
        got = 0
        may_block = True
        with self._pipe._cond:
            while got < size:
                if not self._pending:
                    chunk = self._take_chunk(may_block)
                    if chunk is None:
                        break
                    self._pending = chunk
                piece = self._pending[: size - got]
                self._pending = self._pending[len(piece):]
                parts.append(piece)
                got += len(piece)
                may_block = False
        return b"".join(parts)

    def _take_chunk(self, may_block: bool) -> bytes | None:
        pipe = self._pipe
        cond = pipe._cond
        while True:
            if self._rq:
                chunk = self._rq.popleft()
                cond.notify_all()
                return chunk
            if not may_block or pipe._stopped:
                return None
            remaining = _remaining(self._read_deadline)
            if remaining is not None and remaining <= 0:
                raise PipeTimeoutError()
            cond.wait(remaining)

    def close(self) -> None:
        """Close the whole pipe."""
        self._pipe.close()

    def local_addr(self) -> _PipeAddr:
        return _PipeAddr()

    def remote_addr(self) -> _PipeAddr:
        return _PipeAddr()

    def set_deadline(self, deadline: float | datetime | None) -> None:
        """Set both read and write deadlines; None disables them."""
        self.set_read_deadline(deadline)
        self.set_write_deadline(deadline)

    def set_read_deadline(self, deadline: float | datetime | None) -> None:
        """Set the read deadline as a time.time() value or datetime; None disables it."""
        with self._pipe._cond:
            self._read_deadline = _to_timestamp(deadline)
            self._pipe._cond.notify_all()

    def set_write_deadline(self, deadline: float | datetime | None) -> None:
        """Set the write deadline as a time.time() value or datetime; None disables it."""
        with self._pipe._cond:
            self._write_deadline = _to_timestamp(deadline)
            self._pipe._cond.notify_all()

    def __enter__(self) -> PipeConn:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()