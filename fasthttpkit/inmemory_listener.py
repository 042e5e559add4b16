"""In-memory listener that hands out pipe connections to dialers."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass

from fasthttpkit.pipeconns import PipeConn, PipeConns

_BACKLOG = 1024


class ListenerClosedError(OSError):
    """Raised when the listener has been closed."""


@dataclass(frozen=True)
class _ListenerAddr:
    name: str = "InmemoryListener"
    network: str = "memory"

    def __str__(self) -> str:
        return self.name


class InmemoryListener:
    """Listener whose accept() returns the server side of each dial()."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._closed = False
        self._conns: deque[PipeConn] = deque()

    def accept(self) -> PipeConn:
        """Wait for and return the next server-side connection."""
        with self._cond:
            while not self._conns:
                if self._closed:
                    raise ListenerClosedError(
                        "InmemoryListener is already closed: use of closed network connection"
                    )
                self._cond.wait()
            conn = self._conns.popleft()
            self._cond.notify_all()
            return conn

    def close(self) -> None:
        """Close the listener; closing twice raises ListenerClosedError."""
        with self._cond:
            if self._closed:
                raise ListenerClosedError("InmemoryListener is already closed")
            self._closed = True
            self._cond.notify_all()

    def addr(self) -> _ListenerAddr:
        return _ListenerAddr()

    def dial(self) -> PipeConn:
        """Create a connection, queue its server side and return the client side."""
        pipe = PipeConns()
        client, server = pipe.conn1(), pipe.conn2()
        with self._cond:
            while not self._closed and len(self._conns) >= _BACKLOG:
                self._cond.wait()
            if not self._closed:
                self._conns.append(server)
                self._cond.notify_all()
                return client
        server.close()
        client.close()
        raise ListenerClosedError("InmemoryListener is already closed")

    def __enter__(self) -> InmemoryListener:
        return self

    def __exit__(self, *exc_info: object) -> None:
        if not self._closed:
            self.close()