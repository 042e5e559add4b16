import threading

import pytest

from fasthttpkit.inmemory_listener import InmemoryListener, ListenerClosedError


def test_inmemory_listener():
    ln = InmemoryListener()
    client_errors = []
    server_errors = []
    written = {}
    responses = {}
    requests = []

    def client(n):
        try:
            with ln.dial() as conn:
                req = f"request_{n}".encode()
                written[n] = conn.write(req)
                responses[n] = conn.read(30)
        except BaseException as exc:  # noqa: BLE001
            client_errors.append(exc)

    def server():
        conns = []
        try:
            while True:
                try:
                    conn = ln.accept()
                except ListenerClosedError:
                    return
                conns.append(conn)
                buf = conn.read(30)
                requests.append(buf)
                conn.write(b"response_" + buf[len(b"request_"):])
        except BaseException as exc:  # noqa: BLE001
            server_errors.append(exc)
        finally:
            for conn in conns:
                conn.close()

    clients = [threading.Thread(target=client, args=(i,), daemon=True) for i in range(10)]
    server_thread = threading.Thread(target=server, daemon=True)
    server_thread.start()
    for t in clients:
        t.start()
    for t in clients:
        t.join(1.0)
    assert [t for t in clients if t.is_alive()] == []
    assert client_errors == []
    assert written == {n: len(f"request_{n}") for n in range(10)}
    assert responses == {n: f"response_{n}".encode() for n in range(10)}

    with ln.dial() as conn:
        assert conn.write(b"request_extra") == len(b"request_extra")
        assert conn.read(30) == b"response_extra"

    ln.close()
    server_thread.join(1.0)
    assert not server_thread.is_alive()
    assert server_errors == []
    expected = [f"request_{n}".encode() for n in range(10)] + [b"request_extra"]
    assert sorted(requests) == sorted(expected)


def test_close_twice_raises():
    ln = InmemoryListener()
    ln.close()
    with pytest.raises(ListenerClosedError):
        ln.close()


def test_dial_after_close_raises():
    ln = InmemoryListener()
    ln.close()
    with pytest.raises(ListenerClosedError):
        ln.dial()


def test_accept_drains_queued_connections_after_close():
    ln = InmemoryListener()
    client = ln.dial()
    ln.close()
    server = ln.accept()
    client.write(b"ping")
    assert server.read(10) == b"ping"
    with pytest.raises(ListenerClosedError):
        ln.accept()


def test_accept_unblocks_on_close():
    ln = InmemoryListener()
    result = {}

    def acceptor():
        try:
            result["conn"] = ln.accept()
        except ListenerClosedError as exc:
            result["error"] = exc

    t = threading.Thread(target=acceptor, daemon=True)
    t.start()
    ln.close()
    t.join(1.0)
    assert not t.is_alive()
    assert "conn" not in result
    assert isinstance(result.get("error"), ListenerClosedError)
    with pytest.raises(ListenerClosedError):
        ln.accept()


def test_addr():
    ln = InmemoryListener()
    addr = ln.addr()
    assert addr.name == "InmemoryListener"
    assert addr.network == "memory"
    assert str(addr) == "InmemoryListener"


def test_server_side_receives_client_writes():
    with InmemoryListener() as ln:
        client = ln.dial()
        server = ln.accept()
        assert server.write(b"hello") == 5
        assert client.read(5) == b"hello"
        client.close()
        assert server.read(5) == b""