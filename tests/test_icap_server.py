"""ICAP server over real sockets."""

import socket
import threading

import pytest

from blobkey.adapter import HeaderAdapter
from blobkey.patterns import PatternSet
from blobkey.server import ICAPServer

from conftest import DOCKER_R2_URL


@pytest.fixture
def icap_server():
    server = ICAPServer(("127.0.0.1", 0), HeaderAdapter(PatternSet.default()))
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


def _connect(server) -> socket.socket:
    sock = socket.create_connection(server.server_address, timeout=5)
    return sock


def _read_response(rfile) -> tuple[int, dict, bytes]:
    status_line = rfile.readline().decode("latin-1")
    assert status_line.startswith("ICAP/1.0 ")
    status = int(status_line.split(" ")[1])
    headers = {}
    while True:
        line = rfile.readline().decode("latin-1").rstrip("\r\n")
        if not line:
            break
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    payload = b""
    sections = [part.strip().split("=") for part in headers["encapsulated"].split(",")]
    if sections[0][0] == "req-hdr":
        payload = rfile.read(int(sections[1][1]))
    return status, headers, payload


def _reqmod(url: str, *, allow_204: bool = True, connection_close: bool = False) -> bytes:
    http_head = (
        f"GET {url} HTTP/1.1\r\n"
        "Host: cdn\r\n"
        "Authorization: Bearer X\r\n"
        "X-Foo: bar\r\n"
        "\r\n"
    ).encode()
    extra = b""
    if allow_204:
        extra += b"Allow: 204\r\n"
    if connection_close:
        extra += b"Connection: close\r\n"
    return (
        b"REQMOD icap://127.0.0.1/reqmod ICAP/1.0\r\nHost: 127.0.0.1\r\n"
        + extra
        + f"Encapsulated: req-hdr=0, null-body={len(http_head)}\r\n\r\n".encode()
        + http_head
    )


def test_options(icap_server):
    with _connect(icap_server) as sock:
        sock.sendall(b"OPTIONS icap://127.0.0.1/reqmod ICAP/1.0\r\nHost: 127.0.0.1\r\nEncapsulated: null-body=0\r\n\r\n")
        status, headers, _ = _read_response(sock.makefile("rb"))
    assert status == 200
    assert headers["methods"] == "REQMOD"
    assert headers["preview"] == "0"
    assert headers["allow"] == "204"


def test_persistent_connection(icap_server):
    with _connect(icap_server) as sock:
        rfile = sock.makefile("rb")
        sock.sendall(_reqmod(DOCKER_R2_URL + "?X-Amz-Signature=abc"))
        status, _, payload = _read_response(rfile)
        assert status == 200
        assert b"Authorization" not in payload
        assert b"X-Foo: bar\r\n" in payload
        assert payload.startswith(f"GET {DOCKER_R2_URL}?X-Amz-Signature=abc HTTP/1.1\r\n".encode())

        sock.sendall(_reqmod("https://example.com/other"))
        status, _, payload = _read_response(rfile)
        assert status == 204
        assert payload == b""


def test_pipelined_requests(icap_server):
    with _connect(icap_server) as sock:
        rfile = sock.makefile("rb")
        sock.sendall(_reqmod("https://example.com/a") + _reqmod(DOCKER_R2_URL, allow_204=False))
        assert _read_response(rfile)[0] == 204
        status, _, payload = _read_response(rfile)
        assert status == 200
        assert b"Authorization" not in payload


def test_connection_close(icap_server):
    with _connect(icap_server) as sock:
        rfile = sock.makefile("rb")
        sock.sendall(_reqmod("https://example.com/a", connection_close=True))
        status, headers, _ = _read_response(rfile)
        assert status == 204
        assert headers["connection"] == "close"
        assert rfile.read() == b""


def test_malformed_request_closes_connection(icap_server):
    with _connect(icap_server) as sock:
        rfile = sock.makefile("rb")
        sock.sendall(b"REQMOD icap://127.0.0.1/reqmod ICAP/9.9\r\n\r\n")
        status, headers, _ = _read_response(rfile)
        assert status == 505
        assert headers["connection"] == "close"
        assert rfile.read() == b""


def test_concurrent_connections(icap_server):
    results = []
    lock = threading.Lock()

    def worker(n):
        url = DOCKER_R2_URL if n % 2 else f"https://example.com/{n}"
        with _connect(icap_server) as sock:
            sock.sendall(_reqmod(url))
            status, _, _ = _read_response(sock.makefile("rb"))
        with lock:
            results.append((n, status))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)
    assert sorted(results) == [(n, 200 if n % 2 else 204) for n in range(20)]
