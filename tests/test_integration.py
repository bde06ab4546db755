"""Socket-level integration tests for the static asset server."""

import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from config import MAX_BODY_BYTES, ServerConfig
from server import StaticHTTPServer

SECURITY_HEADERS = {
    "x-content-type-options": "nosniff",
    "x-frame-options": "DENY",
    "x-xss-protection": "1; mode=block",
    "referrer-policy": "strict-origin-when-cross-origin",
}


def _make_site(tmp_path: Path) -> Path:
    root = tmp_path / "site"
    (root / "css").mkdir(parents=True)
    (root / "index.html").write_text("<!doctype html><h1>Home</h1>", encoding="utf-8")
    (root / "css" / "main.css").write_text("h1 { margin: 0; }", encoding="utf-8")
    (root / "data.json").write_text('{"ok": true}', encoding="utf-8")
    (root / "deploy.sh").write_text("#!/bin/sh\nrm -rf /\n", encoding="utf-8")
    (tmp_path / "secret.html").write_text("<p>outside</p>", encoding="utf-8")
    return root


def _start_server(tmp_path: Path, **overrides: object) -> tuple[StaticHTTPServer, threading.Thread]:
    config = ServerConfig.from_root(_make_site(tmp_path), port=0, **overrides)
    server = StaticHTTPServer(config)
    thread = threading.Thread(target=server.start, daemon=True)
    thread.start()

    if not server.wait_until_ready(timeout=3):
        raise RuntimeError("Server did not bind to a port")

    return server, thread


def _stop_server(server: StaticHTTPServer, thread: threading.Thread) -> None:
    server.stop()
    thread.join(timeout=3.0)


def _recv_all(sock: socket.socket) -> bytes:
    chunks = []
    while True:
        chunk = sock.recv(8192)
        if not chunk:
            return b"".join(chunks)
        chunks.append(chunk)


def _get(server: StaticHTTPServer, target: str, method: str = "GET") -> bytes:
    payload = f"{method} {target} HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n"
    with socket.create_connection((server.host, server.port), timeout=2.0) as client:
        client.sendall(payload.encode("latin-1"))
        return _recv_all(client)


def _send_raw(server: StaticHTTPServer, payload: bytes) -> bytes:
    with socket.create_connection((server.host, server.port), timeout=2.0) as client:
        client.sendall(payload)
        return _recv_all(client)


def _parse(raw_response: bytes) -> tuple[int, dict[str, str], bytes]:
    head, body = raw_response.split(b"\r\n\r\n", 1)
    lines = head.decode("iso-8859-1").split("\r\n")
    status_code = int(lines[0].split(" ")[1])
    headers: dict[str, str] = {}
    for line in lines[1:]:
        key, value = line.split(": ", 1)
        headers[key.lower()] = value
    return status_code, headers, body


def _assert_security_headers(headers: dict[str, str]) -> None:
    for name, value in SECURITY_HEADERS.items():
        assert headers[name] == value


def test_root_serves_index(tmp_path: Path) -> None:
    server, thread = _start_server(tmp_path)
    try:
        status_code, headers, body = _parse(_get(server, "/"))
    finally:
        _stop_server(server, thread)

    assert status_code == 200
    assert headers["content-type"] == "text/html; charset=utf-8"
    assert headers["cache-control"] == "public, max-age=3600"
    assert body == b"<!doctype html><h1>Home</h1>"
    _assert_security_headers(headers)


def test_status_codes_for_each_outcome(tmp_path: Path) -> None:
    server, thread = _start_server(tmp_path)
    try:
        outcomes = {
            target: _parse(_get(server, target))
            for target in [
                "/css/main.css",
                "/data.json?cache=1",
                "/../secret.html",
                "/..%2f..%2fetc%2fpasswd",
                "/css/..\\..\\secret.html",
                "/deploy.sh",
                "/missing.html",
            ]
        }
    finally:
        _stop_server(server, thread)

    assert outcomes["/css/main.css"][0] == 200
    assert outcomes["/css/main.css"][2] == b"h1 { margin: 0; }"
    assert outcomes["/data.json?cache=1"][1]["content-type"] == "application/json; charset=utf-8"
    assert outcomes["/../secret.html"][:3:2] == (403, b"<h1>403 - Forbidden</h1>")
    assert outcomes["/..%2f..%2fetc%2fpasswd"][0] == 403
    assert outcomes["/css/..\\..\\secret.html"][0] == 403
    assert outcomes["/deploy.sh"][:3:2] == (403, b"<h1>403 - Forbidden File Type</h1>")
    assert outcomes["/missing.html"][:3:2] == (404, b"<h1>404 - File Not Found</h1>")
    for _status, headers, _body in outcomes.values():
        _assert_security_headers(headers)


def test_head_request_returns_headers_only(tmp_path: Path) -> None:
    server, thread = _start_server(tmp_path)
    try:
        status_code, headers, body = _parse(_get(server, "/css/main.css", method="HEAD"))
    finally:
        _stop_server(server, thread)

    assert status_code == 200
    assert headers["content-length"] == str(len(b"h1 { margin: 0; }"))
    assert body == b""


def test_unsupported_method_returns_405(tmp_path: Path) -> None:
    server, thread = _start_server(tmp_path)
    try:
        status_code, headers, _body = _parse(_get(server, "/", method="DELETE"))
    finally:
        _stop_server(server, thread)

    assert status_code == 405
    assert headers["allow"] == "GET, HEAD"
    _assert_security_headers(headers)


def test_malformed_request_returns_400_with_security_headers(tmp_path: Path) -> None:
    server, thread = _start_server(tmp_path)
    try:
        status_code, headers, _body = _parse(_send_raw(server, b"BROKEN\r\n\r\n"))
    finally:
        _stop_server(server, thread)

    assert status_code == 400
    assert headers["connection"] == "close"
    _assert_security_headers(headers)


def test_oversized_body_returns_413(tmp_path: Path) -> None:
    server, thread = _start_server(tmp_path)
    payload = (
        b"POST / HTTP/1.1\r\n"
        b"Host: localhost\r\n"
        + f"Content-Length: {MAX_BODY_BYTES + 1}\r\n".encode("ascii")
        + b"\r\n"
    )
    try:
        response = _send_raw(server, payload)
    finally:
        _stop_server(server, thread)

    assert response.startswith(b"HTTP/1.1 413 Payload Too Large")


def test_keep_alive_serves_pipelined_requests(tmp_path: Path) -> None:
    server, thread = _start_server(tmp_path)
    payload = (
        b"GET /css/main.css HTTP/1.1\r\nHost: localhost\r\n\r\n"
        b"GET /data.json HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n"
    )
    try:
        response = _send_raw(server, payload)
    finally:
        _stop_server(server, thread)

    assert response.count(b"HTTP/1.1 200 OK") == 2
    assert b"Connection: keep-alive\r\n" in response
    assert response.endswith(b'{"ok": true}')


def test_concurrent_requests(tmp_path: Path) -> None:
    server, thread = _start_server(tmp_path, worker_count=4)
    try:
        with ThreadPoolExecutor(max_workers=20) as executor:
            futures = [executor.submit(_get, server, "/") for _ in range(20)]
            responses = [future.result() for future in futures]
    finally:
        _stop_server(server, thread)

    assert len(responses) == 20
    assert all(response.startswith(b"HTTP/1.1 200 OK") for response in responses)


def test_repeated_requests_return_identical_bodies(tmp_path: Path) -> None:
    server, thread = _start_server(tmp_path)
    try:
        first = _parse(_get(server, "/data.json"))
        second = _parse(_get(server, "/data.json"))
    finally:
        _stop_server(server, thread)

    first[1].pop("date")
    second[1].pop("date")
    assert first == second


class _SlowServer(StaticHTTPServer):
    def _handle_client(self, client_socket: socket.socket, address: tuple[str, int]) -> None:
        time.sleep(0.3)
        super()._handle_client(client_socket, address)


@pytest.mark.parametrize("attempt", range(3))
def test_server_returns_503_when_queue_is_saturated(tmp_path: Path, attempt: int) -> None:
    config = ServerConfig.from_root(
        _make_site(tmp_path), port=0, worker_count=1, request_queue_size=1
    )
    server = _SlowServer(config)
    thread = threading.Thread(target=server.start, daemon=True)
    thread.start()
    assert server.wait_until_ready(timeout=3)
    try:
        with ThreadPoolExecutor(max_workers=3) as executor:
            futures = [executor.submit(_get, server, "/") for _ in range(3)]
            responses = [future.result() for future in futures]
    finally:
        _stop_server(server, thread)

    rejected = [r for r in responses if r.startswith(b"HTTP/1.1 503 Service Unavailable")]
    assert rejected
    _assert_security_headers(_parse(rejected[0])[1])
