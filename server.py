"""Main HTTP server entry point and connection lifecycle orchestration."""

from __future__ import annotations

import argparse
import json
import logging
import socket
import threading
import time

from config import (
    HOST,
    KEEPALIVE_TIMEOUT_SECS,
    LOG_FORMAT,
    PORT,
    PROJECT_ROOT,
    REQUEST_QUEUE_SIZE,
    WORKER_COUNT,
    ServerConfig,
)
from handlers.static_handlers import apply_security_headers, handle_static_request, html_error
from request import HTTPRequest, HTTPRequestParseError
from response import HTTPResponse, error_response
from socket_handler import (
    HTTPReadError,
    HeaderTooLargeError,
    MalformedRequestError,
    PayloadTooLargeError,
    SocketTimeoutError,
    finish_and_discard_input,
    read_http_request_message,
    write_http_response_message,
)
from thread_pool import ThreadPool

logger = logging.getLogger(__name__)

READ_ERROR_STATUS: dict[type[Exception], int] = {
    PayloadTooLargeError: 413,
    HeaderTooLargeError: 431,
    SocketTimeoutError: 408,
    MalformedRequestError: 400,
}


class StaticHTTPServer:
    def __init__(self, config: ServerConfig) -> None:
        self.config = config
        self.host = config.host
        self.port = config.port

        self._server_socket: socket.socket | None = None
        self._pool: ThreadPool | None = None
        self._running = False
        self._ready = threading.Event()

    def wait_until_ready(self, timeout: float | None = None) -> bool:
        return self._ready.wait(timeout)

    def start(self) -> None:
        """Bind the listener and hand accepted connections to the worker pool."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server_socket:
            self._server_socket = server_socket
            server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            server_socket.bind((self.host, self.port))
            server_socket.listen(128)
            server_socket.settimeout(0.2)
            self.port = server_socket.getsockname()[1]
            self._pool = ThreadPool(
                worker_count=self.config.worker_count,
                queue_size=self.config.request_queue_size,
                handler=self._handle_client,
            )
            self._pool.start()

            logger.info("Server running at http://%s:%s", self.host, self.port)
            logger.info("Serving: %s", self.config.project_root / self.config.default_document)

            self._running = True
            self._ready.set()
            try:
                while self._running:
                    try:
                        client_socket, address = server_socket.accept()
                    except socket.timeout:
                        continue
                    except OSError:
                        break

                    if self._pool is None or not self._pool.submit(client_socket, address):
                        self._send_queue_full_response(client_socket, address)
            finally:
                if self._pool is not None:
                    self._pool.shutdown()
                    self._pool = None

    def stop(self) -> None:
        self._running = False
        if self._server_socket is not None:
            self._server_socket.close()
            self._server_socket = None

    def _send_queue_full_response(
        self, client_socket: socket.socket, address: tuple[str, int]
    ) -> None:
        with client_socket:
            started_at = time.perf_counter()
            response = self._protocol_error(503)
            response.headers.setdefault("Connection", "close")
            try:
                bytes_sent = write_http_response_message(client_socket, response)
            except OSError:
                return
            finish_and_discard_input(client_socket)
            self._record_and_log(
                address=address,
                method="-",
                path="-",
                response=response,
                bytes_in=0,
                bytes_out=bytes_sent,
                started_at=started_at,
            )

    def _handle_client(self, client_socket: socket.socket, address: tuple[str, int]) -> None:
        with client_socket:
            client_socket.settimeout(
                min(self.config.socket_timeout_secs, self.config.keepalive_timeout_secs)
            )
            max_requests = self.config.max_keepalive_requests
            request_count = 0
            carry = b""
            while request_count < max_requests:
                started_at = time.perf_counter()
                try:
                    raw_request, carry = read_http_request_message(client_socket, carry)
                except HTTPReadError as exc:
                    if isinstance(exc, SocketTimeoutError) and request_count > 0:
                        return
                    self._reply_and_close(
                        client_socket,
                        address,
                        self._protocol_error(READ_ERROR_STATUS[type(exc)]),
                        started_at=started_at,
                    )
                    return
                except OSError:
                    return

                if not raw_request:
                    return

                try:
                    request = HTTPRequest.from_bytes(raw_request)
                except HTTPRequestParseError as exc:
                    logger.debug("Rejected request from %s: %s", address[0], exc)
                    self._reply_and_close(
                        client_socket,
                        address,
                        self._protocol_error(exc.status_code),
                        started_at=started_at,
                        bytes_in=len(raw_request),
                    )
                    return

                request_count += 1
                response = self._dispatch(request)
                should_close = (not request.keep_alive) or request_count >= max_requests
                if should_close:
                    response.headers.setdefault("Connection", "close")
                else:
                    response.headers.setdefault("Connection", "keep-alive")
                    response.headers.setdefault(
                        "Keep-Alive",
                        (
                            f"timeout={self.config.keepalive_timeout_secs}, "
                            f"max={max_requests - request_count}"
                        ),
                    )

                try:
                    bytes_sent = write_http_response_message(client_socket, response)
                except OSError:
                    return

                self._record_and_log(
                    address=address,
                    method=request.method,
                    path=request.path,
                    response=response,
                    bytes_in=len(raw_request),
                    bytes_out=bytes_sent,
                    started_at=started_at,
                )
                if should_close:
                    return

    def _reply_and_close(
        self,
        client_socket: socket.socket,
        address: tuple[str, int],
        response: HTTPResponse,
        *,
        started_at: float,
        bytes_in: int = 0,
    ) -> None:
        response.headers.setdefault("Connection", "close")
        try:
            bytes_sent = write_http_response_message(client_socket, response)
        except OSError:
            return
        finish_and_discard_input(client_socket)
        self._record_and_log(
            address=address,
            method="-",
            path="-",
            response=response,
            bytes_in=bytes_in,
            bytes_out=bytes_sent,
            started_at=started_at,
        )

    def _dispatch(self, request: HTTPRequest) -> HTTPResponse:
        try:
            return handle_static_request(request, self.config)
        except Exception:
            logger.exception("Unhandled error while serving %s", request.path)
            return apply_security_headers(html_error(500, "<h1>500 - Internal Server Error</h1>"))

    def _protocol_error(self, status_code: int) -> HTTPResponse:
        return apply_security_headers(error_response(status_code))

    def _record_and_log(
        self,
        *,
        address: tuple[str, int],
        method: str,
        path: str,
        response: HTTPResponse,
        bytes_in: int,
        bytes_out: int,
        started_at: float,
    ) -> None:
        duration_ms = (time.perf_counter() - started_at) * 1000
        event = {
            "client": address[0],
            "method": method,
            "path": path,
            "status": response.status_code,
            "bytes_in": bytes_in,
            "bytes_out": bytes_out,
            "latency_ms": round(duration_ms, 3),
        }
        if self.config.log_format == "json":
            logger.info(json.dumps(event, sort_keys=True))
            return

        logger.info(
            "client=%s method=%s path=%s status=%s bytes_in=%s bytes_out=%s duration_ms=%.2f",
            event["client"],
            event["method"],
            event["path"],
            event["status"],
            event["bytes_in"],
            event["bytes_out"],
            duration_ms,
        )


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Serve static assets from a project directory")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", type=int, default=PORT)
    parser.add_argument("--root", default=PROJECT_ROOT, help="Directory to serve files from")
    parser.add_argument("--workers", type=int, default=WORKER_COUNT)
    parser.add_argument("--queue-size", type=int, default=REQUEST_QUEUE_SIZE)
    parser.add_argument("--keepalive-timeout", type=int, default=KEEPALIVE_TIMEOUT_SECS)
    parser.add_argument("--log-format", choices=["plain", "json"], default=LOG_FORMAT)
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ServerConfig:
    return ServerConfig.from_root(
        args.root,
        host=args.host,
        port=args.port,
        worker_count=args.workers,
        request_queue_size=args.queue_size,
        keepalive_timeout_secs=args.keepalive_timeout,
        log_format=args.log_format,
    )


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    server = StaticHTTPServer(build_config(args))
    try:
        server.start()
    except KeyboardInterrupt:
        server.stop()


if __name__ == "__main__":
    main()
