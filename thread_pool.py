"""Bounded worker pool for accepted client connections."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

ClientAddress = tuple[str, int]
ClientJob = tuple[object, ClientAddress]
ClientHandler = Callable[[object, ClientAddress], None]


class ThreadPool:
    """Fixed set of worker threads draining a bounded connection queue."""

    def __init__(self, worker_count: int, queue_size: int, handler: ClientHandler) -> None:
        if worker_count <= 0:
            raise ValueError("worker_count must be positive")
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")

        self._handler = handler
        self._worker_count = worker_count
        self._queue: queue.Queue[ClientJob | None] = queue.Queue(maxsize=queue_size)
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._shutdown_lock = threading.Lock()
        self._shutdown_started = False
        self._pending_jobs = 0
        self._drain_condition = threading.Condition()

    @property
    def worker_count(self) -> int:
        return self._worker_count

    @property
    def threads(self) -> tuple[threading.Thread, ...]:
        return tuple(self._threads)

    def start(self) -> None:
        for index in range(self._worker_count):
            worker = threading.Thread(
                target=self._worker_loop,
                name=f"static-worker-{index}",
                daemon=True,
            )
            self._threads.append(worker)
            worker.start()

    def submit(self, client_socket: object, address: ClientAddress) -> bool:
        """Queue a connection; False means the caller must reject it."""
        if self._stop_event.is_set():
            return False
        with self._drain_condition:
            self._pending_jobs += 1
        try:
            self._queue.put_nowait((client_socket, address))
        except queue.Full:
            self._job_finished()
            return False
        return True

    def wait_for_drain(self, timeout: float | None = None) -> bool:
        """Block until every submitted connection has been handled."""
        with self._drain_condition:
            return self._drain_condition.wait_for(lambda: self._pending_jobs == 0, timeout)

    def shutdown(self, *, wait: bool = True, timeout: float = 1.0) -> None:
        with self._shutdown_lock:
            if self._shutdown_started:
                return
            self._shutdown_started = True

        if wait and not self.wait_for_drain(timeout):
            logger.warning("Worker queue not drained after %.1fs; stopping anyway", timeout)

        self._stop_event.set()
        for _ in self._threads:
            try:
                self._queue.put_nowait(None)
            except queue.Full:
                break

        for thread in self._threads:
            thread.join(timeout=timeout)

        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is not None:
                _close_client(item[0])

    def _job_finished(self) -> None:
        with self._drain_condition:
            self._pending_jobs -= 1
            self._drain_condition.notify_all()

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                item = self._queue.get(timeout=0.2)
            except queue.Empty:
                continue
            try:
                if item is None:
                    return
                client_socket, address = item
                self._handler(client_socket, address)
            except Exception:
                logger.exception("Unhandled error while serving connection")
            finally:
                if item is not None:
                    self._job_finished()


def _close_client(client_socket: object) -> None:
    close = getattr(client_socket, "close", None)
    if close is None:
        return
    try:
        close()
    except OSError:
        logger.debug("Ignoring error while closing abandoned connection", exc_info=True)
