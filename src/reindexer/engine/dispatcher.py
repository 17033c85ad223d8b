"""Bounded worker pool that detaches reindex walks from the caller."""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

from reindexer.core.errors import InternalError

if TYPE_CHECKING:
    from reindexer.entities.registry import EntityKey

logger = structlog.get_logger()


class DispatcherState(Enum):
    """Dispatcher lifecycle."""

    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class DispatcherStatus:
    """Point-in-time dispatcher counters."""

    state: DispatcherState
    queued: int
    running: int
    completed: int
    dropped: int

    @property
    def in_flight(self) -> int:
        return self.queued + self.running


class ReindexDispatcher:
    """
    Runs walks on a thread pool so the caller never waits on search I/O.

    Design:
    - Each submitted walk runs on one pool thread and owns its session
    - In-flight walks (queued + running) are capped at ``queue_max_size``;
      beyond that the newest request is dropped with a warning
    - A walk that raises is logged and counted as completed; nothing
      reaches the caller
    - No coalescing: two requests for the same root produce two walks
    """

    def __init__(self, max_workers: int = 2, queue_max_size: int = 1000) -> None:
        self.max_workers = max_workers
        self.queue_max_size = queue_max_size
        self._executor: ThreadPoolExecutor | None = None
        self._state = DispatcherState.STOPPED
        self._lock = threading.Lock()
        self._futures: set[Future[Any]] = set()
        self._queued = 0
        self._running = 0
        self._completed = 0
        self._dropped = 0

    def start(self) -> None:
        """Start the worker pool. Idempotent."""
        with self._lock:
            if self._executor is not None:
                return
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="reindexer-walk",
            )
            self._state = DispatcherState.RUNNING
        logger.info(
            "reindex_dispatcher_started",
            max_workers=self.max_workers,
            queue_max_size=self.queue_max_size,
        )

    def stop(self, wait: bool = True) -> None:
        """Stop accepting walks and shut the pool down.

        With ``wait=False`` queued walks are cancelled and running ones are
        abandoned to finish on their own.
        """
        with self._lock:
            executor = self._executor
            if executor is None:
                return
            self._state = DispatcherState.STOPPING

        executor.shutdown(wait=wait, cancel_futures=not wait)

        with self._lock:
            self._executor = None
            self._state = DispatcherState.STOPPED
        logger.info("reindex_dispatcher_stopped", completed=self._completed, dropped=self._dropped)

    @property
    def is_running(self) -> bool:
        return self._state == DispatcherState.RUNNING

    @property
    def status(self) -> DispatcherStatus:
        with self._lock:
            return DispatcherStatus(
                state=self._state,
                queued=self._queued,
                running=self._running,
                completed=self._completed,
                dropped=self._dropped,
            )

    def submit(self, key: EntityKey, walk: Callable[[EntityKey], Any]) -> Future[Any] | None:
        """Schedule ``walk(key)`` and return immediately.

        Returns the future, or None when the request was dropped.
        """
        with self._lock:
            if self._executor is None or self._state != DispatcherState.RUNNING:
                self._dropped += 1
                logger.warning("reindex_dropped", key=str(key), reason="dispatcher_not_running")
                return None
            if self._queued + self._running >= self.queue_max_size:
                self._dropped += 1
                logger.warning(
                    "reindex_dropped",
                    key=str(key),
                    reason="queue_full",
                    queue_max_size=self.queue_max_size,
                )
                return None
            self._queued += 1
            future = self._executor.submit(self._run, key, walk)
            self._futures.add(future)

        future.add_done_callback(self._forget)
        logger.debug("reindex_queued", key=str(key))
        return future

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for every walk submitted so far. True when all finished in time."""
        with self._lock:
            pending = set(self._futures)
        if not pending:
            return True
        _done, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def _run(self, key: EntityKey, walk: Callable[[EntityKey], Any]) -> Any:
        with self._lock:
            self._queued -= 1
            self._running += 1
        try:
            return walk(key)
        except Exception as e:
            error = InternalError.unexpected(str(e), key=str(key))
            logger.error("walk_crashed", key=str(key), error=error.to_dict(), exc_info=True)
            return None
        finally:
            with self._lock:
                self._running -= 1
                self._completed += 1

    def _forget(self, future: Future[Any]) -> None:
        with self._lock:
            self._futures.discard(future)
            if future.cancelled():
                self._queued -= 1
                self._dropped += 1
