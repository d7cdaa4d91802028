"""Delivery strategies: when and how a formatted document reaches the sink.

    SyncStrategy   blocks the caller for one index request; errors raise.
    AsyncStrategy  hands the document to a bounded worker pool; errors go to
                   the error reporter.
    BulkStrategy   buffers into a BulkProcessor; errors go to the error
                   reporter.

All strategies share one ``Target`` with the hook: client, index, document
type, error reporter and the cancellation event set when the hook closes.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, runtime_checkable

from elasticlog.bulk import BulkOptions, BulkProcessor, BulkProcessorStats
from elasticlog.client import DEFAULT_DOC_TYPE, BulkIndexRequest, SinkClient
from elasticlog.errors import DeliveryError, ErrorReporter, ShutdownError, SinkError
from elasticlog.formatter import Document
from elasticlog.logging import delivering, get_logger

logger = get_logger(__name__)

_POLL_INTERVAL = 0.1


@dataclass
class Target:
    client: SinkClient
    index: str
    doc_type: str = DEFAULT_DOC_TYPE
    error_reporter: ErrorReporter | None = None
    cancelled: threading.Event = field(default_factory=threading.Event)

    def report(self, message: str, error: BaseException) -> None:
        """Route an error to the reporter; discard it when there is none."""
        if self.error_reporter is None:
            logger.debug("error.discarded", reason=message, error=str(error))
            return
        try:
            self.error_reporter(message, error)
        except Exception:
            logger.exception("error_reporter.failed", reason=message)


@runtime_checkable
class DeliveryStrategy(Protocol):
    """Accept one formatted document and decide how it reaches the sink."""

    name: str

    def deliver(self, document: Document) -> None: ...

    def close(self, timeout: float | None = None) -> None: ...


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


class SyncStrategy:
    name = "sync"

    def __init__(self, target: Target) -> None:
        self.target = target

    def deliver(self, document: Document) -> None:
        target = self.target
        if target.cancelled.is_set():
            raise DeliveryError(target.index, "hook is closed")
        try:
            with delivering():
                target.client.index(target.index, document, target.doc_type)
        except SinkError as e:
            raise DeliveryError(target.index, str(e), e) from e

    def close(self, timeout: float | None = None) -> None:
        pass


# ---------------------------------------------------------------------------
# Async
# ---------------------------------------------------------------------------


class OverflowPolicy(str, Enum):
    """What ``AsyncStrategy.deliver`` does when the queue is full."""

    BLOCK = "block"  # wait for room
    DROP_OLDEST = "drop_oldest"  # evict the oldest queued document
    REJECT = "reject"  # discard the new document


class AsyncStrategy:
    """Fire-and-forget delivery through a fixed pool of worker threads.

    No ordering guarantee across calls. Failures, drops and rejections are
    reported through the target's error reporter, never to the caller.
    """

    name = "async"

    def __init__(
        self,
        target: Target,
        workers: int = 4,
        queue_size: int = 1000,
        overflow: OverflowPolicy | str = OverflowPolicy.DROP_OLDEST,
        close_timeout: float = 5.0,
    ) -> None:
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        if queue_size < 1:
            raise ValueError(f"queue_size must be >= 1, got {queue_size}")
        self.target = target
        self.overflow = OverflowPolicy(overflow)
        self.close_timeout = close_timeout
        self._sync = SyncStrategy(target)
        self._queue: queue.Queue[Document] = queue.Queue(maxsize=queue_size)
        self._idle = threading.Condition()
        self._pending = 0
        self._closed = False
        self._stop = threading.Event()
        self._workers = [
            threading.Thread(target=self._work, name=f"elasticlog-async-{i}", daemon=True)
            for i in range(workers)
        ]
        for worker in self._workers:
            worker.start()

    def deliver(self, document: Document) -> None:
        # _closed and _pending change together so close() never misses a put.
        with self._idle:
            closed = self._closed
            if not closed:
                self._pending += 1
        if closed:
            self.target.report(
                "couldn't send log to elastic",
                DeliveryError(self.target.index, "async delivery is closed"),
            )
            return

        if self.overflow is OverflowPolicy.BLOCK:
            while True:
                try:
                    self._queue.put(document, timeout=_POLL_INTERVAL)
                    break
                except queue.Full:
                    if self._stop.is_set():
                        self._done()
                        self._report_dropped(1)
                        return
        elif self.overflow is OverflowPolicy.REJECT:
            try:
                self._queue.put_nowait(document)
            except queue.Full:
                self._done()
                self.target.report(
                    "couldn't queue log",
                    DeliveryError(self.target.index, "async queue full, log rejected"),
                )
                return
        else:
            while True:
                try:
                    self._queue.put_nowait(document)
                    break
                except queue.Full:
                    pass
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    continue
                self._done()
                self.target.report(
                    "couldn't queue log",
                    DeliveryError(self.target.index, "async queue full, oldest log dropped"),
                )

        # A put that lost the race with close() lands after the workers stopped.
        if self._stop.is_set():
            self._report_dropped(self._drop_queued())

    def _done(self, count: int = 1) -> None:
        with self._idle:
            self._pending -= count
            self._idle.notify_all()

    def _drop_queued(self) -> int:
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
            dropped += 1
        if dropped:
            self._done(dropped)
        return dropped

    def _report_dropped(self, dropped: int) -> None:
        if dropped:
            self.target.report(
                "couldn't flush",
                ShutdownError(f"{dropped} queued log(s) dropped on close", pending=dropped),
            )

    def _work(self) -> None:
        while True:
            try:
                document = self._queue.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                if self._stop.is_set():
                    return
                continue
            try:
                self._sync.deliver(document)
            except Exception as e:
                self.target.report("couldn't send log to elastic", e)
            finally:
                self._done()

    @property
    def pending(self) -> int:
        with self._idle:
            return self._pending

    def close(self, timeout: float | None = None) -> None:
        """Stop accepting, let the pool drain until the deadline, stop workers."""
        with self._idle:
            if self._closed:
                return
            self._closed = True
        limit = self.close_timeout if timeout is None else timeout
        deadline = time.monotonic() + limit

        with self._idle:
            drained = self._idle.wait_for(
                lambda: self._pending <= 0, timeout=max(0.0, deadline - time.monotonic())
            )

        self._stop.set()
        dropped = 0 if drained else self._drop_queued()
        for worker in self._workers:
            worker.join(max(0.0, deadline - time.monotonic()))
        self._report_dropped(dropped)


# ---------------------------------------------------------------------------
# Bulk
# ---------------------------------------------------------------------------


class BulkStrategy:
    """Buffer documents into a BulkProcessor; it commits on its own schedule."""

    name = "bulk"

    def __init__(self, target: Target, options: BulkOptions | None = None) -> None:
        self.target = target
        self.processor = BulkProcessor(target.client, options, error_reporter=target.report)
        self.processor.start()

    def deliver(self, document: Document) -> None:
        target = self.target
        self.processor.add(BulkIndexRequest(target.index, document, target.doc_type))

    def flush(self, timeout: float | None = None) -> bool:
        return self.processor.flush(timeout)

    def stats(self) -> BulkProcessorStats:
        return self.processor.stats()

    def close(self, timeout: float | None = None) -> None:
        self.processor.close(timeout)
