"""Bulk flush engine: buffer index requests, commit them in batches.

Architecture:
    producers ── add() ──▶ buffer (deque, guarded by one Condition)
                               │  taken out under the lock, one batch at a time
                               ▼
                     N worker threads ── commit(batch) ──▶ SinkClient.bulk()
                               ▲
    flusher thread ── every flush_interval ── marks a flush request

A batch is cut when any trigger fires:
    - the buffer holds ``bulk_actions`` requests
    - the buffer holds ``bulk_size`` bytes of NDJSON
    - ``flush_interval`` elapsed (periodic flusher)
    - ``flush()`` or ``close()`` was called

Retry:
    Transport failures retry the whole batch. Per-item failures whose status
    is in ``retry_item_status_codes`` are retried; other failures are dropped.
    The backoff policy decides the delay and when to give up. Abandoned
    requests go to the error reporter as ``FlushError``.

Shutdown is two-phase: stop accepting and stop the flusher, then drain
everything within ``close_timeout`` seconds. Whatever is left after the
deadline is dropped and reported as ``ShutdownError``.
"""

from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, replace

from elasticlog.backoff import Backoff, default_backoff
from elasticlog.client import BulkIndexRequest, BulkResponse, SinkClient
from elasticlog.errors import (
    DeliveryError,
    ErrorReporter,
    FlushError,
    ShutdownError,
)
from elasticlog.logging import delivering, get_logger

logger = get_logger(__name__)

DEFAULT_RETRY_ITEM_STATUS_CODES: tuple[int, ...] = (408, 429, 503, 507)

BulkBeforeFunc = Callable[[int, list[BulkIndexRequest]], None]
BulkAfterFunc = Callable[
    [int, list[BulkIndexRequest], BulkResponse | None, BaseException | None], None
]


@dataclass
class BulkOptions:
    """Flush thresholds and callbacks.

    ``bulk_actions`` / ``bulk_size`` <= 0 and ``flush_interval`` None disable
    that trigger. ``retry_item_status_codes=None`` means the defaults; an empty
    tuple disables per-item retry.
    """

    name: str = "elasticlog"
    workers: int = 1
    bulk_actions: int = 1000
    bulk_size: int = 5 << 20
    flush_interval: float | None = None
    backoff: Backoff | None = None
    retry_item_status_codes: tuple[int, ...] | None = None
    before: BulkBeforeFunc | None = None
    after: BulkAfterFunc | None = None
    stats: bool = False
    close_timeout: float = 10.0

    def __post_init__(self) -> None:
        if self.workers < 1:
            raise ValueError(f"workers must be >= 1, got {self.workers}")
        if self.flush_interval is not None and self.flush_interval <= 0:
            raise ValueError(f"flush_interval must be > 0, got {self.flush_interval}")
        if self.close_timeout < 0:
            raise ValueError(f"close_timeout must be >= 0, got {self.close_timeout}")


@dataclass
class BulkProcessorStats:
    flushed: int = 0  # flush requests (explicit, periodic, close)
    committed: int = 0  # bulk calls sent, retries included
    indexed: int = 0  # requests sent, retries included
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    dropped: int = 0


class BulkProcessor:
    """Thread-based batching processor on top of ``SinkClient.bulk``."""

    def __init__(
        self,
        client: SinkClient,
        options: BulkOptions | None = None,
        error_reporter: ErrorReporter | None = None,
    ) -> None:
        self.client = client
        self.options = options or BulkOptions()
        self.error_reporter = error_reporter
        self._backoff = self.options.backoff or default_backoff()
        codes = self.options.retry_item_status_codes
        self._retry_codes = frozenset(
            DEFAULT_RETRY_ITEM_STATUS_CODES if codes is None else codes
        )

        self._cond = threading.Condition()
        self._buffer: deque[BulkIndexRequest] = deque()
        self._buffer_bytes = 0
        # Requests are numbered in add order; a batch is tracked by its first number.
        self._added = 0
        self._taken = 0
        self._inflight: list[int] = []
        self._flush_requested = False
        self._accepting = False
        self._stopping = False
        self._started = False
        self._closed = False
        self._shutdown_abandoned = 0

        self._abort = threading.Event()
        self._flusher_stop = threading.Event()
        self._flusher: threading.Thread | None = None
        self._workers: list[threading.Thread] = []
        self._execution_ids = itertools.count(1)

        self._stats = BulkProcessorStats()
        self._stats_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> BulkProcessor:
        with self._cond:
            if self._started:
                return self
            if self._closed:
                raise RuntimeError("cannot restart a closed bulk processor")
            self._started = True
            self._accepting = True

        name = self.options.name
        for i in range(self.options.workers):
            worker = threading.Thread(target=self._work, name=f"{name}-worker-{i}", daemon=True)
            worker.start()
            self._workers.append(worker)

        if self.options.flush_interval is not None:
            self._flusher = threading.Thread(
                target=self._flush_periodically, name=f"{name}-flusher", daemon=True
            )
            self._flusher.start()

        logger.debug(
            "bulk.started",
            processor=name,
            workers=self.options.workers,
            bulk_actions=self.options.bulk_actions,
            bulk_size=self.options.bulk_size,
            flush_interval=self.options.flush_interval,
        )
        return self

    def close(self, timeout: float | None = None) -> None:
        """Stop accepting, drain within ``timeout`` seconds, release workers.

        Never raises: failures are reported through the error reporter.
        Calling it again is a no-op.
        """
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._accepting = False

        limit = self.options.close_timeout if timeout is None else timeout
        deadline = time.monotonic() + limit

        def remaining() -> float:
            return max(0.0, deadline - time.monotonic())

        # Phase 1: no more periodic cycles.
        self._flusher_stop.set()
        if self._flusher is not None:
            self._flusher.join(remaining())

        # Phase 2: drain.
        with self._cond:
            self._stopping = True
            if self._buffer:
                self._count(flushed=1)
            self._cond.notify_all()
            drained = self._cond.wait_for(self._drained, timeout=remaining())
            leftover = len(self._buffer)
            inflight = len(self._inflight)
            if not drained:
                self._taken += leftover
                self._buffer.clear()
                self._buffer_bytes = 0
                self._cond.notify_all()

        if not drained:
            self._abort.set()
            self._count(dropped=leftover)

        for worker in self._workers:
            worker.join(remaining())

        if not drained:
            self._report(
                "couldn't flush",
                ShutdownError(f"drain timed out after {limit}s", pending=leftover + inflight),
            )
        elif self._shutdown_abandoned:
            self._report(
                "couldn't flush",
                ShutdownError(
                    f"{self._shutdown_abandoned} request(s) failed during final flush",
                    pending=self._shutdown_abandoned,
                ),
            )

        logger.debug("bulk.closed", processor=self.options.name, drained=drained)

    def __enter__(self) -> BulkProcessor:
        return self.start()

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    def add(self, request: BulkIndexRequest) -> None:
        """Buffer a request. Never blocks on I/O, never raises."""
        with self._cond:
            if self._accepting:
                self._buffer.append(request)
                self._added += 1
                self._buffer_bytes += request.size_in_bytes
                if self._threshold_reached():
                    self._cond.notify()
                return
        self._report(
            "couldn't buffer log",
            DeliveryError(request.index, "bulk processor is not running"),
        )

    def flush(self, timeout: float | None = None) -> bool:
        """Commit everything buffered so far and wait until it is done.

        Requests added while waiting do not extend the wait. Returns False if
        ``timeout`` elapsed first.
        """
        with self._cond:
            if not self._started:
                return not self._buffer
            if self._buffer:
                self._flush_requested = True
                self._count(flushed=1)
                self._cond.notify_all()
            upto = self._added
            return self._cond.wait_for(lambda: self._done_through(upto), timeout=timeout)

    def stats(self) -> BulkProcessorStats:
        with self._stats_lock:
            return replace(self._stats)

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._buffer)

    # -------------------------------------------------------------------------
    # Worker side
    # -------------------------------------------------------------------------

    def _drained(self) -> bool:
        return not self._buffer and not self._inflight

    def _done_through(self, upto: int) -> bool:
        """True once every request numbered below ``upto`` left the processor."""
        return min(self._inflight, default=self._taken) >= upto

    def _threshold_reached(self) -> bool:
        actions, size = self.options.bulk_actions, self.options.bulk_size
        return (actions > 0 and len(self._buffer) >= actions) or (
            size > 0 and self._buffer_bytes >= size
        )

    def _batch_ready(self) -> bool:
        if not self._buffer:
            return False
        return self._flush_requested or self._stopping or self._threshold_reached()

    def _take_batch(self) -> list[BulkIndexRequest]:
        """Pop one batch off the buffer. Caller holds the lock."""
        actions, size = self.options.bulk_actions, self.options.bulk_size
        batch: list[BulkIndexRequest] = []
        batch_bytes = 0
        while self._buffer:
            head = self._buffer[0]
            if batch:
                if actions > 0 and len(batch) >= actions:
                    break
                if size > 0 and batch_bytes + head.size_in_bytes > size:
                    break
            self._buffer.popleft()
            batch.append(head)
            batch_bytes += head.size_in_bytes
        self._buffer_bytes -= batch_bytes
        if not self._buffer:
            self._flush_requested = False
        return batch

    def _work(self) -> None:
        while True:
            with self._cond:
                while not self._batch_ready():
                    if self._stopping and not self._buffer:
                        return
                    self._cond.wait()
                batch = self._take_batch()
                start = self._taken
                self._taken += len(batch)
                self._inflight.append(start)
            try:
                self._commit(batch)
            finally:
                with self._cond:
                    self._inflight.remove(start)
                    self._cond.notify_all()

    def _flush_periodically(self) -> None:
        interval = self.options.flush_interval
        while not self._flusher_stop.wait(interval):
            with self._cond:
                if self._buffer:
                    self._flush_requested = True
                    self._count(flushed=1)
                    self._cond.notify_all()

    def _commit(self, requests: list[BulkIndexRequest]) -> None:
        execution_id = next(self._execution_ids)
        pending = requests
        retry = 0
        while True:
            self._call_before(execution_id, pending)
            response: BulkResponse | None = None
            error: BaseException | None = None
            try:
                with delivering():
                    response = self.client.bulk(pending)
            except Exception as e:
                error = e
            self._call_after(execution_id, pending, response, error)

            retryable: list[BulkIndexRequest] = []
            if error is not None:
                self._count(committed=1, indexed=len(pending), failed=len(pending))
                status = getattr(error, "status", None)
                if status is None or status in self._retry_codes:
                    retryable = pending
                else:
                    self._abandon(execution_id, pending, f"bulk request rejected: {error}")
                reason = str(error)
            else:
                dropped: list[BulkIndexRequest] = []
                failed = 0
                for request, item in zip(pending, response.items):
                    if not item.failed:
                        continue
                    failed += 1
                    if item.status in self._retry_codes:
                        retryable.append(request)
                    else:
                        dropped.append(request)
                self._count(
                    committed=1,
                    indexed=len(pending),
                    succeeded=len(pending) - failed,
                    failed=failed,
                )
                if dropped:
                    self._abandon(execution_id, dropped, "non-retryable item status")
                reason = "retryable item status"

            if not retryable:
                return

            delay, again = self._backoff.next(retry)
            if not again or self._abort.is_set():
                self._abandon(execution_id, retryable, f"retries exhausted ({reason})")
                return
            retry += 1
            self._count(retried=len(retryable))
            logger.debug(
                "bulk.retry",
                processor=self.options.name,
                execution_id=execution_id,
                attempt=retry,
                requests=len(retryable),
                delay=round(delay, 3),
            )
            if self._abort.wait(delay):
                self._abandon(execution_id, retryable, "processor closed during retry")
                return
            pending = retryable

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def _abandon(self, execution_id: int, requests: list[BulkIndexRequest], reason: str) -> None:
        self._count(dropped=len(requests))
        if self._stopping:
            with self._cond:
                self._shutdown_abandoned += len(requests)
        self._report(
            "couldn't send logs to elastic",
            FlushError(execution_id, len(requests), reason),
        )

    def _count(self, **deltas: int) -> None:
        if not self.options.stats:
            return
        with self._stats_lock:
            for name, delta in deltas.items():
                setattr(self._stats, name, getattr(self._stats, name) + delta)

    def _call_before(self, execution_id: int, requests: list[BulkIndexRequest]) -> None:
        if self.options.before is None:
            return
        try:
            self.options.before(execution_id, requests)
        except Exception:
            logger.exception("bulk.callback.failed", callback="before", execution_id=execution_id)

    def _call_after(
        self,
        execution_id: int,
        requests: list[BulkIndexRequest],
        response: BulkResponse | None,
        error: BaseException | None,
    ) -> None:
        if self.options.after is None:
            return
        try:
            self.options.after(execution_id, requests, response, error)
        except Exception:
            logger.exception("bulk.callback.failed", callback="after", execution_id=execution_id)

    def _report(self, message: str, error: BaseException) -> None:
        if self.error_reporter is None:
            logger.debug("bulk.error.discarded", reason=message, error=str(error))
            return
        try:
            self.error_reporter(message, error)
        except Exception:
            logger.exception("error_reporter.failed", reason=message)
