"""ElasticHook: a logging.Handler that ships records as documents.

Lifecycle (one-way):

    UNINITIALIZED ──construct──▶ READY ──first fire()──▶ ACTIVE ──close()──▶ CLOSED

Construction checks that the target index exists and raises
ConstructionError otherwise. Configuration calls (set_level, set_formatter,
set_document_type, set_error_reporter, enable_*_flush) are only allowed in
READY; once records flow they raise HookStateError. fire() is safe to call
from many threads once ACTIVE.

Example:
    >>> client = HttpSinkClient("http://localhost:9200")
    >>> hook = ElasticHook(client, "app-logs")
    >>> hook.set_level(logging.INFO)
    >>> hook.enable_bulk_flush(BulkOptions(workers=2, flush_interval=1.0))
    >>> logging.getLogger().addHandler(hook)
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Iterator
from enum import Enum

from elasticlog.bulk import BulkOptions, BulkProcessorStats
from elasticlog.client import SinkClient
from elasticlog.errors import ConstructionError, ErrorReporter, HookStateError
from elasticlog.formatter import Formatter, default_formatter
from elasticlog.logging import delivering, get_logger, is_internal_record
from elasticlog.strategies import (
    AsyncStrategy,
    BulkStrategy,
    DeliveryStrategy,
    OverflowPolicy,
    SyncStrategy,
    Target,
)

logger = get_logger(__name__)

# Most severe first.
ALL_LEVELS: tuple[int, ...] = (
    logging.CRITICAL,
    logging.ERROR,
    logging.WARNING,
    logging.INFO,
    logging.DEBUG,
)


class HookState(str, Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    ACTIVE = "active"
    CLOSED = "closed"


def _level_number(level: int | str) -> int:
    if isinstance(level, int):
        return level
    mapping = logging.getLevelNamesMapping()
    try:
        return mapping[level.upper()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level!r}. Available: {list(mapping)}") from None


class ElasticHook(logging.Handler):
    """Forward log records to one index through a pluggable delivery strategy."""

    def __init__(self, client: SinkClient, index: str, close_timeout: float = 10.0) -> None:
        self._state = HookState.UNINITIALIZED
        try:
            with delivering():
                exists = client.index_exists(index)
        except Exception as e:
            raise ConstructionError(index, f"index check failed: {e}", e) from e
        if not exists:
            raise ConstructionError(index, "index not exists")

        super().__init__()
        self._state_lock = threading.Lock()
        self.target = Target(client=client, index=index)
        self.document_formatter: Formatter = default_formatter
        self.strategy: DeliveryStrategy = SyncStrategy(self.target)
        self.close_timeout = close_timeout
        self._levels: tuple[int, ...] = ALL_LEVELS
        self._state = HookState.READY

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> HookState:
        return self._state

    @property
    def index(self) -> str:
        return self.target.index

    @property
    def doc_type(self) -> str:
        return self.target.doc_type

    def levels(self) -> list[int]:
        """Standard levels this hook forwards, most severe first."""
        return list(self._levels)

    # -------------------------------------------------------------------------
    # Configuration (READY only)
    # -------------------------------------------------------------------------

    @contextlib.contextmanager
    def _configuring(self, operation: str) -> Iterator[None]:
        with self._state_lock:
            if self._state is not HookState.READY:
                raise HookStateError(operation, self._state.value)
            yield

    def set_level(self, level: int | str) -> None:
        """Forward ``level`` and everything more severe."""
        number = _level_number(level)
        with self._configuring("set_level"):
            super().setLevel(number)
            self._levels = tuple(lvl for lvl in ALL_LEVELS if lvl >= number)

    def setLevel(self, level: int | str) -> None:  # noqa: N802 - logging.Handler API
        self.set_level(level)

    def set_formatter(self, formatter: Formatter) -> None:
        with self._configuring("set_formatter"):
            self.document_formatter = formatter

    def set_document_type(self, doc_type: str) -> None:
        with self._configuring("set_document_type"):
            self.target.doc_type = doc_type

    def set_error_reporter(self, reporter: ErrorReporter | None) -> None:
        with self._configuring("set_error_reporter"):
            self.target.error_reporter = reporter

    def enable_sync_flush(self) -> None:
        with self._configuring("enable_sync_flush"):
            self._swap(SyncStrategy(self.target))

    def enable_async_flush(
        self,
        workers: int = 4,
        queue_size: int = 1000,
        overflow: OverflowPolicy | str = OverflowPolicy.DROP_OLDEST,
    ) -> None:
        with self._configuring("enable_async_flush"):
            self._swap(
                AsyncStrategy(
                    self.target,
                    workers=workers,
                    queue_size=queue_size,
                    overflow=overflow,
                    close_timeout=self.close_timeout,
                )
            )

    def enable_bulk_flush(self, options: BulkOptions | None = None) -> BulkStrategy:
        with self._configuring("enable_bulk_flush"):
            strategy = BulkStrategy(self.target, options or BulkOptions())
            self._swap(strategy)
            return strategy

    def _swap(self, strategy: DeliveryStrategy) -> None:
        previous, self.strategy = self.strategy, strategy
        previous.close(self.close_timeout)
        logger.debug("hook.strategy", index=self.index, strategy=strategy.name)

    # -------------------------------------------------------------------------
    # Record path
    # -------------------------------------------------------------------------

    def _accepts(self, levelno: int) -> bool:
        if levelno in ALL_LEVELS:
            return levelno in self._levels
        return levelno >= self.level

    def fire(self, record: logging.LogRecord) -> None:
        """Filter, format and deliver one record.

        Returns or raises whatever the active strategy does: the sync
        strategy raises DeliveryError, async and bulk never raise.
        """
        if self._state is HookState.READY:
            with self._state_lock:
                if self._state is HookState.READY:
                    self._state = HookState.ACTIVE
        if self._state is HookState.CLOSED:
            return
        if not self._accepts(record.levelno) or is_internal_record(record):
            return
        document = self.document_formatter(record)
        self.strategy.deliver(document)

    def handle(self, record: logging.LogRecord) -> logging.LogRecord | bool:
        # No per-handler I/O lock: strategies are thread-safe and async/bulk
        # must not serialize callers.
        rv = self.filter(record)
        if isinstance(rv, logging.LogRecord):
            record = rv
        if rv:
            self.emit(record)
        return rv

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.fire(record)
        except Exception:
            self.handleError(record)

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    def flush(self) -> None:
        flush = getattr(self.strategy, "flush", None)
        if flush is not None and self._state is not HookState.CLOSED:
            flush(self.close_timeout)

    def stats(self) -> BulkProcessorStats | None:
        if isinstance(self.strategy, BulkStrategy):
            return self.strategy.stats()
        return None

    def close(self) -> None:
        """Drain the active strategy and cancel outstanding deliveries. Idempotent."""
        with self._state_lock:
            if self._state is HookState.CLOSED:
                return
            self._state = HookState.CLOSED
        try:
            self.strategy.close(self.close_timeout)
        finally:
            self.target.cancelled.set()
            super().close()
        logger.debug("hook.closed", index=self.index, strategy=self.strategy.name)

    def __enter__(self) -> ElasticHook:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
