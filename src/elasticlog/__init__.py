"""elasticlog: ship Python log records to Elasticsearch as JSON documents.

Public API:
    ElasticHook(client, index)  : logging.Handler; raises ConstructionError
                                  if the index does not exist
    HttpSinkClient(url, ...)    : httpx-based Elasticsearch client
    setup_logging(cfg)          : build a hook from HookConfig, attach to root
    shutdown_logging()          : detach and drain

Delivery modes (pick one before logging starts):
    hook.enable_sync_flush()         : block per record, errors raise
    hook.enable_async_flush(...)     : bounded worker pool, errors reported
    hook.enable_bulk_flush(options)  : batched, retried with backoff

Async and bulk failures go to the error reporter set with
hook.set_error_reporter(fn); without one they are discarded.
"""

from elasticlog.backoff import (
    Backoff,
    ConstantBackoff,
    ExponentialBackoff,
    SimpleBackoff,
    StopBackoff,
    ZeroBackoff,
)
from elasticlog.bulk import BulkOptions, BulkProcessor, BulkProcessorStats
from elasticlog.client import (
    BulkIndexRequest,
    BulkResponse,
    BulkResponseItem,
    HttpSinkClient,
    SinkClient,
)
from elasticlog.config import HookConfig
from elasticlog.errors import (
    ConstructionError,
    DeliveryError,
    ElasticLogError,
    ErrorReporter,
    FlushError,
    HookStateError,
    ShutdownError,
    SinkError,
)
from elasticlog.formatter import Document, Formatter, default_formatter
from elasticlog.hook import ALL_LEVELS, ElasticHook, HookState
from elasticlog.logging import (
    get_logger,
    log_error_reporter,
    register_flush_mode,
    setup_logging,
    shutdown_logging,
)
from elasticlog.strategies import (
    AsyncStrategy,
    BulkStrategy,
    DeliveryStrategy,
    OverflowPolicy,
    SyncStrategy,
)

__version__ = "0.1.0"

__all__ = [
    # Hook
    "ElasticHook",
    "HookState",
    "ALL_LEVELS",
    # Formatting
    "Document",
    "Formatter",
    "default_formatter",
    # Strategies
    "DeliveryStrategy",
    "SyncStrategy",
    "AsyncStrategy",
    "BulkStrategy",
    "OverflowPolicy",
    # Bulk engine
    "BulkOptions",
    "BulkProcessor",
    "BulkProcessorStats",
    # Backoff
    "Backoff",
    "ZeroBackoff",
    "StopBackoff",
    "ConstantBackoff",
    "SimpleBackoff",
    "ExponentialBackoff",
    # Client
    "SinkClient",
    "HttpSinkClient",
    "BulkIndexRequest",
    "BulkResponse",
    "BulkResponseItem",
    # Errors
    "ElasticLogError",
    "ConstructionError",
    "HookStateError",
    "SinkError",
    "DeliveryError",
    "FlushError",
    "ShutdownError",
    "ErrorReporter",
    # Config + wiring
    "HookConfig",
    "setup_logging",
    "shutdown_logging",
    "register_flush_mode",
    "get_logger",
    "log_error_reporter",
]
