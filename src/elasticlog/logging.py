"""Logging glue: the package's own diagnostics and root-logger wiring.

Internal diagnostics:
    get_logger(name) returns a structlog logger bound to the stdlib logger
    of the same name. Events use dotted names ("bulk.retry", "hook.closed")
    with key=value fields carried as record attributes, so they reach the
    host application's handlers instead of stdout. Records from
    ``elasticlog.*`` loggers are never shipped by the hook.

Transport diagnostics:
    Anything logged on a thread while it talks to the sink (httpx request
    lines, httpcore traces, a custom client's own logging) is dropped by
    the hook. Shipping it would cost one more request per request.

Root-logger wiring:
    setup_logging(config) builds a client and a hook from HookConfig, applies
    level / document type / flush mode and attaches the hook to the root
    logger. Only the previously managed hook is replaced; foreign handlers
    (pytest caplog, console handlers, agents) are preserved.

    ELASTICLOG_FLUSH_MODE=sync    (default)
    ELASTICLOG_FLUSH_MODE=async
    ELASTICLOG_FLUSH_MODE=bulk

    Or register your own:
        from elasticlog.logging import register_flush_mode
        register_flush_mode("bulk-fast", lambda hook, cfg: hook.enable_bulk_flush(...))
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from elasticlog.client import SinkClient
    from elasticlog.config import HookConfig
    from elasticlog.errors import ErrorReporter
    from elasticlog.hook import ElasticHook

INTERNAL_LOGGER = "elasticlog"

_PROCESSORS = [
    structlog.stdlib.filter_by_level,
    structlog.stdlib.render_to_log_kwargs,
]

logging.getLogger(INTERNAL_LOGGER).addHandler(logging.NullHandler())


def get_logger(name: str = INTERNAL_LOGGER, **kwargs: Any) -> Any:
    return structlog.wrap_logger(
        logging.getLogger(name),
        processors=_PROCESSORS,
        wrapper_class=structlog.stdlib.BoundLogger,
        **kwargs,
    )


_delivery = threading.local()


@contextmanager
def delivering() -> Iterator[None]:
    """Mark the current thread as talking to the sink."""
    depth = getattr(_delivery, "depth", 0)
    _delivery.depth = depth + 1
    try:
        yield
    finally:
        _delivery.depth = depth


def in_delivery() -> bool:
    return getattr(_delivery, "depth", 0) > 0


def is_internal_record(record: logging.LogRecord) -> bool:
    """True for records the hook must never ship back to the sink."""
    name = record.name
    if name == INTERNAL_LOGGER or name.startswith(INTERNAL_LOGGER + "."):
        return True
    return in_delivery()


def log_error_reporter(name: str = f"{INTERNAL_LOGGER}.errors") -> ErrorReporter:
    """Error reporter that writes delivery failures to a structlog logger."""
    log = get_logger(name)

    def report(message: str, error: BaseException) -> None:
        log.error(
            message,
            error=str(error),
            error_type=type(error).__name__,
            code=getattr(error, "code", None),
        )

    return report


# ---------------------------------------------------------------------------
# Flush mode registry
# ---------------------------------------------------------------------------

FlushModeSetup = Callable[["ElasticHook", "HookConfig"], None]


def _sync_mode(hook: ElasticHook, config: HookConfig) -> None:
    hook.enable_sync_flush()


def _async_mode(hook: ElasticHook, config: HookConfig) -> None:
    hook.enable_async_flush(
        workers=config.async_workers,
        queue_size=config.async_queue_size,
        overflow=config.async_overflow,
    )


def _bulk_mode(hook: ElasticHook, config: HookConfig) -> None:
    hook.enable_bulk_flush(config.bulk_options())


_FLUSH_MODES: dict[str, FlushModeSetup] = {
    "sync": _sync_mode,
    "async": _async_mode,
    "bulk": _bulk_mode,
}


def register_flush_mode(name: str, setup: FlushModeSetup) -> None:
    """Register a custom flush mode. Call before setup_logging()."""
    _FLUSH_MODES[name] = setup


# ---------------------------------------------------------------------------
# Module state
# ---------------------------------------------------------------------------

_active_hook: ElasticHook | None = None
_owned_client: SinkClient | None = None


def setup_logging(
    config: HookConfig | None = None,
    client: SinkClient | None = None,
) -> ElasticHook:
    """Build a hook from config and attach it to the root logger.

    A client passed in stays owned by the caller; one built from config is
    closed by shutdown_logging().
    """
    global _active_hook, _owned_client

    from elasticlog.config import HookConfig
    from elasticlog.errors import ConstructionError
    from elasticlog.hook import ElasticHook

    cfg = config or HookConfig.load()

    mode = _FLUSH_MODES.get(cfg.flush_mode)
    if mode is None:
        raise ValueError(
            f"Unknown flush mode: {cfg.flush_mode!r}. "
            f"Available: {list(_FLUSH_MODES)}. "
            f"Register custom modes with register_flush_mode()."
        )

    owned = client is None
    sink = client if client is not None else cfg.client()
    try:
        hook = ElasticHook(sink, cfg.index)
    except ConstructionError:
        if owned:
            sink.close()
        raise

    hook.set_level(cfg.level)
    hook.set_document_type(cfg.doc_type)
    hook.set_error_reporter(log_error_reporter())
    hook.close_timeout = cfg.close_timeout
    mode(hook, cfg)

    shutdown_logging()

    hook._elasticlog_managed = True  # type: ignore[attr-defined]
    root_logger = logging.getLogger()
    root_logger.addHandler(hook)
    root_logger.setLevel(hook.level)

    _active_hook = hook
    _owned_client = sink if owned else None

    get_logger(__name__).info(
        "hook.attached", index=cfg.index, flush_mode=cfg.flush_mode, level=cfg.level
    )
    return hook


def get_active_hook() -> ElasticHook | None:
    return _active_hook


def shutdown_logging() -> None:
    """Detach and close the managed hook. Call on process exit."""
    global _active_hook, _owned_client

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if getattr(handler, "_elasticlog_managed", False):
            root_logger.removeHandler(handler)
            handler.close()

    if _owned_client is not None:
        _owned_client.close()

    _active_hook = None
    _owned_client = None
