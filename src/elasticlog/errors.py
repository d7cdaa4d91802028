"""Error hierarchy for elasticlog.

Every error carries a stable ``code`` and a ``details`` dict so error
reporters can log them as structured fields.

    ElasticLogError
    ├── ConstructionError   index check failed or index missing (fatal)
    ├── HookStateError      configuration call outside the READY state
    ├── SinkError           transport / HTTP failure talking to the backend
    ├── DeliveryError       a single index request failed
    ├── FlushError          bulk items abandoned after retries
    └── ShutdownError       final drain failed or timed out
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any


class ElasticLogError(Exception):
    """Root of all elasticlog errors."""

    def __init__(
        self,
        message: str,
        *,
        code: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}


class ConstructionError(ElasticLogError):
    def __init__(self, index: str, reason: str, cause: BaseException | None = None) -> None:
        super().__init__(
            f"cannot create hook for index {index!r}: {reason}",
            code="CONSTRUCTION_FAILED",
            details={"index": index, "reason": reason},
        )
        self.__cause__ = cause


class HookStateError(ElasticLogError):
    def __init__(self, operation: str, state: str) -> None:
        super().__init__(
            f"{operation} is only allowed before logging starts (hook is {state})",
            code="INVALID_HOOK_STATE",
            details={"operation": operation, "state": state},
        )


class SinkError(ElasticLogError):
    """The backend could not be reached or answered with an error status.

    ``status`` is the HTTP status code, or None for transport failures.
    """

    def __init__(self, message: str, *, status: int | None = None, body: Any = None) -> None:
        super().__init__(
            message,
            code="SINK_ERROR",
            details={"status": status, "body": body},
        )
        self.status = status


class DeliveryError(ElasticLogError):
    def __init__(self, index: str, reason: str, cause: BaseException | None = None) -> None:
        super().__init__(
            f"couldn't send log to index {index!r}: {reason}",
            code="DELIVERY_FAILED",
            details={"index": index, "reason": reason},
        )
        self.__cause__ = cause


class FlushError(ElasticLogError):
    def __init__(self, execution_id: int, abandoned: int, reason: str) -> None:
        super().__init__(
            f"bulk execution {execution_id} abandoned {abandoned} request(s): {reason}",
            code="FLUSH_FAILED",
            details={"execution_id": execution_id, "abandoned": abandoned, "reason": reason},
        )
        self.abandoned = abandoned


class ShutdownError(ElasticLogError):
    def __init__(self, reason: str, pending: int = 0) -> None:
        super().__init__(
            f"couldn't flush on close: {reason}",
            code="SHUTDOWN_FAILED",
            details={"reason": reason, "pending": pending},
        )
        self.pending = pending


ErrorReporter = Callable[[str, BaseException], None]
"""Receives ``(context_message, error)`` for failures that have no caller."""
