"""Retry backoff policies for the bulk engine.

A policy answers one question: given that ``retry`` attempts have already
failed (0 for the first retry), how long to wait before the next one, and
whether to try again at all.
"""

from __future__ import annotations

import random
from typing import Protocol, runtime_checkable


@runtime_checkable
class Backoff(Protocol):
    def next(self, retry: int) -> tuple[float, bool]:
        """Return ``(delay_seconds, should_retry)``."""
        ...


class ZeroBackoff:
    """Retry immediately, forever."""

    def next(self, retry: int) -> tuple[float, bool]:
        return 0.0, True


class StopBackoff:
    """Never retry."""

    def next(self, retry: int) -> tuple[float, bool]:
        return 0.0, False


class ConstantBackoff:
    """Retry forever with a fixed delay."""

    def __init__(self, interval: float) -> None:
        if interval < 0:
            raise ValueError(f"interval must be >= 0, got {interval}")
        self.interval = interval

    def next(self, retry: int) -> tuple[float, bool]:
        return self.interval, True


class SimpleBackoff:
    """Walk a fixed list of delays, stop when it runs out.

    With ``jitter=True`` each delay is scaled by a random factor in
    ``[0.5, 1.5)``.
    """

    def __init__(self, *delays: float, jitter: bool = False) -> None:
        self.delays = tuple(delays)
        self.jitter = jitter

    def next(self, retry: int) -> tuple[float, bool]:
        if retry < 0 or retry >= len(self.delays):
            return 0.0, False
        delay = self.delays[retry]
        if self.jitter:
            delay *= 0.5 + random.random()
        return delay, True


class ExponentialBackoff:
    """Randomized doubling between ``initial`` and ``maximum`` seconds.

    The n-th delay is ``initial * 2**n`` scaled by a random factor in
    ``[1, 2)``. Once that reaches ``maximum`` the policy gives up.
    """

    def __init__(self, initial: float = 0.2, maximum: float = 10.0) -> None:
        if initial <= 0 or maximum < initial:
            raise ValueError(f"need 0 < initial <= maximum, got {initial}, {maximum}")
        self.initial = initial
        self.maximum = maximum

    def next(self, retry: int) -> tuple[float, bool]:
        if retry < 0:
            return 0.0, False
        factor = 1.0 + random.random()
        delay = min(factor * self.initial * (2.0 ** min(retry, 62)), self.maximum)
        if delay >= self.maximum:
            return 0.0, False
        return delay, True


def default_backoff() -> Backoff:
    return ExponentialBackoff(0.2, 10.0)
