"""Hook configuration: YAML file + env var overrides.

Priority: env var > YAML file > default.
Env vars use ELASTICLOG_{FIELD_NAME} (e.g. ELASTICLOG_FLUSH_MODE=bulk).
YAML file: $ELASTICLOG_CONFIG, else ~/.elasticlog/config.yaml

    url: http://localhost:9200
    index: app-logs
    level: INFO
    flush_mode: bulk          # sync | async | bulk
    bulk_flush_interval: 5.0
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from elasticlog.backoff import ExponentialBackoff
from elasticlog.bulk import DEFAULT_RETRY_ITEM_STATUS_CODES, BulkOptions
from elasticlog.client import DEFAULT_DOC_TYPE, DEFAULT_URL, HttpSinkClient

ENV_PREFIX = "ELASTICLOG_"
_TRUTHY = {"1", "true", "on", "yes"}
_DEFAULT_PATH = Path("~/.elasticlog/config.yaml").expanduser()


def _env(name: str, default: str | None = None) -> str | None:
    return os.environ.get(f"{ENV_PREFIX}{name.upper()}", default)


def _env_int(name: str, default: int) -> int:
    return int(_env(name) or default)


def _env_float(name: str, default: float) -> float:
    return float(_env(name) or default)


def _env_bool(name: str, default: bool) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    return raw.lower() in _TRUTHY


def _env_interval(name: str, default: float | None) -> float | None:
    raw = _env(name)
    if raw is None:
        return default
    value = float(raw) if raw.strip() else 0.0
    return value if value > 0 else None  # "0" or "" disables the timer


def _parse_codes(raw: Any) -> tuple[int, ...]:
    if isinstance(raw, str):
        return tuple(int(c) for c in raw.split(",") if c.strip())
    return tuple(int(c) for c in raw)


@dataclass
class HookConfig:
    """Everything setup_logging() needs to build and wire a hook."""

    # --- Backend ---
    url: str = field(default_factory=lambda: _env("url", DEFAULT_URL))
    index: str = field(default_factory=lambda: _env("index", "logs"))
    doc_type: str = field(default_factory=lambda: _env("doc_type", DEFAULT_DOC_TYPE))
    timeout: float = field(default_factory=lambda: _env_float("timeout", 10.0))
    username: str | None = field(default_factory=lambda: _env("username"))
    password: str | None = field(default_factory=lambda: _env("password"))
    api_key: str | None = field(default_factory=lambda: _env("api_key"))
    verify_tls: bool = field(default_factory=lambda: _env_bool("verify_tls", True))

    # --- Hook ---
    level: str = field(default_factory=lambda: _env("level", "INFO"))
    flush_mode: str = field(default_factory=lambda: _env("flush_mode", "sync"))
    close_timeout: float = field(default_factory=lambda: _env_float("close_timeout", 10.0))

    # --- Async pool ---
    async_workers: int = field(default_factory=lambda: _env_int("async_workers", 4))
    async_queue_size: int = field(default_factory=lambda: _env_int("async_queue_size", 1000))
    async_overflow: str = field(
        default_factory=lambda: _env("async_overflow", "drop_oldest")
    )  # "block" | "drop_oldest" | "reject"

    # --- Bulk engine ---
    bulk_workers: int = field(default_factory=lambda: _env_int("bulk_workers", 1))
    bulk_actions: int = field(default_factory=lambda: _env_int("bulk_actions", 1000))
    bulk_size: int = field(default_factory=lambda: _env_int("bulk_size", 5 << 20))
    bulk_flush_interval: float | None = field(
        default_factory=lambda: _env_interval("bulk_flush_interval", 5.0)
    )
    bulk_backoff_initial: float = field(
        default_factory=lambda: _env_float("bulk_backoff_initial", 0.2)
    )
    bulk_backoff_max: float = field(default_factory=lambda: _env_float("bulk_backoff_max", 10.0))
    bulk_retry_status_codes: tuple[int, ...] = field(
        default_factory=lambda: _parse_codes(
            _env("bulk_retry_status_codes") or DEFAULT_RETRY_ITEM_STATUS_CODES
        )
    )
    bulk_stats: bool = field(default_factory=lambda: _env_bool("bulk_stats", False))

    def __post_init__(self) -> None:
        # YAML hands back lists and numbers where env vars hand back strings.
        self.bulk_retry_status_codes = _parse_codes(self.bulk_retry_status_codes)
        self.level = str(self.level).upper()
        self.flush_mode = str(self.flush_mode).lower()
        if self.bulk_flush_interval is not None and float(self.bulk_flush_interval) <= 0:
            self.bulk_flush_interval = None

    @classmethod
    def load(cls, path: Path | str | None = None) -> HookConfig:
        """Load from a YAML file, then let env vars override it."""
        default = _env("config")
        file_path = Path(path) if path else Path(default) if default else _DEFAULT_PATH
        file_values: dict[str, Any] = {}
        if file_path.exists():
            raw = yaml.safe_load(file_path.read_text()) or {}
            if isinstance(raw, dict):
                file_values = raw

        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            if _env(f.name) is not None:
                continue  # default_factory reads it
            if f.name in file_values:
                kwargs[f.name] = file_values[f.name]
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def client(self) -> HttpSinkClient:
        return HttpSinkClient(
            self.url,
            timeout=self.timeout,
            username=self.username,
            password=self.password,
            api_key=self.api_key,
            verify=self.verify_tls,
        )

    def bulk_options(self) -> BulkOptions:
        return BulkOptions(
            name=f"elasticlog-{self.index}",
            workers=self.bulk_workers,
            bulk_actions=self.bulk_actions,
            bulk_size=self.bulk_size,
            flush_interval=self.bulk_flush_interval,
            backoff=ExponentialBackoff(self.bulk_backoff_initial, self.bulk_backoff_max),
            retry_item_status_codes=self.bulk_retry_status_codes,
            stats=self.bulk_stats,
            close_timeout=self.close_timeout,
        )
