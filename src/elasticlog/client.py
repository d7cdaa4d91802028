"""Sink client: the four backend operations the hook relies on.

Code against the ``SinkClient`` protocol. ``HttpSinkClient`` implements it
over the Elasticsearch REST API with httpx:

    index_exists  HEAD /{index}
    index         POST /{index}/{doc_type}
    bulk          POST /_bulk   (NDJSON, per-item status in the response)

The httpx connection pool is thread-safe, so one client is shared by every
delivery strategy.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote

import httpx

from elasticlog.errors import SinkError

DEFAULT_DOC_TYPE = "_doc"
DEFAULT_URL = "http://localhost:9200"


def _dumps(value: Any) -> str:
    return json.dumps(value, default=str, separators=(",", ":"))


# ---------------------------------------------------------------------------
# Bulk request / response types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BulkIndexRequest:
    """One ``index`` action of a bulk body."""

    index: str
    document: dict[str, Any]
    doc_type: str = DEFAULT_DOC_TYPE

    def action(self) -> dict[str, Any]:
        meta: dict[str, Any] = {"_index": self.index}
        # Mapping types are gone in ES 8; only send one when asked to.
        if self.doc_type and self.doc_type != DEFAULT_DOC_TYPE:
            meta["_type"] = self.doc_type
        return {"index": meta}

    @cached_property
    def lines(self) -> tuple[str, str]:
        return _dumps(self.action()), _dumps(self.document)

    @cached_property
    def size_in_bytes(self) -> int:
        return sum(len(line.encode("utf-8")) + 1 for line in self.lines)


@dataclass(frozen=True)
class BulkResponseItem:
    op_type: str
    index: str
    status: int
    id: str | None = None
    error: dict[str, Any] | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None or not 200 <= self.status <= 299


@dataclass(frozen=True)
class BulkResponse:
    took: int = 0
    errors: bool = False
    items: list[BulkResponseItem] = field(default_factory=list)

    @classmethod
    def from_json(cls, body: dict[str, Any]) -> BulkResponse:
        items = []
        for entry in body.get("items", []):
            # Each entry is {"<op_type>": {...}} with exactly one key.
            for op_type, result in entry.items():
                items.append(
                    BulkResponseItem(
                        op_type=op_type,
                        index=result.get("_index", ""),
                        status=int(result.get("status", 0)),
                        id=result.get("_id"),
                        error=result.get("error"),
                    )
                )
        return cls(took=int(body.get("took", 0)), errors=bool(body.get("errors")), items=items)

    def failed(self) -> list[BulkResponseItem]:
        return [item for item in self.items if item.failed]

    def succeeded(self) -> list[BulkResponseItem]:
        return [item for item in self.items if not item.failed]


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class SinkClient(Protocol):
    """Backend-agnostic document sink.

    Implementations raise ``SinkError`` on transport or status failures.
    ``bulk`` returns one response item per request, in request order.
    """

    def index_exists(self, index: str) -> bool: ...

    def index(self, index: str, document: dict[str, Any], doc_type: str | None = None) -> None: ...

    def bulk(self, requests: list[BulkIndexRequest]) -> BulkResponse: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# HTTP implementation
# ---------------------------------------------------------------------------


class HttpSinkClient:
    """Elasticsearch REST client on top of ``httpx.Client``."""

    def __init__(
        self,
        url: str = DEFAULT_URL,
        *,
        timeout: float = 10.0,
        username: str | None = None,
        password: str | None = None,
        api_key: str | None = None,
        verify: bool = True,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        all_headers = dict(headers or {})
        if api_key:
            all_headers["Authorization"] = f"ApiKey {api_key}"
        auth = httpx.BasicAuth(username, password or "") if username else None
        self.url = url.rstrip("/")
        self._http = httpx.Client(
            base_url=self.url,
            timeout=timeout,
            auth=auth,
            headers=all_headers,
            verify=verify,
            transport=transport,
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise SinkError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _check(response: httpx.Response) -> None:
        if response.is_success:
            return
        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        raise SinkError(
            f"{response.request.method} {response.request.url.path} "
            f"returned {response.status_code}",
            status=response.status_code,
            body=body,
        )

    def index_exists(self, index: str) -> bool:
        response = self._request("HEAD", f"/{quote(index, safe='')}")
        if response.status_code == 404:
            return False
        self._check(response)
        return True

    def index(self, index: str, document: dict[str, Any], doc_type: str | None = None) -> None:
        path = f"/{quote(index, safe='')}/{quote(doc_type or DEFAULT_DOC_TYPE, safe='')}"
        response = self._request(
            "POST",
            path,
            content=_dumps(document),
            headers={"Content-Type": "application/json"},
        )
        self._check(response)

    def bulk(self, requests: list[BulkIndexRequest]) -> BulkResponse:
        if not requests:
            return BulkResponse()
        body = "".join(line + "\n" for request in requests for line in request.lines)
        response = self._request(
            "POST",
            "/_bulk",
            content=body.encode("utf-8"),
            headers={"Content-Type": "application/x-ndjson"},
        )
        self._check(response)
        try:
            return BulkResponse.from_json(response.json())
        except ValueError as e:
            raise SinkError("unparseable bulk response", status=response.status_code) from e

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> HttpSinkClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
