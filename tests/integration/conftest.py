"""Shared fixtures for integration tests.

Detects a reachable Elasticsearch node once per session and provides a fresh
index per test, deleted afterwards.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Iterator
from typing import Any

import httpx
import pytest

from elasticlog.client import HttpSinkClient

ES_URL = os.environ.get("ELASTICLOG_TEST_URL", "http://localhost:9200").rstrip("/")


def _es_available(url: str = ES_URL, timeout: float = 1.0) -> bool:
    """Check if the node answers its root endpoint."""
    try:
        return httpx.get(url, timeout=timeout).is_success
    except httpx.HTTPError:
        return False


ES_AVAILABLE = _es_available()


@pytest.fixture(autouse=True)
def _require_elasticsearch() -> None:
    if not ES_AVAILABLE:
        pytest.skip(f"Elasticsearch not reachable at {ES_URL}")


class EsAdmin:
    """Test-side access to the node: index lifecycle and queries."""

    def __init__(self, url: str) -> None:
        self.http = httpx.Client(base_url=url, timeout=10.0)

    def create(self, index: str) -> None:
        self.http.put(f"/{index}").raise_for_status()

    def delete(self, index: str) -> None:
        self.http.delete(f"/{index}")

    def refresh(self, index: str) -> None:
        self.http.post(f"/{index}/_refresh").raise_for_status()

    def count(self, index: str, query: dict[str, Any] | None = None) -> int:
        body = {"query": query} if query else None
        response = self.http.post(f"/{index}/_count", json=body)
        response.raise_for_status()
        return int(response.json()["count"])

    def search(self, index: str, size: int = 10) -> list[dict[str, Any]]:
        response = self.http.post(f"/{index}/_search", json={"size": size})
        response.raise_for_status()
        return [hit["_source"] for hit in response.json()["hits"]["hits"]]

    def close(self) -> None:
        self.http.close()


@pytest.fixture()
def es() -> Iterator[EsAdmin]:
    admin = EsAdmin(ES_URL)
    yield admin
    admin.close()


@pytest.fixture()
def index(es) -> Iterator[str]:
    name = f"elasticlog-test-{uuid.uuid4().hex[:12]}"
    es.create(name)
    yield name
    es.delete(name)


@pytest.fixture()
def sink() -> Iterator[HttpSinkClient]:
    client = HttpSinkClient(ES_URL)
    yield client
    client.close()
