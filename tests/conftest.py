"""Shared fixtures: fake client, recording reporter, hook, private logger."""

from __future__ import annotations

import logging
import os
import uuid

import pytest
from fakes import FakeSinkClient, RecordingReporter

from elasticlog.hook import ElasticHook


@pytest.fixture()
def client() -> FakeSinkClient:
    return FakeSinkClient()


@pytest.fixture()
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture()
def hook(client, reporter):
    h = ElasticHook(client, "logs", close_timeout=2.0)
    h.set_error_reporter(reporter)
    yield h
    h.close()


@pytest.fixture()
def app_logger(hook):
    """A private logger wired only to the hook."""
    lg = logging.getLogger(f"app.test.{uuid.uuid4().hex}")
    lg.setLevel(logging.DEBUG)
    lg.propagate = False
    lg.addHandler(hook)
    yield lg
    lg.removeHandler(hook)


@pytest.fixture()
def clean_env(monkeypatch, tmp_path):
    """Drop every ELASTICLOG_* variable and point the config file at nothing."""
    for key in list(os.environ):
        if key.startswith("ELASTICLOG_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("ELASTICLOG_CONFIG", str(tmp_path / "missing.yaml"))
    return monkeypatch
