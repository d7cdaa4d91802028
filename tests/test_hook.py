"""Tests for ElasticHook, the logging.Handler façade.

Coverage:
- construction: missing index, failing existence check
- state machine: READY → ACTIVE → CLOSED, configuration outside READY
- levels: threshold, string names, custom numeric levels
- end-to-end through a real logger: sync / async / bulk, 100 records each
- formatter override, document type, error field, internal records
- close: idempotent, drains, drops late records; flush and stats
"""

from __future__ import annotations

import logging
import threading

import pytest
from fakes import FakeSinkClient, make_record, wait_until

from elasticlog.bulk import BulkOptions, BulkProcessorStats
from elasticlog.errors import ConstructionError, DeliveryError, HookStateError, SinkError
from elasticlog.hook import ALL_LEVELS, ElasticHook, HookState
from elasticlog.strategies import AsyncStrategy, BulkStrategy, SyncStrategy

# =============================================================================
# Construction
# =============================================================================


class TestConstruction:
    def test_ready_after_construction(self, client):
        hook = ElasticHook(client, "logs")
        assert hook.state is HookState.READY
        assert hook.index == "logs"
        assert hook.doc_type == "_doc"
        assert hook.levels() == list(ALL_LEVELS)
        assert isinstance(hook.strategy, SyncStrategy)
        hook.close()

    def test_missing_index(self, client):
        with pytest.raises(ConstructionError) as exc:
            ElasticHook(client, "nope")
        assert exc.value.code == "CONSTRUCTION_FAILED"
        assert "index not exists" in str(exc.value)

    def test_existence_check_failure(self, client):
        client.exists_error = SinkError("connection refused")
        with pytest.raises(ConstructionError) as exc:
            ElasticHook(client, "logs")
        assert "index check failed" in str(exc.value)
        assert isinstance(exc.value.__cause__, SinkError)

    def test_context_manager_closes(self, client):
        with ElasticHook(client, "logs") as hook:
            hook.fire(make_record())
        assert hook.state is HookState.CLOSED
        assert client.count() == 1


# =============================================================================
# State machine
# =============================================================================

CONFIG_CALLS = [
    ("set_level", (logging.INFO,)),
    ("set_formatter", (lambda r: {},)),
    ("set_document_type", ("doc",)),
    ("set_error_reporter", (None,)),
    ("enable_sync_flush", ()),
    ("enable_async_flush", ()),
    ("enable_bulk_flush", ()),
]


class TestStateMachine:
    def test_first_fire_activates(self, hook):
        hook.fire(make_record())
        assert hook.state is HookState.ACTIVE

    @pytest.mark.parametrize("method,args", CONFIG_CALLS)
    def test_configuration_refused_once_active(self, hook, method, args):
        hook.fire(make_record())
        with pytest.raises(HookStateError) as exc:
            getattr(hook, method)(*args)
        assert exc.value.details == {"operation": method, "state": "active"}

    @pytest.mark.parametrize("method,args", CONFIG_CALLS)
    def test_configuration_refused_after_close(self, hook, method, args):
        hook.close()
        with pytest.raises(HookStateError):
            getattr(hook, method)(*args)

    def test_filtered_record_still_activates(self, hook, client):
        hook.set_level(logging.ERROR)
        hook.fire(make_record(level=logging.DEBUG))
        assert hook.state is HookState.ACTIVE
        assert client.count() == 0

    def test_close_is_idempotent(self, hook):
        hook.close()
        hook.close()
        assert hook.state is HookState.CLOSED
        assert hook.target.cancelled.is_set()

    def test_records_after_close_dropped(self, hook, app_logger, client, reporter):
        app_logger.info("before")
        hook.close()
        app_logger.info("after")
        assert client.messages() == ["before"]
        assert reporter.calls == []


# =============================================================================
# Levels
# =============================================================================


class TestLevels:
    def test_threshold(self, hook, app_logger, client):
        hook.set_level(logging.WARNING)
        assert hook.levels() == [logging.CRITICAL, logging.ERROR, logging.WARNING]
        app_logger.info("quiet")
        app_logger.warning("loud")
        app_logger.critical("louder")
        assert client.messages() == ["loud", "louder"]

    def test_level_by_name(self, hook):
        hook.set_level("error")
        assert hook.level == logging.ERROR
        assert hook.levels() == [logging.CRITICAL, logging.ERROR]

    def test_unknown_level_name(self, hook):
        with pytest.raises(ValueError, match="Unknown log level"):
            hook.set_level("loud")

    def test_setlevel_goes_through_state_check(self, hook):
        hook.setLevel(logging.ERROR)
        assert hook.levels() == [logging.CRITICAL, logging.ERROR]
        hook.fire(make_record())
        with pytest.raises(HookStateError):
            hook.setLevel(logging.DEBUG)

    def test_custom_numeric_level_uses_threshold(self, hook, client):
        hook.set_level(logging.INFO)
        hook.fire(make_record(msg="notice", level=25))
        hook.fire(make_record(msg="trace", level=5))
        assert client.messages() == ["notice"]


# =============================================================================
# Delivery modes, end to end through a logger
# =============================================================================


class TestDeliveryModes:
    def test_sync_hello_world(self, app_logger, client):
        for _ in range(100):
            app_logger.info("Hello world!")
        assert client.count() == 100
        assert set(client.messages()) == {"Hello world!"}
        assert all(doc["level"] == "info" for doc in client.documents["logs"])

    def test_async_hello_world(self, hook, app_logger, client, reporter):
        hook.enable_async_flush(workers=4)
        assert isinstance(hook.strategy, AsyncStrategy)
        for _ in range(100):
            app_logger.info("Hello world!")
        hook.close()
        assert client.count() == 100
        assert reporter.calls == []

    def test_bulk_hello_world(self, hook, app_logger, client, reporter):
        hook.enable_bulk_flush(BulkOptions(bulk_actions=10))
        for i in range(100):
            app_logger.info("Hello world! %d", i)
        hook.close()
        assert client.messages() == [f"Hello world! {i}" for i in range(100)]
        assert all(len(batch) <= 10 for batch in client.bulk_calls)
        assert reporter.calls == []

    def test_sync_failure_goes_to_handle_error(self, hook, app_logger, client, monkeypatch):
        handled = []
        monkeypatch.setattr(hook, "handleError", handled.append)
        client.index_error = SinkError("down")
        app_logger.info("lost")
        assert len(handled) == 1
        with pytest.raises(DeliveryError):
            hook.fire(make_record())

    def test_async_failure_goes_to_reporter(self, hook, app_logger, client, reporter):
        hook.enable_async_flush(workers=1)
        client.index_error = SinkError("down")
        app_logger.info("lost")
        assert wait_until(lambda: reporter.errors(DeliveryError))

    def test_concurrent_sync_fire(self, hook, client):
        def produce() -> None:
            for _ in range(50):
                hook.fire(make_record())

        threads = [threading.Thread(target=produce) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert client.count() == 400

    def test_swap_closes_previous_strategy(self, hook):
        hook.enable_async_flush(workers=1)
        previous = hook.strategy
        strategy = hook.enable_bulk_flush()
        assert hook.strategy is strategy
        assert isinstance(strategy, BulkStrategy)
        assert previous._closed


# =============================================================================
# Documents
# =============================================================================


class TestDocuments:
    def test_custom_formatter(self, hook, app_logger, client):
        hook.set_formatter(
            lambda record: {"message": record.getMessage(), "component": record.component}
        )
        app_logger.info("Hello world!", extra={"component": "test"})
        assert client.documents["logs"] == [{"message": "Hello world!", "component": "test"}]

    def test_document_type_sync(self, hook, client):
        hook.set_document_type("doc")
        hook.fire(make_record())
        assert hook.doc_type == "doc"
        assert client.doc_types == ["doc"]

    def test_document_type_bulk(self, hook, client):
        hook.set_document_type("doc")
        hook.enable_bulk_flush(BulkOptions(bulk_actions=100))
        hook.fire(make_record())
        hook.flush()
        assert client.bulk_calls[0][0].doc_type == "doc"

    def test_error_field(self, app_logger, client):
        app_logger.error("Hello world!", extra={"error": ValueError("this is error")})
        (doc,) = client.documents["logs"]
        assert doc["level"] == "error"
        assert doc["data"]["error"] == "this is error"

    def test_exception_logging(self, app_logger, client):
        try:
            raise RuntimeError("exploded")
        except RuntimeError:
            app_logger.exception("failed")
        (doc,) = client.documents["logs"]
        assert doc["data"]["error"] == "exploded"

    def test_internal_records_skipped(self, hook, client):
        hook.fire(make_record(name="elasticlog"))
        hook.fire(make_record(name="elasticlog.bulk"))
        hook.fire(make_record(name="elasticlogger"))
        assert client.count() == 1


# =============================================================================
# Flush and stats
# =============================================================================


class TestFlushAndStats:
    def test_flush_bulk(self, hook, app_logger, client):
        hook.enable_bulk_flush(BulkOptions(bulk_actions=100))
        for _ in range(3):
            app_logger.info("Hello world!")
        assert client.count() == 0
        hook.flush()
        assert client.count() == 3

    def test_flush_sync_is_noop(self, hook):
        hook.flush()

    def test_stats(self, hook, app_logger):
        assert hook.stats() is None
        hook.enable_bulk_flush(BulkOptions(bulk_actions=100, stats=True))
        app_logger.info("Hello world!")
        hook.flush()
        stats = hook.stats()
        assert isinstance(stats, BulkProcessorStats)
        assert stats.succeeded == 1

    def test_close_drains_bulk(self):
        client = FakeSinkClient()
        hook = ElasticHook(client, "logs", close_timeout=2.0)
        hook.enable_bulk_flush(BulkOptions(bulk_actions=1000))
        for _ in range(10):
            hook.fire(make_record())
        hook.close()
        assert client.count() == 10
