"""
Tests for logging, error tracking, circuit breakers and the purge scheduler
"""

import json
import logging

import pybreaker
import pytest

from vault_orders.scheduler import run_kv_purge, start_scheduler, stop_scheduler
from vault_orders.services.monitoring import (
    CorrelationJsonFormatter,
    create_breaker,
    init_sentry,
    setup_logging,
)
from tests.conftest import make_settings


class TestLogging:
    def test_formatter_adds_service_fields(self):
        formatter = CorrelationJsonFormatter('%(levelname)s %(name)s %(message)s')
        record = logging.LogRecord("vault", logging.INFO, __file__, 1, "order stored", None, None)

        output = json.loads(formatter.format(record))

        assert output["message"] == "order stored"
        assert output["service"] == "vault-orders"
        assert output["correlation_id"] == "none"

    def test_setup_logging_is_idempotent(self):
        root_logger = logging.getLogger()
        before = list(root_logger.handlers)
        try:
            first = setup_logging()
            second = setup_logging()
            assert first is second
            assert sum(isinstance(h.formatter, CorrelationJsonFormatter) for h in root_logger.handlers) == 1
        finally:
            for handler in root_logger.handlers[:]:
                if handler not in before:
                    root_logger.removeHandler(handler)


class TestErrorTracking:
    def test_sentry_disabled_without_dsn(self):
        assert init_sentry(make_settings(sentry_dsn=None)) is False


class TestCircuitBreaker:
    def test_thresholds_from_settings(self):
        breaker = create_breaker("stripe", make_settings(circuit_breaker_fail_max=3, circuit_breaker_reset_timeout=30))

        assert breaker.name == "stripe"
        assert breaker.fail_max == 3
        assert breaker.reset_timeout == 30

    def test_opens_after_consecutive_failures(self):
        breaker = create_breaker("coinbase", make_settings(circuit_breaker_fail_max=2))

        def failing():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            breaker.call(failing)
        with pytest.raises((RuntimeError, pybreaker.CircuitBreakerError)):
            breaker.call(failing)

        assert breaker.current_state == pybreaker.STATE_OPEN
        with pytest.raises(pybreaker.CircuitBreakerError):
            breaker.call(lambda: "ok")


class TestScheduler:
    def test_not_started_in_testing(self, store):
        scheduler = start_scheduler(make_settings(environment="testing"), store)

        assert scheduler.running is False
        stop_scheduler(scheduler)

    def test_purge_job_removes_expired_entries(self, store, clock):
        store.set("idempotency:a", {"processed": True}, ttl_ms=1000)
        store.set("order:keep", {"id": "keep"})
        clock.advance(2000)

        run_kv_purge(store)

        assert store.get("order:keep") is not None
        assert store.purge_expired() == 0

    def test_purge_errors_are_logged(self, store, monkeypatch):
        def broken():
            raise RuntimeError("database is locked")

        monkeypatch.setattr(store, "purge_expired", broken)

        run_kv_purge(store)
