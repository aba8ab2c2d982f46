"""
Monitoring Module
Exports for structured logging, circuit breakers and error tracking
"""

from vault_orders.services.monitoring.logging import setup_logging, CorrelationJsonFormatter
from vault_orders.services.monitoring.circuit_breakers import (
    create_breaker,
    CircuitBreakerError,
    CircuitBreakerLogListener,
)
from vault_orders.services.monitoring.error_tracking import init_sentry, set_order_context

__all__ = [
    "setup_logging",
    "CorrelationJsonFormatter",
    "create_breaker",
    "CircuitBreakerError",
    "CircuitBreakerLogListener",
    "init_sentry",
    "set_order_context",
]
