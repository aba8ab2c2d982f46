"""
Circuit Breaker Implementation for Payment Provider Calls

Protects against cascading failures by opening circuits after consecutive failures
and automatically attempting recovery after a timeout period.

Services protected:
- Stripe Checkout
- Coinbase Commerce
- PayPal Orders API
"""

import logging

import pybreaker

from vault_orders.config import Settings

logger = logging.getLogger(__name__)


class CircuitBreakerLogListener(pybreaker.CircuitBreakerListener):
    """
    Logging listener for circuit breaker state changes.

    An open circuit means a payment provider is failing and checkout
    requests to it are rejected until the reset timeout elapses.
    """

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state: pybreaker.CircuitBreakerState, new_state: pybreaker.CircuitBreakerState):
        """
        Handle circuit breaker state changes.

        Args:
            cb: The circuit breaker instance
            old_state: Previous state
            new_state: New state
        """
        log = logger.error if new_state.name == pybreaker.STATE_OPEN else logger.warning
        log(
            f"Circuit breaker state change: {cb.name} transitioned from {old_state.name} to {new_state.name}",
            extra={
                "circuit_breaker": cb.name,
                "old_state": old_state.name,
                "new_state": new_state.name,
                "fail_count": cb.fail_counter
            }
        )


def create_breaker(name: str, settings: Settings) -> pybreaker.CircuitBreaker:
    """
    Create a circuit breaker with configured thresholds.

    Args:
        name: Service name for the circuit breaker
        settings: Application settings holding the thresholds

    Returns:
        Configured CircuitBreaker instance
    """
    return pybreaker.CircuitBreaker(
        name=name,
        fail_max=settings.circuit_breaker_fail_max,
        reset_timeout=settings.circuit_breaker_reset_timeout,
        listeners=[CircuitBreakerLogListener()]
    )


# Re-export exception for caller handling
from pybreaker import CircuitBreakerError

__all__ = [
    "CircuitBreakerLogListener",
    "create_breaker",
    "CircuitBreakerError",
]
