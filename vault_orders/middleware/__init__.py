"""
Middleware Module
ASGI middleware for request processing
"""

from vault_orders.middleware.correlation_id import CorrelationIdMiddleware, get_correlation_id

__all__ = ["CorrelationIdMiddleware", "get_correlation_id"]
