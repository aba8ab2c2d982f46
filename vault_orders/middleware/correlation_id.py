"""
Correlation ID Middleware
Tags every request with a correlation id so webhook deliveries can be traced
"""

from asgi_correlation_id import CorrelationIdMiddleware
from asgi_correlation_id.context import correlation_id

__all__ = ["CorrelationIdMiddleware", "get_correlation_id"]


def get_correlation_id() -> str:
    """
    Get current correlation ID from async context.

    Returns:
        str: The correlation ID or 'none' outside a request
    """
    return correlation_id.get() or 'none'
