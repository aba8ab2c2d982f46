"""
Domain errors raised by the lifecycle services.

Each error carries the HTTP status it maps to at the API boundary and a
stable machine-readable ``code``. Extra keyword arguments end up in the
JSON error body (for example the ``orderId`` of an order whose checkout
failed, so the buyer can retry with another provider).
"""

from typing import Any


class LifecycleError(Exception):
    """Base class for all expected failures of the order lifecycle"""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        body.update(self.details)
        return body


class ValidationError(LifecycleError):
    """Malformed or missing input"""

    status_code = 400
    code = "validation_error"


class MalformedWebhookError(ValidationError):
    """Authenticated webhook whose body can never be processed"""

    code = "malformed_webhook"


class AuthenticationError(LifecycleError):
    """Bad webhook signature or invalid/expired token"""

    status_code = 401
    code = "authentication_failed"


class NotFoundError(LifecycleError):
    status_code = 404
    code = "not_found"


class ConflictError(LifecycleError):
    """State precondition violated"""

    status_code = 409
    code = "conflict"


class GoneError(ConflictError):
    """Single-use resource already consumed"""

    status_code = 410
    code = "gone"


class ConfigurationError(LifecycleError):
    """Missing secret or credential"""

    status_code = 500
    code = "configuration_error"


class ProviderError(LifecycleError):
    """Upstream payment provider failure"""

    status_code = 502
    code = "provider_error"


class ProviderNotConfigured(ConfigurationError):
    code = "provider_not_configured"


class ProviderRequestFailed(ProviderError):
    code = "provider_request_failed"
