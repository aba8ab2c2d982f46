"""
Shared router dependencies

Services live on ``app.state`` (built by ``create_app``) rather than in
module globals, so each application instance has its own storage.
"""

import hmac
from typing import Optional

from fastapi import Header, Request

from vault_orders.errors import AuthenticationError, ConfigurationError
from vault_orders.services.order_lifecycle import OrderLifecycleCoordinator
from vault_orders.services.webhook_verifier import WebhookAuthenticator


def get_coordinator(request: Request) -> OrderLifecycleCoordinator:
    return request.app.state.coordinator


def get_authenticator(request: Request) -> WebhookAuthenticator:
    return request.app.state.authenticator


def require_admin(request: Request, authorization: Optional[str] = Header(None)) -> None:
    """Bearer-token check against ``ADMIN_SECRET_KEY``"""
    secret = request.app.state.settings.admin_secret_key
    if not secret:
        raise ConfigurationError("Admin secret not configured")

    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization.encode("utf-8"), expected.encode("utf-8")):
        raise AuthenticationError("Unauthorized")
