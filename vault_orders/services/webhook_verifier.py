"""
Webhook Signature Verification
Authenticates payment provider callbacks over the raw request body
"""

import hashlib
import hmac
import json
from typing import Mapping, Optional, TYPE_CHECKING
import structlog

from vault_orders.config import Settings
from vault_orders.errors import AuthenticationError, ConfigurationError, ProviderRequestFailed, ValidationError
from vault_orders.models.provider import ProviderName
from vault_orders.services.clock import Clock, now_ms

if TYPE_CHECKING:
    from vault_orders.services.payments.paypal import PayPalProvider

logger = structlog.get_logger(__name__)

SIGNATURE_HEADERS = {
    ProviderName.STRIPE: "stripe-signature",
    ProviderName.COINBASE: "x-cc-webhook-signature",
    ProviderName.PAYPAL: "paypal-transmission-sig",
}

PAYPAL_TRANSMISSION_HEADERS = (
    "paypal-transmission-id",
    "paypal-transmission-time",
    "paypal-transmission-sig",
    "paypal-cert-url",
    "paypal-auth-algo",
)


def _hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()


def _constant_time_equals(expected: str, candidate: str) -> bool:
    return hmac.compare_digest(expected.encode('utf-8'), candidate.strip().encode('utf-8'))


def verify_stripe_signature(
    raw_body: bytes,
    signature_header: str,
    secret: str,
    tolerance_seconds: Optional[int] = None,
    now_seconds: Optional[int] = None
) -> bool:
    """
    Verify a Stripe ``stripe-signature`` header.

    The header looks like ``t=<unix-seconds>,v1=<hex>[,v1=<hex>][,v0=<hex>]``.
    The signature is HMAC-SHA256(secret, "{t}.{raw_body}"); any ``v1``
    entry may match (Stripe sends several while a secret is rolled).
    """
    timestamp = None
    signatures = []
    for element in signature_header.split(','):
        prefix, _, value = element.strip().partition('=')
        if prefix == 't':
            timestamp = value
        elif prefix == 'v1' and value:
            signatures.append(value)

    if not timestamp or not signatures:
        return False

    expected = _hmac_sha256_hex(secret, timestamp.encode('utf-8') + b'.' + raw_body)
    if not any(_constant_time_equals(expected, signature) for signature in signatures):
        return False

    if tolerance_seconds and now_seconds is not None:
        if abs(now_seconds - int(timestamp)) > tolerance_seconds:
            logger.warning("stripe_signature_outside_tolerance", timestamp=timestamp)
            return False

    return True


def verify_hmac_hex_signature(raw_body: bytes, signature_header: str, secret: str) -> bool:
    """Hex HMAC-SHA256 of the raw body (Coinbase Commerce ``x-cc-webhook-signature``)"""
    return _constant_time_equals(_hmac_sha256_hex(secret, raw_body), signature_header)


def verify_webhook_signature(
    raw_body: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    provider: ProviderName,
    tolerance_seconds: Optional[int] = None,
    now_seconds: Optional[int] = None
) -> bool:
    """
    Check the authenticity of a payment provider webhook.

    Must be given the exact bytes received; signatures are computed over the
    unparsed body. Never raises: malformed input yields False.

    PayPal: the plain HMAC check here is a placeholder and NOT PayPal's
    verification scheme (PayPal signs with a certificate chain). It is only
    used when explicitly enabled; see ``WebhookAuthenticator``.
    """
    if not signature_header or not secret:
        return False

    try:
        if provider == ProviderName.STRIPE:
            return verify_stripe_signature(raw_body, signature_header, secret, tolerance_seconds, now_seconds)
        if provider in (ProviderName.COINBASE, ProviderName.PAYPAL):
            return verify_hmac_hex_signature(raw_body, signature_header, secret)
        return False

    except Exception as e:
        logger.error("webhook_signature_verification_error", provider=str(provider), error=str(e))
        return False


class WebhookAuthenticator:
    """
    Applies the configured verification procedure for each provider.

    Raises instead of returning a flag so the HTTP layer can map the
    outcome: missing secret -> 500, missing header -> 400, bad signature -> 401.
    """

    def __init__(
        self,
        settings: Settings,
        paypal: Optional["PayPalProvider"] = None,
        clock: Clock = now_ms
    ):
        self.settings = settings
        self.paypal = paypal
        self.clock = clock
        self.logger = logger.bind(service="webhook_authenticator")

    def authenticate(self, provider: ProviderName, raw_body: bytes, headers: Mapping[str, str]) -> None:
        if provider == ProviderName.PAYPAL:
            self._authenticate_paypal(raw_body, headers)
            return

        if provider == ProviderName.STRIPE:
            secret = self.settings.stripe_webhook_secret
        else:
            secret = self.settings.coinbase_webhook_secret

        if not secret:
            raise ConfigurationError(f"{provider.value} webhook secret not configured")

        signature = headers.get(SIGNATURE_HEADERS[provider])
        if not signature:
            raise ValidationError(f"Missing {SIGNATURE_HEADERS[provider]} header")

        valid = verify_webhook_signature(
            raw_body,
            signature,
            secret,
            provider,
            tolerance_seconds=self.settings.stripe_webhook_tolerance_seconds,
            now_seconds=self.clock() // 1000
        )
        if not valid:
            self.logger.warning("invalid_webhook_signature", provider=provider.value)
            raise AuthenticationError("Invalid webhook signature")

    def _authenticate_paypal(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        if self.settings.paypal_webhook_id and self.paypal is not None:
            if not self.verify_paypal_via_api(raw_body, headers):
                self.logger.warning("invalid_webhook_signature", provider="paypal")
                raise AuthenticationError("Invalid webhook signature")
            return

        if self.settings.paypal_allow_insecure_hmac and self.settings.paypal_webhook_secret:
            self.logger.warning(
                "paypal_insecure_hmac_verification",
                note="HMAC placeholder is not PayPal's signature scheme"
            )
            signature = headers.get(SIGNATURE_HEADERS[ProviderName.PAYPAL])
            if not signature:
                raise ValidationError("Missing paypal-transmission-sig header")
            if not verify_webhook_signature(raw_body, signature, self.settings.paypal_webhook_secret, ProviderName.PAYPAL):
                raise AuthenticationError("Invalid webhook signature")
            return

        raise ConfigurationError("PayPal webhook verification not configured (set PAYPAL_WEBHOOK_ID)")

    def verify_paypal_via_api(self, raw_body: bytes, headers: Mapping[str, str]) -> bool:
        """
        Verify a PayPal webhook with PayPal's verify-webhook-signature API.

        PayPal checks the transmission signature against its certificate
        and answers ``verification_status: SUCCESS`` or ``FAILURE``.
        """
        missing = [name for name in PAYPAL_TRANSMISSION_HEADERS if not headers.get(name)]
        if missing:
            raise ValidationError("Missing PayPal transmission headers", missing=missing)

        try:
            webhook_event = json.loads(raw_body)
        except ValueError:
            return False

        verification_request = {
            "auth_algo": headers["paypal-auth-algo"],
            "cert_url": headers["paypal-cert-url"],
            "transmission_id": headers["paypal-transmission-id"],
            "transmission_sig": headers["paypal-transmission-sig"],
            "transmission_time": headers["paypal-transmission-time"],
            "webhook_id": self.settings.paypal_webhook_id,
            "webhook_event": webhook_event,
        }

        response = self.paypal.post_authenticated(
            "/v1/notifications/verify-webhook-signature",
            verification_request
        )
        if response.status_code >= 300:
            raise ProviderRequestFailed(
                f"PayPal signature verification failed: {response.status_code}",
                provider="paypal"
            )

        status = response.json().get("verification_status")
        self.logger.info("paypal_webhook_verification", verification_status=status)
        return status == "SUCCESS"
