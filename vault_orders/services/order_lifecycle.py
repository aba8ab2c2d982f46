"""
Order Lifecycle Coordinator
State machine from order creation through payment, claim redemption and mint

pending --payment webhook--> paid --mint confirmation--> minted
pending --failure webhook--> failed
"""

import hmac
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional
import structlog

from vault_orders.config import Settings
from vault_orders.errors import (
    AuthenticationError,
    ConflictError,
    GoneError,
    LifecycleError,
    NotFoundError,
    ValidationError,
)
from vault_orders.models.claim import Claim, ClaimStatus
from vault_orders.models.dead_letter import DeadLetteredWebhook
from vault_orders.models.order import Order, OrderStatus, SETTLED_STATUSES
from vault_orders.models.provider import ProviderName
from vault_orders.services.claim_tokens import ClaimTokenService, IssuedToken
from vault_orders.services.clock import Clock, now_ms
from vault_orders.services.idempotency import IdempotencyService, IdempotentResult, generate_idempotency_key
from vault_orders.services.monitoring.error_tracking import set_order_context
from vault_orders.services.payments import PaymentProviderRegistry
from vault_orders.services.repository import OrderClaimRepository
from vault_orders.services.webhook_events import EventKind, PaymentEvent

logger = structlog.get_logger(__name__)


@dataclass
class CheckoutResult:
    """Order plus where to send the buyer to pay"""
    order: Order
    payment_url: str
    claim_token: Optional[IssuedToken] = None


def _new_id() -> str:
    return str(uuid.uuid4())


def _required(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required", field=field)
    return str(value).strip()


class OrderLifecycleCoordinator:
    """
    Owns every ``Order`` and ``Claim`` mutation.

    Side-effecting transitions driven by external events (payment
    confirmation, payment failure, mint confirmation) run inside the
    idempotency guard, keyed by ``action:order_id``. Status preconditions
    are re-checked inside the repository's compare-and-set loop.
    """

    def __init__(
        self,
        repository: OrderClaimRepository,
        idempotency: IdempotencyService,
        tokens: ClaimTokenService,
        payments: PaymentProviderRegistry,
        settings: Settings,
        clock: Clock = now_ms,
        id_factory: Callable[[], str] = _new_id
    ):
        self.repository = repository
        self.idempotency = idempotency
        self.tokens = tokens
        self.payments = payments
        self.settings = settings
        self.clock = clock
        self.id_factory = id_factory
        self.logger = logger.bind(service="order_lifecycle")

    # --- Checkout ---

    def _resolve_provider(self, payment_provider: Optional[str]) -> ProviderName:
        if payment_provider:
            return ProviderName.parse(payment_provider)
        return self.payments.default

    def create_order(
        self,
        wallet_address: Optional[str] = None,
        payment_provider: Optional[str] = None,
        description: Optional[str] = None
    ) -> CheckoutResult:
        """
        Create a pending order and start its hosted checkout.

        Wallet-less orders get a claim token up front; the redeemable
        ``Claim`` itself only appears once payment is confirmed.

        Raises:
            ValidationError: Unknown payment provider
            ProviderNotConfigured, ProviderRequestFailed: Checkout could not
                be started; the order stays persisted as ``pending`` and the
                error carries its ``orderId`` for a fallback attempt
        """
        provider = self._resolve_provider(payment_provider)
        wallet_address = (wallet_address or "").strip() or None
        now = self.clock()

        order = Order(
            id=self.id_factory(),
            wallet_address=wallet_address,
            amount=self.settings.product_price,
            currency=self.settings.product_currency,
            description=description,
            status=OrderStatus.PENDING,
            payment_provider=provider.value,
            created_at=now,
            updated_at=now
        )

        issued = None
        if wallet_address is None:
            issued = self.tokens.issue(order.id)
            order.claim_token = issued.token
            order.claim_token_expiry = issued.expires_at

        self.repository.store_order(order)
        set_order_context(order.id, "checkout", provider.value)
        self.logger.info(
            "order_created",
            order_id=order.id,
            provider=provider.value,
            wallet_less=wallet_address is None
        )

        payment_url, order = self._start_checkout(order, provider)
        return CheckoutResult(order=order, payment_url=payment_url, claim_token=issued)

    def retry_checkout(self, order_id: str, payment_provider: str) -> CheckoutResult:
        """
        Restart checkout of a pending order with a different provider.

        Allowed once per order and only while the primary checkout never
        started; the hop is recorded before the provider is called so a
        failing fallback cannot be retried again. Wallet-less orders get
        their claim token back.

        Raises:
            NotFoundError: Unknown order
            ConflictError: Order not pending, primary checkout succeeded,
                fallback already used, or the same provider requested again
        """
        provider = ProviderName.parse(_required(payment_provider, "paymentProvider"))

        def allow_fallback(current: Order) -> None:
            if current.fallback_provider:
                raise ConflictError(
                    "Fallback provider already used for this order",
                    orderId=current.id,
                    fallbackProvider=current.fallback_provider
                )
            if current.payment_id:
                raise ConflictError(
                    "Checkout already started with the primary provider",
                    orderId=current.id,
                    provider=current.payment_provider
                )
            if current.payment_provider == provider.value:
                raise ConflictError(
                    f"Order already uses {provider.value}",
                    orderId=current.id
                )

        order = self.repository.update_order(
            order_id,
            {"payment_provider": provider.value, "fallback_provider": provider.value},
            expected_status=OrderStatus.PENDING,
            guard=allow_fallback
        )
        self.logger.info("checkout_fallback", order_id=order_id, provider=provider.value)

        payment_url, order = self._start_checkout(order, provider)
        return CheckoutResult(order=order, payment_url=payment_url, claim_token=self._claim_token_of(order))

    @staticmethod
    def _claim_token_of(order: Order) -> Optional[IssuedToken]:
        if order.wallet_address is not None or not order.claim_token:
            return None
        return IssuedToken(token=order.claim_token, expires_at=order.claim_token_expiry)

    def _start_checkout(self, order: Order, provider: ProviderName):
        try:
            session = self.payments.get(provider).create_checkout(order)
        except LifecycleError as e:
            e.details.setdefault("orderId", order.id)
            issued = self._claim_token_of(order)
            if issued is not None:
                # Only copy of the claim token a wallet-less buyer gets on this path
                e.details.setdefault("claimToken", issued.token)
                e.details.setdefault("claimTokenExpiry", issued.expires_at)
            self.logger.warning(
                "checkout_failed",
                order_id=order.id,
                provider=provider.value,
                error=e.message
            )
            raise

        order = self.repository.update_order(order.id, {"payment_id": session.provider_charge_id})
        return session.redirect_url, order

    # --- Payment webhooks ---

    def handle_payment_event(self, event: PaymentEvent) -> dict:
        """Apply an authenticated, parsed webhook event"""
        if event.kind == EventKind.IGNORED:
            self.logger.info("webhook_event_ignored", provider=event.provider.value, event_type=event.event_type)
            return {"ignored": True}

        set_order_context(event.order_id, "payment_webhook", event.provider.value)

        if event.kind == EventKind.COMPLETED:
            result = self.confirm_payment(event.order_id, event.payment_id, event.provider)
        else:
            result = self.fail_payment(event.order_id, event.event_type, event.provider)

        return {"cached": result.cached, **result.value}

    def confirm_payment(
        self,
        order_id: str,
        payment_id: Optional[str],
        provider: ProviderName
    ) -> IdempotentResult:
        """
        ``pending -> paid``, at most once per provider and order.

        Wallet-less orders receive their active ``Claim`` here.

        Raises:
            NotFoundError: Unknown order
            ConflictError: Order already failed, or the same event is being
                processed concurrently
        """
        key = generate_idempotency_key(f"{provider.value}_payment_completed", order_id)

        def apply() -> dict:
            order = self.repository.get_order(order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found", orderId=order_id)

            if order.status == OrderStatus.FAILED:
                raise ConflictError(
                    f"Order {order_id} already failed",
                    orderId=order_id,
                    status=order.status.value
                )

            if order.status in SETTLED_STATUSES:
                self.logger.info("payment_already_settled", order_id=order_id, status=order.status.value)
            else:
                order = self.repository.update_order(
                    order_id,
                    {"status": OrderStatus.PAID, "payment_id": payment_id or order.payment_id},
                    expected_status=OrderStatus.PENDING
                )
                self.logger.info("payment_confirmed", order_id=order_id, provider=provider.value)

            if order.wallet_address is None and order.status == OrderStatus.PAID:
                order = self._ensure_claim(order)

            return {"orderId": order.id, "status": order.status.value, "paymentId": order.payment_id}

        return self.idempotency.run(key, apply)

    def _ensure_claim(self, order: Order) -> Order:
        """Create the active claim for a paid wallet-less order unless it exists"""
        now = self.clock()
        if order.claim_token and self.repository.get_claim_by_token(order.claim_token):
            return order

        if not order.claim_token or (order.claim_token_expiry or 0) <= now:
            issued = self.tokens.issue(order.id)
            order = self.repository.update_order(
                order.id,
                {"claim_token": issued.token, "claim_token_expiry": issued.expires_at}
            )
            # The buyer only holds the expired token; POST /claim-link exchanges it
            self.logger.warning(
                "claim_token_reissued",
                order_id=order.id,
                expires_at=issued.expires_at
            )

        claim = Claim(
            id=self.id_factory(),
            order_id=order.id,
            token=order.claim_token,
            status=ClaimStatus.ACTIVE,
            created_at=now
        )
        self.repository.store_claim(claim, ttl_ms=order.claim_token_expiry - now)
        self.logger.info("claim_created", order_id=order.id, claim_id=claim.id)
        return order

    def fail_payment(self, order_id: str, reason: str, provider: ProviderName) -> IdempotentResult:
        """
        ``pending -> failed``; orders in any other state are left unchanged.

        Failures reported by a provider the order no longer uses (after a
        fallback hop) are ignored.
        """
        key = generate_idempotency_key(f"{provider.value}_payment_failed", order_id)

        def apply() -> dict:
            order = self.repository.get_order(order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found", orderId=order_id)

            if order.status != OrderStatus.PENDING or order.payment_provider != provider.value:
                self.logger.info(
                    "payment_failure_ignored",
                    order_id=order_id,
                    status=order.status.value,
                    provider=provider.value
                )
                return {"orderId": order.id, "status": order.status.value}

            order = self.repository.update_order(
                order_id,
                {"status": OrderStatus.FAILED, "failure_reason": reason},
                expected_status=OrderStatus.PENDING
            )
            self.logger.warning("payment_failed", order_id=order_id, provider=provider.value, reason=reason)
            return {"orderId": order.id, "status": order.status.value}

        return self.idempotency.run(key, apply)

    def dead_letter_webhook(self, provider: ProviderName, raw_body: bytes, reason: str) -> DeadLetteredWebhook:
        """Park an authenticated delivery that can never be processed"""
        dead_letter = DeadLetteredWebhook(
            id=self.id_factory(),
            provider=provider.value,
            reason=reason,
            raw_body=raw_body.decode("utf-8", errors="replace"),
            received_at=self.clock()
        )
        self.repository.store_dead_letter(dead_letter)
        self.logger.warning(
            "webhook_dead_lettered",
            provider=provider.value,
            dead_letter_id=dead_letter.id,
            reason=reason
        )
        return dead_letter

    # --- Claims ---

    def _verify_claim_token(self, token: Optional[str]):
        payload = self.tokens.verify(token, expected_type="claim")
        if payload is None:
            raise AuthenticationError("Invalid or expired claim token")
        return payload

    def get_claim_summary(self, token: str) -> dict:
        """
        Order summary for a claim link.

        Raises:
            AuthenticationError: Invalid, expired or superseded token
            NotFoundError: Unknown order
        """
        payload = self._verify_claim_token(token)
        order = self.repository.get_order(payload.order_id)
        if order is None:
            raise NotFoundError(f"Order {payload.order_id} not found", orderId=payload.order_id)

        if not order.claim_token or not hmac.compare_digest(order.claim_token, token):
            raise AuthenticationError("Claim token is not valid for this order")

        claim = self.repository.get_claim_by_token(token)
        return {
            "order": order.summary(),
            "claim": {
                "status": claim.status.value if claim else None,
                "consumedAt": claim.consumed_at if claim else None,
            },
            "claimable": claim is not None and claim.status == ClaimStatus.ACTIVE,
            "expiresAt": payload.expires_at,
        }

    def create_claim_link(self, token: str) -> dict:
        """
        Shareable link for a claim token.

        An expired token whose order was paid after the token lapsed is
        exchanged for the order's reissued token.

        Raises:
            AuthenticationError: Invalid token, or expired without a
                reissued replacement
        """
        payload = self.tokens.verify(token, expected_type="claim")
        if payload is None:
            token, payload = self._reissued_claim_token(token)

        return {
            "claimLink": self.tokens.claim_link(token),
            "claimToken": token,
            "expiresAt": payload.expires_at,
        }

    def _reissued_claim_token(self, expired_token: str):
        stale = self.tokens.verify(expired_token, expected_type="claim", allow_expired=True)
        if stale is None:
            raise AuthenticationError("Invalid or expired claim token")

        order = self.repository.get_order(stale.order_id)
        if order is None or not order.claim_token or hmac.compare_digest(order.claim_token, expired_token):
            raise AuthenticationError("Invalid or expired claim token")

        current = self.tokens.verify(order.claim_token, expected_type="claim")
        if current is None:
            raise AuthenticationError("Invalid or expired claim token")

        self.logger.info("claim_token_exchanged", order_id=order.id)
        return order.claim_token, current

    def redeem_claim(self, token: str, wallet_address: str, tx_hash: Optional[str] = None) -> dict:
        """
        Consume a claim and hand out a short-lived mint signature.

        When ``tx_hash`` is given the mint is confirmed right away; if that
        step fails the redemption still succeeds and carries ``mintError``.

        Raises:
            ValidationError: Missing wallet address
            AuthenticationError: Invalid token, or the claim belongs to
                another order
            NotFoundError: No claim for this token
            ConflictError: The order has not been paid yet
            GoneError: Claim already consumed (including a lost race)
        """
        wallet_address = _required(wallet_address, "walletAddress")
        payload = self._verify_claim_token(token)

        claim = self.repository.get_claim_by_token(token)
        if claim is None:
            order = self.repository.get_order(payload.order_id)
            if order is not None and order.status == OrderStatus.PENDING:
                raise ConflictError("Order has not been paid yet", orderId=order.id, status=order.status.value)
            raise NotFoundError("Claim not found", orderId=payload.order_id)

        if claim.status != ClaimStatus.ACTIVE:
            raise GoneError("Claim already consumed", claimId=claim.id)

        if claim.order_id != payload.order_id:
            self.logger.warning("claim_order_mismatch", claim_id=claim.id, token_order_id=payload.order_id)
            raise AuthenticationError("Claim token does not match claim")

        set_order_context(claim.order_id, "claim")
        mint_signature = self.tokens.issue_mint_signature(claim.order_id, wallet_address)

        consumed = self.repository.consume_claim(claim.id, mint_signature.token, wallet_address)
        if consumed is None:
            raise GoneError("Claim already consumed", claimId=claim.id)

        self.logger.info("claim_redeemed", claim_id=claim.id, order_id=claim.order_id)
        result = {
            "success": True,
            "orderId": claim.order_id,
            "claimId": claim.id,
            "mintSignature": mint_signature.token,
            "mintSignatureExpiresAt": mint_signature.expires_at,
        }

        if tx_hash:
            # Claim already consumed; POST /mint is the retry path
            try:
                minted = self.confirm_mint(claim.order_id, wallet_address, tx_hash)
            except LifecycleError as e:
                self.logger.warning(
                    "claim_mint_confirmation_failed",
                    claim_id=claim.id,
                    order_id=claim.order_id,
                    error=e.code
                )
                result["mintError"] = e.to_dict()
            else:
                result["txHash"] = minted.value["txHash"]
                result["status"] = minted.value["status"]

        return result

    # --- Mint ---

    def confirm_mint(self, order_id: str, wallet_address: str, tx_hash: str) -> IdempotentResult:
        """
        ``paid -> minted``, at most once per order.

        Raises:
            ValidationError: Missing field
            NotFoundError: Unknown order
            ConflictError: Order is not ``paid``
        """
        order_id = _required(order_id, "orderId")
        wallet_address = _required(wallet_address, "walletAddress")
        tx_hash = _required(tx_hash, "txHash")
        key = generate_idempotency_key("mint_completed", order_id)

        def apply() -> dict:
            order = self.repository.get_order(order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found", orderId=order_id)

            order = self.repository.update_order(
                order_id,
                {"status": OrderStatus.MINTED, "mint_tx_hash": tx_hash, "wallet_address": wallet_address},
                expected_status=OrderStatus.PAID
            )
            self.logger.info("mint_confirmed", order_id=order_id, tx_hash=tx_hash)
            return {
                "orderId": order.id,
                "status": order.status.value,
                "txHash": order.mint_tx_hash,
                "walletAddress": order.wallet_address,
            }

        set_order_context(order_id, "mint")
        return self.idempotency.run(key, apply)

    # --- Reads ---

    def get_order(self, order_id: str) -> Order:
        order = self.repository.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", orderId=order_id)
        return order

    def list_recent_orders(self, limit: int = 50) -> List[Order]:
        return self.repository.get_recent_orders(limit)

    def list_claims(self) -> List[Claim]:
        return self.repository.list_claims()

    def list_dead_letters(self, limit: int = 50) -> List[DeadLetteredWebhook]:
        return self.repository.list_dead_letters(limit)
