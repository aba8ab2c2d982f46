"""
Orders API Router
Order creation and the single checkout fallback hop
"""

from fastapi import APIRouter, Depends
import structlog

from vault_orders.models.schemas import CreateOrderRequest, CreateOrderResponse, RetryCheckoutRequest
from vault_orders.routers.dependencies import get_coordinator
from vault_orders.services.order_lifecycle import OrderLifecycleCoordinator

logger = structlog.get_logger()

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", status_code=201, response_model=CreateOrderResponse, response_model_exclude_none=True, response_model_by_alias=True)
def create_order(
    body: CreateOrderRequest,
    coordinator: OrderLifecycleCoordinator = Depends(get_coordinator)
):
    """
    Create an order and start checkout.

    Buyers without a wallet receive a ``claimToken`` to redeem after payment.
    On provider failure the error body carries ``orderId`` so the client can
    try one alternate provider via ``POST /orders/{id}/checkout``.
    """
    result = coordinator.create_order(
        wallet_address=body.wallet_address,
        payment_provider=body.payment_provider,
        description=body.description
    )
    return CreateOrderResponse(
        order_id=result.order.id,
        payment_url=result.payment_url,
        provider=result.order.payment_provider,
        claim_token=result.claim_token.token if result.claim_token else None,
        claim_token_expiry=result.claim_token.expires_at if result.claim_token else None
    )


@router.get("/{order_id}")
def get_order(order_id: str, coordinator: OrderLifecycleCoordinator = Depends(get_coordinator)):
    """Order status; the claim token is never echoed back"""
    order = coordinator.get_order(order_id)
    return order.model_dump(mode="json", by_alias=True, exclude={"claim_token"})


@router.post("/{order_id}/checkout", response_model=CreateOrderResponse, response_model_exclude_none=True, response_model_by_alias=True)
def retry_checkout(
    order_id: str,
    body: RetryCheckoutRequest,
    coordinator: OrderLifecycleCoordinator = Depends(get_coordinator)
):
    """Fallback hop: restart checkout of a pending order with another provider (once)"""
    result = coordinator.retry_checkout(order_id, body.payment_provider)
    return CreateOrderResponse(
        order_id=result.order.id,
        payment_url=result.payment_url,
        provider=result.order.payment_provider,
        claim_token=result.claim_token.token if result.claim_token else None,
        claim_token_expiry=result.claim_token.expires_at if result.claim_token else None
    )
