"""
Claims API Router
Claim lookup, redemption and shareable claim links
"""

from fastapi import APIRouter, Depends, Query

from vault_orders.models.schemas import ClaimLinkRequest, RedeemClaimRequest
from vault_orders.routers.dependencies import get_coordinator
from vault_orders.services.order_lifecycle import OrderLifecycleCoordinator

router = APIRouter(tags=["claims"])


@router.get("/claim")
def get_claim(
    token: str = Query(..., description="Claim token"),
    coordinator: OrderLifecycleCoordinator = Depends(get_coordinator)
):
    """Order summary and claim status for a valid claim token"""
    return coordinator.get_claim_summary(token)


@router.post("/claim")
def redeem_claim(body: RedeemClaimRequest, coordinator: OrderLifecycleCoordinator = Depends(get_coordinator)):
    """
    Redeem a claim token for a mint signature.

    A second redemption of the same claim answers 410.
    """
    return coordinator.redeem_claim(body.token, body.wallet_address, body.tx_hash)


@router.post("/claim-link")
def create_claim_link(body: ClaimLinkRequest, coordinator: OrderLifecycleCoordinator = Depends(get_coordinator)):
    return coordinator.create_claim_link(body.claim_token)
