"""
Mint API Router
Records the on-chain mint of a paid order
"""

from fastapi import APIRouter, Depends

from vault_orders.models.schemas import ConfirmMintRequest
from vault_orders.routers.dependencies import get_coordinator
from vault_orders.services.order_lifecycle import OrderLifecycleCoordinator

router = APIRouter(tags=["mint"])


@router.post("/mint")
def confirm_mint(body: ConfirmMintRequest, coordinator: OrderLifecycleCoordinator = Depends(get_coordinator)):
    """Mark a paid order as minted; repeating the call returns the cached result"""
    result = coordinator.confirm_mint(body.order_id, body.wallet_address, body.tx_hash)
    return {
        "success": True,
        "orderId": result.value["orderId"],
        "status": result.value["status"],
        "txHash": result.value["txHash"],
        "cached": result.cached,
    }
