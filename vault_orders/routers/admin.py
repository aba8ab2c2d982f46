"""
Admin API Router
Read-only operational views, protected by the admin bearer secret
"""

from fastapi import APIRouter, Depends, Query

from vault_orders.routers.dependencies import get_coordinator, require_admin
from vault_orders.services.order_lifecycle import OrderLifecycleCoordinator

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/orders")
def list_orders(
    limit: int = Query(50, ge=1, le=1000, description="Maximum orders to return"),
    coordinator: OrderLifecycleCoordinator = Depends(get_coordinator)
):
    """Most recent orders, newest first"""
    orders = coordinator.list_recent_orders(limit)
    return {"count": len(orders), "orders": [order.to_record() for order in orders]}


@router.get("/claims")
def list_claims(coordinator: OrderLifecycleCoordinator = Depends(get_coordinator)):
    claims = coordinator.list_claims()
    return {"count": len(claims), "claims": [claim.to_record() for claim in claims]}


@router.get("/webhooks/dead-letter")
def list_dead_letters(
    limit: int = Query(50, ge=1, le=500),
    coordinator: OrderLifecycleCoordinator = Depends(get_coordinator)
):
    """Authenticated webhook deliveries that could not be processed"""
    dead_letters = coordinator.list_dead_letters(limit)
    return {"count": len(dead_letters), "deadLetters": [item.to_record() for item in dead_letters]}
