"""
ClaimAuditService for order/claim consistency checking

Compares orders with their claims and reports records the lifecycle
should never leave behind.
"""

from typing import Any, Dict, List
import structlog

from vault_orders.models.claim import ClaimStatus
from vault_orders.models.order import OrderStatus
from vault_orders.services.repository import OrderClaimRepository

logger = structlog.get_logger()


class ClaimAuditService:
    """
    Read-only audit over the orders index and the claim namespace.

    Mismatch types:
    - ``paid_order_without_claim``: wallet-less order paid but no active claim
    - ``active_claim_for_closed_order``: claim still redeemable although the
      order failed or was minted
    - ``consumed_claim_not_minted``: claim redeemed but no mint recorded yet
    - ``orphaned_claim``: claim whose order no longer exists
    """

    def __init__(self, repository: OrderClaimRepository):
        self.repository = repository

    def run_audit(self, limit: int = 1000) -> Dict[str, Any]:
        """
        Audit the ``limit`` most recent orders and all live claims.

        Returns:
            Report dict with summary, mismatches and health score
        """
        logger.info("claim_audit_started", limit=limit)

        orders = {order.id: order for order in self.repository.get_recent_orders(limit)}
        claims = self.repository.list_claims()
        claims_by_order = {}
        for claim in claims:
            claims_by_order.setdefault(claim.order_id, []).append(claim)

        mismatches: List[Dict[str, Any]] = []

        for order in orders.values():
            if order.wallet_address is not None or order.claim_token is None:
                continue
            if order.status == OrderStatus.PAID and not claims_by_order.get(order.id):
                mismatches.append({
                    "type": "paid_order_without_claim",
                    "order_id": order.id,
                    "claim_id": None,
                    "severity": "high",
                    "details": "Order is paid but has no claim",
                    "recovery_action": "Redeliver the payment webhook to recreate the claim",
                })

        for claim in claims:
            order = orders.get(claim.order_id) or self.repository.get_order(claim.order_id)
            if order is None:
                mismatches.append({
                    "type": "orphaned_claim",
                    "order_id": claim.order_id,
                    "claim_id": claim.id,
                    "severity": "high",
                    "details": "Claim references a missing order",
                    "recovery_action": "Manual review",
                })
                continue

            if claim.status == ClaimStatus.ACTIVE and order.is_terminal:
                mismatches.append({
                    "type": "active_claim_for_closed_order",
                    "order_id": order.id,
                    "claim_id": claim.id,
                    "severity": "high",
                    "details": f"Claim is active but order is {order.status.value}",
                    "recovery_action": "Manual review",
                })
            elif claim.status == ClaimStatus.CONSUMED and order.status == OrderStatus.PAID:
                mismatches.append({
                    "type": "consumed_claim_not_minted",
                    "order_id": order.id,
                    "claim_id": claim.id,
                    "severity": "medium",
                    "details": "Claim redeemed but mint not confirmed",
                    "recovery_action": "Confirm the mint transaction via POST /mint",
                })

        checked = len(orders) + len(claims)
        health_score = 1.0 if checked == 0 else 1.0 - len(mismatches) / checked

        report = {
            "summary": {
                "orders_checked": len(orders),
                "claims_checked": len(claims),
                "active_claims": sum(1 for claim in claims if claim.status == ClaimStatus.ACTIVE),
                "consumed_claims": sum(1 for claim in claims if claim.status == ClaimStatus.CONSUMED),
            },
            "mismatches": mismatches,
            "health_score": max(health_score, 0.0),
        }

        logger.info(
            "claim_audit_complete",
            mismatches=len(mismatches),
            health_score=report["health_score"]
        )
        return report
