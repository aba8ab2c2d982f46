"""
API routers package
"""

from vault_orders.routers.orders import router as orders_router
from vault_orders.routers.webhooks import router as webhooks_router
from vault_orders.routers.claims import router as claims_router
from vault_orders.routers.mint import router as mint_router
from vault_orders.routers.admin import router as admin_router
