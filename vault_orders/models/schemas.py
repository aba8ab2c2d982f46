"""
Pydantic schemas for the HTTP API
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateOrderRequest(ApiModel):
    wallet_address: Optional[str] = Field(None, description="Buyer wallet; omit to receive a claim token")
    payment_provider: Optional[str] = Field(None, description="stripe, coinbase or paypal; defaults to configured provider")
    description: Optional[str] = Field(None, max_length=500)


class CreateOrderResponse(ApiModel):
    order_id: str
    payment_url: str
    provider: str
    claim_token: Optional[str] = None
    claim_token_expiry: Optional[int] = None


class RetryCheckoutRequest(ApiModel):
    payment_provider: str


class RedeemClaimRequest(ApiModel):
    token: str
    wallet_address: str
    tx_hash: Optional[str] = None


class ClaimLinkRequest(ApiModel):
    claim_token: str


class ConfirmMintRequest(ApiModel):
    order_id: str
    wallet_address: str
    tx_hash: str
