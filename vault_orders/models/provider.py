"""
Supported payment providers
"""

from enum import Enum

from vault_orders.errors import ValidationError


class ProviderName(str, Enum):
    STRIPE = "stripe"
    COINBASE = "coinbase"
    PAYPAL = "paypal"

    @classmethod
    def parse(cls, value: str) -> "ProviderName":
        """Case-insensitive lookup that raises a 400-class error for unknown names"""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            raise ValidationError(
                f"Unsupported payment provider: {value}",
                supported=[provider.value for provider in cls]
            )
