"""Referral lookups and referrer earnings."""

import logging
from decimal import Decimal
from typing import Any

from src.core.config import get_settings
from src.core.errors import StaleWriteError
from src.core.money import quantize, to_decimal
from src.core.retry import retry_stale_write
from src.core.supabase import get_supabase_client

logger = logging.getLogger(__name__)


class ReferralService:
    """Service for crediting referrers when referred orders are paid."""

    def __init__(self) -> None:
        """Initialize referral service with Supabase client."""
        self.client = get_supabase_client()
        self.settings = get_settings()

    async def get_referral_by_code(self, code: str) -> dict[str, Any] | None:
        """Get a referral by its public code."""
        response = (
            self.client.table("referrals")
            .select("*")
            .eq("code", code)
            .limit(1)
            .execute()
        )

        return response.data[0] if response.data else None

    def commission_for(self, order_total: Decimal) -> Decimal:
        """Referral earning for an order total, rounded to cents."""
        return quantize(order_total * self.settings.referral_percentage / Decimal("100"))

    @retry_stale_write
    async def credit_referrer(self, code: str, order_total: Decimal) -> dict[str, Any] | None:
        """Add the commission for ``order_total`` to the referrer's balance.

        Args:
            code: Referral code stored on the order.
            order_total: Total price of the paid order.

        Returns:
            dict | None: The updated referral, or None for an unknown code.
        """
        referral = await self.get_referral_by_code(code)
        if not referral:
            logger.warning("Unknown referral code %s, no commission credited", code)
            return None

        commission = self.commission_for(order_total)
        new_balance = to_decimal(referral["balance"]) + commission

        response = (
            self.client.table("referrals")
            .update({"balance": str(new_balance)})
            .eq("id", str(referral["id"]))
            .eq("balance", str(referral["balance"]))
            .execute()
        )
        if not response.data:
            raise StaleWriteError(f"Balance of referral {code} changed during update")

        logger.info("Credited %s to referral %s", commission, code)
        return response.data[0]
