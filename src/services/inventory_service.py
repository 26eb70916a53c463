"""Artwork stock reads and compare-and-set stock mutations."""

import logging
from typing import Any, Iterable
from uuid import UUID

from src.core.errors import ConflictError, NotFoundError, StaleWriteError
from src.core.retry import retry_stale_write
from src.core.supabase import get_supabase_client
from src.models.artwork import PurchaseStatus

logger = logging.getLogger(__name__)


class InventoryService:
    """Service owning every write to ``artworks.quantity``.

    Each write is conditional on the quantity that was read, so two
    requests racing on the same artwork cannot both apply a stale value.
    """

    def __init__(self) -> None:
        """Initialize inventory service with Supabase client."""
        self.client = get_supabase_client()

    async def get_artwork(self, artwork_id: UUID | str) -> dict[str, Any] | None:
        """Get an artwork by ID.

        Args:
            artwork_id: The artwork's UUID.

        Returns:
            dict | None: The artwork data or None if not found.
        """
        response = (
            self.client.table("artworks")
            .select("*")
            .eq("id", str(artwork_id))
            .limit(1)
            .execute()
        )

        return response.data[0] if response.data else None

    async def require_artwork(self, artwork_id: UUID | str) -> dict[str, Any]:
        """Get an artwork or raise NotFoundError."""
        artwork = await self.get_artwork(artwork_id)
        if not artwork:
            raise NotFoundError(f"Artwork {artwork_id} does not exist")
        return artwork

    async def get_artworks(self, artwork_ids: Iterable[UUID | str]) -> dict[str, dict[str, Any]]:
        """Get several artworks keyed by ID. Missing IDs are absent from the result."""
        ids = sorted({str(artwork_id) for artwork_id in artwork_ids})
        if not ids:
            return {}

        response = self.client.table("artworks").select("*").in_("id", ids).execute()
        return {str(row["id"]): row for row in response.data or []}

    def _compare_and_set(self, artwork: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
        response = (
            self.client.table("artworks")
            .update(update)
            .eq("id", str(artwork["id"]))
            .eq("quantity", artwork["quantity"])
            .execute()
        )
        if not response.data:
            raise StaleWriteError(f"Stock for artwork {artwork['id']} changed during update")
        return response.data[0]

    @retry_stale_write
    async def restore(self, artwork_id: UUID | str, quantity: int) -> dict[str, Any]:
        """Return ``quantity`` copies of an artwork to stock.

        An artwork that was sold out is flagged as in stock again.

        Raises:
            NotFoundError: If the artwork no longer exists.
        """
        artwork = await self.require_artwork(artwork_id)
        current = int(artwork["quantity"])

        update: dict[str, Any] = {"quantity": current + quantity}
        if current == 0:
            update["purchase_status"] = PurchaseStatus.IN_STOCK.value

        updated = self._compare_and_set(artwork, update)
        logger.info("Restored %d of artwork %s (now %d)", quantity, artwork_id, current + quantity)
        return updated

    @retry_stale_write
    async def reserve(self, artwork_id: UUID | str, quantity: int) -> dict[str, Any]:
        """Take ``quantity`` copies of an artwork out of stock.

        Raises:
            NotFoundError: If the artwork no longer exists.
            ConflictError: If fewer than ``quantity`` copies remain.
        """
        artwork = await self.require_artwork(artwork_id)
        current = int(artwork["quantity"])
        if current < quantity:
            raise ConflictError(
                f"There are only {current} copies of artwork {artwork_id} available in the store."
            )

        remaining = current - quantity
        update: dict[str, Any] = {"quantity": remaining}
        if remaining == 0:
            update["purchase_status"] = PurchaseStatus.SOLD_OUT.value

        updated = self._compare_and_set(artwork, update)
        logger.info("Reserved %d of artwork %s (now %d)", quantity, artwork_id, remaining)
        return updated

    async def reserve_items(self, order_items: list[dict[str, Any]]) -> None:
        """Reserve stock for every line item, or for none of them.

        Items already reserved are released again if a later one fails.
        """
        reserved: list[dict[str, Any]] = []
        try:
            for item in order_items:
                await self.reserve(item["artwork_id"], int(item["quantity"]))
                reserved.append(item)
        except Exception:
            if reserved:
                logger.warning("Releasing %d partial stock reservations", len(reserved))
                await self.release_items(reserved)
            raise

    async def release_items(self, order_items: list[dict[str, Any]]) -> None:
        """Return the stock held by line items."""
        for item in order_items:
            await self.restore(item["artwork_id"], int(item["quantity"]))
