"""Order lifecycle business logic service."""

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Any
from uuid import UUID

from src.core.config import get_settings
from src.core.errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    StaleWriteError,
    UnauthorizedError,
)
from src.core.money import to_decimal
from src.core.retry import retry_stale_write
from src.core.shipping import Address, get_shipping_client
from src.core.supabase import get_supabase_client
from src.models.order import OrderStatus, can_transition
from src.models.shipment import PaymentStatus
from src.schemas.auth import UserContext
from src.schemas.order import (
    CheckoutRequest,
    OrderItemCreate,
    OrderItemsCreate,
    SingleOrderItemCreate,
)
from src.services.inventory_service import InventoryService
from src.services.profile_service import ProfileService

logger = logging.getLogger(__name__)

# Orders in these states no longer accept line-item changes
LOCKED_STATUSES = {OrderStatus.SHIPPED, OrderStatus.CANCELED}


def ensure_admin(user: UserContext, message: str) -> None:
    """Raise UnauthorizedError unless the caller holds the admin role."""
    if not user.has_role(get_settings().admin_role):
        raise UnauthorizedError(message)


def ensure_owner(order: dict[str, Any], profile_id: UUID | str, message: str) -> None:
    """Raise UnauthorizedError unless the profile owns the order."""
    if str(order["profile_id"]) != str(profile_id):
        raise UnauthorizedError(message)


class OrderService:
    """Service for order creation, line items, checkout and status changes."""

    def __init__(self) -> None:
        """Initialize order service with clients."""
        self.client = get_supabase_client()
        self.settings = get_settings()
        self.inventory = InventoryService()
        self.profiles = ProfileService()
        self.shipping = get_shipping_client()

    # Reads

    async def get_order(self, order_id: UUID | str) -> dict[str, Any] | None:
        """Get an order row by ID.

        Args:
            order_id: The order's UUID.

        Returns:
            dict | None: The order data or None if not found.
        """
        response = (
            self.client.table("orders")
            .select("*")
            .eq("id", str(order_id))
            .limit(1)
            .execute()
        )

        return response.data[0] if response.data else None

    async def require_order(self, order_id: UUID | str) -> dict[str, Any]:
        """Get an order row or raise NotFoundError."""
        order = await self.get_order(order_id)
        if not order:
            raise NotFoundError("Order does not exist")
        return order

    async def get_order_items(self, order_id: UUID | str) -> list[dict[str, Any]]:
        """Get the line items of an order, oldest first."""
        response = (
            self.client.table("order_items")
            .select("*")
            .eq("order_id", str(order_id))
            .order("created_at")
            .execute()
        )

        return response.data or []

    async def has_open_payment(self, order_id: UUID | str) -> bool:
        """Check whether a payment for the order is still waiting on the gateway."""
        response = (
            self.client.table("payments")
            .select("id")
            .eq("order_id", str(order_id))
            .eq("payment_status", PaymentStatus.PENDING.value)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    async def get_order_details(self, order_id: UUID) -> dict[str, Any]:
        """Get an order with its line items and owner profile.

        Raises:
            NotFoundError: If the order does not exist.
        """
        order = await self.require_order(order_id)
        order["order_items"] = await self.get_order_items(order_id)
        order["profile"] = await self.profiles.get_profile_by_id(order["profile_id"])
        return order

    async def get_user_orders(
        self,
        profile_id: UUID,
        skip: int = 0,
        take: int | None = None,
    ) -> list[dict[str, Any]]:
        """Get a page of a profile's orders with their line items, newest first.

        Args:
            profile_id: The profile's UUID.
            skip: Number of orders to skip.
            take: Page size, defaults to the configured page size.

        Returns:
            list[dict]: Orders, each with an ``order_items`` list.
        """
        take = take or self.settings.default_page_size
        response = (
            self.client.table("orders")
            .select("*")
            .eq("profile_id", str(profile_id))
            .order("created_at", desc=True)
            .range(skip, skip + take - 1)
            .execute()
        )
        orders = response.data or []
        if not orders:
            return []

        items_response = (
            self.client.table("order_items")
            .select("*")
            .in_("order_id", [str(order["id"]) for order in orders])
            .execute()
        )
        items_by_order: dict[str, list[dict[str, Any]]] = defaultdict(list)
        for item in items_response.data or []:
            items_by_order[str(item["order_id"])].append(item)

        for order in orders:
            order["order_items"] = items_by_order.get(str(order["id"]), [])
        return orders

    # Creation and line items

    async def create_order(self, profile_id: UUID) -> tuple[dict[str, Any], bool]:
        """Return the profile's open order, creating one if needed.

        Returns:
            tuple: (order, created) where created is False when an existing
            PENDING order was returned.
        """
        response = (
            self.client.table("orders")
            .select("*")
            .eq("profile_id", str(profile_id))
            .order("created_at", desc=True)
            .limit(1)
            .execute()
        )
        if response.data and response.data[0]["status"] == OrderStatus.PENDING.value:
            return response.data[0], False

        order = self._insert_order({"profile_id": str(profile_id)})
        logger.info("Created empty order %s for profile %s", order["id"], profile_id)
        return order, True

    def _insert_order(self, data: dict[str, Any]) -> dict[str, Any]:
        order_data = {
            "status": OrderStatus.PENDING.value,
            "total_price": "0",
            **data,
        }
        response = self.client.table("orders").insert(order_data).execute()
        return response.data[0]

    async def _price_items(self, items: list[OrderItemCreate]) -> list[dict[str, Any]]:
        """Validate requested items against stock and snapshot their prices.

        The same artwork requested twice is checked against stock once,
        with the quantities summed.

        Raises:
            NotFoundError: If an artwork does not exist.
            BadRequestError: If more copies are requested than are in stock.
        """
        artworks = await self.inventory.get_artworks(item.artwork_id for item in items)

        requested: dict[str, int] = defaultdict(int)
        for item in items:
            requested[str(item.artwork_id)] += item.quantity

        for artwork_id, quantity in requested.items():
            artwork = artworks.get(artwork_id)
            if not artwork:
                raise NotFoundError(f"Artwork {artwork_id} does not exist")
            available = int(artwork["quantity"])
            if quantity > available:
                raise BadRequestError(
                    f"There are only {available} copies of artwork {artwork_id} available in the store."
                )

        return [
            {
                "artwork_id": str(item.artwork_id),
                "quantity": item.quantity,
                "price": to_decimal(artworks[str(item.artwork_id)]["price"]) * item.quantity,
            }
            for item in items
        ]

    async def add_order_items(self, profile_id: UUID, data: OrderItemsCreate) -> dict[str, Any]:
        """Place a new order with one or more line items.

        Stock is validated but not decremented here; it is reserved when
        payment starts.

        Args:
            profile_id: Owner of the new order.
            data: Delivery details and requested items.

        Returns:
            dict: The created order with its ``order_items``.
        """
        priced = await self._price_items(data.order_items)
        total = sum((item["price"] for item in priced), Decimal("0"))

        order = self._insert_order(
            {
                "profile_id": str(profile_id),
                "delivery_address": data.delivery_address,
                "city": data.city,
                "zip": data.zip,
                "country": data.country,
                "referrer_code": data.referrer_code,
            }
        )

        try:
            items_response = (
                self.client.table("order_items")
                .insert(
                    [
                        {
                            "order_id": str(order["id"]),
                            "artwork_id": item["artwork_id"],
                            "quantity": item["quantity"],
                            "price": str(item["price"]),
                        }
                        for item in priced
                    ]
                )
                .execute()
            )
        except Exception:
            logger.error("Failed to add items to order %s, removing it", order["id"])
            self.client.table("order_items").delete().eq("order_id", str(order["id"])).execute()
            self.client.table("orders").delete().eq("id", str(order["id"])).execute()
            raise

        order = await self._set_total(order, total)
        order["order_items"] = items_response.data or []

        logger.info(
            "Order %s placed by profile %s with %d items, total %s",
            order["id"],
            profile_id,
            len(priced),
            total,
        )
        return order

    async def add_order_item_to_order(
        self,
        profile_id: UUID,
        data: SingleOrderItemCreate,
    ) -> dict[str, Any]:
        """Add one line item to an existing open order.

        Raises:
            NotFoundError: If the order or artwork does not exist.
            UnauthorizedError: If the caller does not own the order.
            ConflictError: If the order is no longer PENDING.
            BadRequestError: If the artwork does not have enough stock.
        """
        order = await self.require_order(data.order_id)
        ensure_owner(order, profile_id, "You cannot add items to an order that is not yours.")
        if order["status"] != OrderStatus.PENDING.value:
            raise ConflictError("Items can only be added to a pending order")

        (priced,) = await self._price_items([data])
        response = (
            self.client.table("order_items")
            .insert(
                {
                    "order_id": str(order["id"]),
                    "artwork_id": priced["artwork_id"],
                    "quantity": priced["quantity"],
                    "price": str(priced["price"]),
                }
            )
            .execute()
        )
        await self._adjust_total(order["id"], priced["price"])
        return response.data[0]

    async def remove_order_item_from_order(
        self,
        profile_id: UUID,
        order_item_id: UUID,
    ) -> dict[str, Any]:
        """Remove a line item, return its copies to stock and lower the total.

        Returns:
            dict: The updated order.

        Raises:
            NotFoundError: If the item, its order or its artwork is missing.
            UnauthorizedError: If the caller does not own the order.
            ConflictError: If the order was shipped or canceled.
        """
        response = (
            self.client.table("order_items")
            .select("*")
            .eq("id", str(order_item_id))
            .limit(1)
            .execute()
        )
        if not response.data:
            raise NotFoundError("Order item does not exist")
        order_item = response.data[0]

        order = await self.require_order(order_item["order_id"])
        ensure_owner(order, profile_id, "You cannot remove items from an order that is not yours.")
        if OrderStatus(order["status"]) in LOCKED_STATUSES:
            raise ConflictError(f"Items cannot be removed from a {order['status'].lower()} order")
        await self.inventory.require_artwork(order_item["artwork_id"])

        # Only the request whose delete removed the row goes on to restore stock
        deleted = self.client.table("order_items").delete().eq("id", str(order_item_id)).execute()
        if not deleted.data:
            raise NotFoundError("Order item does not exist")

        await self.inventory.restore(order_item["artwork_id"], int(order_item["quantity"]))

        updated = await self._adjust_total(order["id"], -to_decimal(order_item["price"]))
        logger.info("Removed item %s from order %s", order_item_id, order["id"])
        return updated

    async def _set_total(self, order: dict[str, Any], new_total: Decimal) -> dict[str, Any]:
        response = (
            self.client.table("orders")
            .update({"total_price": str(new_total)})
            .eq("id", str(order["id"]))
            .eq("total_price", str(order["total_price"]))
            .execute()
        )
        if not response.data:
            raise StaleWriteError(f"Total of order {order['id']} changed during update")
        return response.data[0]

    @retry_stale_write
    async def _adjust_total(self, order_id: UUID | str, delta: Decimal) -> dict[str, Any]:
        """Add ``delta`` to an order total using a compare-and-set update."""
        order = await self.require_order(order_id)
        return await self._set_total(order, to_decimal(order["total_price"]) + delta)

    # Checkout

    async def checkout(
        self,
        order_id: UUID,
        profile_id: UUID,
        data: CheckoutRequest,
    ) -> dict[str, Any]:
        """Attach delivery details and a quoted shipping cost to an order.

        Status is unchanged.

        Raises:
            NotFoundError: If the order does not exist.
            UnauthorizedError: If the caller does not own the order.
            ConflictError: If the order is not PENDING.
            UpstreamError: If no shipping quote could be obtained.
        """
        order = await self.require_order(order_id)
        ensure_owner(order, profile_id, "You cannot check out an order that is not yours.")
        if order["status"] != OrderStatus.PENDING.value:
            raise ConflictError("Only pending orders can be checked out")

        rate = await self.shipping.get_cheapest_rate(Address(city=data.city, country_code=data.country))

        update: dict[str, Any] = {
            "delivery_address": data.delivery_address,
            "city": data.city,
            "zip": data.zip,
            "country": data.country,
            "shipping_cost": str(rate.cost),
        }
        if data.referrer_code:
            update["referrer_code"] = data.referrer_code

        response = self.client.table("orders").update(update).eq("id", str(order_id)).execute()
        if not response.data:
            raise NotFoundError("Order does not exist")

        logger.info("Order %s checked out with shipping cost %s (%s)", order_id, rate.cost, rate.pricing_tier)
        return response.data[0]

    # Status

    async def transition_status(self, order: dict[str, Any], target: OrderStatus) -> dict[str, Any]:
        """Move an order to ``target`` if the transition table allows it.

        This is the only code path that writes ``orders.status``.

        Raises:
            ConflictError: If the move is illegal, or another request changed
                the status first.
        """
        current = OrderStatus(order["status"])
        if not can_transition(current, target):
            raise ConflictError(f"Order cannot move from {current.value} to {target.value}")

        response = (
            self.client.table("orders")
            .update({"status": target.value})
            .eq("id", str(order["id"]))
            .eq("status", current.value)
            .execute()
        )
        if not response.data:
            raise StaleWriteError(f"Status of order {order['id']} changed during update")

        logger.info("Order %s moved from %s to %s", order["id"], current.value, target.value)
        return response.data[0]

    async def cancel_order(self, order_id: UUID, profile_id: UUID) -> dict[str, Any]:
        """Cancel an order on behalf of its owner.

        Stock is not restored.

        Raises:
            NotFoundError: If the order does not exist.
            UnauthorizedError: If the caller is not the owner or the order shipped.
            ConflictError: If the order is already canceled or a payment for it
                is in progress.
        """
        order = await self.require_order(order_id)
        ensure_owner(order, profile_id, "You cannot cancel an order you did not make")
        if order["status"] == OrderStatus.SHIPPED.value:
            raise UnauthorizedError("You cannot cancel an order that has already been shipped")
        if await self.has_open_payment(order["id"]):
            raise ConflictError("A payment for this order is in progress")

        return await self.transition_status(order, OrderStatus.CANCELED)

    async def change_order_status(
        self,
        user: UserContext,
        order_id: UUID,
        status: OrderStatus,
    ) -> dict[str, Any]:
        """Administrative status change, still bound by the transition table."""
        ensure_admin(user, "Only admins can change the status of an order")
        order = await self.require_order(order_id)
        return await self.transition_status(order, status)

    # Deletion

    async def delete_order(self, order_id: UUID, profile_id: UUID) -> None:
        """Delete an order and its line items.

        Stock is not restored.

        Raises:
            NotFoundError: If the order does not exist.
            UnauthorizedError: If the caller does not own the order.
            ConflictError: If a payment for the order is in progress.
        """
        order = await self.require_order(order_id)
        ensure_owner(order, profile_id, "You cannot delete an order you did not make")
        if await self.has_open_payment(order["id"]):
            raise ConflictError("A payment for this order is in progress")

        self.client.table("order_items").delete().eq("order_id", str(order_id)).execute()
        self.client.table("orders").delete().eq("id", str(order_id)).execute()
        logger.info("Order %s deleted by profile %s", order_id, profile_id)
