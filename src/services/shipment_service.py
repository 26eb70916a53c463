"""Shipment booking, fulfilment and tracking."""

import logging
from typing import Any
from uuid import UUID

from src.core.errors import BadRequestError, ConflictError, NotFoundError
from src.core.money import to_decimal
from src.core.shipping import Address, get_shipping_client
from src.core.supabase import get_supabase_client
from src.models.order import OrderStatus, can_transition
from src.schemas.auth import UserContext
from src.schemas.order import ShipOrderRequest
from src.services.email_service import EmailService
from src.services.order_service import OrderService, ensure_admin
from src.services.profile_service import ProfileService

logger = logging.getLogger(__name__)


class ShipmentService:
    """Service for getting paid orders out of the door."""

    def __init__(self) -> None:
        """Initialize shipment service with clients."""
        self.client = get_supabase_client()
        self.shipping = get_shipping_client()
        self.orders = OrderService()
        self.profiles = ProfileService()
        self.email = EmailService()

    async def get_shipment(self, shipment_id: UUID | str) -> dict[str, Any] | None:
        """Get a shipment by ID."""
        response = (
            self.client.table("shipments")
            .select("*")
            .eq("id", str(shipment_id))
            .limit(1)
            .execute()
        )

        return response.data[0] if response.data else None

    async def get_shipment_for_order(self, order_id: UUID | str) -> dict[str, Any] | None:
        """Get the shipment booked for an order, if any."""
        response = (
            self.client.table("shipments")
            .select("*")
            .eq("order_id", str(order_id))
            .limit(1)
            .execute()
        )

        return response.data[0] if response.data else None

    async def create_shipment(self, user: UserContext, order_id: UUID) -> dict[str, Any]:
        """Book a shipment for a paid order.

        The receiver is built from the order's delivery details and the
        owner's profile. The label is not paid for until the order ships.

        Returns:
            dict: The stored shipment row.

        Raises:
            UnauthorizedError: If the caller is not an admin.
            NotFoundError: If the order does not exist.
            ConflictError: If the order is not PAID or already has a shipment.
            UpstreamError: If the provider cannot quote or book.
        """
        ensure_admin(user, "Only admins can book shipments")

        order = await self.orders.require_order(order_id)
        if order["status"] != OrderStatus.PAID.value:
            raise ConflictError("Only paid orders can be booked for shipment")
        if await self.get_shipment_for_order(order_id):
            raise ConflictError("A shipment has already been booked for this order")

        profile = await self.profiles.get_profile_by_id(order["profile_id"]) or {}
        receiver = Address(
            city=order.get("city") or "",
            country_code=order.get("country") or "",
            name=profile.get("name"),
            email=profile.get("user_email"),
            phone=profile.get("mobile_number"),
            address_line=order.get("delivery_address"),
        )
        order_items = await self.orders.get_order_items(order_id)
        item_count = sum(int(item["quantity"]) for item in order_items)

        rate = await self.shipping.get_cheapest_rate(receiver)
        booking = await self.shipping.book_shipment(
            receiver,
            description=f"Artwork order {order_id}",
            item_count=item_count or 1,
            declared_value=to_decimal(order["total_price"]),
            rate=rate,
        )

        response = (
            self.client.table("shipments")
            .insert(
                {
                    "order_id": str(order_id),
                    "provider_shipment_id": booking.provider_shipment_id,
                    "tracking_id": booking.tracking_id,
                    "cost": str(booking.cost),
                    "is_paid": False,
                }
            )
            .execute()
        )

        logger.info("Booked shipment %s for order %s", booking.tracking_id, order_id)
        return response.data[0]

    async def ship_order(self, user: UserContext, data: ShipOrderRequest) -> dict[str, Any]:
        """Pay for the shipping label, mark the order shipped and tell the buyer.

        Every step checks what earlier attempts already did, so calling this
        again after a partial failure finishes the job without paying twice.

        Returns:
            dict: ``order``, ``tracking_id`` and ``notification_sent``.

        Raises:
            UnauthorizedError: If the caller is not an admin.
            NotFoundError: If the order or shipment does not exist.
            BadRequestError: If the shipment belongs to another order.
            ConflictError: If the order cannot move to SHIPPED.
            UpstreamError: If the label payment fails.
        """
        ensure_admin(user, "Only admins can ship orders")

        order = await self.orders.require_order(data.order_id)
        shipment = await self.get_shipment(data.shipment_id)
        if not shipment:
            raise NotFoundError("Shipment does not exist")
        if str(shipment["order_id"]) != str(order["id"]):
            raise BadRequestError("Shipment does not belong to this order")

        if not can_transition(OrderStatus(order["status"]), OrderStatus.SHIPPED):
            raise ConflictError(f"A {order['status'].lower()} order cannot be shipped")

        if not shipment.get("is_paid"):
            await self.shipping.pay_for_shipment(shipment["provider_shipment_id"])
            paid = self.client.table("shipments").update({"is_paid": True}).eq(
                "id", str(shipment["id"])
            ).execute()
            if not paid.data:
                logger.error(
                    "Label for shipment %s (provider %s) was paid but is_paid was not recorded; "
                    "set it manually before retrying or the label is paid twice",
                    shipment["id"],
                    shipment["provider_shipment_id"],
                )

        order = await self.orders.transition_status(order, OrderStatus.SHIPPED)

        result = await self.email.send_order_shipped_email(
            data.payer_email,
            str(order["id"]),
            shipment["tracking_id"],
        )
        if not result.get("success"):
            logger.warning("Order %s shipped but the buyer was not notified", order["id"])

        logger.info("Order %s shipped with tracking id %s", order["id"], shipment["tracking_id"])
        return {
            "order": order,
            "tracking_id": shipment["tracking_id"],
            "notification_sent": bool(result.get("success")),
        }

    async def get_shipment_details(self, shipment_id: UUID) -> dict[str, Any]:
        """Get a stored shipment merged with the provider's current view of it.

        Raises:
            NotFoundError: If the shipment does not exist.
        """
        shipment = await self.get_shipment(shipment_id)
        if not shipment:
            raise NotFoundError("Shipment does not exist")

        remote = await self.shipping.get_shipment(shipment["provider_shipment_id"])
        return {
            **shipment,
            "status": remote.get("status"),
            "receiver": remote.get("receiver"),
        }

    async def track_shipment(self, tracking_id: str) -> dict[str, Any]:
        """Get the tracking history of a shipment from the provider."""
        result = await self.shipping.track(tracking_id)
        return {
            "tracking_id": result.tracking_id,
            "status": result.status,
            "events": [
                {"status": event.status, "location": event.location, "timestamp": event.timestamp}
                for event in result.events
            ],
        }
