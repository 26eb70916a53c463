"""Order model type definitions and the order status state machine."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TypedDict
from uuid import UUID


class OrderStatus(str, Enum):
    """Order status enum values matching the database enum."""

    PENDING = "PENDING"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    CANCELED = "CANCELED"

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self]


# Single source of truth for legal status moves.
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELED}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELED}),
    OrderStatus.SHIPPED: frozenset(),
    OrderStatus.CANCELED: frozenset(),
}


def can_transition(current: OrderStatus | str, target: OrderStatus | str) -> bool:
    """Check whether an order may move from one status to another."""
    return OrderStatus(target) in ALLOWED_TRANSITIONS[OrderStatus(current)]


class OrderItem(TypedDict):
    """Order item table row representation.

    ``price`` is the quantity times the artwork unit price when the
    item was added; later artwork price changes do not affect it.
    """

    id: UUID
    order_id: UUID
    artwork_id: UUID
    quantity: int
    price: Decimal
    created_at: datetime


class Order(TypedDict):
    """Order table row representation.

    Represents an order stored in the orders table.
    Maps directly to the database schema.
    """

    id: UUID
    profile_id: UUID
    delivery_address: str | None
    city: str | None
    zip: str | None
    country: str | None
    total_price: Decimal
    shipping_cost: Decimal | None
    status: OrderStatus
    referrer_code: str | None
    created_at: datetime

