"""Database model type definitions."""

from src.models.artwork import ArtWork, PurchaseStatus
from src.models.order import (
    ALLOWED_TRANSITIONS,
    Order,
    OrderItem,
    OrderStatus,
    can_transition,
)
from src.models.profile import Profile
from src.models.shipment import Payment, PaymentStatus, Referral, Shipment

__all__ = [
    "ALLOWED_TRANSITIONS",
    "ArtWork",
    "Order",
    "OrderItem",
    "OrderStatus",
    "Payment",
    "PaymentStatus",
    "Profile",
    "PurchaseStatus",
    "Referral",
    "Shipment",
    "can_transition",
]
