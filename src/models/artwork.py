"""Artwork model type definitions for database operations."""

from decimal import Decimal
from enum import Enum
from typing import TypedDict
from uuid import UUID


class PurchaseStatus(str, Enum):
    """Availability flag shown on artwork listings."""

    IN_STOCK = "InStock"
    SOLD_OUT = "SoldOut"


class ArtWork(TypedDict):
    """Artwork table row, limited to the columns the order flow uses."""

    id: UUID
    profile_id: UUID
    title: str
    price: Decimal
    quantity: int
    purchase_status: PurchaseStatus
