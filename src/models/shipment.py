"""Shipment and payment model type definitions."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TypedDict
from uuid import UUID


class Shipment(TypedDict):
    """Shipment table row; one per order."""

    id: UUID
    order_id: UUID
    provider_shipment_id: str
    tracking_id: str
    cost: Decimal
    is_paid: bool
    created_at: datetime


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Payment(TypedDict):
    """Payment table row; one per payment attempt.

    ``transaction_reference`` is the gateway's checkout session id.
    """

    id: UUID
    transaction_reference: str
    payee_email: str
    payee_id: UUID
    amount: Decimal
    order_id: UUID
    payment_status: PaymentStatus
    created_at: datetime


class Referral(TypedDict):
    """Referral table row."""

    id: UUID
    code: str
    user_email: str
    balance: Decimal
