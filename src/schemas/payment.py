"""Payment Pydantic schemas for API request/response models."""

from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# Gateway outcome reported to clients
PaymentOutcome = Literal["success", "pending", "failed"]


class ProcessPaymentRequest(BaseModel):
    """Schema for initiating payment via POST /payment."""

    model_config = ConfigDict(from_attributes=True)

    amount: Decimal = Field(gt=0, decimal_places=2, description="Amount to charge in major currency units")
    order_id: UUID = Field(description="Order UUID being paid for")


class PaymentInitResponse(BaseModel):
    """Schema for payment initiation response."""

    model_config = ConfigDict(from_attributes=True)

    redirect_url: str = Field(description="Gateway URL to redirect the payer to")
    reference: str = Field(description="Gateway transaction reference")


class PaymentVerificationResponse(BaseModel):
    """Schema for payment verification response."""

    model_config = ConfigDict(from_attributes=True)

    status: PaymentOutcome = Field(description="Gateway payment status")
    reference: str = Field(description="Gateway transaction reference")
    order_id: UUID = Field(description="Order UUID")
