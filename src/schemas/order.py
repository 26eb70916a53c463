"""Order, checkout and shipment Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from src.models.order import OrderStatus


class OrderItemCreate(BaseModel):
    """A requested line item: which artwork and how many."""

    model_config = ConfigDict(from_attributes=True)

    artwork_id: UUID = Field(description="Artwork UUID")
    quantity: int = Field(default=1, ge=1, description="Number of copies requested")


class OrderItemsCreate(BaseModel):
    """Schema for placing an order with line items via POST /orders/order-items."""

    model_config = ConfigDict(from_attributes=True)

    delivery_address: str = Field(min_length=1, description="Street address for delivery")
    city: str = Field(min_length=1, description="Delivery city")
    zip: str | None = Field(default=None, description="Postal code")
    country: str = Field(min_length=1, description="Delivery country code")
    referrer_code: str | None = Field(default=None, description="Referral code used for this order")
    order_items: list[OrderItemCreate] = Field(min_length=1, description="Requested line items")


class SingleOrderItemCreate(OrderItemCreate):
    """Schema for adding one line item to an existing order."""

    order_id: UUID = Field(description="Order UUID to add the item to")


class CheckoutRequest(BaseModel):
    """Schema for PATCH /orders/checkout/{order_id}."""

    model_config = ConfigDict(from_attributes=True)

    delivery_address: str = Field(min_length=1, description="Street address for delivery")
    city: str = Field(min_length=1, description="Delivery city")
    zip: str = Field(min_length=1, description="Postal code")
    country: str = Field(min_length=1, description="Delivery country code")
    referrer_code: str | None = Field(default=None, description="Referral code used for this order")


class ChangeOrderStatusRequest(BaseModel):
    """Schema for PATCH /orders/status/{order_id}."""

    model_config = ConfigDict(from_attributes=True)

    status: OrderStatus = Field(description="Target order status")


class ShipOrderRequest(BaseModel):
    """Schema for POST /orders/ship."""

    model_config = ConfigDict(from_attributes=True)

    payer_email: str = Field(min_length=3, description="Email address to notify of the shipment")
    order_id: UUID = Field(description="Order UUID being shipped")
    shipment_id: UUID = Field(description="Shipment UUID whose label is paid")


class OrderItemResponse(BaseModel):
    """Schema for a single order line item."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Order item unique identifier")
    order_id: UUID = Field(description="Parent order ID")
    artwork_id: UUID = Field(description="Artwork ID")
    quantity: int = Field(description="Quantity ordered")
    price: Decimal = Field(description="Quantity times unit price at the time of ordering")


class ProfileSummary(BaseModel):
    """Owner details embedded in order responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Profile ID")
    name: str | None = Field(default=None, description="Display name")
    user_email: str | None = Field(default=None, description="Contact email")


class OrderResponse(BaseModel):
    """Schema for order API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Order unique identifier")
    profile_id: UUID = Field(description="Owning profile ID")
    status: OrderStatus = Field(description="Order status")
    total_price: Decimal = Field(description="Sum of line item prices")
    shipping_cost: Decimal | None = Field(default=None, description="Shipping cost, set at checkout")
    delivery_address: str | None = Field(default=None, description="Delivery street address")
    city: str | None = Field(default=None, description="Delivery city")
    zip: str | None = Field(default=None, description="Postal code")
    country: str | None = Field(default=None, description="Delivery country")
    referrer_code: str | None = Field(default=None, description="Referral code")
    created_at: datetime | None = Field(default=None, description="Creation timestamp")
    order_items: list[OrderItemResponse] = Field(default_factory=list, description="Order line items")
    profile: ProfileSummary | None = Field(default=None, description="Order owner")


class ShipmentResponse(BaseModel):
    """Schema for stored shipment records."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Shipment unique identifier")
    order_id: UUID = Field(description="Shipped order ID")
    provider_shipment_id: str = Field(description="Shipping provider shipment ID")
    tracking_id: str = Field(description="Carrier tracking ID")
    cost: Decimal | None = Field(default=None, description="Shipping charge")
    is_paid: bool = Field(description="Whether the shipping label has been paid for")


class ShipmentDetailsResponse(ShipmentResponse):
    """Stored shipment merged with the provider's live view."""

    status: str | None = Field(default=None, description="Provider shipment status")
    receiver: dict | None = Field(default=None, description="Receiver details held by the provider")


class TrackingEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str = Field(description="Tracking status")
    location: str | None = Field(default=None, description="Where the event happened")
    timestamp: str | None = Field(default=None, description="When the event happened")


class TrackingResponse(BaseModel):
    """Schema for shipment tracking lookups."""

    model_config = ConfigDict(from_attributes=True)

    tracking_id: str = Field(description="Carrier tracking ID")
    status: str | None = Field(default=None, description="Latest tracking status")
    events: list[TrackingEventResponse] = Field(default_factory=list, description="Tracking history, oldest first")


class ShipOrderResponse(BaseModel):
    """Outcome of shipping an order."""

    model_config = ConfigDict(from_attributes=True)

    order: OrderResponse = Field(description="The shipped order")
    tracking_id: str = Field(description="Carrier tracking ID")
    notification_sent: bool = Field(description="Whether the shipped email was delivered to the provider")
