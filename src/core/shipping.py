"""TopShip shipping provider client.

Wraps the provider's REST API for rate quotes, shipment booking, label
payment and tracking. Read calls are retried on transport errors; calls
that spend money are not.
"""

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.core.config import Settings, get_settings
from src.core.errors import UpstreamError

logger = logging.getLogger(__name__)

PROVIDER = "topship"

# Retry configuration for idempotent reads
MAX_RETRIES = 3
MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 5

# Provider amounts are reported in minor currency units
MINOR_UNITS = Decimal("100")


@dataclass
class Address:
    """One end of a shipment."""

    city: str
    country_code: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    address_line: str | None = None

    def to_rate_detail(self) -> dict[str, str]:
        return {"cityName": self.city, "countryCode": self.country_code}

    def to_shipment_detail(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "email": self.email,
            "phoneNumber": self.phone,
            "addressLine1": self.address_line,
            "city": self.city,
            "country": self.country_code,
        }


@dataclass
class RateQuote:
    """A priced delivery option."""

    pricing_tier: str
    cost: Decimal
    currency: str | None = None
    duration: str | None = None


@dataclass
class ShipmentBooking:
    """A shipment registered with the provider."""

    provider_shipment_id: str
    tracking_id: str
    cost: Decimal


@dataclass
class TrackingEvent:
    status: str
    location: str | None = None
    timestamp: str | None = None


@dataclass
class TrackingResult:
    tracking_id: str
    status: str | None
    events: list[TrackingEvent] = field(default_factory=list)


def _to_major_units(value: Any) -> Decimal:
    return Decimal(str(value)) / MINOR_UNITS


def _unwrap(payload: Any) -> Any:
    """Strip the provider's optional ``{"data": ...}`` wrapper."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


class ShippingClient:
    """Async client for the TopShip API."""

    def __init__(
        self,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Optional settings override, defaults to the cached settings.
            transport: Optional httpx transport, used by tests to stub the provider.
        """
        self.settings = settings or get_settings()
        self._transport = transport

    def origin(self) -> Address:
        """Return the configured sender address."""
        return Address(
            city=self.settings.shipping_origin_city,
            country_code=self.settings.shipping_origin_country_code,
            name=self.settings.shipping_origin_name,
            email=self.settings.shipping_origin_email,
            phone=self.settings.shipping_origin_phone,
            address_line=self.settings.shipping_origin_address,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.topship_base_url,
            headers={"Authorization": f"Bearer {self.settings.topship_api_key}"},
            timeout=self.settings.shipping_timeout_seconds,
            transport=self._transport,
        )

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        payload: Any = None,
    ) -> Any:
        async with self._client() as client:
            response = await client.request(method, path, params=params, json=payload)
            response.raise_for_status()
            return _unwrap(response.json())

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=MIN_WAIT_SECONDS, max=MAX_WAIT_SECONDS),
        reraise=True,
    )
    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET with retry on transport errors."""
        return await self._send("GET", path, params=params)

    async def _call(self, operation: str, coro: Any) -> Any:
        """Await a provider call, translating httpx failures into UpstreamError."""
        try:
            return await coro
        except httpx.HTTPStatusError as e:
            logger.error(
                "Shipping provider %s failed with status %s: %s",
                operation,
                e.response.status_code,
                e.response.text,
            )
            raise UpstreamError(
                f"Shipping provider rejected {operation} request",
                provider=PROVIDER,
            ) from e
        except httpx.HTTPError as e:
            logger.error("Shipping provider %s failed: %s", operation, str(e))
            raise UpstreamError(
                f"Shipping provider unavailable for {operation}",
                provider=PROVIDER,
            ) from e

    async def get_rates(
        self,
        receiver: Address,
        weight_kg: float | None = None,
    ) -> list[RateQuote]:
        """Quote delivery options from the configured origin to a receiver.

        Args:
            receiver: Destination city and country.
            weight_kg: Parcel weight, defaults to the configured weight.

        Returns:
            list[RateQuote]: Available delivery options.
        """
        shipment_detail = {
            "senderDetails": self.origin().to_rate_detail(),
            "receiverDetails": receiver.to_rate_detail(),
            "totalWeight": weight_kg or self.settings.shipping_default_weight_kg,
        }
        data = await self._call(
            "rate quote",
            self._get("/get-shipment-rate", params={"shipmentDetail": json.dumps(shipment_detail)}),
        )
        return [
            RateQuote(
                pricing_tier=item.get("pricingTier", "Standard"),
                cost=_to_major_units(item["cost"]),
                currency=item.get("currency"),
                duration=item.get("duration"),
            )
            for item in data or []
            if item.get("cost") is not None
        ]

    async def get_cheapest_rate(self, receiver: Address) -> RateQuote:
        """Return the lowest priced delivery option.

        Raises:
            UpstreamError: If the provider returns no usable quote.
        """
        rates = await self.get_rates(receiver)
        if not rates:
            raise UpstreamError(
                f"No shipping rates available to {receiver.city}, {receiver.country_code}",
                provider=PROVIDER,
            )
        return min(rates, key=lambda rate: rate.cost)

    async def book_shipment(
        self,
        receiver: Address,
        description: str,
        item_count: int,
        declared_value: Decimal,
        rate: RateQuote,
    ) -> ShipmentBooking:
        """Register a shipment draft with the provider.

        Returns:
            ShipmentBooking: Provider shipment id, tracking id and charge.
        """
        payload = {
            "shipment": [
                {
                    "items": [
                        {
                            "category": "Others",
                            "description": description,
                            "weight": self.settings.shipping_default_weight_kg,
                            "quantity": item_count,
                            "value": str(declared_value),
                        }
                    ],
                    "senderDetail": self.origin().to_shipment_detail(),
                    "receiverDetail": receiver.to_shipment_detail(),
                    "pricingTier": rate.pricing_tier,
                    "shipmentCharge": int(rate.cost * MINOR_UNITS),
                }
            ]
        }
        data = await self._call("shipment booking", self._send("POST", "/save-shipment", payload=payload))
        booked = data[0] if isinstance(data, list) else data
        return ShipmentBooking(
            provider_shipment_id=str(booked["id"]),
            tracking_id=booked["trackingId"],
            cost=_to_major_units(booked.get("totalCharge", 0)),
        )

    async def pay_for_shipment(self, provider_shipment_id: str) -> dict[str, Any]:
        """Pay for a booked shipment label from the account wallet."""
        data = await self._call(
            "label payment",
            self._send("POST", "/pay-for-shipment", payload={"shipmentId": provider_shipment_id}),
        )
        logger.info("Paid shipping label for provider shipment %s", provider_shipment_id)
        return data or {}

    async def track(self, tracking_id: str) -> TrackingResult:
        """Look up the tracking history of a shipment."""
        data = await self._call(
            "tracking",
            self._get("/track-shipment-public", params={"trackingId": tracking_id}),
        )
        events = [
            TrackingEvent(
                status=event.get("status", "UNKNOWN"),
                location=event.get("location"),
                timestamp=event.get("createdDate") or event.get("date"),
            )
            for event in data or []
        ]
        return TrackingResult(
            tracking_id=tracking_id,
            status=events[-1].status if events else None,
            events=events,
        )

    async def get_shipment(self, provider_shipment_id: str) -> dict[str, Any]:
        """Fetch the provider's view of a shipment, reshaped."""
        data = await self._call(
            "shipment lookup",
            self._get("/get-shipments", params={"shipmentId": provider_shipment_id}),
        )
        shipment = data[0] if isinstance(data, list) and data else data or {}
        charge = shipment.get("totalCharge")
        return {
            "provider_shipment_id": str(shipment.get("id", provider_shipment_id)),
            "tracking_id": shipment.get("trackingId"),
            "status": shipment.get("shipmentStatus"),
            "cost": _to_major_units(charge) if charge is not None else None,
            "receiver": shipment.get("receiverDetail"),
        }


def get_shipping_client() -> ShippingClient:
    """Create a shipping client bound to the current settings."""
    return ShippingClient()
