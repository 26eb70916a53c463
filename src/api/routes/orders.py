"""Order lifecycle API routes."""

from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from src.api.deps import CurrentProfile, CurrentUser
from src.schemas.common import ApiResponse
from src.schemas.order import (
    ChangeOrderStatusRequest,
    CheckoutRequest,
    OrderItemResponse,
    OrderItemsCreate,
    OrderResponse,
    ShipmentDetailsResponse,
    ShipmentResponse,
    ShipOrderRequest,
    ShipOrderResponse,
    SingleOrderItemCreate,
    TrackingResponse,
)
from src.services.order_service import OrderService
from src.services.shipment_service import ShipmentService

router = APIRouter(prefix="/orders", tags=["orders"])


def _order(order: dict) -> dict:
    return OrderResponse.model_validate(order).model_dump(mode="json")


@router.post(
    "",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Open an order",
    description="Returns the caller's open order, creating an empty one if there is none.",
)
async def create_order(profile: CurrentProfile, response: Response) -> ApiResponse:
    """Return the caller's open order or create a new one.

    Responds 201 when an order was created and 200 when an existing
    PENDING order was returned.
    """
    service = OrderService()
    order, created = await service.create_order(UUID(str(profile["id"])))

    status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    response.status_code = status_code
    return ApiResponse(status_code=status_code, data=_order(order))


@router.post(
    "/order-items",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Place an order with items",
)
async def add_order_items(data: OrderItemsCreate, profile: CurrentProfile) -> ApiResponse:
    """Create a PENDING order with the requested line items.

    Raises:
        NotFoundError: 404 if an artwork does not exist.
        BadRequestError: 400 if more copies are requested than are in stock.
    """
    service = OrderService()
    order = await service.add_order_items(UUID(str(profile["id"])), data)
    return ApiResponse(status_code=status.HTTP_201_CREATED, data=_order(order))


@router.post(
    "/order-item",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Add an item to an open order",
)
async def add_order_item_to_order(data: SingleOrderItemCreate, profile: CurrentProfile) -> ApiResponse:
    service = OrderService()
    order_item = await service.add_order_item_to_order(UUID(str(profile["id"])), data)
    return ApiResponse(
        status_code=status.HTTP_201_CREATED,
        data=OrderItemResponse.model_validate(order_item).model_dump(mode="json"),
    )


@router.get(
    "/profile",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    summary="List my orders",
    description="Returns the caller's orders with their items, newest first.",
)
async def get_user_orders(
    profile: CurrentProfile,
    skip: int = Query(default=0, ge=0, description="Number of orders to skip"),
    take: int | None = Query(default=None, ge=1, le=100, description="Page size"),
) -> ApiResponse:
    service = OrderService()
    orders = await service.get_user_orders(UUID(str(profile["id"])), skip=skip, take=take)
    return ApiResponse(status_code=status.HTTP_200_OK, data=[_order(order) for order in orders])


@router.get(
    "/shipment/track/{tracking_id}",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    summary="Track a shipment",
)
async def track_shipment(tracking_id: str, user: CurrentUser) -> ApiResponse:
    service = ShipmentService()
    tracking = await service.track_shipment(tracking_id)
    return ApiResponse(
        status_code=status.HTTP_200_OK,
        data=TrackingResponse.model_validate(tracking).model_dump(mode="json"),
    )


@router.get(
    "/shipment/{shipment_id}",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    summary="Get shipment details",
)
async def get_shipment_details(shipment_id: UUID, user: CurrentUser) -> ApiResponse:
    service = ShipmentService()
    shipment = await service.get_shipment_details(shipment_id)
    return ApiResponse(
        status_code=status.HTTP_200_OK,
        data=ShipmentDetailsResponse.model_validate(shipment).model_dump(mode="json"),
    )


@router.post(
    "/shipment/{order_id}",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Book a shipment for a paid order",
    description="Admin only. Books the shipment with the carrier; the label is paid when the order ships.",
)
async def create_shipment(order_id: UUID, user: CurrentUser) -> ApiResponse:
    service = ShipmentService()
    shipment = await service.create_shipment(user, order_id)
    return ApiResponse(
        status_code=status.HTTP_201_CREATED,
        data=ShipmentResponse.model_validate(shipment).model_dump(mode="json"),
    )


@router.post(
    "/ship",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    summary="Ship an order",
    description="Admin only. Pays the shipping label, marks the order SHIPPED and emails the buyer.",
)
@router.post(
    "/shipment-notification",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    summary="Ship an order",
    include_in_schema=False,
)
async def ship_order(data: ShipOrderRequest, user: CurrentUser) -> ApiResponse:
    """Ship a paid order.

    Raises:
        UnauthorizedError: 401 if the caller is not an admin.
        NotFoundError: 404 if the order or shipment does not exist.
        BadRequestError: 400 if the shipment belongs to another order.
        ConflictError: 409 if the order cannot be shipped.
    """
    service = ShipmentService()
    result = await service.ship_order(user, data)
    return ApiResponse(
        status_code=status.HTTP_200_OK,
        data=ShipOrderResponse.model_validate(result).model_dump(mode="json"),
        message="Order shipped" if result["notification_sent"] else "Order shipped, buyer was not notified",
    )


@router.get(
    "/{order_id}",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    summary="Get order by ID",
    description="Returns an order with its items and owner profile.",
)
async def get_order_details(order_id: UUID, user: CurrentUser) -> ApiResponse:
    service = OrderService()
    order = await service.get_order_details(order_id)
    return ApiResponse(status_code=status.HTTP_200_OK, data=_order(order))


@router.patch(
    "/remove-order-item/{order_item_id}",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    summary="Remove an item from an order",
    description="Returns the item's copies to stock and lowers the order total.",
)
async def remove_order_item_from_order(order_item_id: UUID, profile: CurrentProfile) -> ApiResponse:
    service = OrderService()
    order = await service.remove_order_item_from_order(UUID(str(profile["id"])), order_item_id)
    return ApiResponse(status_code=status.HTTP_200_OK, data=_order(order))


@router.patch(
    "/checkout/{order_id}",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    summary="Check out an order",
    description="Sets delivery details and quotes the cheapest shipping rate.",
)
async def checkout(order_id: UUID, data: CheckoutRequest, profile: CurrentProfile) -> ApiResponse:
    """Attach delivery details and a shipping cost to a PENDING order.

    Raises:
        UpstreamError: 502 if the shipping provider cannot quote.
    """
    service = OrderService()
    order = await service.checkout(order_id, UUID(str(profile["id"])), data)
    return ApiResponse(status_code=status.HTTP_200_OK, data=_order(order))


@router.patch(
    "/cancel/{order_id}",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    summary="Cancel an order",
)
async def cancel_order(order_id: UUID, profile: CurrentProfile) -> ApiResponse:
    service = OrderService()
    order = await service.cancel_order(order_id, UUID(str(profile["id"])))
    return ApiResponse(status_code=status.HTTP_200_OK, data=_order(order), message="Order canceled")


@router.patch(
    "/status/{order_id}",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    summary="Change order status",
    description="Admin only. Only moves allowed by the order state machine are accepted.",
)
async def change_order_status(
    order_id: UUID,
    data: ChangeOrderStatusRequest,
    user: CurrentUser,
) -> ApiResponse:
    service = OrderService()
    order = await service.change_order_status(user, order_id, data.status)
    return ApiResponse(status_code=status.HTTP_200_OK, data=_order(order))


@router.delete(
    "/{order_id}",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    summary="Delete an order",
)
async def delete_order(order_id: UUID, profile: CurrentProfile) -> ApiResponse:
    service = OrderService()
    await service.delete_order(order_id, UUID(str(profile["id"])))
    return ApiResponse(status_code=status.HTTP_200_OK, message="Order deleted successfully")
