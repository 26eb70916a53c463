"""Payment API routes for Stripe Checkout."""

import logging
from uuid import UUID

from fastapi import APIRouter, HTTPException, Request, status

from src.api.deps import CurrentProfile, CurrentUser
from src.schemas.common import ApiResponse
from src.schemas.payment import (
    PaymentInitResponse,
    PaymentVerificationResponse,
    ProcessPaymentRequest,
)
from src.services.payment_service import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payment"])

VERIFY_MESSAGES = {
    "success": "Payment successful",
    "pending": "Payment is still pending",
    "failed": "Payment failed, reserved items were released",
}


@router.post(
    "",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Start payment for an order",
    description="Reserves stock and opens a Stripe Checkout Session. Redirect the buyer to redirect_url.",
)
async def process_payment(data: ProcessPaymentRequest, profile: CurrentProfile) -> ApiResponse:
    """Start paying for a checked-out order.

    Raises:
        ConflictError: 409 if the order is not payable or stock ran out.
        BadRequestError: 400 if the order was not checked out or the amount is short.
        UpstreamError: 502 if Stripe is unavailable.
    """
    service = PaymentService()
    result = await service.process_payment(UUID(str(profile["id"])), data)
    return ApiResponse(
        status_code=status.HTTP_201_CREATED,
        data=PaymentInitResponse.model_validate(result).model_dump(mode="json"),
    )


@router.post(
    "/verify/{reference}/{order_id}",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    summary="Verify a payment",
    description="Checks the payment with Stripe and applies a success or failure to the order.",
)
async def verify_payment(reference: str, order_id: UUID, user: CurrentUser) -> ApiResponse:
    service = PaymentService()
    result = await service.verify_payment(reference, order_id)
    return ApiResponse(
        status_code=status.HTTP_200_OK,
        data=PaymentVerificationResponse.model_validate(result).model_dump(mode="json"),
        message=VERIFY_MESSAGES[result["status"]],
    )


@router.post(
    "/webhook",
    response_model=ApiResponse,
    response_model_exclude_none=True,
    summary="Handle Stripe webhooks",
    description="Receives Stripe Checkout events. Requires a valid Stripe-Signature header.",
)
async def stripe_webhook(request: Request) -> ApiResponse:
    """Handle Stripe webhook events.

    Handles:
    - checkout.session.completed: confirms the payment once Stripe reports it paid
    - checkout.session.async_payment_succeeded: delayed payment settled
    - checkout.session.async_payment_failed: delayed payment failed, stock released
    - checkout.session.expired: session timed out, stock released

    Raises:
        HTTPException: 400 if the signature header is missing.
        BadRequestError: 400 if the signature is invalid.
    """
    payload = await request.body()

    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        logger.error("Missing Stripe-Signature header in webhook request")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing Stripe-Signature header",
        )

    service = PaymentService()
    event_type = await service.handle_webhook(payload, sig_header)
    logger.info("Processed Stripe webhook event: %s", event_type)

    return ApiResponse(status_code=status.HTTP_200_OK, message=f"Received {event_type}")
