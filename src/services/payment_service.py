"""Payment initiation, verification and gateway webhook handling."""

import logging
import time
from typing import Any
from uuid import UUID

import stripe

from src.core.config import get_settings
from src.core.errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    StaleWriteError,
    UpstreamError,
)
from src.core.money import to_decimal, to_minor_units
from src.core.stripe import get_stripe
from src.core.supabase import get_supabase_client
from src.models.order import OrderStatus, can_transition
from src.models.shipment import PaymentStatus
from src.schemas.payment import PaymentOutcome, ProcessPaymentRequest
from src.services.email_service import EmailService
from src.services.inventory_service import InventoryService
from src.services.order_service import OrderService, ensure_owner
from src.services.profile_service import ProfileService
from src.services.referral_service import ReferralService

logger = logging.getLogger(__name__)

PROVIDER = "stripe"

# Stripe checkout.session.payment_status values that mean the money arrived
PAID_STATUSES = {"paid", "no_payment_required"}


def gateway_outcome(payment_status: str | None, session_status: str | None) -> PaymentOutcome:
    """Collapse a Stripe checkout session's state into success/pending/failed."""
    if payment_status in PAID_STATUSES:
        return "success"
    if session_status == "expired":
        return "failed"
    return "pending"


class PaymentService:
    """Service for taking payment for orders through Stripe Checkout."""

    def __init__(self) -> None:
        """Initialize payment service with clients."""
        self.client = get_supabase_client()
        self.stripe = get_stripe()
        self.settings = get_settings()
        self.orders = OrderService()
        self.inventory = InventoryService()
        self.profiles = ProfileService()
        self.referrals = ReferralService()
        self.email = EmailService()

    async def get_payment(self, reference: str) -> dict[str, Any] | None:
        """Get a payment by gateway transaction reference."""
        response = (
            self.client.table("payments")
            .select("*")
            .eq("transaction_reference", reference)
            .limit(1)
            .execute()
        )

        return response.data[0] if response.data else None

    async def process_payment(
        self,
        profile_id: UUID,
        data: ProcessPaymentRequest,
    ) -> dict[str, Any]:
        """Reserve stock and open a gateway checkout session for an order.

        Args:
            profile_id: The paying profile.
            data: Amount and order to pay for.

        Returns:
            dict: Contains redirect_url and reference.

        Raises:
            NotFoundError: If the order or profile does not exist.
            UnauthorizedError: If the profile does not own the order.
            ConflictError: If the order is not payable or stock ran out.
            BadRequestError: If the order was not checked out or the amount is short.
            UpstreamError: If the gateway call fails.
        """
        profile = await self.profiles.get_profile_by_id(profile_id)
        order = await self.orders.get_order(data.order_id)
        if not order or not profile:
            raise NotFoundError("Order or profile not found")

        ensure_owner(order, profile_id, "You cannot pay for an order that is not yours.")
        if order["status"] != OrderStatus.PENDING.value:
            raise ConflictError(f"A {order['status'].lower()} order cannot be paid for")
        if order.get("shipping_cost") is None:
            raise BadRequestError("Order must be checked out before payment")
        if await self.orders.has_open_payment(order["id"]):
            raise ConflictError("A payment for this order is already in progress")

        amount_due = to_decimal(order["total_price"]) + to_decimal(order["shipping_cost"])
        if data.amount < amount_due:
            raise BadRequestError("You did not input the correct amount")

        order_items = await self.orders.get_order_items(order["id"])
        if not order_items:
            raise BadRequestError("Order has no items")

        await self.inventory.reserve_items(order_items)

        try:
            session = self.stripe.checkout.Session.create(
                mode="payment",
                line_items=[
                    {
                        "price_data": {
                            "currency": self.settings.payment_currency,
                            "unit_amount": to_minor_units(data.amount),
                            "product_data": {"name": f"Order {order['id']}"},
                        },
                        "quantity": 1,
                    }
                ],
                customer_email=profile.get("user_email"),
                success_url=(
                    f"{self.settings.frontend_url}/orders/{order['id']}/payment"
                    "?reference={CHECKOUT_SESSION_ID}"
                ),
                cancel_url=f"{self.settings.frontend_url}/orders/{order['id']}",
                expires_at=int(time.time()) + self.settings.payment_session_ttl_minutes * 60,
                metadata={"order_id": str(order["id"]), "profile_id": str(profile_id)},
            )
        except stripe.error.StripeError as e:
            # Give the reserved stock back if the gateway fails
            logger.error("Stripe error creating checkout session: %s", str(e))
            await self.inventory.release_items(order_items)
            raise UpstreamError("Payment gateway could not start the transaction", provider=PROVIDER) from e

        try:
            self.client.table("payments").insert(
                {
                    "transaction_reference": session.id,
                    "payee_email": profile.get("user_email"),
                    "payee_id": str(profile_id),
                    "amount": str(data.amount),
                    "order_id": str(order["id"]),
                    "payment_status": PaymentStatus.PENDING.value,
                }
            ).execute()
        except Exception as e:
            # No payment row means no webhook can ever release this reservation
            logger.error("Failed to record payment %s for order %s: %s", session.id, order["id"], str(e))
            self._expire_session(session.id)
            await self.inventory.release_items(order_items)
            raise

        logger.info("Payment %s started for order %s", session.id, order["id"])
        return {"redirect_url": session.url, "reference": session.id}

    def _expire_session(self, reference: str) -> None:
        """Close a checkout session so the buyer can no longer pay on it."""
        try:
            self.stripe.checkout.Session.expire(reference)
        except stripe.error.StripeError as e:
            logger.error("Could not expire checkout session %s: %s", reference, str(e))

    async def verify_payment(self, reference: str, order_id: UUID) -> dict[str, Any]:
        """Ask the gateway for a payment's status and apply the outcome.

        Returns:
            dict: Contains status, reference and order_id.

        Raises:
            NotFoundError: If no payment matches the reference and order.
            UpstreamError: If the gateway call fails.
        """
        payment = await self.get_payment(reference)
        if not payment or str(payment["order_id"]) != str(order_id):
            raise NotFoundError("Payment not found for this order")

        try:
            session = self.stripe.checkout.Session.retrieve(reference)
        except stripe.error.StripeError as e:
            logger.error("Stripe error retrieving checkout session %s: %s", reference, str(e))
            raise UpstreamError("Payment gateway could not verify the transaction", provider=PROVIDER) from e

        outcome = gateway_outcome(session.payment_status, session.status)
        if outcome == "success":
            await self.confirm_payment(payment)
        elif outcome == "failed":
            await self.fail_payment(payment)

        return {"status": outcome, "reference": reference, "order_id": order_id}

    async def _settle(self, payment: dict[str, Any], status: PaymentStatus) -> bool:
        """Move a payment out of PENDING. Returns False if another caller already did."""
        response = (
            self.client.table("payments")
            .update({"payment_status": status.value})
            .eq("id", str(payment["id"]))
            .eq("payment_status", PaymentStatus.PENDING.value)
            .execute()
        )
        return bool(response.data)

    async def confirm_payment(self, payment: dict[str, Any]) -> bool:
        """Apply a successful payment: order to PAID, referrer credited, admin told.

        The order is moved to PAID before the payment row is settled, so a
        call interrupted between the two is finished by the next one. Side
        effects run once per payment, however many times this is called.

        A payment that succeeds for an order that can no longer be paid
        (canceled or shipped meanwhile) is settled as FAILED, its stock is
        released and it is logged for a refund.

        Returns:
            bool: True if this call applied the confirmation.
        """
        if payment.get("payment_status") not in (None, PaymentStatus.PENDING.value):
            logger.info("Payment %s already settled", payment["transaction_reference"])
            return False

        order = await self.orders.require_order(payment["order_id"])
        if order["status"] != OrderStatus.PAID.value:
            if not can_transition(OrderStatus(order["status"]), OrderStatus.PAID):
                await self._refuse_late_payment(payment, order)
                return False
            try:
                order = await self.orders.transition_status(order, OrderStatus.PAID)
            except StaleWriteError:
                # A concurrent confirmation may have won the race
                order = await self.orders.require_order(payment["order_id"])
                if order["status"] != OrderStatus.PAID.value:
                    raise

        if not await self._settle(payment, PaymentStatus.COMPLETED):
            logger.info("Payment %s already settled", payment["transaction_reference"])
            return False

        if order.get("referrer_code"):
            await self.referrals.credit_referrer(order["referrer_code"], to_decimal(order["total_price"]))

        await self.email.notify_admin_of_completed_payment(str(order["id"]))
        logger.info("Order %s paid via %s", order["id"], payment["transaction_reference"])
        return True

    async def _refuse_late_payment(self, payment: dict[str, Any], order: dict[str, Any]) -> None:
        if not await self._settle(payment, PaymentStatus.FAILED):
            return

        order_items = await self.orders.get_order_items(order["id"])
        await self.inventory.release_items(order_items)
        logger.error(
            "Payment %s succeeded for order %s in status %s; stock released, refund required",
            payment["transaction_reference"],
            order["id"],
            order["status"],
        )

    async def fail_payment(self, payment: dict[str, Any]) -> bool:
        """Apply a failed or expired payment: release the stock it reserved.

        Returns:
            bool: True if this call applied the failure.
        """
        if not await self._settle(payment, PaymentStatus.FAILED):
            return False

        order_items = await self.orders.get_order_items(payment["order_id"])
        await self.inventory.release_items(order_items)
        logger.info("Payment %s failed, stock released", payment["transaction_reference"])
        return True

    def verify_webhook_signature(self, payload: bytes, sig_header: str) -> dict[str, Any]:
        """Verify Stripe webhook signature and return event.

        Args:
            payload: Raw webhook payload bytes.
            sig_header: Stripe-Signature header value.

        Returns:
            dict: Verified Stripe event.

        Raises:
            BadRequestError: If signature is invalid or the webhook secret is not configured.
        """
        if not self.settings.stripe_webhook_secret:
            raise BadRequestError("Stripe webhook secret is not configured")

        try:
            return self.stripe.Webhook.construct_event(
                payload, sig_header, self.settings.stripe_webhook_secret
            )
        except (ValueError, stripe.error.SignatureVerificationError) as e:
            logger.warning("Invalid webhook signature: %s", str(e))
            raise BadRequestError("Invalid webhook signature") from e

    async def handle_webhook(self, payload: bytes, sig_header: str) -> str:
        """Verify and apply a Stripe webhook event.

        Returns:
            str: The event type.
        """
        event = self.verify_webhook_signature(payload, sig_header)
        event_type = event["type"]
        session = event["data"]["object"]

        if event_type in (
            "checkout.session.completed",
            "checkout.session.async_payment_succeeded",
        ):
            if gateway_outcome(session.get("payment_status"), session.get("status")) != "success":
                logger.info("Checkout %s completed but not yet paid", session.get("id"))
                return event_type
            handler = self.confirm_payment
        elif event_type in (
            "checkout.session.expired",
            "checkout.session.async_payment_failed",
        ):
            handler = self.fail_payment
        else:
            logger.debug("Unhandled webhook event type: %s", event_type)
            return event_type

        payment = await self.get_payment(session["id"])
        if not payment:
            logger.warning("Webhook %s for unknown payment %s", event_type, session.get("id"))
            return event_type

        await handler(payment)
        return event_type
