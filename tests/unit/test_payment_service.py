"""Unit tests for PaymentService."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
import stripe

from src.core.errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    StaleWriteError,
    UnauthorizedError,
    UpstreamError,
)
from src.schemas.payment import ProcessPaymentRequest
from src.services.payment_service import PaymentService, gateway_outcome
from tests.conftest import OTHER_PROFILE_ID, PROFILE_ID


@pytest.fixture
def checked_out_order(make_artwork, make_order):
    """A PENDING order for 2 x 100.00 with 15.00 shipping."""
    artwork = make_artwork(quantity=2, price="100.00")
    order = make_order(items=[(artwork, 2)], shipping_cost="15.00")
    return order, artwork


def _session(session_id: str = "cs_test_123", payment_status: str = "unpaid", status: str = "open") -> MagicMock:
    session = MagicMock()
    session.id = session_id
    session.url = f"https://checkout.stripe.com/c/pay/{session_id}"
    session.payment_status = payment_status
    session.status = status
    return session


def _seed_payment(fake_db, order, reference="cs_test_123", status="PENDING"):
    return fake_db.add(
        "payments",
        {
            "transaction_reference": reference,
            "payee_email": "buyer@example.com",
            "payee_id": PROFILE_ID,
            "amount": "215.00",
            "order_id": order["id"],
            "payment_status": status,
        },
    )


class TestGatewayOutcome:
    @pytest.mark.parametrize(
        "payment_status,session_status,expected",
        [
            ("paid", "complete", "success"),
            ("no_payment_required", "complete", "success"),
            ("unpaid", "open", "pending"),
            ("unpaid", "complete", "pending"),
            ("unpaid", "expired", "failed"),
        ],
    )
    def test_mapping(self, payment_status, session_status, expected) -> None:
        assert gateway_outcome(payment_status, session_status) == expected


class TestProcessPayment:
    """Tests for starting a payment."""

    @pytest.mark.asyncio
    async def test_reserves_stock_and_records_payment(
        self, fake_db, profile, mock_stripe, checked_out_order
    ) -> None:
        order, artwork = checked_out_order
        mock_stripe.checkout.Session.create.return_value = _session()
        service = PaymentService()

        result = await service.process_payment(
            UUID(PROFILE_ID),
            ProcessPaymentRequest(amount=Decimal("215.00"), order_id=UUID(order["id"])),
        )

        assert result == {
            "redirect_url": "https://checkout.stripe.com/c/pay/cs_test_123",
            "reference": "cs_test_123",
        }
        stock = fake_db.row("artworks", artwork["id"])
        assert stock["quantity"] == 0
        assert stock["purchase_status"] == "SoldOut"

        payments = fake_db.rows("payments", order_id=order["id"])
        assert len(payments) == 1
        assert payments[0]["payment_status"] == "PENDING"
        assert payments[0]["transaction_reference"] == "cs_test_123"

        call_kwargs = mock_stripe.checkout.Session.create.call_args.kwargs
        assert call_kwargs["line_items"][0]["price_data"]["unit_amount"] == 21500
        assert call_kwargs["metadata"]["order_id"] == order["id"]
        assert call_kwargs["success_url"].endswith("?reference={CHECKOUT_SESSION_ID}")

    @pytest.mark.asyncio
    async def test_short_amount_is_rejected(self, fake_db, profile, mock_stripe, checked_out_order) -> None:
        order, artwork = checked_out_order
        service = PaymentService()

        with pytest.raises(BadRequestError):
            await service.process_payment(
                UUID(PROFILE_ID),
                ProcessPaymentRequest(amount=Decimal("200.00"), order_id=UUID(order["id"])),
            )

        assert fake_db.row("artworks", artwork["id"])["quantity"] == 2
        mock_stripe.checkout.Session.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_order_must_be_checked_out(self, fake_db, profile, mock_stripe, make_artwork, make_order) -> None:
        order = make_order(items=[(make_artwork(), 1)])
        service = PaymentService()

        with pytest.raises(BadRequestError):
            await service.process_payment(
                UUID(PROFILE_ID),
                ProcessPaymentRequest(amount=Decimal("500.00"), order_id=UUID(order["id"])),
            )

    @pytest.mark.asyncio
    async def test_non_owner_is_unauthorized(
        self, fake_db, profile, other_profile, mock_stripe, make_artwork, make_order
    ) -> None:
        order = make_order(profile_id=OTHER_PROFILE_ID, items=[(make_artwork(), 1)], shipping_cost="5")
        service = PaymentService()

        with pytest.raises(UnauthorizedError):
            await service.process_payment(
                UUID(PROFILE_ID),
                ProcessPaymentRequest(amount=Decimal("500.00"), order_id=UUID(order["id"])),
            )

    @pytest.mark.asyncio
    async def test_missing_order(self, fake_db, profile, mock_stripe) -> None:
        service = PaymentService()

        with pytest.raises(NotFoundError):
            await service.process_payment(
                UUID(PROFILE_ID),
                ProcessPaymentRequest(amount=Decimal("10.00"), order_id=uuid4()),
            )

    @pytest.mark.asyncio
    async def test_paid_order_conflicts(self, fake_db, profile, mock_stripe, make_artwork, make_order) -> None:
        order = make_order(items=[(make_artwork(), 1)], status="PAID", shipping_cost="5")
        service = PaymentService()

        with pytest.raises(ConflictError):
            await service.process_payment(
                UUID(PROFILE_ID),
                ProcessPaymentRequest(amount=Decimal("500.00"), order_id=UUID(order["id"])),
            )

    @pytest.mark.asyncio
    async def test_open_payment_conflicts(self, fake_db, profile, mock_stripe, checked_out_order) -> None:
        order, artwork = checked_out_order
        _seed_payment(fake_db, order)
        service = PaymentService()

        with pytest.raises(ConflictError):
            await service.process_payment(
                UUID(PROFILE_ID),
                ProcessPaymentRequest(amount=Decimal("215.00"), order_id=UUID(order["id"])),
            )

        assert fake_db.row("artworks", artwork["id"])["quantity"] == 2

    @pytest.mark.asyncio
    async def test_stock_sold_since_ordering_conflicts(
        self, fake_db, profile, mock_stripe, checked_out_order
    ) -> None:
        order, artwork = checked_out_order
        fake_db.row("artworks", artwork["id"])["quantity"] = 1
        service = PaymentService()

        with pytest.raises(ConflictError):
            await service.process_payment(
                UUID(PROFILE_ID),
                ProcessPaymentRequest(amount=Decimal("215.00"), order_id=UUID(order["id"])),
            )

        mock_stripe.checkout.Session.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_gateway_failure_releases_stock(self, fake_db, profile, mock_stripe, checked_out_order) -> None:
        order, artwork = checked_out_order
        mock_stripe.checkout.Session.create.side_effect = stripe.error.APIConnectionError("down")
        service = PaymentService()

        with pytest.raises(UpstreamError) as exc_info:
            await service.process_payment(
                UUID(PROFILE_ID),
                ProcessPaymentRequest(amount=Decimal("215.00"), order_id=UUID(order["id"])),
            )

        assert exc_info.value.provider == "stripe"
        stock = fake_db.row("artworks", artwork["id"])
        assert stock["quantity"] == 2
        assert stock["purchase_status"] == "InStock"
        assert fake_db.rows("payments") == []

    @pytest.mark.asyncio
    async def test_failed_payment_record_releases_stock(
        self, fake_db, profile, mock_stripe, checked_out_order
    ) -> None:
        order, artwork = checked_out_order
        mock_stripe.checkout.Session.create.return_value = _session()
        fake_db.failures[("payments", "insert")] = RuntimeError("connection reset")
        service = PaymentService()

        with pytest.raises(RuntimeError):
            await service.process_payment(
                UUID(PROFILE_ID),
                ProcessPaymentRequest(amount=Decimal("215.00"), order_id=UUID(order["id"])),
            )

        assert fake_db.row("artworks", artwork["id"])["quantity"] == 2
        mock_stripe.checkout.Session.expire.assert_called_once_with("cs_test_123")

    @pytest.mark.asyncio
    async def test_open_payment_blocks_cancel_and_delete(
        self, fake_db, profile, mock_stripe, checked_out_order
    ) -> None:
        order, artwork = checked_out_order
        mock_stripe.checkout.Session.create.return_value = _session()
        service = PaymentService()
        await service.process_payment(
            UUID(PROFILE_ID),
            ProcessPaymentRequest(amount=Decimal("215.00"), order_id=UUID(order["id"])),
        )

        with pytest.raises(ConflictError):
            await service.orders.delete_order(UUID(order["id"]), UUID(PROFILE_ID))
        with pytest.raises(ConflictError):
            await service.orders.cancel_order(UUID(order["id"]), UUID(PROFILE_ID))

        mock_stripe.Webhook.construct_event.return_value = {
            "type": "checkout.session.expired",
            "data": {"object": {"id": "cs_test_123"}},
        }
        await service.handle_webhook(b"{}", "t=1,v1=sig")

        assert fake_db.row("artworks", artwork["id"])["quantity"] == 2


class TestVerifyPayment:
    """Tests for verifying a payment with the gateway."""

    @pytest.mark.asyncio
    async def test_success_marks_order_paid_and_notifies(
        self, fake_db, profile, mock_stripe, mock_resend, checked_out_order
    ) -> None:
        order, _ = checked_out_order
        payment = _seed_payment(fake_db, order)
        mock_stripe.checkout.Session.retrieve.return_value = _session(payment_status="paid", status="complete")
        service = PaymentService()

        result = await service.verify_payment("cs_test_123", UUID(order["id"]))

        assert result["status"] == "success"
        assert fake_db.row("orders", order["id"])["status"] == "PAID"
        assert fake_db.row("payments", payment["id"])["payment_status"] == "COMPLETED"
        mock_resend.assert_called_once()
        assert mock_resend.call_args.args[0]["subject"] == "Payment Complete"

    @pytest.mark.asyncio
    async def test_repeat_success_applies_once(
        self, fake_db, profile, mock_stripe, mock_resend, make_artwork, make_order
    ) -> None:
        order = make_order(items=[(make_artwork(), 1)], shipping_cost="5", referrer_code="ART10")
        referral = fake_db.add("referrals", {"code": "ART10", "user_email": "r@example.com", "balance": "0"})
        _seed_payment(fake_db, order)
        mock_stripe.checkout.Session.retrieve.return_value = _session(payment_status="paid", status="complete")
        service = PaymentService()

        await service.verify_payment("cs_test_123", UUID(order["id"]))
        second = await service.verify_payment("cs_test_123", UUID(order["id"]))

        assert second["status"] == "success"
        assert fake_db.row("orders", order["id"])["status"] == "PAID"
        assert Decimal(fake_db.row("referrals", referral["id"])["balance"]) == Decimal("5.00")
        assert mock_resend.call_count == 1

    @pytest.mark.asyncio
    async def test_pending_changes_nothing(self, fake_db, profile, mock_stripe, checked_out_order) -> None:
        order, _ = checked_out_order
        payment = _seed_payment(fake_db, order)
        mock_stripe.checkout.Session.retrieve.return_value = _session()
        service = PaymentService()

        result = await service.verify_payment("cs_test_123", UUID(order["id"]))

        assert result["status"] == "pending"
        assert fake_db.row("orders", order["id"])["status"] == "PENDING"
        assert fake_db.row("payments", payment["id"])["payment_status"] == "PENDING"

    @pytest.mark.asyncio
    async def test_expired_session_releases_stock(self, fake_db, profile, mock_stripe, checked_out_order) -> None:
        order, artwork = checked_out_order
        fake_db.row("artworks", artwork["id"])["quantity"] = 0
        payment = _seed_payment(fake_db, order)
        mock_stripe.checkout.Session.retrieve.return_value = _session(status="expired")
        service = PaymentService()

        result = await service.verify_payment("cs_test_123", UUID(order["id"]))

        assert result["status"] == "failed"
        assert fake_db.row("payments", payment["id"])["payment_status"] == "FAILED"
        assert fake_db.row("artworks", artwork["id"])["quantity"] == 2
        assert fake_db.row("orders", order["id"])["status"] == "PENDING"

    @pytest.mark.asyncio
    async def test_reference_for_other_order_not_found(
        self, fake_db, profile, mock_stripe, checked_out_order
    ) -> None:
        order, _ = checked_out_order
        _seed_payment(fake_db, order)
        service = PaymentService()

        with pytest.raises(NotFoundError):
            await service.verify_payment("cs_test_123", uuid4())

        mock_stripe.checkout.Session.retrieve.assert_not_called()

    @pytest.mark.asyncio
    async def test_gateway_error_is_upstream(self, fake_db, profile, mock_stripe, checked_out_order) -> None:
        order, _ = checked_out_order
        _seed_payment(fake_db, order)
        mock_stripe.checkout.Session.retrieve.side_effect = stripe.error.APIConnectionError("down")
        service = PaymentService()

        with pytest.raises(UpstreamError):
            await service.verify_payment("cs_test_123", UUID(order["id"]))

    @pytest.mark.asyncio
    async def test_success_for_canceled_order_is_refused(
        self, fake_db, profile, mock_stripe, mock_resend, checked_out_order
    ) -> None:
        order, artwork = checked_out_order
        fake_db.row("orders", order["id"])["status"] = "CANCELED"
        fake_db.row("artworks", artwork["id"])["quantity"] = 0
        payment = _seed_payment(fake_db, order)
        mock_stripe.checkout.Session.retrieve.return_value = _session(payment_status="paid", status="complete")
        service = PaymentService()

        await service.verify_payment("cs_test_123", UUID(order["id"]))

        assert fake_db.row("orders", order["id"])["status"] == "CANCELED"
        assert fake_db.row("payments", payment["id"])["payment_status"] == "FAILED"
        assert fake_db.row("artworks", artwork["id"])["quantity"] == 2
        mock_resend.assert_not_called()

    @pytest.mark.asyncio
    async def test_confirmation_resumes_after_order_was_marked_paid(
        self, fake_db, profile, mock_stripe, mock_resend, checked_out_order
    ) -> None:
        order, _ = checked_out_order
        fake_db.row("orders", order["id"])["status"] = "PAID"
        payment = _seed_payment(fake_db, order)
        mock_stripe.checkout.Session.retrieve.return_value = _session(payment_status="paid", status="complete")
        service = PaymentService()

        await service.verify_payment("cs_test_123", UUID(order["id"]))

        assert fake_db.row("payments", payment["id"])["payment_status"] == "COMPLETED"
        mock_resend.assert_called_once()

    @pytest.mark.asyncio
    async def test_lost_transition_leaves_payment_pending(
        self, fake_db, profile, mock_stripe, mock_resend, checked_out_order
    ) -> None:
        order, _ = checked_out_order
        payment = _seed_payment(fake_db, order)
        mock_stripe.checkout.Session.retrieve.return_value = _session(payment_status="paid", status="complete")
        service = PaymentService()
        service.orders.transition_status = AsyncMock(side_effect=StaleWriteError("status changed"))

        with pytest.raises(StaleWriteError):
            await service.verify_payment("cs_test_123", UUID(order["id"]))

        assert fake_db.row("payments", payment["id"])["payment_status"] == "PENDING"
        mock_resend.assert_not_called()


class TestWebhook:
    """Tests for Stripe webhook handling."""

    def _event(self, event_type: str, **session) -> dict:
        return {"type": event_type, "data": {"object": {"id": "cs_test_123", **session}}}

    @pytest.mark.asyncio
    async def test_completed_paid_session_confirms(
        self, fake_db, profile, mock_stripe, mock_resend, checked_out_order
    ) -> None:
        order, _ = checked_out_order
        _seed_payment(fake_db, order)
        mock_stripe.Webhook.construct_event.return_value = self._event(
            "checkout.session.completed", payment_status="paid", status="complete"
        )
        service = PaymentService()

        event_type = await service.handle_webhook(b"{}", "t=1,v1=sig")

        assert event_type == "checkout.session.completed"
        assert fake_db.row("orders", order["id"])["status"] == "PAID"

    @pytest.mark.asyncio
    async def test_completed_unpaid_session_waits(self, fake_db, profile, mock_stripe, checked_out_order) -> None:
        order, _ = checked_out_order
        _seed_payment(fake_db, order)
        mock_stripe.Webhook.construct_event.return_value = self._event(
            "checkout.session.completed", payment_status="unpaid", status="complete"
        )
        service = PaymentService()

        await service.handle_webhook(b"{}", "t=1,v1=sig")

        assert fake_db.row("orders", order["id"])["status"] == "PENDING"

    @pytest.mark.asyncio
    async def test_async_failure_releases_stock(self, fake_db, profile, mock_stripe, checked_out_order) -> None:
        order, artwork = checked_out_order
        fake_db.row("artworks", artwork["id"])["quantity"] = 0
        payment = _seed_payment(fake_db, order)
        mock_stripe.Webhook.construct_event.return_value = self._event("checkout.session.async_payment_failed")
        service = PaymentService()

        await service.handle_webhook(b"{}", "t=1,v1=sig")
        await service.handle_webhook(b"{}", "t=1,v1=sig")

        assert fake_db.row("payments", payment["id"])["payment_status"] == "FAILED"
        # Released once despite the duplicate delivery
        assert fake_db.row("artworks", artwork["id"])["quantity"] == 2

    @pytest.mark.asyncio
    async def test_invalid_signature(self, fake_db, mock_stripe) -> None:
        mock_stripe.Webhook.construct_event.side_effect = stripe.error.SignatureVerificationError(
            "Invalid", "sig_header"
        )
        service = PaymentService()

        with pytest.raises(BadRequestError):
            await service.handle_webhook(b"{}", "bad")

    @pytest.mark.asyncio
    async def test_unknown_payment_is_ignored(self, fake_db, mock_stripe) -> None:
        mock_stripe.Webhook.construct_event.return_value = self._event("checkout.session.expired")
        service = PaymentService()

        assert await service.handle_webhook(b"{}", "t=1,v1=sig") == "checkout.session.expired"

    @pytest.mark.asyncio
    async def test_unhandled_event_type(self, fake_db, mock_stripe) -> None:
        mock_stripe.Webhook.construct_event.return_value = {"type": "invoice.paid", "data": {"object": {}}}
        service = PaymentService()

        assert await service.handle_webhook(b"{}", "t=1,v1=sig") == "invoice.paid"
