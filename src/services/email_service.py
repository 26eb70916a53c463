"""Email service using Resend for transactional emails."""

import logging
from typing import Any

import resend

from src.core.config import get_settings

logger = logging.getLogger(__name__)


class EmailService:
    """Service for sending order notifications via Resend.

    Send failures are logged and reported in the result instead of raised,
    so a notification never undoes the order change it reports.
    """

    def __init__(self) -> None:
        """Initialize email service with Resend API key."""
        settings = get_settings()
        resend.api_key = settings.resend_api_key
        self.from_email = settings.email_from_address
        self.admin_email = settings.admin_email
        self.frontend_url = settings.frontend_url

    def _send(self, to_email: str, subject: str, text: str, html: str) -> dict[str, Any]:
        try:
            response = resend.Emails.send({
                "from": self.from_email,
                "to": [to_email],
                "subject": subject,
                "html": html,
                "text": text,
            })

            logger.info("Email '%s' sent to %s, id: %s", subject, to_email, response.get("id"))
            return {"success": True, "email_id": response.get("id")}

        except Exception as e:
            logger.error("Failed to send email '%s' to %s: %s", subject, to_email, str(e))
            return {"success": False, "error": str(e)}

    async def send_order_shipped_email(
        self,
        to_email: str,
        order_id: str,
        tracking_id: str,
    ) -> dict[str, Any]:
        """Tell a customer their order is on its way.

        Args:
            to_email: Recipient email address.
            order_id: The shipped order's ID.
            tracking_id: Carrier tracking ID for the shipment.

        Returns:
            dict: ``success`` flag and the email ID or error.
        """
        track_url = f"{self.frontend_url}/orders/{order_id}/tracking/{tracking_id}"

        text_content = (
            f"Your order with id: {order_id} has been shipped. "
            f"Your tracking id is {tracking_id}.\n\n"
            f"Track your delivery here:\n{track_url}\n"
        )
        html_content = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Your order has shipped</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h1 style="font-size: 22px;">Your order has shipped</h1>
    <p>Your order <strong>{order_id}</strong> is on its way.</p>
    <p>Tracking id: <strong>{tracking_id}</strong></p>
    <p style="text-align: center; margin: 30px 0;">
        <a href="{track_url}" style="background: #111827; color: white; padding: 12px 28px; text-decoration: none; border-radius: 6px; font-weight: 600;">
            Track delivery
        </a>
    </p>
</body>
</html>
"""
        return self._send(to_email, "Order Shipment", text_content, html_content)

    async def notify_admin_of_completed_payment(self, order_id: str) -> dict[str, Any]:
        """Tell the shop admin an order has been paid for."""
        text_content = f"An order with id: {order_id} has been paid for."
        html_content = f"<p>An order with id: <strong>{order_id}</strong> has been paid for.</p>"
        return self._send(self.admin_email, "Payment Complete", text_content, html_content)
