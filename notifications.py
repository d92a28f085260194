"""
Order confirmation email over SMTP.

Sending is best effort: the order pipeline calls it after the order is
committed and a failure here never affects the order.
"""
import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from html import escape
from typing import Any, Dict, Optional, Protocol

from config import Settings

logger = logging.getLogger(__name__)

STORE_NAME = "She Wear Collection"


class Mailer(Protocol):
    def send_order_confirmation(self, order: Dict[str, Any]) -> None:
        ...


def _money(amount: float) -> str:
    if float(amount).is_integer():
        return f"₹{amount:,.0f}"
    return f"₹{amount:,.2f}"


def render_order_confirmation(order: Dict[str, Any]) -> str:
    address = order["shipping_address"]
    created = order.get("created_at")
    if isinstance(created, datetime):
        created = created.strftime("%d %B %Y")
    method = "Cash on Delivery" if order["payment_method"] == "cod" else "Online Payment"
    rows = "".join(
        f"<tr><td>{escape(item['name'])}</td><td>Size: {escape(item['size'])}</td>"
        f"<td>&times;{item['quantity']}</td><td style=\"text-align:right\">{_money(item['price'] * item['quantity'])}</td></tr>"
        for item in order["items"]
    )
    shipping = "FREE" if order["shipping"] == 0 else _money(order["shipping"])
    return f"""<!DOCTYPE html>
<html><body style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
<h1>Order Confirmed!</h1>
<p>Dear {escape(address['full_name'])},</p>
<p>Thank you for shopping with {STORE_NAME}! Your order has been confirmed and is being processed.</p>
<p><strong>Order ID:</strong> {escape(order['order_id'])}<br>
<strong>Order Date:</strong> {escape(str(created or ''))}<br>
<strong>Payment Method:</strong> {method}</p>
<table style="width:100%; border-collapse: collapse;">
{rows}
<tr><td colspan="3" style="text-align:right"><strong>Subtotal:</strong></td><td style="text-align:right">{_money(order['subtotal'])}</td></tr>
<tr><td colspan="3" style="text-align:right"><strong>Shipping:</strong></td><td style="text-align:right">{shipping}</td></tr>
<tr><td colspan="3" style="text-align:right"><strong>Total:</strong></td><td style="text-align:right"><strong>{_money(order['total'])}</strong></td></tr>
</table>
<h2>Shipping Address</h2>
<p>{escape(address['full_name'])}<br>{escape(address['phone'])}<br>{escape(address['address'])}<br>
{escape(address['city'])}, {escape(address['state'])} - {escape(address['pincode'])}</p>
<p>Please note that all sales are final. We do not accept returns or exchanges.</p>
<p>Best regards,<br>{STORE_NAME} Team</p>
</body></html>"""


class SmtpMailer:
    def __init__(self, host: str, port: int, user: str, password: str, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout

    def send_order_confirmation(self, order: Dict[str, Any]) -> None:
        recipient = order["shipping_address"].get("email") or order["user_email"]
        msg = EmailMessage()
        msg["Subject"] = f"Order Confirmation - {order['order_id']}"
        msg["From"] = f'"{STORE_NAME}" <{self.user}>'
        msg["To"] = recipient
        msg.set_content(f"Your order {order['order_id']} has been confirmed. Total: {_money(order['total'])}")
        msg.add_alternative(render_order_confirmation(order), subtype="html")

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.starttls()
            smtp.login(self.user, self.password)
            smtp.send_message(msg)
        logger.info("Order confirmation email sent to %s", recipient)


class NullMailer:
    def send_order_confirmation(self, order: Dict[str, Any]) -> None:
        logger.info("Email not configured; skipping confirmation for %s", order["order_id"])


def build_mailer(settings: Settings) -> Mailer:
    if settings.email_host and settings.email_user and settings.email_pass:
        return SmtpMailer(settings.email_host, settings.email_port, settings.email_user, settings.email_pass)
    logger.warning("Email service not configured; confirmations will be skipped")
    return NullMailer()
