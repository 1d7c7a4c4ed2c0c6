"""
Transactional email.

MailerSendGateway talks to the MailerSend HTTP API; LoggingGateway is used when
no API key is configured and only records what would have been sent.
"""
from html import escape
from typing import List, Optional

import httpx
import structlog

from errors import EmailSendError
from schemas import Address, CartItemResponse

logger = structlog.get_logger(__name__)

BRAND = "JetECommerce"
SUPPORT_EMAIL = "support@jetecommerce.com"
PLACEHOLDER_IMAGE = "https://via.placeholder.com/60"


def _money(value: float) -> str:
    return f"${value:,.2f}"


def _secure_image(url: Optional[str]) -> str:
    if not url or not url.strip():
        return PLACEHOLDER_IMAGE
    return url.replace("http://", "https://", 1)


def _page(title: str, body: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"UTF-8\">"
        f"<title>{BRAND} - {escape(title)}</title></head>"
        "<body style=\"font-family: Arial, sans-serif; color: #333; background-color: #f4f4f4;\">"
        "<div style=\"max-width: 600px; margin: 0 auto; background-color: #fff; padding: 20px;\">"
        f"<h2 style=\"color: #2196F3; text-align: center;\">{escape(title)}</h2>"
        f"{body}"
        "</div></body></html>"
    )


def render_password_reset(name: str, new_password: str):
    greeting = name.capitalize()
    html = _page(
        "Password Reset",
        f"<p>Dear {escape(greeting)},</p>"
        f"<p>We received a request to reset your password for your {BRAND} account. "
        "Your new password has been generated:</p>"
        f"<p style=\"font-family: monospace; font-size: 24px; text-align: center;\">{escape(new_password)}</p>"
        "<p><strong>Important:</strong> For security reasons, please log in and change your password immediately.</p>"
        f"<p style=\"font-size: 12px;\">If you didn't request this password reset, please contact {SUPPORT_EMAIL}</p>",
    )
    text = (
        f"{BRAND}\n\n"
        f"Dear {greeting},\n\n"
        f"We received a request to reset your password for your {BRAND} account.\n"
        f"Your new password is: {new_password}\n\n"
        "Important: For security reasons, please log in and change your password immediately.\n\n"
        f"If you didn't request this password reset, please contact {SUPPORT_EMAIL}\n"
    )
    return html, text


def render_order_confirmation(name, order_id, address: Address, items: List[CartItemResponse],
                              subtotal, shipping, tax, discount, total):
    greeting = name.capitalize()

    rows = "".join(
        "<tr>"
        f"<td><img src=\"{escape(_secure_image(item.image_url))}\" alt=\"{escape(item.product_name)}\" "
        "width=\"60\" height=\"60\"> "
        f"{escape(item.product_name)}</td>"
        f"<td style=\"text-align: center;\">{item.quantity}</td>"
        f"<td style=\"text-align: right;\">{_money(item.price)}</td>"
        f"<td style=\"text-align: right;\">{_money(item.price * item.quantity)}</td>"
        "</tr>"
        for item in items
    )
    breakdown = [("Subtotal", _money(subtotal)), ("Shipping", _money(shipping)), ("Tax", _money(tax))]
    if discount > 0:
        breakdown.append(("Discount", f"-{_money(discount)}"))
    breakdown.append(("Total", _money(total)))
    breakdown_rows = "".join(
        f"<tr><td style=\"text-align: right;\">{label}</td><td style=\"text-align: right;\">{value}</td></tr>"
        for label, value in breakdown
    )

    html = _page(
        "Order Confirmation",
        f"<p style=\"text-align: center;\">Order #{order_id}</p>"
        f"<p>Dear {escape(greeting)},</p>"
        f"<p>Thank you for shopping with {BRAND}! We're pleased to confirm that we've received "
        "your order and it's being processed.</p>"
        "<h3>Shipping Address</h3>"
        f"<p>{escape(address.address_line)}<br>"
        f"{escape(address.city)}, {escape(address.state)} {escape(address.postal_code)}<br>"
        f"{escape(address.country)}</p>"
        "<table style=\"width: 100%;\"><thead><tr>"
        "<th>Product</th><th>Quantity</th><th>Price</th><th>Subtotal</th>"
        f"</tr></thead><tbody>{rows}</tbody></table>"
        f"<table style=\"width: 100%;\">{breakdown_rows}</table>"
        f"<p style=\"font-size: 12px;\">Questions about your order? Contact {SUPPORT_EMAIL}</p>",
    )

    item_lines = "\n".join(
        f"{item.product_name} x {item.quantity} = {_money(item.price * item.quantity)}" for item in items
    )
    summary_lines = "\n".join(f"{label}: {value}" for label, value in breakdown)
    text = (
        f"{BRAND}\n\n"
        f"Dear {greeting},\n\n"
        f"Thank you for shopping with {BRAND}! We're pleased to confirm that we've received your order.\n\n"
        f"Order Confirmation #{order_id}\n\n"
        "Shipping Address:\n"
        f"{address.address_line}\n"
        f"{address.city}, {address.state} {address.postal_code}\n"
        f"{address.country}\n\n"
        f"Items:\n{item_lines}\n\n"
        f"Order Summary:\n{summary_lines}\n\n"
        f"If you have any questions about your order, please contact {SUPPORT_EMAIL}\n"
    )
    return html, text


class MailerSendGateway:
    def __init__(self, api_key: str, sender_email: str, base_url: str = "https://api.mailersend.com/v1",
                 timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.api_key = api_key
        self.sender_email = sender_email
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    def _send(self, to_email: str, subject: str, html: str, text: str) -> None:
        payload = {
            "from": {"email": self.sender_email},
            "to": [{"email": to_email}],
            "subject": subject,
            "text": text,
            "html": html,
        }
        try:
            response = self.client.post(
                f"{self.base_url}/email",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "X-Requested-With": "XMLHttpRequest",
                },
            )
        except httpx.HTTPError as exc:
            raise EmailSendError(f"Failed to send email: {exc}") from exc
        if response.status_code != httpx.codes.ACCEPTED:
            raise EmailSendError(f"Failed to send email: {response.status_code}")
        logger.info("email.sent", subject=subject)

    def send_password_reset(self, to_email: str, name: str, new_password: str) -> None:
        html, text = render_password_reset(name, new_password)
        self._send(to_email, f"{BRAND} - Password Reset", html, text)

    def send_order_confirmation(self, to_email, name, order_id, address, items,
                                subtotal, shipping, tax, discount, total) -> None:
        html, text = render_order_confirmation(name, order_id, address, items, subtotal, shipping, tax, discount, total)
        self._send(to_email, f"{BRAND} - Order Confirmation", html, text)

    def close(self) -> None:
        self.client.close()


class LoggingGateway:
    """Development stand-in: logs instead of delivering."""

    def send_password_reset(self, to_email: str, name: str, new_password: str) -> None:
        logger.info("email.skipped", kind="password_reset", to=to_email)

    def send_order_confirmation(self, to_email, name, order_id, address, items,
                                subtotal, shipping, tax, discount, total) -> None:
        logger.info("email.skipped", kind="order_confirmation", to=to_email, order_id=order_id, total=total)

    def close(self) -> None:
        pass
