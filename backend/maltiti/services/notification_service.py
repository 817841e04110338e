# Overview: Fire-and-forget customer/admin notifications behind a Notifier interface.

"""
Notification delivery

Business code calls notify_safely() after its transaction commits. Delivery
is best-effort: any failure is logged and swallowed so an email outage never
undoes or fails an order operation.
"""

from __future__ import annotations

import logging
from typing import Iterable

import httpx
from flask import current_app

logger = logging.getLogger(__name__)


# =============================================================================
# TEMPLATES
# =============================================================================

TEMPLATE_ORDER_PLACED = "order_placed"
TEMPLATE_ADMIN_NEW_ORDER = "admin_new_order"
TEMPLATE_PAYMENT_CONFIRMED = "payment_confirmed"
TEMPLATE_PAYMENT_REFUNDED = "payment_refunded"
TEMPLATE_ORDER_STATUS_UPDATE = "order_status_update"
TEMPLATE_DELIVERY_COST_UPDATED = "delivery_cost_updated"
TEMPLATE_ORDER_CANCELLED = "order_cancelled"
TEMPLATE_ADMIN_ORDER_CANCELLED = "admin_order_cancelled"

TEMPLATES = {
    TEMPLATE_ORDER_PLACED: (
        "Hello {name}, your order {order_id} has been placed successfully. {next_step}"
    ),
    TEMPLATE_ADMIN_NEW_ORDER: (
        "New {customer_type} order {order_id} from {name} ({email}). "
        "Items: {item_count}. Total: GHS {total_amount}."
    ),
    TEMPLATE_PAYMENT_CONFIRMED: (
        "Hello {name}, your payment has been received and order {order_id} is already in progress. "
        "You can track it anytime with this ID and your email address."
    ),
    TEMPLATE_PAYMENT_REFUNDED: (
        "Hello {name}, the refund for order {order_id} has been processed."
    ),
    TEMPLATE_ORDER_STATUS_UPDATE: (
        "Hello {name}, your order {order_id} has been updated. "
        "Order status: {order_status}. Payment status: {payment_status}."
    ),
    TEMPLATE_DELIVERY_COST_UPDATED: (
        "Hello {name}, the delivery cost for order {order_id} is GHS {delivery_fee}. "
        "Your total amount is GHS {total_amount}. {next_step}"
    ),
    TEMPLATE_ORDER_CANCELLED: (
        "Hello {name}, your order {order_id} has been cancelled. {message}{reason}"
    ),
    TEMPLATE_ADMIN_ORDER_CANCELLED: (
        "Order {order_id} for {name} ({email}) was cancelled by {cancelled_by}. "
        "Refund: GHS {refund_amount}. Penalty: GHS {penalty_amount}. "
        "Refund processed: {refund_processed}.{reason}"
    ),
}


class _Defaults(dict):
    def __missing__(self, key):
        return ""


def render_message(template: str, context: dict) -> str:
    return TEMPLATES[template].format_map(_Defaults(context))


# =============================================================================
# NOTIFIERS
# =============================================================================

class Notifier:
    """Sends one templated message to one or more recipients."""

    def send(self, template: str, to: str | Iterable[str], subject: str, context: dict) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Default for local development: writes the message to the log."""

    def send(self, template, to, subject, context):
        recipients = [to] if isinstance(to, str) else list(to)
        logger.info("Notification %s to %s: %s | %s", template, recipients, subject, render_message(template, context))


class EmailApiNotifier(Notifier):
    """Posts messages to a transactional email HTTP API."""

    def __init__(self, api_url: str, api_key: str, sender: str, timeout: float = 10.0):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    def send(self, template, to, subject, context):
        recipients = [to] if isinstance(to, str) else list(to)
        payload = {
            "from": self.sender,
            "to": recipients,
            "subject": subject,
            "text": render_message(template, context),
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        response = httpx.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
        if response.status_code >= 400:
            raise RuntimeError(f"Email sending failed: {response.status_code} {response.text}")


def build_notifier(config) -> Notifier:
    if config.get("EMAIL_API_KEY"):
        return EmailApiNotifier(
            api_url=config["EMAIL_API_URL"],
            api_key=config["EMAIL_API_KEY"],
            sender=config["EMAIL_FROM"],
        )
    return LoggingNotifier()


def get_notifier() -> Notifier:
    return current_app.extensions["notifier"]


def notify_safely(template: str, to, subject: str, context: dict) -> bool:
    """
    Send a notification, never raising.

    Returns True when the notifier accepted the message.
    """
    if not to:
        logger.info("Skipping %s notification: no recipient", template)
        return False
    try:
        get_notifier().send(template, to, subject, context)
        return True
    except Exception:
        logger.exception("Failed to send %s notification", template)
        return False


def notify_admins(template: str, subject: str, context: dict) -> bool:
    admins = current_app.config.get("ADMIN_EMAILS") or []
    return notify_safely(template, admins, subject, context)


def format_status(status: str | None) -> str:
    """in_transit -> In Transit"""
    if not status:
        return ""
    return " ".join(word.capitalize() for word in status.split("_"))
