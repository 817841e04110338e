# Overview: Idempotent paid/refunded marking shared by webhooks, polls and operator commands.

"""
Payment reconciliation

WHY: Paystack delivers webhooks at least once and buyers refresh the confirm
page. All of these paths end in mark_paid()/mark_refunded(), which flip the
payment status exactly once and send at most one email per flip.

mark_paid(reference):
1. Unknown reference -> logged no-op (may belong to another environment).
2. Already paid -> no-op.
3. Gateway verify (failure propagates; nothing is written).
4. Re-read the sale under a row lock; a concurrent call that won the race
   makes this one a no-op.
5. Set paid, commit, notify.

A capture that lands after the order was cancelled (buyer paid on a stale
page, or the webhook raced the cancellation) is refunded in full and the sale
is marked refunded. Its stock has already gone back to the batches.

A verified capture is recorded as a fact: the batch-assignment guard of
manual status changes does not apply here.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass

from ..errors import InvalidStateError, UnauthorizedError
from ..extensions import db
from ..models import Sale
from ..models.sales import ORDER_CANCELLED, PAYMENT_PAID, PAYMENT_REFUNDED, PAYMENT_TRANSITIONS
from .concurrency import lock_for_update, unit_of_work
from .notification_service import (
    TEMPLATE_PAYMENT_CONFIRMED,
    TEMPLATE_PAYMENT_REFUNDED,
    notify_safely,
)
from .order_tracking_service import require_email_owner, require_user_owner
from .payment_gateway import VerifyResult, get_gateway
from .sale_service import load_sale, notification_context

logger = logging.getLogger(__name__)

EVENT_CHARGE_SUCCESS = "charge.success"
EVENT_REFUND_PROCESSED = "refund.processed"

RESULT_UPDATED = "updated"
RESULT_ALREADY_PAID = "already_paid"
RESULT_ALREADY_REFUNDED = "already_refunded"
RESULT_NOT_FOUND = "not_found"
RESULT_IGNORED = "ignored"
RESULT_REFUNDED_AFTER_CANCEL = "refunded_after_cancel"


@dataclass
class ReconcileResult:
    status: str
    reference: str | None = None
    sale_id: str | None = None

    @property
    def changed(self) -> bool:
        return self.status in (RESULT_UPDATED, RESULT_REFUNDED_AFTER_CANCEL)

    def to_dict(self) -> dict:
        return {"status": self.status, "reference": self.reference, "sale_id": self.sale_id}


# =============================================================================
# WEBHOOK SIGNATURE
# =============================================================================

def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha512).hexdigest()


def verify_webhook_signature(raw_body: bytes, signature: str | None, secret: str | None) -> bool:
    """HMAC-SHA512 of the raw request body, hex encoded, compared in constant time."""
    if not secret:
        logger.error("Paystack secret key not configured; rejecting webhook")
        return False
    if not signature:
        return False
    return hmac.compare_digest(compute_signature(raw_body, secret), signature)


def require_webhook_signature(raw_body: bytes, signature: str | None, secret: str | None) -> None:
    if not verify_webhook_signature(raw_body, signature, secret):
        logger.warning("Invalid Paystack signature attempt")
        raise UnauthorizedError("Invalid Paystack signature")


# =============================================================================
# MARKING
# =============================================================================

def _find_by_reference(session, reference: str, *, lock: bool = False) -> Sale | None:
    query = session.query(Sale).filter(
        Sale.payment_reference == reference,
        Sale.deleted_at.is_(None),
    )
    if lock:
        query = lock_for_update(query)
    return query.first()


def mark_paid(reference: str) -> ReconcileResult:
    if not reference:
        return ReconcileResult(RESULT_IGNORED)

    sale = _find_by_reference(db.session, reference)
    if sale is None:
        logger.info("mark_paid: no sale for reference %s", reference)
        return ReconcileResult(RESULT_NOT_FOUND, reference)
    if sale.payment_status == PAYMENT_PAID:
        return ReconcileResult(RESULT_ALREADY_PAID, reference, sale.id)
    if PAYMENT_PAID not in PAYMENT_TRANSITIONS.get(sale.payment_status, set()):
        logger.warning(
            "mark_paid: sale %s is %s; not marking paid", sale.id, sale.payment_status
        )
        return ReconcileResult(RESULT_IGNORED, reference, sale.id)

    verified = get_gateway().verify(reference)

    with unit_of_work() as session:
        sale = _find_by_reference(session, reference, lock=True)
        if sale is None:
            return ReconcileResult(RESULT_NOT_FOUND, reference)
        if sale.payment_status == PAYMENT_PAID:
            return ReconcileResult(RESULT_ALREADY_PAID, reference, sale.id)
        late_capture = sale.order_status == ORDER_CANCELLED
        if late_capture:
            _refund_late_capture(sale, verified)
        else:
            sale.payment_status = PAYMENT_PAID

    if late_capture:
        notify_safely(
            TEMPLATE_PAYMENT_REFUNDED,
            sale.contact_email,
            "Refund Processed",
            notification_context(sale),
        )
        return ReconcileResult(RESULT_REFUNDED_AFTER_CANCEL, reference, sale.id)

    logger.info("Sale %s marked paid (reference %s)", sale.id, reference)
    notify_safely(
        TEMPLATE_PAYMENT_CONFIRMED,
        sale.contact_email,
        "Payment Confirmation",
        notification_context(sale),
    )
    return ReconcileResult(RESULT_UPDATED, reference, sale.id)


def _refund_late_capture(sale: Sale, verified: VerifyResult) -> None:
    amount = verified.amount if verified.amount is not None else sale.total_amount
    logger.error(
        "Sale %s is cancelled but payment %s was captured; refunding %s",
        sale.id, sale.payment_reference, amount,
    )
    get_gateway().refund(sale.payment_reference, amount)
    sale.payment_status = PAYMENT_REFUNDED


def mark_refunded(reference: str) -> ReconcileResult:
    """Only a paid sale becomes refunded; everything else is a no-op."""
    if not reference:
        return ReconcileResult(RESULT_IGNORED)

    with unit_of_work() as session:
        sale = _find_by_reference(session, reference, lock=True)
        if sale is None:
            logger.info("mark_refunded: no sale for reference %s", reference)
            return ReconcileResult(RESULT_NOT_FOUND, reference)
        if sale.payment_status == PAYMENT_REFUNDED:
            return ReconcileResult(RESULT_ALREADY_REFUNDED, reference, sale.id)
        if sale.payment_status != PAYMENT_PAID:
            logger.warning(
                "mark_refunded: sale %s is %s; not marking refunded", sale.id, sale.payment_status
            )
            return ReconcileResult(RESULT_IGNORED, reference, sale.id)
        sale.payment_status = PAYMENT_REFUNDED

    logger.info("Sale %s marked refunded (reference %s)", sale.id, reference)
    notify_safely(
        TEMPLATE_PAYMENT_REFUNDED,
        sale.contact_email,
        "Refund Processed",
        notification_context(sale),
    )
    return ReconcileResult(RESULT_UPDATED, reference, sale.id)


def handle_webhook(payload: dict) -> ReconcileResult:
    """Dispatch a verified Paystack event. Unknown events are ignored."""
    event = (payload or {}).get("event")
    data = (payload or {}).get("data") or {}

    if event == EVENT_CHARGE_SUCCESS:
        return mark_paid(data.get("reference"))
    if event == EVENT_REFUND_PROCESSED:
        return mark_refunded(data.get("transaction_reference") or data.get("reference"))

    logger.info("Ignoring Paystack event %s", event)
    return ReconcileResult(RESULT_IGNORED)


# =============================================================================
# CLIENT CONFIRMATION
# =============================================================================

def _confirm(sale: Sale) -> tuple[Sale, ReconcileResult]:
    if not sale.payment_reference:
        raise InvalidStateError("No payment has been started for this order")
    result = mark_paid(sale.payment_reference)
    return load_sale(db.session, sale.id), result


def confirm_payment(user_id: str, sale_id: str) -> tuple[Sale, ReconcileResult]:
    sale = load_sale(db.session, sale_id)
    require_user_owner(sale, user_id)
    return _confirm(sale)


def confirm_guest_payment(sale_id: str, email: str) -> tuple[Sale, ReconcileResult]:
    sale = load_sale(db.session, sale_id)
    require_email_owner(sale, email)
    return _confirm(sale)
