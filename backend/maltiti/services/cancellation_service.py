# Overview: Cancellation rules (refund/penalty) and the cancel-with-refund workflow.

"""
Order cancellation

Outcome by state:

    order      payment   actor                    outcome
    pending    paid      customer or admin        full refund
    packaging  paid      customer                 10% penalty, rest refunded
    packaging  paid      admin, waive_penalty     full refund
    packaging  paid      admin                    10% penalty, rest refunded
    pending    unpaid    any                      cancel, no money moves
    packaging  unpaid    admin                    cancel, no money moves
    packaging  unpaid    customer                 CannotCancel
    in_transit/delivered any                      CannotCancel
    cancelled  -         any                      AlreadyCancelled

When money moves, the gateway refund runs first. If it fails nothing is
changed. A paid sale without a payment reference (recorded offline) cannot be
refunded through the gateway: it is cancelled with refund_processed=False and
its payment status left as is. A paid sale with a zero total has nothing to
send back and is marked refunded without a gateway call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from flask import current_app

from ..errors import AlreadyCancelled, CannotCancel
from ..models import Sale
from ..models.sales import (
    ORDER_CANCELLED,
    ORDER_PACKAGING,
    ORDER_PENDING,
    PAYMENT_PAID,
    PAYMENT_REFUNDED,
)
from . import stock_ledger
from .concurrency import unit_of_work
from .notification_service import (
    TEMPLATE_ADMIN_ORDER_CANCELLED,
    TEMPLATE_ORDER_CANCELLED,
    notify_admins,
    notify_safely,
)
from .order_tracking_service import require_email_owner
from .payment_gateway import get_gateway
from .sale_service import load_sale, notification_context

logger = logging.getLogger(__name__)

ACTOR_CUSTOMER = "customer"
ACTOR_ADMIN = "admin"

CENT = Decimal("0.01")


@dataclass
class CancellationOutcome:
    refund_amount: Decimal
    penalty_amount: Decimal
    message: str

    @property
    def moves_money(self) -> bool:
        return self.refund_amount > 0


@dataclass
class CancellationResult:
    sale: Sale
    outcome: CancellationOutcome
    refund_processed: bool

    def to_dict(self) -> dict:
        return {
            "sale": self.sale.to_dict(),
            "message": self.outcome.message,
            "refund_amount": str(self.outcome.refund_amount) if self.outcome.refund_amount > 0 else None,
            "penalty_amount": str(self.outcome.penalty_amount) if self.outcome.penalty_amount > 0 else None,
            "refund_processed": self.refund_processed,
        }


def compute_cancellation(
    order_status: str,
    payment_status: str,
    total,
    actor: str,
    waive_penalty: bool = False,
    penalty_rate: Decimal = Decimal("0.10"),
) -> CancellationOutcome:
    """
    Pure refund/penalty decision.

    Raises:
        AlreadyCancelled: order is cancelled
        CannotCancel: order has shipped, or a customer cancels unpaid packaging
    """
    total = Decimal(str(total or 0)).quantize(CENT)
    zero = Decimal("0.00")

    if order_status == ORDER_CANCELLED:
        raise AlreadyCancelled("This order has already been cancelled")
    if order_status not in (ORDER_PENDING, ORDER_PACKAGING):
        raise CannotCancel(
            "Cannot cancel order at this stage. Please contact customer support for assistance.",
            details={"order_status": order_status},
        )

    paid = payment_status == PAYMENT_PAID

    if paid and order_status == ORDER_PENDING:
        return CancellationOutcome(
            refund_amount=total,
            penalty_amount=zero,
            message="Order cancelled successfully. Full refund will be processed within 7-12 business days.",
        )

    if paid:
        if actor == ACTOR_ADMIN and waive_penalty:
            return CancellationOutcome(
                refund_amount=total,
                penalty_amount=zero,
                message="Order cancelled by admin. Full refund processed.",
            )
        penalty = (total * penalty_rate).quantize(CENT, rounding=ROUND_HALF_UP)
        refund = total - penalty
        percent = (penalty_rate * 100).normalize()
        return CancellationOutcome(
            refund_amount=refund,
            penalty_amount=penalty,
            message=(
                f"Order cancelled with {percent:f}% cancellation fee. "
                f"Refund of GHS {refund} will be processed within 7-12 business days."
            ),
        )

    if order_status == ORDER_PACKAGING and actor != ACTOR_ADMIN:
        raise CannotCancel(
            "Cannot cancel order at this stage. Please contact customer support for assistance.",
            details={"order_status": order_status},
        )

    message = "Order cancelled by admin." if actor == ACTOR_ADMIN else "Order cancelled successfully."
    return CancellationOutcome(refund_amount=zero, penalty_amount=zero, message=message)


def _cancel(sale_id: str, actor: str, *, waive_penalty: bool = False, email: str | None = None,
            reason: str | None = None) -> CancellationResult:
    with unit_of_work() as session:
        sale = load_sale(session, sale_id, lock=True)
        if email is not None:
            require_email_owner(sale, email)

        outcome = compute_cancellation(
            sale.order_status,
            sale.payment_status,
            sale.total_amount,
            actor,
            waive_penalty=waive_penalty,
            penalty_rate=current_app.config.get("CANCELLATION_PENALTY_RATE", Decimal("0.10")),
        )

        refund_processed = False
        if outcome.moves_money:
            if sale.payment_reference:
                get_gateway().refund(sale.payment_reference, outcome.refund_amount)
                refund_processed = True
            else:
                logger.warning("Sale %s is paid but has no payment reference; refund skipped", sale.id)

        stock_ledger.return_allocations(session, sale.get_line_items())

        # A paid zero-total sale has nothing to send back; it counts as settled.
        settled = (
            sale.payment_status == PAYMENT_PAID
            and outcome.refund_amount == 0
            and outcome.penalty_amount == 0
        )

        sale.order_status = ORDER_CANCELLED
        if refund_processed or settled:
            sale.payment_status = PAYMENT_REFUNDED

    logger.info(
        "Sale %s cancelled by %s (refund %s, penalty %s, processed %s)",
        sale.id, actor, outcome.refund_amount, outcome.penalty_amount, refund_processed,
    )
    result = CancellationResult(sale=sale, outcome=outcome, refund_processed=refund_processed)
    _notify_cancelled(result, actor, reason)
    return result


def _notify_cancelled(result: CancellationResult, actor: str, reason: str | None) -> None:
    sale = result.sale
    context = notification_context(sale)
    context.update({
        "message": result.outcome.message,
        "reason": f" Reason: {reason}" if reason else "",
        "refund_amount": str(result.outcome.refund_amount),
        "penalty_amount": str(result.outcome.penalty_amount),
        "refund_processed": "yes" if result.refund_processed else "no",
        "cancelled_by": actor,
    })
    notify_safely(TEMPLATE_ORDER_CANCELLED, sale.contact_email, "Order Cancelled", context)
    notify_admins(TEMPLATE_ADMIN_ORDER_CANCELLED, "Order Cancelled", context)


def cancel_sale_by_customer(sale_id: str, email: str, reason: str | None = None) -> CancellationResult:
    """Buyer-initiated cancellation; email must match the order."""
    return _cancel(sale_id, ACTOR_CUSTOMER, email=email or "", reason=reason)


def cancel_sale_by_admin(sale_id: str, waive_penalty: bool = False, reason: str | None = None) -> CancellationResult:
    return _cancel(sale_id, ACTOR_ADMIN, waive_penalty=waive_penalty, reason=reason)
