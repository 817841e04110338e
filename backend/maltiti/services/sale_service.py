# Overview: Sale aggregate operations; status guards, line-item edits and admin sale queries.

"""
Sale lifecycle

WHY: A sale moves along two independent axes (order_status for fulfilment,
payment_status for money). Every write goes through this module so the
transition tables and the batch-assignment guard are applied in one place.

Rules:
- Order status only moves forward; cancellation has its own service.
- Fulfilment states and "paid" (set by hand) need batches on every line item.
- Stock follows line items: replacing allocations returns the old units to
  their batches before the new ones are validated and deducted, all inside
  one transaction.
- Notifications are sent after commit and never fail the operation.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Iterable

from flask import current_app

from ..errors import (
    BatchesNotAssigned,
    CustomerNotFound,
    InvalidStateError,
    InvalidTransition,
    NotFoundError,
    OverAllocation,
    SaleNotFound,
    ValidationError,
)
from ..extensions import db
from ..models import Customer, LineItem, Sale
from ..models.sales import (
    FULFILMENT_STATUSES,
    ORDER_CANCELLED,
    ORDER_DELIVERED,
    ORDER_IN_TRANSIT,
    ORDER_PENDING,
    ORDER_STATUSES,
    ORDER_TRANSITIONS,
    PAYMENT_AWAITING_DELIVERY,
    PAYMENT_INVOICE_REQUESTED,
    PAYMENT_PAID,
    PAYMENT_PENDING,
    PAYMENT_REFUNDED,
    PAYMENT_STATUSES,
    PAYMENT_TRANSITIONS,
    UNPAID_STATUSES,
)
from ..time_utils import utcnow
from . import line_item_service, stock_ledger
from .concurrency import lock_for_update, run_with_retry, unit_of_work
from .notification_service import (
    TEMPLATE_DELIVERY_COST_UPDATED,
    TEMPLATE_ORDER_STATUS_UPDATE,
    format_status,
    notify_safely,
)


# =============================================================================
# LOOKUPS
# =============================================================================

def load_sale(session, sale_id: str, *, lock: bool = False) -> Sale:
    query = session.query(Sale).filter(Sale.id == sale_id, Sale.deleted_at.is_(None))
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise SaleNotFound(f"Sale with ID \"{sale_id}\" not found", details={"sale_id": sale_id})
    return sale


def get_sale(sale_id: str) -> Sale:
    return load_sale(db.session, sale_id)


def list_sales(
    *,
    order_status: str | None = None,
    payment_status: str | None = None,
    customer_id: str | None = None,
    customer_name: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    """Newest first, paginated. customer_id wins over customer_name."""
    page = max(1, int(page))
    limit = max(1, min(int(limit), 100))

    query = db.session.query(Sale).filter(Sale.deleted_at.is_(None))
    if order_status:
        query = query.filter(Sale.order_status == order_status)
    if payment_status:
        query = query.filter(Sale.payment_status == payment_status)
    if customer_id:
        query = query.filter(Sale.customer_id == customer_id)
    elif customer_name:
        query = query.join(Customer, Sale.customer_id == Customer.id).filter(
            Customer.name.ilike(f"%{customer_name}%")
        )

    total_items = query.count()
    items = (
        query.order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "items": [sale.to_dict() for sale in items],
        "total_items": total_items,
        "current_page": page,
        "total_pages": (total_items + limit - 1) // limit,
    }


# =============================================================================
# GUARDS
# =============================================================================

def batches_assigned(items: Iterable[LineItem]) -> bool:
    return all(item.batch_allocations for item in items)


def _check_order_transition(sale: Sale, target: str) -> None:
    if target not in ORDER_STATUSES:
        raise ValidationError(f"Unknown order status \"{target}\"")
    if target == sale.order_status:
        return
    if target == ORDER_CANCELLED:
        raise InvalidTransition(
            "Orders are cancelled through the cancellation endpoints",
            details={"from": sale.order_status, "to": target},
        )
    if target not in ORDER_TRANSITIONS.get(sale.order_status, set()):
        raise InvalidTransition(
            f"Cannot change order status from {sale.order_status} to {target}",
            details={"from": sale.order_status, "to": target},
        )


def _check_payment_transition(sale: Sale, target: str) -> None:
    if target not in PAYMENT_STATUSES:
        raise ValidationError(f"Unknown payment status \"{target}\"")
    if target == sale.payment_status:
        return
    if sale.order_status == ORDER_CANCELLED:
        raise InvalidTransition(
            "Cannot change payment status of a cancelled sale",
            details={"from": sale.payment_status, "to": target},
        )
    if target == PAYMENT_REFUNDED:
        raise InvalidTransition(
            "Refunds are recorded by cancellation or the payment provider",
            details={"from": sale.payment_status, "to": target},
        )
    if target not in PAYMENT_TRANSITIONS.get(sale.payment_status, set()):
        raise InvalidTransition(
            f"Cannot change payment status from {sale.payment_status} to {target}",
            details={"from": sale.payment_status, "to": target},
        )


def check_status_change(sale: Sale, order_status: str | None, payment_status: str | None) -> None:
    """Transition tables first, then the batch-assignment guard."""
    if order_status:
        _check_order_transition(sale, order_status)
    if payment_status:
        _check_payment_transition(sale, payment_status)

    items = sale.get_line_items()
    if order_status in FULFILMENT_STATUSES and not batches_assigned(items):
        raise BatchesNotAssigned(
            "Batches must be assigned before changing order status to packaging or beyond"
        )
    if payment_status == PAYMENT_PAID and not batches_assigned(items):
        raise BatchesNotAssigned("Batches must be assigned before marking as paid")


def _require_editable_items(sale: Sale) -> None:
    if sale.payment_status == PAYMENT_PAID:
        raise InvalidStateError("Cannot modify line items after payment")
    if sale.order_status == ORDER_CANCELLED:
        raise InvalidStateError("Cannot modify line items of a cancelled sale")


# =============================================================================
# HELPERS
# =============================================================================

def subtotal(items: Iterable[LineItem]) -> Decimal:
    total = sum((item.line_total for item in items), Decimal("0"))
    return total.quantize(Decimal("0.01"))


def _sync_checkout_amount(sale: Sale) -> None:
    checkout = sale.checkout
    if checkout is None:
        return
    checkout.amount = sale.total_amount if sale.delivery_fee is not None else None


def _parse_fee(value) -> Decimal:
    try:
        fee = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError("delivery_cost must be a number")
    if fee < 0:
        raise ValidationError("delivery_cost cannot be negative")
    return fee.quantize(Decimal("0.01"))


def tracking_url(sale: Sale) -> str:
    frontend = current_app.config.get("FRONTEND_URL", "")
    return f"{frontend}/track-order/{sale.id}"


def notification_context(sale: Sale) -> dict:
    customer = sale.customer
    return {
        "name": customer.name if customer and customer.name else "Valued Customer",
        "email": sale.contact_email,
        "order_id": sale.id,
        "order_status": format_status(sale.order_status),
        "payment_status": format_status(sale.payment_status),
        "amount": str(sale.amount) if sale.amount is not None else "",
        "delivery_fee": str(sale.delivery_fee) if sale.delivery_fee is not None else "",
        "total_amount": str(sale.total_amount),
        "item_count": len(sale.line_items or []),
        "link": tracking_url(sale),
    }


# =============================================================================
# STATUS / DELIVERY COST
# =============================================================================

def update_status(sale_id: str, order_status: str | None = None, payment_status: str | None = None) -> Sale:
    """
    Admin status change on either axis.

    Raises:
        SaleNotFound, ValidationError, InvalidTransition, BatchesNotAssigned
    """
    if not order_status and not payment_status:
        raise ValidationError("order_status or payment_status required")

    def _op():
        with unit_of_work() as session:
            sale = load_sale(session, sale_id, lock=True)
            check_status_change(sale, order_status, payment_status)
            if order_status:
                sale.order_status = order_status
            if payment_status:
                sale.payment_status = payment_status
        return sale

    sale = run_with_retry(_op)

    notify_safely(
        TEMPLATE_ORDER_STATUS_UPDATE,
        sale.contact_email,
        "Order Status Update",
        notification_context(sale),
    )
    return sale


def update_delivery_cost(sale_id: str, delivery_cost) -> Sale:
    """
    Set the delivery fee while the order is still unpaid.

    awaiting_delivery moves to pending_payment: the order can now be paid.
    """
    fee = _parse_fee(delivery_cost)

    def _op():
        with unit_of_work() as session:
            sale = load_sale(session, sale_id, lock=True)
            if sale.payment_status not in UNPAID_STATUSES:
                raise InvalidStateError(
                    f"Cannot update delivery cost for order with payment status: {sale.payment_status}",
                    details={"payment_status": sale.payment_status},
                )
            was_awaiting = sale.payment_status == PAYMENT_AWAITING_DELIVERY
            sale.delivery_fee = fee
            if was_awaiting:
                sale.payment_status = PAYMENT_PENDING
            _sync_checkout_amount(sale)
        return sale, was_awaiting

    sale, was_awaiting = run_with_retry(_op)

    context = notification_context(sale)
    if was_awaiting:
        subject = "Delivery Fee Calculated - Ready for Payment"
        context["next_step"] = "You can now proceed to payment."
    else:
        subject = "Delivery Cost Updated"
        context["next_step"] = ""
    notify_safely(TEMPLATE_DELIVERY_COST_UPDATED, sale.contact_email, subject, context)
    return sale


# =============================================================================
# ADMIN SALE EDITING
# =============================================================================

def create_sale(data: dict) -> Sale:
    """
    Record a sale entered by an admin.

    Every line item is validated before any stock is deducted.
    """
    customer_id = data.get("customer_id")
    if not customer_id:
        raise ValidationError("customer_id required")
    order_status = data.get("order_status") or ORDER_PENDING
    payment_status = data.get("payment_status") or PAYMENT_INVOICE_REQUESTED
    if order_status not in ORDER_STATUSES or order_status == ORDER_CANCELLED:
        raise ValidationError(f"Unknown order status \"{order_status}\"")
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError(f"Unknown payment status \"{payment_status}\"")

    def _op():
        with unit_of_work() as session:
            customer = (
                session.query(Customer)
                .filter(Customer.id == customer_id, Customer.deleted_at.is_(None))
                .first()
            )
            if customer is None:
                raise CustomerNotFound(f"Customer with ID \"{customer_id}\" not found")

            items = line_item_service.validate_line_items(session, data.get("line_items"))
            if order_status in FULFILMENT_STATUSES or payment_status == PAYMENT_PAID:
                if not batches_assigned(items):
                    raise BatchesNotAssigned("Batches must be assigned before packaging or payment")

            stock_ledger.deduct_allocations(session, items)

            sale = Sale(
                customer_id=customer.id,
                order_status=order_status,
                payment_status=payment_status,
                amount=subtotal(items),
            )
            sale.set_line_items(items)
            session.add(sale)
        return sale

    return run_with_retry(_op)


def add_line_item(sale_id: str, data: dict) -> Sale:
    """Append one validated line item; its allocations are deducted at once."""
    def _op():
        with unit_of_work() as session:
            sale = load_sale(session, sale_id, lock=True)
            _require_editable_items(sale)

            items = sale.get_line_items()
            item = line_item_service.validate_line_item(session, data)
            stock_ledger.deduct_allocations(session, [item])

            items.append(item)
            sale.set_line_items(items)
            sale.amount = subtotal(items)
            _sync_checkout_amount(sale)
        return sale

    return run_with_retry(_op)


def assign_batches(sale_id: str, product_id: str, raw_allocations) -> Sale:
    """
    Replace the batch allocations of the line item for product_id.

    Old allocations go back to their batches first, so the new set may
    reuse the same units.
    """
    allocations = line_item_service.parse_allocations(raw_allocations)
    if not allocations:
        raise ValidationError("batch_allocations must not be empty")

    def _op():
        with unit_of_work() as session:
            sale = load_sale(session, sale_id, lock=True)
            _require_editable_items(sale)

            items = sale.get_line_items()
            index = next((i for i, item in enumerate(items) if item.product_id == product_id), None)
            if index is None:
                raise NotFoundError("Line item not found", details={"product_id": product_id})
            item = items[index]

            stock_ledger.return_allocations(session, [item])

            total = line_item_service.validate_allocations(session, product_id, allocations)
            if total > item.requested_quantity:
                raise OverAllocation(
                    "Allocated quantity exceeds requested quantity",
                    details={"product_id": product_id, "allocated": total, "requested": item.requested_quantity},
                )

            item.batch_allocations = allocations
            stock_ledger.deduct_allocations(session, [item])
            sale.set_line_items(items)
        return sale

    return run_with_retry(_op)


def update_line_items(sale_id: str, raw_items: list[dict]) -> Sale:
    """
    Replace every line item of a sale in one transaction.

    Stock of the old items is returned, the new items are validated, then
    deducted. Any failure leaves the sale and all batches untouched.
    """
    def _op():
        with unit_of_work() as session:
            sale = load_sale(session, sale_id, lock=True)
            if sale.order_status in (ORDER_IN_TRANSIT, ORDER_DELIVERED):
                raise InvalidStateError("Cannot edit sale that has been delivered or in transit")
            if sale.order_status == ORDER_CANCELLED:
                raise InvalidStateError("Cannot edit a cancelled sale")

            stock_ledger.return_allocations(session, sale.get_line_items())

            items = line_item_service.validate_line_items(session, raw_items)
            if sale.order_status in FULFILMENT_STATUSES and not batches_assigned(items):
                raise BatchesNotAssigned("Batches must stay assigned once the order is packaging")
            stock_ledger.deduct_allocations(session, items)

            sale.set_line_items(items)
            sale.amount = subtotal(items)
            _sync_checkout_amount(sale)
        return sale

    return run_with_retry(_op)


def confirm_delivery(sale_id: str, confirmed: bool) -> Sale:
    with unit_of_work() as session:
        sale = load_sale(session, sale_id, lock=True)
        sale.confirmed_delivery_date = utcnow() if confirmed else None
    return sale


def soft_delete_sale(sale_id: str) -> Sale:
    """Hide a sale and give its allocated stock back (cancelled sales already did)."""
    with unit_of_work() as session:
        sale = load_sale(session, sale_id, lock=True)
        if sale.order_status != ORDER_CANCELLED:
            stock_ledger.return_allocations(session, sale.get_line_items())
        sale.deleted_at = utcnow()
    return sale
