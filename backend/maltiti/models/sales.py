from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ..extensions import db
from ..ids import new_id
from maltiti.time_utils import to_utc_z


# =============================================================================
# STATUS CONSTANTS
# =============================================================================

ORDER_PENDING = "pending"
ORDER_PACKAGING = "packaging"
ORDER_IN_TRANSIT = "in_transit"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"

ORDER_STATUSES = [
    ORDER_PENDING,
    ORDER_PACKAGING,
    ORDER_IN_TRANSIT,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
]

PAYMENT_INVOICE_REQUESTED = "invoice_requested"
PAYMENT_PENDING = "pending_payment"
PAYMENT_AWAITING_DELIVERY = "awaiting_delivery"
PAYMENT_PAID = "paid"
PAYMENT_REFUNDED = "refunded"

PAYMENT_STATUSES = [
    PAYMENT_INVOICE_REQUESTED,
    PAYMENT_PENDING,
    PAYMENT_AWAITING_DELIVERY,
    PAYMENT_PAID,
    PAYMENT_REFUNDED,
]

# Fulfilment moves forward only; cancellation is handled by the
# cancellation service and is listed here so its guard reads the same table.
ORDER_TRANSITIONS = {
    ORDER_PENDING: {ORDER_PACKAGING, ORDER_IN_TRANSIT, ORDER_DELIVERED, ORDER_CANCELLED},
    ORDER_PACKAGING: {ORDER_IN_TRANSIT, ORDER_DELIVERED, ORDER_CANCELLED},
    ORDER_IN_TRANSIT: {ORDER_DELIVERED},
    ORDER_DELIVERED: set(),
    ORDER_CANCELLED: set(),
}

# paid -> refunded is recorded only by cancellation or the refund webhook;
# manual status changes may not target it.
PAYMENT_TRANSITIONS = {
    PAYMENT_INVOICE_REQUESTED: {PAYMENT_PENDING, PAYMENT_AWAITING_DELIVERY, PAYMENT_PAID},
    PAYMENT_AWAITING_DELIVERY: {PAYMENT_PENDING},
    PAYMENT_PENDING: {PAYMENT_INVOICE_REQUESTED, PAYMENT_PAID},
    PAYMENT_PAID: {PAYMENT_REFUNDED},
    PAYMENT_REFUNDED: set(),
}

# Order states that ship goods and therefore need batch stock behind them
FULFILMENT_STATUSES = {ORDER_PACKAGING, ORDER_IN_TRANSIT, ORDER_DELIVERED}

# Payment states in which the price (delivery fee) may still change
UNPAID_STATUSES = {PAYMENT_INVOICE_REQUESTED, PAYMENT_PENDING, PAYMENT_AWAITING_DELIVERY}


# =============================================================================
# EMBEDDED LINE ITEMS
# =============================================================================

def _money(value) -> Decimal | None:
    if value is None:
        return None
    return Decimal(str(value)).quantize(Decimal("0.01"))


@dataclass
class BatchAllocation:
    batch_id: str
    quantity: int

    @classmethod
    def from_dict(cls, data: dict) -> "BatchAllocation":
        return cls(batch_id=str(data["batch_id"]), quantity=int(data["quantity"]))

    def to_dict(self) -> dict:
        return {"batch_id": self.batch_id, "quantity": self.quantity}


@dataclass
class LineItem:
    """
    One product entry inside a Sale.

    Stored as JSON on the sale row; never queried on its own.
    """
    product_id: str
    requested_quantity: int
    final_price: Decimal
    batch_allocations: list[BatchAllocation] = field(default_factory=list)
    custom_price: Decimal | None = None

    @property
    def allocated_quantity(self) -> int:
        return sum(a.quantity for a in self.batch_allocations)

    @property
    def line_total(self) -> Decimal:
        return _money(self.final_price * self.requested_quantity)

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        return cls(
            product_id=str(data["product_id"]),
            requested_quantity=int(data["requested_quantity"]),
            final_price=_money(data["final_price"]),
            batch_allocations=[BatchAllocation.from_dict(a) for a in data.get("batch_allocations") or []],
            custom_price=_money(data.get("custom_price")),
        )

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "batch_allocations": [a.to_dict() for a in self.batch_allocations],
            "requested_quantity": self.requested_quantity,
            "custom_price": str(self.custom_price) if self.custom_price is not None else None,
            "final_price": str(_money(self.final_price)),
        }


# =============================================================================
# SALE / CHECKOUT
# =============================================================================

class Sale(db.Model):
    """
    Customer order with two independent status axes.

    order_status tracks fulfilment, payment_status tracks money. Line items
    are an owned JSON collection; always replace the whole list through
    set_line_items() so SQLAlchemy sees the change.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_created", "order_status", "payment_status", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    customer_id = db.Column(db.String(36), db.ForeignKey("customers.id"), nullable=False, index=True)

    order_status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING, index=True)
    payment_status = db.Column(db.String(24), nullable=False, default=PAYMENT_INVOICE_REQUESTED, index=True)
    payment_reference = db.Column(db.String(128), nullable=True, unique=True)

    line_items = db.Column(db.JSON, nullable=False, default=list)
    amount = db.Column(db.Numeric(10, 2), nullable=True)
    delivery_fee = db.Column(db.Numeric(10, 2), nullable=True)
    confirmed_delivery_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def get_line_items(self) -> list[LineItem]:
        return [LineItem.from_dict(item) for item in (self.line_items or [])]

    def set_line_items(self, items: list[LineItem]) -> None:
        self.line_items = [item.to_dict() for item in items]

    @property
    def total_amount(self) -> Decimal:
        return _money(Decimal(self.amount or 0) + Decimal(self.delivery_fee or 0))

    @property
    def contact_email(self) -> str | None:
        checkout = self.checkout
        if checkout is not None and checkout.guest_email:
            return checkout.guest_email
        return self.customer.contact_email if self.customer else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer": self.customer.to_dict() if self.customer else None,
            "order_status": self.order_status,
            "payment_status": self.payment_status,
            "payment_reference": self.payment_reference,
            "line_items": list(self.line_items or []),
            "amount": str(self.amount) if self.amount is not None else None,
            "delivery_fee": str(self.delivery_fee) if self.delivery_fee is not None else None,
            "total_amount": str(self.total_amount),
            "confirmed_delivery_date": to_utc_z(self.confirmed_delivery_date),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Checkout(db.Model):
    """Payment/cart wrapper around exactly one Sale."""
    __tablename__ = "checkouts"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    sale_id = db.Column(db.String(36), db.ForeignKey("sales.id"), nullable=False, unique=True)

    # Total charged (subtotal + delivery); NULL while delivery is uncosted
    amount = db.Column(db.Numeric(10, 2), nullable=True)
    payment_reference = db.Column(db.String(128), nullable=True)
    guest_email = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    sale = db.relationship("Sale", backref=db.backref("checkout", uselist=False))

    def to_dict(self, include_sale: bool = True) -> dict:
        data = {
            "id": self.id,
            "sale_id": self.sale_id,
            "amount": str(self.amount) if self.amount is not None else None,
            "payment_reference": self.payment_reference,
            "guest_email": self.guest_email,
            "cart_ids": [cart.id for cart in self.carts],
            "created_at": to_utc_z(self.created_at),
        }
        if include_sale:
            data["sale"] = self.sale.to_dict() if self.sale else None
        return data
