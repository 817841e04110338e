# Overview: Turns client line-item payloads into priced, allocation-checked LineItems.

"""
Line item validation

WHY: All allocations of an order must be proven deliverable before the
stock ledger deducts anything, so a failure on the last item can never leave
the first items' stock deducted.

Rules per item:
1. Product exists and is not soft-deleted (ProductNotFound).
2. Every allocated batch belongs to that product (BatchNotFound) and holds
   enough stock (InsufficientStock). Allocations against the same batch are
   summed across the whole order before the check.
3. Allocations never exceed the requested quantity (OverAllocation).
   Under-allocation is fine: batches can be assigned later, before payment.
4. final_price = custom_price if given, else product.retail.

Nothing here writes to the database.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy.orm import Session

from ..errors import (
    BatchNotFound,
    InsufficientStock,
    OverAllocation,
    ProductNotFound,
    ValidationError,
)
from ..models import Batch, BatchAllocation, LineItem, Product


def _positive_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError(f"{field_name} must be a positive integer")
    try:
        number = int(value)
    except ValueError:
        raise ValidationError(f"{field_name} must be a positive integer")
    if number <= 0:
        raise ValidationError(f"{field_name} must be a positive integer")
    return number


def _price(value: Any, field_name: str) -> Decimal | None:
    if value is None:
        return None
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number")
    if price < 0:
        raise ValidationError(f"{field_name} cannot be negative")
    return price.quantize(Decimal("0.01"))


def parse_allocations(raw: Any) -> list[BatchAllocation]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("batch_allocations must be a list")
    allocations = []
    for entry in raw:
        if not isinstance(entry, dict) or not entry.get("batch_id"):
            raise ValidationError("Each batch allocation needs batch_id and quantity")
        allocations.append(
            BatchAllocation(
                batch_id=str(entry["batch_id"]),
                quantity=_positive_int(entry.get("quantity"), "batch allocation quantity"),
            )
        )
    return allocations


def find_product(session: Session, product_id: str) -> Product:
    product = (
        session.query(Product)
        .filter(Product.id == product_id, Product.deleted_at.is_(None))
        .first()
    )
    if product is None:
        raise ProductNotFound(f"Product with ID \"{product_id}\" not found", details={"product_id": product_id})
    return product


def validate_allocations(
    session: Session,
    product_id: str,
    allocations: list[BatchAllocation],
    claimed: dict[str, int] | None = None,
) -> int:
    """
    Check each allocation against its batch and return the allocated total.

    claimed carries units already promised to earlier items of the same
    order; it is updated in place.
    """
    if claimed is None:
        claimed = {}

    total_allocated = 0
    for alloc in allocations:
        batch = (
            session.query(Batch)
            .filter(
                Batch.id == alloc.batch_id,
                Batch.product_id == product_id,
                Batch.deleted_at.is_(None),
            )
            .first()
        )
        if batch is None:
            raise BatchNotFound(
                f"Batch with ID \"{alloc.batch_id}\" not found for product",
                details={"batch_id": alloc.batch_id, "product_id": product_id},
            )

        wanted = claimed.get(batch.id, 0) + alloc.quantity
        if batch.quantity < wanted:
            raise InsufficientStock(
                f"Insufficient quantity in batch \"{batch.batch_number}\". "
                f"Available: {batch.quantity}, Requested: {wanted}",
                details={"batch_id": batch.id, "available": batch.quantity, "requested": wanted},
            )
        claimed[batch.id] = wanted
        total_allocated += alloc.quantity

    return total_allocated


def validate_line_item(
    session: Session,
    data: dict,
    claimed: dict[str, int] | None = None,
) -> LineItem:
    """Validate one client line item and resolve its unit price."""
    product_id = data.get("product_id")
    if not product_id:
        raise ValidationError("product_id required")

    requested_quantity = _positive_int(data.get("requested_quantity"), "requested_quantity")
    allocations = parse_allocations(data.get("batch_allocations"))
    custom_price = _price(data.get("custom_price"), "custom_price")

    product = find_product(session, str(product_id))

    total_allocated = 0
    if allocations:
        total_allocated = validate_allocations(session, product.id, allocations, claimed)

    if total_allocated > requested_quantity:
        raise OverAllocation(
            "Allocated quantity exceeds requested quantity",
            details={
                "product_id": product.id,
                "allocated": total_allocated,
                "requested": requested_quantity,
            },
        )

    final_price = custom_price if custom_price is not None else Decimal(product.retail)

    return LineItem(
        product_id=product.id,
        requested_quantity=requested_quantity,
        final_price=final_price,
        batch_allocations=allocations,
        custom_price=custom_price,
    )


def validate_line_items(session: Session, items: list[dict]) -> list[LineItem]:
    """Validate a whole order; raises on the first bad item."""
    if not isinstance(items, list) or not items:
        raise ValidationError("line_items must be a non-empty list")

    claimed: dict[str, int] = {}
    return [validate_line_item(session, item, claimed) for item in items]
