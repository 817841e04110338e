# Overview: The only writer of Batch.quantity; deducts and returns batch stock.

"""
Stock ledger invariants (authoritative)

- Batch.quantity is the single source of truth for available stock. There
  is no reserved quantity: a deduction is permanent until returned.
- quantity >= 0 in every committed state. deduct() range-checks under a row
  lock; the table carries a CHECK constraint as a backstop.
- is_active follows quantity: False when it reaches 0, True when it is >0.
- Every call takes the session of the enclosing unit of work. The ledger
  never commits; the caller's transaction decides.
"""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.orm import Session

from ..errors import BatchNotFound, InsufficientStock, InvalidQuantity
from ..models import Batch, LineItem
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)


def _load_batch_locked(session: Session, batch_id: str) -> Batch | None:
    return lock_for_update(
        session.query(Batch).filter(Batch.id == batch_id, Batch.deleted_at.is_(None))
    ).first()


def deduct(session: Session, batch_id: str, quantity: int) -> Batch:
    """
    Remove quantity units from a batch.

    Raises:
        InvalidQuantity: quantity is not positive
        BatchNotFound: batch missing or soft-deleted
        InsufficientStock: batch holds fewer than quantity units (unchanged)
    """
    if quantity <= 0:
        raise InvalidQuantity("Quantity to deduct must be positive", details={"batch_id": batch_id})

    batch = _load_batch_locked(session, batch_id)
    if batch is None:
        raise BatchNotFound(f"Batch with ID \"{batch_id}\" not found", details={"batch_id": batch_id})

    if batch.quantity < quantity:
        raise InsufficientStock(
            f"Insufficient quantity in batch \"{batch.batch_number}\". "
            f"Available: {batch.quantity}, Requested: {quantity}",
            details={"batch_id": batch.id, "available": batch.quantity, "requested": quantity},
        )

    batch.quantity -= quantity
    if batch.quantity == 0:
        batch.is_active = False

    session.flush()
    return batch


def return_stock(session: Session, batch_id: str, quantity: int) -> Batch | None:
    """
    Put quantity units back on a batch.

    A batch deleted since allocation is logged and skipped so that it never
    blocks a cancellation or line-item edit.
    """
    if quantity <= 0:
        raise InvalidQuantity("Quantity to return must be positive", details={"batch_id": batch_id})

    batch = lock_for_update(session.query(Batch).filter(Batch.id == batch_id)).first()
    if batch is None:
        logger.warning("Skipping stock return of %s unit(s) for missing batch %s", quantity, batch_id)
        return None

    batch.quantity += quantity
    if batch.quantity > 0:
        batch.is_active = True

    session.flush()
    return batch


def deduct_allocations(session: Session, line_items: Iterable[LineItem]) -> None:
    """Deduct every allocation of every line item. Validate before calling."""
    for item in line_items:
        for alloc in item.batch_allocations:
            deduct(session, alloc.batch_id, alloc.quantity)


def return_allocations(session: Session, line_items: Iterable[LineItem]) -> None:
    """Return every allocation of every line item to its batch."""
    for item in line_items:
        for alloc in item.batch_allocations:
            return_stock(session, alloc.batch_id, alloc.quantity)
