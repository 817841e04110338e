# Overview: Typed business errors shared by services and routes.

"""
Error taxonomy for the order fulfillment core.

Every error carries a human message, a machine code and an HTTP status so the
route layer can render them uniformly. Services raise these directly; routes
never translate messages.
"""

from __future__ import annotations


class OrderError(Exception):
    """Base class for typed failures returned to API consumers."""
    code = "internal"
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(OrderError):
    code = "not_found"
    status_code = 404


class ProductNotFound(NotFoundError):
    pass


class BatchNotFound(NotFoundError):
    pass


class SaleNotFound(NotFoundError):
    pass


class CheckoutNotFound(NotFoundError):
    pass


class CustomerNotFound(NotFoundError):
    pass


class CartItemNotFound(NotFoundError):
    pass


# =============================================================================
# CONFLICT / STATE
# =============================================================================

class ConflictError(OrderError):
    code = "conflict"
    status_code = 409


class AlreadyCancelled(ConflictError):
    pass


class InvalidStateError(OrderError):
    code = "invalid_state"
    status_code = 400


class InvalidTransition(InvalidStateError):
    code = "invalid_transition"


class BatchesNotAssigned(InvalidStateError):
    code = "batches_not_assigned"


class CannotCancel(InvalidTransition):
    code = "cannot_cancel"


class EmptyCart(InvalidStateError):
    code = "empty_cart"


class ValidationError(OrderError):
    """400-level input problem."""
    code = "validation_error"
    status_code = 400


# =============================================================================
# STOCK
# =============================================================================

class InsufficientStock(OrderError):
    code = "insufficient_stock"
    status_code = 400


class OverAllocation(OrderError):
    code = "over_allocation"
    status_code = 400


class InvalidQuantity(ValidationError):
    code = "invalid_quantity"


# =============================================================================
# ACCESS
# =============================================================================

class UnauthorizedError(OrderError):
    code = "unauthorized"
    status_code = 401


class ForbiddenError(OrderError):
    code = "forbidden"
    status_code = 403


# =============================================================================
# UPSTREAM (payment gateway)
# =============================================================================

class UpstreamError(OrderError):
    code = "upstream_failure"
    status_code = 502


class PaymentInitFailed(UpstreamError):
    pass


class PaymentVerificationFailed(UpstreamError):
    pass


class RefundFailed(UpstreamError):
    pass
