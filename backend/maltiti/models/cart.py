from __future__ import annotations

from ..extensions import db
from ..ids import new_id
from maltiti.time_utils import to_utc_z


class Cart(db.Model):
    """
    One pending cart line for a registered user or a guest session.

    A row is open while checkout_id IS NULL. Checkout claims it by setting
    checkout_id; claimed rows are never reused.
    """
    __tablename__ = "carts"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_carts_quantity_positive"),
        db.Index("ix_carts_user_open", "user_id", "checkout_id"),
        db.Index("ix_carts_session_open", "session_id", "checkout_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    session_id = db.Column(db.String(128), nullable=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    checkout_id = db.Column(db.String(36), db.ForeignKey("checkouts.id", ondelete="CASCADE"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    product = db.relationship("Product")
    user = db.relationship("User")
    checkout = db.relationship("Checkout", backref=db.backref("carts", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "product": self.product.to_dict() if self.product else None,
            "quantity": self.quantity,
            "checkout_id": self.checkout_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
