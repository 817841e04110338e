from __future__ import annotations

from ..extensions import db
from ..ids import new_id
from maltiti.time_utils import to_utc_z, to_iso_date


class Product(db.Model):
    """
    Catalog item. Managed by the catalog admin screens; the order core only
    reads retail price, box size and name.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("quantity_in_box >= 1", name="ck_products_quantity_in_box_positive"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    sku = db.Column(db.String(64), nullable=True, unique=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="active")

    retail = db.Column(db.Numeric(10, 2), nullable=False)
    wholesale = db.Column(db.Numeric(10, 2), nullable=True)
    quantity_in_box = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "status": self.status,
            "retail": str(self.retail) if self.retail is not None else None,
            "wholesale": str(self.wholesale) if self.wholesale is not None else None,
            "quantity_in_box": self.quantity_in_box,
        }


class Batch(db.Model):
    """
    Production lot of one product with its own stock count.

    quantity is the single source of truth for available stock. It is
    written only by services.stock_ledger; the CHECK constraint backs up the
    ledger's range check.
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.CheckConstraint("quantity >= 0", name="ck_batches_quantity_non_negative"),
        db.Index("ix_batches_product_active", "product_id", "is_active"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    batch_number = db.Column(db.String(64), nullable=False, unique=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    production_date = db.Column(db.Date, nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Batch id={self.id} number={self.batch_number!r} qty={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "batch_number": self.batch_number,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "is_active": self.is_active,
            "production_date": to_iso_date(self.production_date),
            "expiry_date": to_iso_date(self.expiry_date),
            "updated_at": to_utc_z(self.updated_at),
        }
