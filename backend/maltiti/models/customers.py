from __future__ import annotations

from ..extensions import db
from ..ids import new_id
from maltiti.time_utils import to_utc_z


class Customer(db.Model):
    """
    Denormalized purchaser snapshot.

    Linked to a User for registered buyers, identified by email alone for
    guests. Address fields are overwritten on every checkout.
    """
    __tablename__ = "customers"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(db.String(36), db.ForeignKey("users.id"), nullable=True, unique=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True, index=True)
    phone = db.Column(db.String(32), nullable=True)
    phone_number = db.Column(db.String(32), nullable=True)

    address = db.Column(db.Text, nullable=True)
    country = db.Column(db.String(100), nullable=True)
    region = db.Column(db.String(100), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    extra_info = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref=db.backref("customer", uselist=False))

    @property
    def contact_email(self) -> str | None:
        if self.email:
            return self.email
        return self.user.email if self.user else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "phone_number": self.phone_number,
            "address": self.address,
            "country": self.country,
            "region": self.region,
            "city": self.city,
            "extra_info": self.extra_info,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
