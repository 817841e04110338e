from __future__ import annotations

from ..extensions import db
from ..ids import new_id
from maltiti.time_utils import to_utc_z


ROLE_CUSTOMER = "customer"
ROLE_ADMIN = "admin"


class User(db.Model):
    """
    Registered account, owned by the external authentication service.

    Only the fields checkout needs are mirrored here: a buyer's contact
    details and role. Credentials never reach this database.
    """
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    phone_number = db.Column(db.String(32), nullable=True)
    role = db.Column(db.String(16), nullable=False, default=ROLE_CUSTOMER)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone_number": self.phone_number,
            "role": self.role,
            "created_at": to_utc_z(self.created_at),
        }
