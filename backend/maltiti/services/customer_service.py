# Overview: Find-or-create the Customer snapshot behind a checkout.

from __future__ import annotations

from ..errors import CustomerNotFound, ValidationError
from ..models import Customer, User


def format_address(data: dict) -> str:
    parts = [data.get("country"), data.get("region"), data.get("city")]
    address = ", ".join(str(part or "") for part in parts)
    if data.get("extra_info"):
        address = f"{address}, {data['extra_info']}"
    return address


def apply_address(customer: Customer, data: dict) -> None:
    """Every checkout overwrites the delivery details."""
    customer.country = data.get("country")
    customer.region = data.get("region")
    customer.city = data.get("city")
    customer.phone_number = data.get("phone_number")
    customer.extra_info = data.get("extra_info") or None
    customer.address = format_address(data)


def find_or_create_for_user(session, user_id: str, data: dict) -> Customer:
    """
    Customer for a registered buyer.

    Lookup order: linked customer, then an unlinked customer with the user's
    email (linked now), else a new customer.
    """
    user = session.get(User, user_id)
    if user is None:
        raise CustomerNotFound("User not found", details={"user_id": user_id})

    customer = session.query(Customer).filter(Customer.user_id == user.id).first()
    if customer is None:
        existing = session.query(Customer).filter(Customer.email == user.email).first()
        if existing is not None and existing.user_id is None:
            existing.user_id = user.id
            customer = existing
        elif existing is None:
            customer = Customer(
                user_id=user.id,
                name=user.name,
                email=user.email,
                phone=user.phone_number,
            )
            session.add(customer)
        else:
            # Email already belongs to another account's customer
            customer = Customer(user_id=user.id, name=user.name, email=None, phone=user.phone_number)
            session.add(customer)

    apply_address(customer, data)
    session.flush()
    return customer


def find_or_create_guest(session, data: dict) -> Customer:
    email = (data.get("email") or "").strip()
    if not email:
        raise ValidationError("email required")
    name = data.get("name")

    customer = session.query(Customer).filter(Customer.email == email).first()
    if customer is None:
        if not name:
            raise ValidationError("name required")
        customer = Customer(name=name, email=email, phone=data.get("phone_number"))
        session.add(customer)

    apply_address(customer, data)
    session.flush()
    return customer
