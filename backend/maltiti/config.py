# backend/maltiti/config.py
from __future__ import annotations
import os
from decimal import Decimal


def _csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///maltiti.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Paystack
    PAYSTACK_BASE_URL = os.environ.get("PAYSTACK_BASE_URL", "https://api.paystack.co")
    PAYSTACK_SECRET_KEY = os.environ.get("PAYSTACK_SECRET_KEY", "")
    PAYMENT_GATEWAY_TIMEOUT = float(os.environ.get("PAYMENT_GATEWAY_TIMEOUT", "15"))

    # Links used in callbacks and customer emails
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3000")
    APP_URL = os.environ.get("APP_URL", "http://localhost:3000/dashboard")
    ADMIN_URL = os.environ.get("ADMIN_URL", "http://localhost:3001")
    PAYMENT_CALLBACK_URL = os.environ.get("PAYMENT_CALLBACK_URL", "")

    # Transactional email API; when no key is set, emails are only logged
    EMAIL_API_URL = os.environ.get("EMAIL_API_URL", "https://api.resend.com/emails")
    EMAIL_API_KEY = os.environ.get("EMAIL_API_KEY", "")
    EMAIL_FROM = os.environ.get("EMAIL_FROM", "orders@maltitiaenterprise.com")
    ADMIN_EMAILS = _csv(os.environ.get("ADMIN_EMAILS"))

    # Delivery charges per box in cedis (domestic table only)
    DELIVERY_COUNTRY = "ghana"
    DELIVERY_CHARGES = {
        "city": {"tamale": Decimal("25")},
        "region": {"northern": Decimal("35")},
        "default": Decimal("60"),
    }

    CANCELLATION_PENALTY_RATE = Decimal(os.environ.get("CANCELLATION_PENALTY_RATE", "0.10"))
