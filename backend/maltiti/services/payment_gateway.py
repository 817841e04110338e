# Overview: Paystack HTTP adapter; initialize, verify and refund transactions.

"""
Payment gateway adapter

Maps Paystack responses to typed results. Amounts cross the wire in minor
units (pesewas): round(amount x 100). No call is retried here; callers decide.

Failures:
- initialize -> PaymentInitFailed (transport error, timeout, non-2xx, status false)
- verify     -> PaymentVerificationFailed (anything but data.status == "success")
- refund     -> RefundFailed
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

import httpx
from flask import current_app

from ..errors import PaymentInitFailed, PaymentVerificationFailed, RefundFailed, UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class InitializeResult:
    authorization_url: str
    access_code: str
    reference: str

    def to_dict(self) -> dict:
        return {
            "authorization_url": self.authorization_url,
            "access_code": self.access_code,
            "reference": self.reference,
        }


@dataclass
class VerifyResult:
    reference: str
    status: str
    amount: Decimal | None = None


def to_minor_units(amount) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def generate_payment_reference(sale_id: str) -> str:
    return f"SALE-{sale_id}-{uuid.uuid4()}"


class PaystackGateway:
    """Thin client over the Paystack REST API (bearer-token auth)."""

    def __init__(self, base_url: str, secret_key: str, callback_url: str | None = None, timeout: float = 15.0,
                 transport: httpx.BaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        self.secret_key = secret_key
        self.callback_url = callback_url
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
            },
        )

    def _send(self, method: str, path: str, error_cls: type[UpstreamError], **kwargs) -> dict:
        try:
            with self._client() as client:
                response = client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.error("Paystack %s %s timed out: %s", method, path, exc)
            raise error_cls("Payment provider timed out")
        except httpx.HTTPError as exc:
            logger.error("Paystack %s %s connection error: %s", method, path, exc)
            raise error_cls("Unable to connect to payment provider")

        try:
            body = response.json()
        except ValueError:
            logger.error("Paystack %s %s returned invalid JSON (status %s)", method, path, response.status_code)
            raise error_cls("Invalid response from payment provider")

        if response.status_code >= 400 or not body.get("status"):
            logger.error(
                "Paystack %s %s failed. Status: %s, Body: %s",
                method, path, response.status_code, body,
            )
            raise error_cls(
                body.get("message") or "Payment provider rejected the request",
                details={"status_code": response.status_code},
            )
        return body.get("data") or {}

    def initialize(self, amount, email: str, reference: str, callback_url: str | None = None) -> InitializeResult:
        payload = {
            "amount": to_minor_units(amount),
            "email": email,
            "reference": reference,
        }
        callback = callback_url or self.callback_url
        if callback:
            payload["callback_url"] = callback

        data = self._send("POST", "/transaction/initialize", PaymentInitFailed, json=payload)
        if not data.get("authorization_url"):
            raise PaymentInitFailed("Payment provider returned no authorization url")
        return InitializeResult(
            authorization_url=data["authorization_url"],
            access_code=data.get("access_code", ""),
            reference=data.get("reference") or reference,
        )

    def verify(self, reference: str) -> VerifyResult:
        data = self._send("GET", f"/transaction/verify/{reference}", PaymentVerificationFailed)
        status = data.get("status")
        if status != "success":
            raise PaymentVerificationFailed(
                f"Payment not successful: {status}",
                details={"reference": reference, "status": status},
            )
        amount = data.get("amount")
        return VerifyResult(
            reference=reference,
            status=status,
            amount=(Decimal(amount) / 100) if amount is not None else None,
        )

    def refund(self, reference: str, amount=None) -> dict:
        """Full refund unless amount is given."""
        payload: dict = {"transaction": reference}
        if amount is not None:
            payload["amount"] = to_minor_units(amount)
        return self._send("POST", "/refund", RefundFailed, json=payload)


def build_gateway(config) -> PaystackGateway:
    return PaystackGateway(
        base_url=config["PAYSTACK_BASE_URL"],
        secret_key=config["PAYSTACK_SECRET_KEY"],
        callback_url=config.get("PAYMENT_CALLBACK_URL") or None,
        timeout=config.get("PAYMENT_GATEWAY_TIMEOUT", 15.0),
    )


def get_gateway() -> PaystackGateway:
    return current_app.extensions["payment_gateway"]
