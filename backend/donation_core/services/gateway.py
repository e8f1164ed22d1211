"""
Payment Gateway — the external capability the donation core calls into.
Razorpay is the production implementation; tests inject a scripted fake.

Every call is bounded by GATEWAY_TIMEOUT_SECONDS. Errors are mapped onto
GatewayTimeout / GatewayError (retryable) and GatewayDeclined (hard decline).
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional, Dict

import razorpay
import requests
from razorpay.errors import BadRequestError, SignatureVerificationError
from razorpay.errors import GatewayError as RazorpayGatewayError
from razorpay.errors import ServerError as RazorpayServerError

from donation_core.config import get_settings
from donation_core.errors import GatewayError, GatewayTimeout, GatewayDeclined
from donation_core.utils.logger import log_event


@dataclass
class GatewayOrder:
    order_id: str
    amount: int
    currency: str = "INR"


@dataclass
class GatewayCapture:
    payment_id: str
    fee: int
    status: str = "captured"
    raw: Dict = field(default_factory=dict)


@dataclass
class GatewayRefund:
    refund_id: str
    amount: int
    raw: Dict = field(default_factory=dict)


class PaymentGateway(ABC):
    """Operations the core needs from a payment provider. Amounts are paise."""

    @abstractmethod
    def create_order(self, amount: int, receipt: str, notes: Optional[Dict] = None) -> GatewayOrder:
        ...

    @abstractmethod
    def capture_payment(self, payment_id: str, amount: int) -> GatewayCapture:
        """Capture an authorized checkout payment."""

    @abstractmethod
    def charge_recurring(self, order_id: str, amount: int, customer_id: Optional[str],
                         token_id: Optional[str], email: str) -> GatewayCapture:
        """Charge a stored mandate for a scheduled subscription cycle."""

    @abstractmethod
    def refund_payment(self, payment_id: str, amount: int, notes: Optional[Dict] = None) -> GatewayRefund:
        ...

    @abstractmethod
    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        ...

    @abstractmethod
    def verify_webhook_signature(self, body: str, signature: str) -> bool:
        ...


class RazorpayGateway(PaymentGateway):
    """Razorpay SDK adapter."""

    def __init__(self, key_id: str, key_secret: str, webhook_secret: str = "", timeout: float = 10.0):
        self.client = razorpay.Client(auth=(key_id, key_secret))
        self.webhook_secret = webhook_secret
        self.timeout = timeout

    def _call(self, operation: str, fn, *args, hard_decline: bool = False, **kwargs):
        """Run an SDK call with the timeout applied and errors mapped."""
        try:
            return fn(*args, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as exc:
            log_event("gateway", f"{operation} timed out after {self.timeout}s")
            raise GatewayTimeout("The payment provider did not respond in time", detail=str(exc)) from exc
        except requests.exceptions.RequestException as exc:
            log_event("gateway", f"{operation} transport error: {exc}")
            raise GatewayError("Could not reach the payment provider", detail=str(exc)) from exc
        except BadRequestError as exc:
            log_event("gateway", f"{operation} rejected: {exc}")
            if hard_decline:
                raise GatewayDeclined("The payment was declined", detail=str(exc)) from exc
            raise GatewayError("The payment provider rejected the request", detail=str(exc)) from exc
        except (RazorpayGatewayError, RazorpayServerError) as exc:
            log_event("gateway", f"{operation} provider error: {exc}")
            raise GatewayError("The payment provider reported an error", detail=str(exc)) from exc

    def create_order(self, amount: int, receipt: str, notes: Optional[Dict] = None) -> GatewayOrder:
        data = {"amount": amount, "currency": "INR", "receipt": receipt, "notes": notes or {}}
        order = self._call("create_order", self.client.order.create, data=data)
        return GatewayOrder(order_id=order["id"], amount=order["amount"], currency=order.get("currency", "INR"))

    @staticmethod
    def _settled(payment: Dict) -> GatewayCapture:
        return GatewayCapture(
            payment_id=payment["id"],
            fee=int(payment.get("fee") or 0),
            status=payment.get("status", "captured"),
            raw=payment,
        )

    def capture_payment(self, payment_id: str, amount: int) -> GatewayCapture:
        """Capture an authorized payment. One the account already auto-captured settles as is.

        Only a payment the provider itself reports as failed is a decline;
        any other refusal leaves the outcome to a retry.
        """
        payment = self._call("fetch_payment", self.client.payment.fetch, payment_id)
        status = payment.get("status")
        if status == "captured":
            log_event("gateway", f"{payment_id} already captured by the provider")
            return self._settled(payment)
        if status == "failed":
            raise GatewayDeclined("The payment was declined", detail=payment.get("error_description"))
        if status != "authorized":
            raise GatewayError(
                "The payment is not ready to be captured",
                detail=f"{payment_id} status={status}",
            )

        try:
            result = self._call(
                "capture_payment", self.client.payment.capture,
                payment_id, amount, data={"currency": "INR"},
            )
        except GatewayError:
            # Auto-capture may have won the race; the provider's record decides.
            refreshed = self._call("fetch_payment", self.client.payment.fetch, payment_id)
            if refreshed.get("status") == "captured":
                return self._settled(refreshed)
            raise
        return self._settled(result)

    def charge_recurring(self, order_id: str, amount: int, customer_id: Optional[str],
                         token_id: Optional[str], email: str) -> GatewayCapture:
        data = {
            "email": email,
            "amount": amount,
            "currency": "INR",
            "order_id": order_id,
            "customer_id": customer_id,
            "token": token_id,
            "recurring": "1",
        }
        created = self._call("charge_recurring", self.client.payment.createRecurring, data=data, hard_decline=True)
        payment = self._call("fetch_payment", self.client.payment.fetch, created["razorpay_payment_id"])
        if payment.get("status") == "failed":
            raise GatewayDeclined(
                "The recurring charge was declined",
                detail=payment.get("error_description"),
            )
        return GatewayCapture(
            payment_id=payment["id"],
            fee=int(payment.get("fee") or 0),
            status=payment.get("status", "captured"),
            raw=payment,
        )

    def refund_payment(self, payment_id: str, amount: int, notes: Optional[Dict] = None) -> GatewayRefund:
        result = self._call(
            "refund_payment", self.client.payment.refund,
            payment_id, {"amount": amount, "notes": notes or {}},
        )
        return GatewayRefund(refund_id=result["id"], amount=int(result.get("amount", amount)), raw=result)

    def verify_payment_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        try:
            self.client.utility.verify_payment_signature({
                "razorpay_order_id": order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature,
            })
        except SignatureVerificationError:
            return False
        return True

    def verify_webhook_signature(self, body: str, signature: str) -> bool:
        if not self.webhook_secret or not signature:
            return False
        try:
            self.client.utility.verify_webhook_signature(body, signature, self.webhook_secret)
        except SignatureVerificationError:
            return False
        return True


@lru_cache()
def _default_gateway() -> RazorpayGateway:
    settings = get_settings()
    return RazorpayGateway(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )


def get_gateway() -> PaymentGateway:
    """FastAPI dependency: the configured payment gateway."""
    return _default_gateway()
