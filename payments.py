"""
Payment gateway integration (Razorpay).

`PaymentVerifier` checks the callback signature the gateway hands the client
after a successful payment: hex(HMAC-SHA256(key_secret, "order_id|payment_id")).
An order may only be marked paid after this check passes.
"""
import hashlib
import hmac
import logging
import random
import string
import time
from typing import Any, Dict, Optional, Protocol

from config import Settings
from errors import ClientError, DependencyError

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


def _base36(n: int) -> str:
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = _BASE36[r] + out
        if n == 0:
            return out


def generate_order_id() -> str:
    """SWC + base36 millisecond timestamp + 4 random base36 chars."""
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(random.SystemRandom().choice(_BASE36) for _ in range(4))
    return f"SWC{stamp}{suffix}"


def sign(secret: str, order_ref: str, payment_ref: str) -> str:
    return hmac.new(secret.encode(), f"{order_ref}|{payment_ref}".encode(), hashlib.sha256).hexdigest()


class PaymentVerifier:
    def __init__(self, key_secret: Optional[str]):
        self.key_secret = key_secret

    def verify(self, order_ref: Optional[str], payment_ref: Optional[str], signature: Optional[str]) -> bool:
        try:
            if not self.key_secret:
                raise ValueError("Razorpay key secret not configured")
            expected = sign(self.key_secret, order_ref, payment_ref)
            return hmac.compare_digest(expected, signature)
        except (ValueError, TypeError, AttributeError) as e:
            logger.error("Signature verification failed: %s", e)
            return False


class PaymentGateway(Protocol):
    def create_order(self, amount: float, currency: str, receipt: str, notes: Dict[str, str]) -> Dict[str, Any]:
        ...


class RazorpayGateway:
    def __init__(self, key_id: str, key_secret: str):
        import razorpay

        self.key_id = key_id
        self.client = razorpay.Client(auth=(key_id, key_secret))

    def create_order(self, amount: float, currency: str, receipt: str, notes: Dict[str, str]) -> Dict[str, Any]:
        return self.client.order.create({
            "amount": int(round(amount * 100)),
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
        })


class UnconfiguredGateway:
    key_id = None

    def create_order(self, amount: float, currency: str, receipt: str, notes: Dict[str, str]) -> Dict[str, Any]:
        raise RuntimeError("Razorpay credentials missing")


def build_gateway(settings: Settings) -> PaymentGateway:
    if settings.razorpay_key_id and settings.razorpay_key_secret:
        return RazorpayGateway(settings.razorpay_key_id, settings.razorpay_key_secret)
    logger.warning("Razorpay not configured; online payments are unavailable")
    return UnconfiguredGateway()


class PaymentService:
    def __init__(self, gateway: PaymentGateway, verifier: PaymentVerifier):
        self.gateway = gateway
        self.verifier = verifier

    def create_gateway_order(self, user_id: str, amount: float, currency: str = "INR") -> Dict[str, Any]:
        if not amount or amount <= 0:
            raise ClientError("Valid amount is required")
        try:
            order = self.gateway.create_order(amount, currency, generate_order_id(), {"userId": user_id})
        except Exception as e:
            logger.error("Create Razorpay order failed: %s", e)
            raise DependencyError("Failed to create payment order") from e
        return {
            "order_id": order["id"],
            "amount": order["amount"],
            "currency": order["currency"],
            "key_id": getattr(self.gateway, "key_id", None),
        }

    def verify_payment(self, order_ref: Optional[str], payment_ref: Optional[str], signature: Optional[str]) -> Dict[str, Any]:
        if not order_ref or not payment_ref or not signature:
            raise ClientError("Missing payment verification parameters")
        if not self.verifier.verify(order_ref, payment_ref, signature):
            raise ClientError("Invalid payment signature")
        return {
            "success": True,
            "message": "Payment verified successfully",
            "razorpay_order_id": order_ref,
            "razorpay_payment_id": payment_ref,
        }
