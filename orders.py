"""
Order pipeline: cart -> immutable order.

Checkout runs strictly in sequence:

    validate -> price -> verify payment -> reserve stock -> insert order
             -> post-commit effects (clear cart, invalidate caches, email)

Only the insert is critical. If it fails the stock reservation is released
and the caller gets an error; no order exists. Post-commit effects each run
inside their own fault boundary and can never undo or hide a committed order.
"""
import logging
import math
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pymongo.database import Database

from cart import CartManager
from catalog import CatalogService
from database import create_document, get_documents, serialize_doc, utcnow
from errors import ClientError, InternalError, InvalidTransition, NotFoundError
from identity import Identity
from notifications import Mailer
from payments import PaymentVerifier, generate_order_id
from schemas import CheckoutRequest, Order

logger = logging.getLogger(__name__)

COLLECTION = "order"

FREE_SHIPPING_THRESHOLD = Decimal("2000")
FLAT_SHIPPING_FEE = Decimal("99")
DELIVERY_DAYS = 7

STATUS_FLOW = ["pending", "confirmed", "processing", "shipped", "delivered"]
ORDER_STATUSES = set(STATUS_FLOW) | {"cancelled"}
NOT_CANCELLABLE = ("shipped", "delivered", "cancelled")

CENT = Decimal("0.01")


def _money(value: Any) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_shipping(subtotal: Decimal) -> Decimal:
    return Decimal("0") if subtotal >= FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING_FEE


def calculate_totals(items: Iterable[Dict[str, Any]]) -> Tuple[float, float, float]:
    """(subtotal, shipping, total) computed in decimal and rounded to the cent."""
    subtotal = sum((_money(i["price"]) * int(i["quantity"]) for i in items), Decimal("0"))
    shipping = calculate_shipping(subtotal)
    total = subtotal + shipping
    return float(subtotal), float(shipping), float(total)


def can_transition(current: str, new: str) -> bool:
    """Admin overwrite rules: pre-shipment states move freely, shipped can only be delivered."""
    if new == current:
        return True
    if current in ("delivered", "cancelled"):
        return False
    if current == "shipped":
        return new == "delivered"
    return True


def _page(page: int, limit: int, max_limit: int = 100) -> Tuple[int, int]:
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 1), 1), max_limit)
    return page, limit


class PostCommitEffects:
    """Effects queued while building an order and run only after it is committed."""

    def __init__(self):
        self._effects: List[Tuple[str, Callable, tuple]] = []

    def add(self, name: str, fn: Callable, *args) -> None:
        self._effects.append((name, fn, args))

    def run(self) -> List[str]:
        failed = []
        for name, fn, args in self._effects:
            try:
                fn(*args)
            except Exception:
                logger.exception("Post-commit effect '%s' failed", name)
                failed.append(name)
        return failed


class OrderPipeline:
    def __init__(self, db: Database, catalog: CatalogService, carts: CartManager,
                 verifier: PaymentVerifier, mailer: Mailer, reprice: bool = False):
        self.db = db
        self.catalog = catalog
        self.carts = carts
        self.verifier = verifier
        self.mailer = mailer
        self.reprice = reprice

    # ---------- checkout ----------

    def checkout(self, identity: Identity, request: CheckoutRequest) -> Dict[str, Any]:
        if not request.items:
            raise ClientError("Order items are required")
        items = [i.model_dump() for i in request.items]
        if self.reprice:
            self._check_prices(items)

        subtotal, shipping, total = calculate_totals(items)
        payment_status = self._payment_status(request)

        order_id = generate_order_id()
        reserved = self.catalog.reserve_stock(items)
        now = utcnow()
        order = Order(
            order_id=order_id,
            user_id=identity.uid,
            user_email=identity.email,
            items=items,
            shipping_address=request.shipping_address,
            subtotal=subtotal,
            shipping=shipping,
            total=total,
            payment_method=request.payment_method,
            payment_status=payment_status,
            order_status="confirmed",
            razorpay_order_id=request.razorpay_order_id,
            razorpay_payment_id=request.razorpay_payment_id,
            razorpay_signature=request.razorpay_signature,
            estimated_delivery=now + timedelta(days=DELIVERY_DAYS),
            notes=request.notes,
        )
        try:
            doc = create_document(self.db, COLLECTION, order)
        except Exception as e:
            logger.exception("Persisting order %s failed; releasing stock", order_id)
            self.catalog.release_stock(reserved)
            raise InternalError("Failed to create order") from e

        logger.info("Order %s created for %s (%s, %s)", order_id, identity.uid, request.payment_method, payment_status)

        effects = PostCommitEffects()
        effects.add("clear cart", self.carts.clear, identity.uid)
        effects.add("invalidate catalog cache", self.catalog.invalidate_reserved, reserved)
        effects.add("order confirmation email", self.mailer.send_order_confirmation, doc)
        effects.run()

        return {
            "order_id": doc["order_id"],
            "order_status": doc["order_status"],
            "payment_status": doc["payment_status"],
            "total": doc["total"],
            "estimated_delivery": doc["estimated_delivery"].isoformat(),
        }

    def _payment_status(self, request: CheckoutRequest) -> str:
        if request.payment_method == "cod":
            return "cod"
        if not request.razorpay_payment_id:
            return "pending"
        if self.verifier.verify(request.razorpay_order_id, request.razorpay_payment_id, request.razorpay_signature):
            return "paid"
        logger.warning("Unverified payment %s for gateway order %s; order stays pending",
                       request.razorpay_payment_id, request.razorpay_order_id)
        return "pending"

    def _check_prices(self, items: List[Dict[str, Any]]) -> None:
        for line in items:
            _, live = self.catalog.find_live_item(line["product_id"])
            if live is None:
                raise NotFoundError(f"Product {line['product_id']} not found")
            if _money(live["price"]) != _money(line["price"]):
                raise ClientError(f"Price of {live['name']} has changed; please review your cart")

    # ---------- customer reads / cancel ----------

    def list_orders(self, user_id: str, status: Optional[str] = None, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        query: Dict[str, Any] = {"user_id": user_id}
        if status and status != "all":
            query["order_status"] = status
        return self._paginate(query, page, limit)

    def get_order(self, user_id: str, order_id: str) -> Dict[str, Any]:
        order = self.db[COLLECTION].find_one({"order_id": order_id, "user_id": user_id}, {"_id": 0})
        if not order:
            raise NotFoundError("Order not found")
        return serialize_doc(order)

    def cancel(self, order_id: str, user_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        order = self.db[COLLECTION].find_one({"order_id": order_id, "user_id": user_id}, {"_id": 0})
        if not order:
            raise NotFoundError("Order not found")
        if order["order_status"] in NOT_CANCELLABLE:
            raise InvalidTransition(f"Cannot cancel order with status: {order['order_status']}")

        now = utcnow()
        result = self.db[COLLECTION].update_one(
            {"order_id": order_id, "user_id": user_id, "order_status": {"$nin": list(NOT_CANCELLABLE)}},
            {"$set": {
                "order_status": "cancelled",
                "cancelled_at": now,
                "cancellation_reason": reason,
                "updated_at": now,
            }},
        )
        if result.matched_count != 1:
            raise InvalidTransition("Order can no longer be cancelled")
        updated = self._reload(order_id)
        logger.info("Order %s cancelled by %s", order_id, user_id)
        self._restock_after_cancel(updated)
        return serialize_doc(updated)

    def _reload(self, order_id: str) -> Dict[str, Any]:
        return self.db[COLLECTION].find_one({"order_id": order_id}, {"_id": 0})

    def _restock_after_cancel(self, order: Dict[str, Any]) -> None:
        def restock():
            self.catalog.invalidate_reserved(self.catalog.restock(order["items"]))

        effects = PostCommitEffects()
        effects.add("restock cancelled order", restock)
        effects.run()

    # ---------- admin ----------

    def update_status(self, order_id: str, status: str, tracking_number: Optional[str] = None) -> Dict[str, Any]:
        if status not in ORDER_STATUSES:
            raise ClientError(f"Invalid order status: {status}")
        order = self.db[COLLECTION].find_one({"order_id": order_id}, {"_id": 0})
        if not order:
            raise NotFoundError("Order not found")
        current = order["order_status"]
        if not can_transition(current, status):
            raise InvalidTransition(f"Cannot change order status from {current} to {status}")

        now = utcnow()
        changes: Dict[str, Any] = {"order_status": status, "updated_at": now}
        if tracking_number:
            changes["tracking_number"] = tracking_number
        if status != current:
            if status == "delivered":
                changes["delivery_date"] = now
                if order["payment_method"] == "cod":
                    # delivery is the payment event for cash on delivery
                    changes["payment_status"] = "paid"
            elif status == "cancelled":
                changes["cancelled_at"] = now

        result = self.db[COLLECTION].update_one({"order_id": order_id, "order_status": current}, {"$set": changes})
        if result.matched_count != 1:
            raise InvalidTransition("Order status changed concurrently; reload and retry")
        updated = self._reload(order_id)
        logger.info("Order %s status %s -> %s", order_id, current, status)
        if status == "cancelled" and current != "cancelled":
            self._restock_after_cancel(updated)
        return serialize_doc(updated)

    def admin_list_orders(self, status: Optional[str] = None, page: int = 1, limit: int = 50) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if status and status != "all":
            query["order_status"] = status
        return self._paginate(query, page, limit)

    def dashboard_stats(self) -> Dict[str, Any]:
        revenue = list(self.db[COLLECTION].aggregate([
            {"$match": {"$or": [{"payment_status": "paid"}, {"order_status": "delivered"}]}},
            {"$group": {"_id": None, "total_revenue": {"$sum": "$total"}}},
        ]))
        recent = get_documents(self.db, COLLECTION, {}, limit=5, sort=[("created_at", -1)])
        return {
            "total_users": self.db["user"].count_documents({}),
            "total_orders": self.db[COLLECTION].count_documents({}),
            "total_revenue": revenue[0]["total_revenue"] if revenue else 0,
            "recent_orders": [serialize_doc(o) for o in recent],
        }

    def _paginate(self, query: Dict[str, Any], page: int, limit: int) -> Dict[str, Any]:
        page, limit = _page(page, limit)
        total = self.db[COLLECTION].count_documents(query)
        orders = get_documents(self.db, COLLECTION, query, limit=limit,
                               sort=[("created_at", -1)], skip=(page - 1) * limit)
        return {
            "orders": [serialize_doc(o) for o in orders],
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "pages": math.ceil(total / limit),
            },
        }
