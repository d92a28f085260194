"""
Per-user cart.

Every mutation re-reads live stock from the catalog at the moment of the call.
This is advisory protection only; the authoritative check is the conditional
stock decrement performed when the order is placed.
"""
import logging
from typing import Any, Dict, List

from pymongo import ReturnDocument
from pymongo.database import Database

import cache as cache_keys
from cache import Cache
from catalog import CatalogService
from database import serialize_doc, utcnow
from errors import ClientError, InsufficientStock, InvalidQuantity, NotFoundError, OutOfStock
from schemas import CartItem

logger = logging.getLogger(__name__)

COLLECTION = "cart"


def _same_line(item: Dict[str, Any], product_id: str, size: str) -> bool:
    return item["product_id"] == product_id and item["size"] == size


class CartManager:
    def __init__(self, db: Database, cache: Cache, catalog: CatalogService):
        self.db = db
        self.cache = cache
        self.catalog = catalog

    def _load(self, user_id: str) -> Dict[str, Any]:
        now = utcnow()
        doc = self.db[COLLECTION].find_one_and_update(
            {"user_id": user_id},
            {"$setOnInsert": {"user_id": user_id, "items": [], "created_at": now, "updated_at": now}},
            projection={"_id": 0},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return doc

    def _save(self, user_id: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        doc = self.db[COLLECTION].find_one_and_update(
            {"user_id": user_id},
            {"$set": {"items": items, "updated_at": utcnow()}},
            projection={"_id": 0},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        self.cache.delete(cache_keys.cart_key(user_id))
        return serialize_doc(doc)

    def _live_item(self, product_id: str):
        _, item = self.catalog.find_live_item(product_id)
        if item is None:
            raise NotFoundError("Product not found")
        return item

    def get(self, user_id: str) -> Dict[str, Any]:
        key = cache_keys.cart_key(user_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        cart = serialize_doc(self._load(user_id))
        self.cache.set(key, cart, cache_keys.CART_TTL)
        return cart

    def add(self, user_id: str, product_id: str, size: str, quantity: int = 1) -> Dict[str, Any]:
        if quantity < 1:
            raise InvalidQuantity("Quantity must be at least 1")
        item = self._live_item(product_id)
        stock = item.get("stock", 0)
        if stock <= 0:
            raise OutOfStock("This product is out of stock")
        if item.get("sizes") and size not in item["sizes"]:
            raise ClientError(f"Size {size} is not available for this product")

        items = self._load(user_id).get("items", [])
        existing = next((i for i in items if _same_line(i, product_id, size)), None)
        in_cart = existing["quantity"] if existing else 0
        if in_cart + quantity > stock:
            raise InsufficientStock(
                f"Only {stock} total item(s) available in stock. You already have {in_cart} in your cart."
            )

        if existing:
            existing["quantity"] = in_cart + quantity
        else:
            line = CartItem(
                product_id=product_id,
                name=item["name"],
                price=item["price"],
                image=item["image"],
                size=size,
                quantity=quantity,
            )
            items.append(line.model_dump())
        return self._save(user_id, items)

    def update(self, user_id: str, product_id: str, size: str, quantity: int) -> Dict[str, Any]:
        if quantity < 1:
            raise InvalidQuantity("Quantity must be at least 1")
        item = self._live_item(product_id)
        stock = item.get("stock", 0)
        if stock <= 0:
            raise OutOfStock("This product is out of stock")
        if quantity > stock:
            raise InsufficientStock(f"Only {stock} item(s) available in stock")

        cart = self.db[COLLECTION].find_one({"user_id": user_id}, {"_id": 0})
        if not cart:
            raise NotFoundError("Cart not found")
        items = cart.get("items", [])
        line = next((i for i in items if _same_line(i, product_id, size)), None)
        if line is None:
            raise NotFoundError("Item not found in cart")
        line["quantity"] = quantity
        return self._save(user_id, items)

    def remove(self, user_id: str, product_id: str, size: str) -> Dict[str, Any]:
        """Idempotent: removing a line that is not there returns the cart unchanged."""
        cart = self._load(user_id)
        items = cart.get("items", [])
        kept = [i for i in items if not _same_line(i, product_id, size)]
        if len(kept) == len(items):
            return serialize_doc(cart)
        return self._save(user_id, kept)

    def clear(self, user_id: str) -> None:
        self.db[COLLECTION].update_one(
            {"user_id": user_id},
            {"$set": {"items": [], "updated_at": utcnow()}},
        )
        self.cache.delete(cache_keys.cart_key(user_id))
