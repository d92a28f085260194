"""
Catalog store: products and sale items.

Reads are read-through cached. Writes are write-invalidate: after a successful
store mutation the entity key and the whole query-key family of that
collection are deleted, because any write can change which records satisfy
which filter/sort combination.
"""
import logging
import random
import re
import string
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type

from pydantic import BaseModel
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import BulkWriteError, DuplicateKeyError

import cache as cache_keys
from cache import Cache
from database import create_document, get_documents, serialize_doc, utcnow
from errors import ClientError, InsufficientStock, NotFoundError
from schemas import CatalogItemUpdate, Product, Sale, parse_model
from uploads import ImageUploader, upload_images

logger = logging.getLogger(__name__)

SORT_OPTIONS = {
    "price-asc": [("price", 1)],
    "price-desc": [("price", -1)],
    "rating": [("rating", -1)],
    "popular": [("reviews", -1)],
}
NEWEST_FIRST = [("created_at", -1)]
FEATURED_LIMIT = 4


class ItemKind:
    def __init__(self, label: str, collection: str, id_field: str, id_prefix: str,
                 model: Type[BaseModel], key_prefix: str, list_prefix: str, ttl: int):
        self.label = label
        self.collection = collection
        self.id_field = id_field
        self.id_prefix = id_prefix
        self.model = model
        self.key_prefix = key_prefix
        self.list_prefix = list_prefix
        self.ttl = ttl

    def key(self, item_id: str) -> str:
        return f"{self.key_prefix}{item_id}"

    def new_id(self) -> str:
        suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=9))
        return f"{self.id_prefix}-{suffix}"


PRODUCT = ItemKind("Product", "product", "product_id", "PROD", Product, "product:",
                   cache_keys.PRODUCTS_PREFIX, cache_keys.PRODUCTS_TTL)
SALE = ItemKind("Sale item", "sale", "sale_id", "SALE", Sale, "sale:",
                cache_keys.SALES_PREFIX, cache_keys.SALES_TTL)


def _bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def normalize_product_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Accept the legacy `isNew` flag and string booleans coming from forms."""
    data = dict(data)
    if "isNew" in data:
        data["new_arrival"] = data.pop("isNew")
    for flag in ("new_arrival", "is_bestseller"):
        if flag in data and data[flag] is not None:
            data[flag] = _bool(data[flag])
    return data


class CatalogService:
    def __init__(self, db: Database, cache: Cache, uploader: ImageUploader):
        self.db = db
        self.cache = cache
        self.uploader = uploader

    # ---------- reads ----------

    def list_products(self, category: Optional[str] = None, min_price: Optional[float] = None,
                      max_price: Optional[float] = None, search: Optional[str] = None,
                      sort: Optional[str] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if category and category != "All":
            query["category"] = category
        price: Dict[str, float] = {}
        if min_price is not None:
            price["$gte"] = float(min_price)
        if max_price is not None:
            price["$lte"] = float(max_price)
        if price:
            query["price"] = price
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [{"name": pattern}, {"description": pattern}]

        key = cache_keys.products_query_key(query, sort)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        docs = get_documents(self.db, PRODUCT.collection, query, sort=SORT_OPTIONS.get(sort or "", NEWEST_FIRST))
        products = [serialize_doc(d) for d in docs]
        self.cache.set(key, products, cache_keys.PRODUCTS_TTL)
        return products

    def featured_products(self) -> List[Dict[str, Any]]:
        cached = self.cache.get(cache_keys.FEATURED_KEY)
        if cached is not None:
            return cached
        docs = get_documents(self.db, PRODUCT.collection, {}, limit=FEATURED_LIMIT, sort=NEWEST_FIRST)
        products = [serialize_doc(d) for d in docs]
        self.cache.set(cache_keys.FEATURED_KEY, products, cache_keys.PRODUCTS_TTL)
        return products

    def get_product(self, product_id: str) -> Dict[str, Any]:
        return self._get(PRODUCT, product_id)

    def list_sales(self) -> List[Dict[str, Any]]:
        cached = self.cache.get(cache_keys.ALL_SALES_KEY)
        if cached is not None:
            return cached
        sales = [serialize_doc(d) for d in get_documents(self.db, SALE.collection, {}, sort=NEWEST_FIRST)]
        self.cache.set(cache_keys.ALL_SALES_KEY, sales, cache_keys.SALES_TTL)
        return sales

    def active_sales(self) -> List[Dict[str, Any]]:
        """Sale items belonging to the currently active sale mode (empty when none is active)."""
        mode = self.db["salemode"].find_one({"is_active": True}, {"_id": 0, "sale_name": 1})
        if not mode:
            return []
        cached = self.cache.get(cache_keys.ACTIVE_SALES_KEY)
        if cached is not None:
            return cached
        docs = get_documents(self.db, SALE.collection, {"sale_mode": mode["sale_name"]}, sort=NEWEST_FIRST)
        sales = [serialize_doc(d) for d in docs]
        self.cache.set(cache_keys.ACTIVE_SALES_KEY, sales, cache_keys.SALES_TTL)
        return sales

    def get_sale(self, sale_id: str) -> Dict[str, Any]:
        return self._get(SALE, sale_id)

    def _get(self, kind: ItemKind, item_id: str) -> Dict[str, Any]:
        key = kind.key(item_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        doc = self.db[kind.collection].find_one({kind.id_field: item_id}, {"_id": 0})
        if not doc:
            raise NotFoundError(f"{kind.label} not found")
        item = serialize_doc(doc)
        self.cache.set(key, item, kind.ttl)
        return item

    def find_live_item(self, item_id: str) -> Tuple[Optional[ItemKind], Optional[Dict[str, Any]]]:
        """Uncached lookup of a purchasable item; cart lines may point at products or sale items."""
        for kind in (PRODUCT, SALE):
            doc = self.db[kind.collection].find_one({kind.id_field: item_id}, {"_id": 0})
            if doc:
                return kind, doc
        return None, None

    # ---------- admin writes ----------

    def create_product(self, fields: Dict[str, Any], image: Optional[bytes] = None,
                       images: Iterable[bytes] = ()) -> Dict[str, Any]:
        return self._create(PRODUCT, normalize_product_fields(fields), image, images)

    def create_sale(self, fields: Dict[str, Any], image: Optional[bytes] = None,
                    images: Iterable[bytes] = ()) -> Dict[str, Any]:
        return self._create(SALE, fields, image, images)

    def bulk_create_products(self, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not isinstance(items, list) or not items:
            raise ClientError("Input must be a non-empty array of products")
        now = utcnow()
        docs = []
        for raw in items:
            data = normalize_product_fields(raw)
            data.setdefault(PRODUCT.id_field, PRODUCT.new_id())
            doc = parse_model(Product, data).model_dump()
            doc["created_at"] = now
            doc["updated_at"] = now
            docs.append(doc)
        try:
            self.db[PRODUCT.collection].insert_many(docs)
        except BulkWriteError as e:
            raise ClientError("Duplicate product id in bulk create") from e
        self.invalidate(PRODUCT)
        logger.info("Bulk created %d products", len(docs))
        return [serialize_doc(d) for d in docs]

    def _create(self, kind: ItemKind, fields: Dict[str, Any], image: Optional[bytes],
                images: Iterable[bytes]) -> Dict[str, Any]:
        data = dict(fields)
        data.update(upload_images(self.uploader, image, images))
        if not data.get(kind.id_field):
            data[kind.id_field] = kind.new_id()
        item = parse_model(kind.model, data)
        try:
            doc = create_document(self.db, kind.collection, item)
        except DuplicateKeyError as e:
            raise ClientError(f"{kind.label} {data[kind.id_field]} already exists") from e
        self.invalidate(kind)
        logger.info("%s %s created", kind.label, data[kind.id_field])
        return serialize_doc(doc)

    def update_product(self, product_id: str, fields: Dict[str, Any], image: Optional[bytes] = None,
                       images: Iterable[bytes] = ()) -> Dict[str, Any]:
        return self._update(PRODUCT, product_id, normalize_product_fields(fields), image, images)

    def update_sale(self, sale_id: str, fields: Dict[str, Any], image: Optional[bytes] = None,
                    images: Iterable[bytes] = ()) -> Dict[str, Any]:
        return self._update(SALE, sale_id, fields, image, images)

    def _update(self, kind: ItemKind, item_id: str, fields: Dict[str, Any], image: Optional[bytes],
                images: Iterable[bytes]) -> Dict[str, Any]:
        data = {k: v for k, v in fields.items() if v is not None}
        data.update(upload_images(self.uploader, image, images))
        changes = parse_model(CatalogItemUpdate, data).model_dump(exclude_unset=True)
        changes["updated_at"] = utcnow()
        updated = self.db[kind.collection].find_one_and_update(
            {kind.id_field: item_id},
            {"$set": changes},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFoundError(f"{kind.label} not found")
        self.invalidate(kind, item_id)
        return serialize_doc(updated)

    def delete_product(self, product_id: str) -> None:
        self._delete(PRODUCT, product_id)

    def delete_sale(self, sale_id: str) -> None:
        self._delete(SALE, sale_id)

    def _delete(self, kind: ItemKind, item_id: str) -> None:
        result = self.db[kind.collection].delete_one({kind.id_field: item_id})
        if result.deleted_count == 0:
            raise NotFoundError(f"{kind.label} not found")
        self.invalidate(kind, item_id)
        logger.info("%s %s deleted", kind.label, item_id)

    def invalidate(self, kind: ItemKind, item_id: Optional[str] = None) -> None:
        self.cache.scan_delete(kind.list_prefix)
        if item_id:
            self.cache.delete(kind.key(item_id))

    # ---------- stock ----------

    def reserve_stock(self, lines: Iterable[Dict[str, Any]]) -> List[Tuple[ItemKind, str, int]]:
        """
        Decrement stock for every line with a conditional update (only if the
        result stays >= 0). A rejected decrement releases what was already
        taken and raises InsufficientStock; nothing is left half reserved.
        """
        wanted: Dict[str, int] = {}
        for line in lines:
            wanted[line["product_id"]] = wanted.get(line["product_id"], 0) + int(line["quantity"])

        reserved: List[Tuple[ItemKind, str, int]] = []
        for item_id, qty in wanted.items():
            kind, doc = self.find_live_item(item_id)
            if kind is None:
                self.release_stock(reserved)
                raise NotFoundError(f"Product {item_id} not found")
            result = self.db[kind.collection].update_one(
                {kind.id_field: item_id, "stock": {"$gte": qty}},
                {"$inc": {"stock": -qty}, "$set": {"updated_at": utcnow()}},
            )
            if result.modified_count != 1:
                self.release_stock(reserved)
                current = self.db[kind.collection].find_one({kind.id_field: item_id}, {"stock": 1}) or {}
                raise InsufficientStock(
                    f"Only {current.get('stock', 0)} item(s) of {doc.get('name', item_id)} available in stock"
                )
            reserved.append((kind, item_id, qty))
        return reserved

    def release_stock(self, reserved: Iterable[Tuple[ItemKind, str, int]]) -> None:
        for kind, item_id, qty in reserved:
            self.db[kind.collection].update_one(
                {kind.id_field: item_id},
                {"$inc": {"stock": qty}, "$set": {"updated_at": utcnow()}},
            )

    def restock(self, lines: Iterable[Dict[str, Any]]) -> List[Tuple[ItemKind, str, int]]:
        """Return the quantities of order lines to stock; items deleted since are skipped."""
        returned: List[Tuple[ItemKind, str, int]] = []
        for line in lines:
            kind, _ = self.find_live_item(line["product_id"])
            if kind is None:
                logger.info("Not restocking %s: item no longer exists", line["product_id"])
                continue
            returned.append((kind, line["product_id"], int(line["quantity"])))
        self.release_stock(returned)
        return returned

    def invalidate_reserved(self, reserved: Iterable[Tuple[ItemKind, str, int]]) -> None:
        kinds = set()
        for kind, item_id, _ in reserved:
            self.cache.delete(kind.key(item_id))
            kinds.add(kind)
        for kind in kinds:
            self.cache.scan_delete(kind.list_prefix)
