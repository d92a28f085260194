"""
Database helpers

Connects to MongoDB from DATABASE_URL / DATABASE_NAME and exposes small
helpers shared by the services. Collection names are the lower-cased schema
class names ("product", "sale", "salemode", "cart", "order", "user").
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

load_dotenv()

logger = logging.getLogger(__name__)

# Carts idle for 30 days are purged by the TTL index on updated_at
CART_TTL_SECONDS = 30 * 24 * 60 * 60

_client = None
db = None

database_url = os.getenv("DATABASE_URL")
database_name = os.getenv("DATABASE_NAME")

if database_url and database_name:
    _client = MongoClient(
        database_url,
        maxPoolSize=50,
        minPoolSize=0,
        maxIdleTimeMS=30000,
        serverSelectionTimeoutMS=5000,
        connectTimeoutMS=5000,
        socketTimeoutMS=45000,
        tz_aware=True,
    )
    db = _client[database_name]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> Dict[str, Any]:
    """Insert a document stamped with created_at/updated_at and return it (without _id)."""
    if database is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()

    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now

    database[collection_name].insert_one(data_dict)
    data_dict.pop("_id", None)
    return data_dict


def get_documents(
    database: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List] = None,
    skip: int = 0,
) -> List[Dict[str, Any]]:
    if database is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")

    cursor = database[collection_name].find(filter_dict or {}, {"_id": 0})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def serialize_doc(doc: Optional[Dict[str, Any]]):
    """Make a stored document JSON friendly: drop _id, ISO-format datetimes."""
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            continue
        if isinstance(v, dict):
            out[k] = serialize_doc(v)
        elif isinstance(v, list):
            out[k] = [serialize_doc(i) if isinstance(i, dict) else i for i in v]
        elif hasattr(v, "isoformat"):
            out[k] = v.isoformat()
        else:
            out[k] = v
    return out


def ensure_indexes(database: Database) -> None:
    """Schema-level constraints backing the application-level invariants."""
    database["product"].create_index("product_id", unique=True)
    database["product"].create_index([("category", ASCENDING), ("price", ASCENDING)])
    database["product"].create_index([("new_arrival", ASCENDING), ("is_bestseller", ASCENDING)])

    database["sale"].create_index("sale_id", unique=True)
    database["sale"].create_index([("sale_mode", ASCENDING), ("created_at", DESCENDING)])

    database["salemode"].create_index("sale_name", unique=True)
    database["salemode"].create_index("is_active")

    database["cart"].create_index("user_id", unique=True)
    database["cart"].create_index("updated_at", expireAfterSeconds=CART_TTL_SECONDS)

    database["order"].create_index("order_id", unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["order"].create_index("order_status")
    database["order"].create_index("payment_status")

    database["user"].create_index("firebase_uid", unique=True)
    database["user"].create_index("email", unique=True)
    logger.info("Database indexes ensured")
