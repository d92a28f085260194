"""
Sale modes: which promotional sub-catalog (if any) is surfaced to shoppers.

At most one mode is active. Activation writes the target first and then
deactivates every other mode. Under concurrent activations the request whose
deactivation pass runs last turns off everything but its own target, so a
request sequence never leaves two modes active.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument
from pymongo.database import Database

import cache as cache_keys
from cache import Cache
from database import serialize_doc, utcnow
from errors import NotFoundError
from schemas import SaleMode

logger = logging.getLogger(__name__)

COLLECTION = "salemode"


class SaleModeController:
    def __init__(self, db: Database, cache: Cache):
        self.db = db
        self.cache = cache

    def _deactivate_others(self, sale_name: str) -> None:
        self.db[COLLECTION].update_many(
            {"sale_name": {"$ne": sale_name}, "is_active": True},
            {"$set": {"is_active": False, "updated_at": utcnow()}},
        )

    def _invalidate(self) -> None:
        self.cache.scan_delete(cache_keys.SALES_PREFIX)

    def upsert(self, mode: SaleMode) -> Dict[str, Any]:
        now = utcnow()
        doc = self.db[COLLECTION].find_one_and_update(
            {"sale_name": mode.sale_name},
            {"$set": {**mode.model_dump(), "updated_at": now}, "$setOnInsert": {"created_at": now}},
            projection={"_id": 0},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        if mode.is_active:
            self._deactivate_others(mode.sale_name)
        self._invalidate()
        logger.info("Sale mode %s saved (active=%s)", mode.sale_name, mode.is_active)
        return serialize_doc(doc)

    def toggle(self, sale_name: str) -> Dict[str, Any]:
        current = self.db[COLLECTION].find_one({"sale_name": sale_name}, {"_id": 0, "is_active": 1})
        if current is None:
            raise NotFoundError("Sale mode not found")
        return self._set_active(sale_name, not current.get("is_active", False))

    def activate(self, sale_name: str) -> Dict[str, Any]:
        return self._set_active(sale_name, True)

    def _set_active(self, sale_name: str, active: bool) -> Dict[str, Any]:
        doc = self.db[COLLECTION].find_one_and_update(
            {"sale_name": sale_name},
            {"$set": {"is_active": active, "updated_at": utcnow()}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFoundError("Sale mode not found")
        if active:
            self._deactivate_others(sale_name)
        self._invalidate()
        logger.info("Sale mode %s active=%s", sale_name, active)
        return serialize_doc(doc)

    def list(self) -> List[Dict[str, Any]]:
        docs = self.db[COLLECTION].find({}, {"_id": 0}).sort("created_at", -1)
        return [serialize_doc(d) for d in docs]

    def active(self) -> Optional[Dict[str, Any]]:
        doc = self.db[COLLECTION].find_one({"is_active": True}, {"_id": 0})
        return serialize_doc(doc) if doc else None

    def delete(self, sale_name: str) -> None:
        result = self.db[COLLECTION].delete_one({"sale_name": sale_name})
        if result.deleted_count == 0:
            raise NotFoundError("Sale mode not found")
        self._invalidate()
        logger.info("Sale mode %s deleted", sale_name)
