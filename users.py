"""
User profile and saved addresses.

If a user has any addresses, exactly one of them is the default.
"""
import logging
from typing import Any, Dict, List

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.database import Database

from database import serialize_doc, utcnow
from errors import NotFoundError
from schemas import Address, AddressIn, AddressUpdate

logger = logging.getLogger(__name__)


class UserService:
    def __init__(self, db: Database):
        self.db = db

    def _user(self, uid: str) -> Dict[str, Any]:
        user = self.db["user"].find_one({"firebase_uid": uid}, {"_id": 0})
        if not user:
            raise NotFoundError("User not found")
        return user

    def _save_addresses(self, uid: str, addresses: List[Dict[str, Any]]) -> Dict[str, Any]:
        user = self.db["user"].find_one_and_update(
            {"firebase_uid": uid},
            {"$set": {"addresses": addresses, "updated_at": utcnow()}},
            projection={"_id": 0},
            return_document=ReturnDocument.AFTER,
        )
        if not user:
            raise NotFoundError("User not found")
        return serialize_doc(user)

    def get_me(self, uid: str) -> Dict[str, Any]:
        return serialize_doc(self._user(uid))

    def add_address(self, uid: str, data: AddressIn) -> Dict[str, Any]:
        addresses = self._user(uid).get("addresses", [])
        address = Address(address_id=str(ObjectId()), **data.model_dump()).model_dump()
        if not addresses or address["is_default"]:
            for a in addresses:
                a["is_default"] = False
            address["is_default"] = True
        addresses.append(address)
        return self._save_addresses(uid, addresses)

    def update_address(self, uid: str, address_id: str, data: AddressUpdate) -> Dict[str, Any]:
        addresses = self._user(uid).get("addresses", [])
        target = next((a for a in addresses if a["address_id"] == address_id), None)
        if target is None:
            raise NotFoundError("Address not found")

        changes = data.model_dump(exclude_unset=True)
        if changes.get("is_default") is False and target.get("is_default"):
            # the default can only move by marking another address default
            changes.pop("is_default")
        target.update(changes)
        if changes.get("is_default"):
            for a in addresses:
                if a["address_id"] != address_id:
                    a["is_default"] = False
        return self._save_addresses(uid, addresses)

    def delete_address(self, uid: str, address_id: str) -> Dict[str, Any]:
        addresses = self._user(uid).get("addresses", [])
        target = next((a for a in addresses if a["address_id"] == address_id), None)
        if target is None:
            raise NotFoundError("Address not found")
        remaining = [a for a in addresses if a["address_id"] != address_id]
        if target.get("is_default") and remaining:
            remaining[0]["is_default"] = True
        return self._save_addresses(uid, remaining)
