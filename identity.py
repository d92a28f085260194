"""
Bearer token -> internal user identity.

Tokens are verified by the identity provider (Firebase Admin), cached for a
few minutes under a hash of the token, and the matching local user record is
created on first sight.
"""
import base64
import hashlib
import json
import logging
from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import cache as cache_keys
from cache import Cache
from config import Settings
from database import create_document
from errors import AuthError
from schemas import User

logger = logging.getLogger(__name__)


class Identity(BaseModel):
    uid: str
    email: str
    display_name: Optional[str] = None


class TokenVerifier(Protocol):
    def verify(self, token: str) -> Dict[str, Any]:
        ...


class FirebaseTokenVerifier:
    def __init__(self, project_id: str, credentials_path: Optional[str] = None):
        import firebase_admin
        from firebase_admin import auth, credentials

        if not firebase_admin._apps:
            cred = credentials.Certificate(credentials_path) if credentials_path else credentials.ApplicationDefault()
            firebase_admin.initialize_app(cred, {"projectId": project_id})
        self._auth = auth

    def verify(self, token: str) -> Dict[str, Any]:
        return self._auth.verify_id_token(token)


class UnconfiguredVerifier:
    def verify(self, token: str) -> Dict[str, Any]:
        raise RuntimeError("Identity provider not configured")


def build_verifier(settings: Settings) -> TokenVerifier:
    if settings.firebase_project_id:
        return FirebaseTokenVerifier(settings.firebase_project_id, settings.firebase_credentials)
    logger.warning("Firebase not configured; tokens cannot be verified")
    return UnconfiguredVerifier()


def decode_unverified(token: str) -> Dict[str, Any]:
    """Read a JWT payload without checking its signature. Development only."""
    payload = token.split(".")[1]
    payload += "=" * (-len(payload) % 4)
    claims = json.loads(base64.urlsafe_b64decode(payload.encode()))
    uid = claims.get("user_id") or claims.get("sub")
    if not uid:
        raise ValueError("Invalid token payload")
    claims["uid"] = uid
    return claims


def _auth_key(token: str) -> str:
    return "auth:" + hashlib.sha256(token.encode()).hexdigest()


class IdentityResolver:
    def __init__(self, db: Database, cache: Cache, verifier: TokenVerifier, allow_insecure: bool = False):
        self.db = db
        self.cache = cache
        self.verifier = verifier
        self.allow_insecure = allow_insecure

    def resolve(self, authorization: Optional[str]) -> Identity:
        if not authorization or not authorization.startswith("Bearer "):
            raise AuthError("Unauthorized - No token provided")
        token = authorization[len("Bearer "):].strip()
        if not token:
            raise AuthError("Unauthorized - No token provided")

        key = _auth_key(token)
        cached = self.cache.get(key)
        if cached is not None:
            return Identity(**cached)

        claims = self._verify(token)
        uid = claims.get("uid") or claims.get("sub")
        if not uid:
            raise AuthError("Unauthorized - Invalid token")
        identity = Identity(
            uid=uid,
            email=claims.get("email") or "",
            display_name=claims.get("name"),
        )
        self.ensure_user(identity, claims.get("picture"))
        self.cache.set(key, identity.model_dump(), cache_keys.USER_AUTH_TTL)
        return identity

    def _verify(self, token: str) -> Dict[str, Any]:
        try:
            return self.verifier.verify(token)
        except Exception as e:
            if not self.allow_insecure:
                logger.info("Token verification failed: %s", e)
                raise AuthError("Unauthorized - Invalid token") from None
        logger.warning("Token verification failed, falling back to insecure decoding")
        try:
            return decode_unverified(token)
        except (ValueError, IndexError, UnicodeDecodeError) as e:
            logger.error("Token decode error: %s", e)
            raise AuthError("Unauthorized - Invalid token") from None

    def ensure_user(self, identity: Identity, picture: Optional[str] = None) -> Dict[str, Any]:
        """Upsert the local user. A concurrent first login that loses the insert race re-reads."""
        users = self.db["user"]
        user = users.find_one({"firebase_uid": identity.uid}, {"_id": 0})
        if user:
            return user
        email = (identity.email or f"user_{identity.uid}@example.com").lower()
        record = User(
            firebase_uid=identity.uid,
            email=email,
            display_name=identity.display_name or email.split("@")[0] or "User",
            photo_url=picture or "",
        )
        try:
            return create_document(self.db, "user", record)
        except DuplicateKeyError:
            user = users.find_one({"firebase_uid": identity.uid}, {"_id": 0})
            if user:
                return user
            logger.error("User %s conflicts with an existing email %s", identity.uid, email)
            return record.model_dump()
