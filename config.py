"""
Runtime configuration and logging setup.

Everything is read from environment variables (a local `.env` is loaded
first) into a single pydantic `Settings` object.
"""
import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _csv(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [part.strip() for part in raw.split(",") if part.strip()]


class Settings(BaseModel):
    database_url: Optional[str] = None
    database_name: Optional[str] = None

    redis_url: Optional[str] = None
    cache_timeout: float = Field(0.5, gt=0, description="Seconds per cache call")

    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None

    cloudinary_cloud_name: Optional[str] = None
    cloudinary_api_key: Optional[str] = None
    cloudinary_api_secret: Optional[str] = None

    firebase_project_id: Optional[str] = None
    firebase_credentials: Optional[str] = Field(None, description="Path to service account JSON")

    email_host: Optional[str] = None
    email_port: int = 587
    email_user: Optional[str] = None
    email_pass: Optional[str] = None

    admin_emails: List[str] = Field(default_factory=list)
    allow_insecure_tokens: bool = False
    reprice_at_checkout: bool = False

    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    port: int = 8000

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL"),
            database_name=os.getenv("DATABASE_NAME"),
            redis_url=os.getenv("REDIS_URL"),
            cache_timeout=float(os.getenv("CACHE_TIMEOUT", "0.5")),
            razorpay_key_id=os.getenv("RAZORPAY_KEY_ID"),
            razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET"),
            cloudinary_cloud_name=os.getenv("CLOUDINARY_CLOUD_NAME"),
            cloudinary_api_key=os.getenv("CLOUDINARY_API_KEY"),
            cloudinary_api_secret=os.getenv("CLOUDINARY_API_SECRET"),
            firebase_project_id=os.getenv("FIREBASE_PROJECT_ID"),
            firebase_credentials=os.getenv("FIREBASE_CREDENTIALS"),
            email_host=os.getenv("EMAIL_HOST"),
            email_port=int(os.getenv("EMAIL_PORT", "587")),
            email_user=os.getenv("EMAIL_USER"),
            email_pass=os.getenv("EMAIL_PASS"),
            admin_emails=[e.lower() for e in _csv("ADMIN_EMAILS")],
            allow_insecure_tokens=_flag("ALLOW_INSECURE_TOKENS"),
            reprice_at_checkout=_flag("REPRICE_AT_CHECKOUT"),
            cors_origins=_csv("CORS_ORIGINS") or ["*"],
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            port=int(os.getenv("PORT", "8000")),
        )


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once; repeated calls only adjust the level."""
    root = logging.getLogger()
    root.setLevel(level.upper())
    if any(getattr(h, "_storefront", False) for h in root.handlers):
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - [%(levelname)-7s] - %(message)s"
    ))
    handler._storefront = True
    root.addHandler(handler)
