"""
Database Schemas for the storefront

Each Pydantic model corresponds to a MongoDB collection (lowercased class name):
Product -> "product", Sale -> "sale", SaleMode -> "salemode", Order -> "order",
User -> "user". Carts live in "cart" as lists of CartItem lines. Request
payloads live at the bottom.
"""
from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator

from errors import ValidationFailed

PHONE_RE = re.compile(r"^(\+91)?[6-9]\d{9}$")
PINCODE_RE = re.compile(r"^\d{6}$")

PaymentMethod = Literal["razorpay", "cod"]
PaymentStatus = Literal["pending", "paid", "failed", "cod"]
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]

M = TypeVar("M", bound=BaseModel)


def parse_model(model_cls: Type[M], data: Dict[str, Any]) -> M:
    """Validate loosely typed input into a model, raising ValidationFailed with field details."""
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        details = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationFailed("Validation failed", details=details) from None


def _currency(value: Optional[float]) -> Optional[float]:
    if value is not None and round(value, 2) != value:
        raise ValueError("must have at most 2 decimal places")
    return value


def parse_sizes(value: Any) -> Any:
    """Sizes arrive as a list, a JSON array string, or a comma separated string."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            value = value.split(",")
        if isinstance(value, str):
            value = [value]
    if isinstance(value, list):
        value = [str(s).strip() for s in value if s is not None and str(s).strip()]
        if not value:
            raise ValueError("At least one size is required")
    return value


# -----------------------------
# Users
# -----------------------------
class Address(BaseModel):
    address_id: str
    full_name: str = Field(..., min_length=1)
    phone: str
    email: Optional[EmailStr] = None
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str
    is_default: bool = False


class User(BaseModel):
    firebase_uid: str
    email: str
    display_name: Optional[str] = None
    phone_number: Optional[str] = None
    photo_url: Optional[str] = None
    addresses: List[Address] = Field(default_factory=list)


# -----------------------------
# Catalog
# -----------------------------
class CatalogItem(BaseModel):
    name: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    image: str = Field(..., min_length=1, description="Main image URL")
    images: List[str] = Field(default_factory=list)
    category: str = Field(..., min_length=1)
    sizes: List[str]
    description: str = Field(..., min_length=1)
    rating: float = Field(0, ge=0, le=5)
    reviews: int = Field(0, ge=0)
    stock: int = Field(100, ge=0)

    @field_validator("price", "original_price")
    @classmethod
    def _check_price(cls, v: Optional[float]) -> Optional[float]:
        return _currency(v)

    @field_validator("sizes", mode="before")
    @classmethod
    def _check_sizes(cls, v: Any) -> Any:
        return parse_sizes(v)

    @field_validator("name", "category", "description")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class Product(CatalogItem):
    product_id: str
    new_arrival: bool = False
    is_bestseller: bool = False


class Sale(CatalogItem):
    sale_id: str
    discount: Optional[float] = Field(None, ge=0, le=100)
    sale_mode: str = Field(..., min_length=1)


class CatalogItemUpdate(BaseModel):
    """Partial admin edit; only the fields that were sent are applied."""
    name: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    image: Optional[str] = None
    images: Optional[List[str]] = None
    category: Optional[str] = Field(None, min_length=1)
    sizes: Optional[List[str]] = None
    description: Optional[str] = Field(None, min_length=1)
    rating: Optional[float] = Field(None, ge=0, le=5)
    reviews: Optional[int] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    new_arrival: Optional[bool] = None
    is_bestseller: Optional[bool] = None
    discount: Optional[float] = Field(None, ge=0, le=100)
    sale_mode: Optional[str] = Field(None, min_length=1)

    @field_validator("price", "original_price")
    @classmethod
    def _check_price(cls, v: Optional[float]) -> Optional[float]:
        return _currency(v)

    @field_validator("sizes", mode="before")
    @classmethod
    def _check_sizes(cls, v: Any) -> Any:
        return parse_sizes(v)


class SaleMode(BaseModel):
    sale_name: str = Field(..., min_length=1)
    is_active: bool = False
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("sale_name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Sale name is required")
        return v


# -----------------------------
# Cart / Orders
# -----------------------------
class CartItem(BaseModel):
    product_id: str = Field(..., min_length=1)
    name: str
    price: float = Field(..., ge=0)
    image: str
    size: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)

    @field_validator("price")
    @classmethod
    def _check_price(cls, v: float) -> float:
        return _currency(v)


class OrderItem(CartItem):
    """Line snapshot captured at purchase time; never re-read from the catalog."""


class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    email: Optional[EmailStr] = None
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)


class Order(BaseModel):
    order_id: str
    user_id: str
    user_email: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    subtotal: float = Field(..., ge=0)
    shipping: float = Field(..., ge=0)
    total: float = Field(..., ge=0)
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    order_status: OrderStatus = "pending"
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    delivery_date: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    notes: Optional[str] = None


# -----------------------------
# Request payloads
# -----------------------------
class AddressIn(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str
    email: Optional[EmailStr] = None
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str
    is_default: bool = False

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: str) -> str:
        if not PHONE_RE.match(v.replace(" ", "")):
            raise ValueError("Invalid phone number")
        return v.strip()

    @field_validator("pincode")
    @classmethod
    def _pincode(cls, v: str) -> str:
        v = v.strip()
        if not PINCODE_RE.match(v):
            raise ValueError("Pincode must be 6 digits")
        return v


class AddressUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = None
    email: Optional[EmailStr] = None
    address: Optional[str] = Field(None, min_length=1)
    city: Optional[str] = Field(None, min_length=1)
    state: Optional[str] = Field(None, min_length=1)
    pincode: Optional[str] = None
    is_default: Optional[bool] = None

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not PHONE_RE.match(v.replace(" ", "")):
            raise ValueError("Invalid phone number")
        return v

    @field_validator("pincode")
    @classmethod
    def _pincode(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not PINCODE_RE.match(v.strip()):
            raise ValueError("Pincode must be 6 digits")
        return v


class AddToCartRequest(BaseModel):
    product_id: str = Field(..., min_length=1)
    size: str = Field(..., min_length=1)
    quantity: int = 1


class UpdateCartRequest(BaseModel):
    product_id: str = Field(..., min_length=1)
    size: str = Field(..., min_length=1)
    quantity: int


class CheckoutRequest(BaseModel):
    items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    notes: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str
    tracking_number: Optional[str] = None


class PaymentOrderRequest(BaseModel):
    amount: float
    currency: str = "INR"


class PaymentVerifyRequest(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
