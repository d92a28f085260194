import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, Header, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import cache as cache_module
import database
from cache import Cache
from config import Settings, setup_logging
from errors import ForbiddenError, InternalError, StoreError
from identity import Identity, build_verifier
from notifications import build_mailer
from payments import build_gateway
from schemas import (
    AddressIn,
    AddressUpdate,
    AddToCartRequest,
    CancelRequest,
    CheckoutRequest,
    PaymentOrderRequest,
    PaymentVerifyRequest,
    SaleMode,
    StatusUpdateRequest,
    UpdateCartRequest,
)
from services import Services
from uploads import build_uploader

settings = Settings.from_env()
setup_logging(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="She Wear Collection API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------
# Wiring
# -----------------
_services: Optional[Services] = None


def get_services() -> Services:
    global _services
    if _services is None:
        if database.db is None:
            raise InternalError("Database not configured")
        database.ensure_indexes(database.db)
        _services = Services(
            settings,
            database.db,
            Cache(cache_module.connect(settings.redis_url, settings.cache_timeout)),
            build_uploader(settings),
            build_mailer(settings),
            build_verifier(settings),
            build_gateway(settings),
        )
    return _services


def current_user(authorization: Optional[str] = Header(None),
                 services: Services = Depends(get_services)) -> Identity:
    return services.identity.resolve(authorization)


def admin_user(identity: Identity = Depends(current_user),
               services: Services = Depends(get_services)) -> Identity:
    if not services.is_admin(identity.email):
        raise ForbiddenError("Admin access required")
    return identity


def item_form(
    name: Optional[str] = Form(None),
    price: Optional[str] = Form(None),
    original_price: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    sizes: Optional[str] = Form(None),
    stock: Optional[str] = Form(None),
    rating: Optional[str] = Form(None),
    reviews: Optional[str] = Form(None),
    new_arrival: Optional[str] = Form(None),
    is_new: Optional[str] = Form(None, alias="isNew"),
    is_bestseller: Optional[str] = Form(None),
    discount: Optional[str] = Form(None),
    sale_mode: Optional[str] = Form(None),
) -> Dict[str, Any]:
    submitted = dict(locals())
    fields = {k: v for k, v in submitted.items() if v not in (None, "")}
    if "is_new" in fields:
        fields["isNew"] = fields.pop("is_new")
    return fields


def read_upload(upload: Optional[UploadFile]) -> Optional[bytes]:
    if upload is None:
        return None
    return upload.file.read()


# -----------------
# Error handling
# -----------------
@app.exception_handler(StoreError)
def store_error_handler(request: Request, exc: StoreError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(p) for p in err["loc"] if p != "body"), "message": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})


@app.exception_handler(Exception)
def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# -----------------
# Health
# -----------------
@app.get("/")
def root():
    return {"name": "She Wear Collection API", "status": "ok"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
        "cache": "❌ Not Configured",
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["database_name"] = database.db.name
            response["connection_status"] = "Connected"
            try:
                response["collections"] = database.db.list_collection_names()[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"
    if _services is not None and _services.cache.enabled:
        response["cache"] = "✅ Connected" if _services.cache.ping() else "⚠️  Unreachable (running uncached)"
    return response


# -----------------
# Catalog
# -----------------
@app.get("/api/products")
def list_products(category: Optional[str] = None, min_price: Optional[float] = None,
                  max_price: Optional[float] = None, search: Optional[str] = None,
                  sort: Optional[str] = None, services: Services = Depends(get_services)):
    return services.catalog.list_products(category, min_price, max_price, search, sort)


@app.get("/api/products/featured")
def featured_products(services: Services = Depends(get_services)):
    return services.catalog.featured_products()


@app.get("/api/products/{product_id}")
def get_product(product_id: str, services: Services = Depends(get_services)):
    return services.catalog.get_product(product_id)


@app.post("/api/products", status_code=201)
def create_product(fields: Dict[str, Any] = Depends(item_form),
                   product_id: Optional[str] = Form(None),
                   image: Optional[UploadFile] = File(None),
                   images: Optional[List[UploadFile]] = File(None),
                   _admin: Identity = Depends(admin_user),
                   services: Services = Depends(get_services)):
    if product_id:
        fields = {**fields, "product_id": product_id}
    extra = [read_upload(f) for f in images or []]
    return services.catalog.create_product(fields, read_upload(image), extra)


@app.post("/api/products/bulk", status_code=201)
def bulk_create_products(products: List[Dict[str, Any]],
                         _admin: Identity = Depends(admin_user),
                         services: Services = Depends(get_services)):
    created = services.catalog.bulk_create_products(products)
    return {"message": f"Successfully created {len(created)} products", "products": created}


@app.put("/api/products/{product_id}")
def update_product(product_id: str,
                   fields: Dict[str, Any] = Depends(item_form),
                   image: Optional[UploadFile] = File(None),
                   images: Optional[List[UploadFile]] = File(None),
                   _admin: Identity = Depends(admin_user),
                   services: Services = Depends(get_services)):
    extra = [read_upload(f) for f in images or []]
    return services.catalog.update_product(product_id, fields, read_upload(image), extra)


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, _admin: Identity = Depends(admin_user),
                   services: Services = Depends(get_services)):
    services.catalog.delete_product(product_id)
    return {"message": "Product deleted successfully"}


# -----------------
# Sales
# -----------------
@app.get("/api/sales/items")
def list_sales(services: Services = Depends(get_services)):
    return services.catalog.list_sales()


@app.get("/api/sales/items/active")
def active_sales(services: Services = Depends(get_services)):
    return services.catalog.active_sales()


@app.get("/api/sales/items/{sale_id}")
def get_sale(sale_id: str, services: Services = Depends(get_services)):
    return services.catalog.get_sale(sale_id)


@app.post("/api/sales/items", status_code=201)
def create_sale(fields: Dict[str, Any] = Depends(item_form),
                sale_id: Optional[str] = Form(None),
                image: Optional[UploadFile] = File(None),
                images: Optional[List[UploadFile]] = File(None),
                _admin: Identity = Depends(admin_user),
                services: Services = Depends(get_services)):
    if sale_id:
        fields = {**fields, "sale_id": sale_id}
    extra = [read_upload(f) for f in images or []]
    return services.catalog.create_sale(fields, read_upload(image), extra)


@app.put("/api/sales/items/{sale_id}")
def update_sale(sale_id: str,
                fields: Dict[str, Any] = Depends(item_form),
                image: Optional[UploadFile] = File(None),
                images: Optional[List[UploadFile]] = File(None),
                _admin: Identity = Depends(admin_user),
                services: Services = Depends(get_services)):
    extra = [read_upload(f) for f in images or []]
    return services.catalog.update_sale(sale_id, fields, read_upload(image), extra)


@app.delete("/api/sales/items/{sale_id}")
def delete_sale(sale_id: str, _admin: Identity = Depends(admin_user),
                services: Services = Depends(get_services)):
    services.catalog.delete_sale(sale_id)
    return {"message": "Sale item deleted successfully"}


@app.get("/api/sales/modes")
def list_sale_modes(services: Services = Depends(get_services)):
    return services.sales.list()


@app.get("/api/sales/modes/active")
def active_sale_mode(services: Services = Depends(get_services)):
    return services.sales.active()


@app.post("/api/sales/modes")
def upsert_sale_mode(payload: SaleMode, _admin: Identity = Depends(admin_user),
                     services: Services = Depends(get_services)):
    return services.sales.upsert(payload)


@app.put("/api/sales/modes/{sale_name}/toggle")
def toggle_sale_mode(sale_name: str, _admin: Identity = Depends(admin_user),
                     services: Services = Depends(get_services)):
    return services.sales.toggle(sale_name)


@app.delete("/api/sales/modes/{sale_name}")
def delete_sale_mode(sale_name: str, _admin: Identity = Depends(admin_user),
                     services: Services = Depends(get_services)):
    services.sales.delete(sale_name)
    return {"message": "Sale mode deleted successfully"}


# -----------------
# Cart
# -----------------
@app.get("/api/cart")
def get_cart(user: Identity = Depends(current_user), services: Services = Depends(get_services)):
    return services.carts.get(user.uid)


@app.post("/api/cart/add")
def add_to_cart(payload: AddToCartRequest, user: Identity = Depends(current_user),
                services: Services = Depends(get_services)):
    return services.carts.add(user.uid, payload.product_id, payload.size, payload.quantity)


@app.put("/api/cart/update")
def update_cart_item(payload: UpdateCartRequest, user: Identity = Depends(current_user),
                     services: Services = Depends(get_services)):
    return services.carts.update(user.uid, payload.product_id, payload.size, payload.quantity)


@app.delete("/api/cart/remove/{product_id}/{size}")
def remove_from_cart(product_id: str, size: str, user: Identity = Depends(current_user),
                     services: Services = Depends(get_services)):
    return services.carts.remove(user.uid, product_id, size)


@app.delete("/api/cart/clear")
def clear_cart(user: Identity = Depends(current_user), services: Services = Depends(get_services)):
    services.carts.clear(user.uid)
    return {"message": "Cart cleared successfully"}


# -----------------
# Checkout / Orders
# -----------------
@app.post("/api/orders", status_code=201)
def create_order(payload: CheckoutRequest, user: Identity = Depends(current_user),
                 services: Services = Depends(get_services)):
    return {"success": True, "order": services.orders.checkout(user, payload)}


@app.get("/api/orders")
def list_orders(status: Optional[str] = None, page: int = 1, limit: int = 20,
                user: Identity = Depends(current_user), services: Services = Depends(get_services)):
    return services.orders.list_orders(user.uid, status, page, limit)


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user: Identity = Depends(current_user),
              services: Services = Depends(get_services)):
    return services.orders.get_order(user.uid, order_id)


@app.post("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, payload: Optional[CancelRequest] = None,
                 user: Identity = Depends(current_user), services: Services = Depends(get_services)):
    reason = payload.reason if payload else None
    order = services.orders.cancel(order_id, user.uid, reason)
    return {"success": True, "message": "Order cancelled successfully", "order": order}


# -----------------
# Payment
# -----------------
@app.post("/api/payment/create-order")
def create_payment_order(payload: PaymentOrderRequest, user: Identity = Depends(current_user),
                         services: Services = Depends(get_services)):
    return services.payments.create_gateway_order(user.uid, payload.amount, payload.currency)


@app.post("/api/payment/verify")
def verify_payment(payload: PaymentVerifyRequest, _user: Identity = Depends(current_user),
                   services: Services = Depends(get_services)):
    return services.payments.verify_payment(
        payload.razorpay_order_id, payload.razorpay_payment_id, payload.razorpay_signature
    )


# -----------------
# Users
# -----------------
@app.get("/api/users/me")
def get_me(user: Identity = Depends(current_user), services: Services = Depends(get_services)):
    return services.users.get_me(user.uid)


@app.post("/api/users/addresses", status_code=201)
def add_address(payload: AddressIn, user: Identity = Depends(current_user),
                services: Services = Depends(get_services)):
    return services.users.add_address(user.uid, payload)


@app.put("/api/users/addresses/{address_id}")
def update_address(address_id: str, payload: AddressUpdate, user: Identity = Depends(current_user),
                   services: Services = Depends(get_services)):
    return services.users.update_address(user.uid, address_id, payload)


@app.delete("/api/users/addresses/{address_id}")
def delete_address(address_id: str, user: Identity = Depends(current_user),
                   services: Services = Depends(get_services)):
    return services.users.delete_address(user.uid, address_id)


# -----------------
# Admin
# -----------------
@app.get("/api/admin/stats")
def dashboard_stats(_admin: Identity = Depends(admin_user), services: Services = Depends(get_services)):
    return services.orders.dashboard_stats()


@app.get("/api/admin/orders")
def admin_orders(status: Optional[str] = None, page: int = 1, limit: int = 50,
                 _admin: Identity = Depends(admin_user), services: Services = Depends(get_services)):
    return services.orders.admin_list_orders(status, page, limit)


@app.put("/api/admin/orders/{order_id}")
def update_order_status(order_id: str, payload: StatusUpdateRequest,
                        _admin: Identity = Depends(admin_user), services: Services = Depends(get_services)):
    return services.orders.update_status(order_id, payload.status, payload.tracking_number)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
