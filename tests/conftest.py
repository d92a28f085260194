import fakeredis
import mongomock
import pytest
from fastapi.testclient import TestClient

from cache import Cache
from config import Settings
from database import create_document, ensure_indexes
from identity import Identity
from schemas import Product, Sale
from services import Services

PAYMENT_SECRET = "test_key_secret"
ADMIN_EMAIL = "admin@shewear.test"
SHOPPER_EMAIL = "shopper@shewear.test"

SHIPPING_ADDRESS = {
    "full_name": "Asha Verma",
    "phone": "9876543210",
    "email": "asha@example.com",
    "address": "12 MG Road",
    "city": "Pune",
    "state": "Maharashtra",
    "pincode": "411001",
}


class FakeUploader:
    def __init__(self):
        self.uploaded = []
        self.fail = False

    def upload(self, data: bytes) -> str:
        if self.fail:
            raise RuntimeError("image host down")
        self.uploaded.append(data)
        return f"https://img.shewear.test/{len(self.uploaded)}.jpg"


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send_order_confirmation(self, order):
        if self.fail:
            raise ConnectionError("smtp unreachable")
        self.sent.append(order)


class FakeTokenVerifier:
    def __init__(self, tokens=None):
        self.tokens = dict(tokens or {})
        self.calls = 0

    def verify(self, token):
        self.calls += 1
        if token not in self.tokens:
            raise ValueError("invalid token")
        return dict(self.tokens[token])


class FakeGateway:
    key_id = "rzp_test_key"

    def __init__(self):
        self.orders = []
        self.fail = False

    def create_order(self, amount, currency, receipt, notes):
        if self.fail:
            raise ConnectionError("gateway timeout")
        order = {"id": f"order_{len(self.orders) + 1}", "amount": int(round(amount * 100)), "currency": currency}
        self.orders.append((order, receipt, notes))
        return order


@pytest.fixture
def db():
    database = mongomock.MongoClient()["shewear_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def cache(redis_client):
    return Cache(redis_client)


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def token_verifier():
    return FakeTokenVerifier({
        "shopper-token": {"uid": "user-1", "email": SHOPPER_EMAIL, "name": "Shopper"},
        "other-token": {"uid": "user-2", "email": "other@shewear.test", "name": "Other"},
        "admin-token": {"uid": "admin-1", "email": ADMIN_EMAIL, "name": "Admin"},
    })


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def settings():
    return Settings(razorpay_key_id=FakeGateway.key_id, razorpay_key_secret=PAYMENT_SECRET,
                    admin_emails=[ADMIN_EMAIL])


@pytest.fixture
def services(settings, db, cache, uploader, mailer, token_verifier, gateway):
    return Services(settings, db, cache, uploader, mailer, token_verifier, gateway)


@pytest.fixture
def shopper():
    return Identity(uid="user-1", email=SHOPPER_EMAIL, display_name="Shopper")


@pytest.fixture
def client(services):
    from main import app, get_services

    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def auth(token="shopper-token"):
    return {"Authorization": f"Bearer {token}"}


def add_product(db, product_id="P1", price=500.0, stock=10, sizes=("S", "M", "L"), **extra):
    product = Product(
        product_id=product_id,
        name=extra.pop("name", f"Kurti {product_id}"),
        price=price,
        image="https://img.shewear.test/p.jpg",
        category=extra.pop("category", "Kurtis"),
        sizes=list(sizes),
        description=extra.pop("description", "Cotton kurti"),
        stock=stock,
        **extra,
    )
    return create_document(db, "product", product)


def add_sale(db, sale_id="S1", sale_mode="Diwali", price=300.0, stock=5):
    sale = Sale(
        sale_id=sale_id,
        name=f"Sale saree {sale_id}",
        price=price,
        original_price=price * 2,
        image="https://img.shewear.test/s.jpg",
        category="Sarees",
        sizes=["Free"],
        description="Festive saree",
        stock=stock,
        discount=50,
        sale_mode=sale_mode,
    )
    return create_document(db, "sale", sale)


def line(product_id="P1", price=500.0, quantity=1, size="M"):
    return {
        "product_id": product_id,
        "name": f"Kurti {product_id}",
        "price": price,
        "image": "https://img.shewear.test/p.jpg",
        "size": size,
        "quantity": quantity,
    }
