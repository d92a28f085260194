import pytest

from conftest import add_product, add_sale
from errors import ClientError, InsufficientStock, InvalidQuantity, NotFoundError, OutOfStock


def test_get_creates_empty_cart(services, db):
    cart = services.carts.get("user-1")
    assert cart["user_id"] == "user-1"
    assert cart["items"] == []
    assert db["cart"].count_documents({"user_id": "user-1"}) == 1


def test_add_merges_then_rejects_over_stock(services, db):
    add_product(db, "P1", stock=5)
    services.carts.add("user-1", "P1", "M", 2)

    cart = services.carts.add("user-1", "P1", "M", 2)
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 4

    with pytest.raises(InsufficientStock):
        services.carts.add("user-1", "P1", "M", 3)
    assert services.carts.get("user-1")["items"][0]["quantity"] == 4


def test_same_product_different_size_is_a_new_line(services, db):
    add_product(db, "P1")
    services.carts.add("user-1", "P1", "M")
    cart = services.carts.add("user-1", "P1", "L")
    assert sorted(i["size"] for i in cart["items"]) == ["L", "M"]


def test_add_snapshots_item_details(services, db):
    add_product(db, "P1", price=799.5, name="Chikankari Kurti")
    cart = services.carts.add("user-1", "P1", "S")
    assert cart["items"][0] == {
        "product_id": "P1",
        "name": "Chikankari Kurti",
        "price": 799.5,
        "image": "https://img.shewear.test/p.jpg",
        "size": "S",
        "quantity": 1,
    }


def test_add_sale_item(services, db):
    add_sale(db, "S1", stock=2)
    cart = services.carts.add("user-1", "S1", "Free")
    assert cart["items"][0]["product_id"] == "S1"


def test_add_rejections(services, db):
    add_product(db, "P1", stock=0)
    add_product(db, "P2", stock=3)
    with pytest.raises(OutOfStock):
        services.carts.add("user-1", "P1", "M")
    with pytest.raises(NotFoundError):
        services.carts.add("user-1", "ghost", "M")
    with pytest.raises(InvalidQuantity):
        services.carts.add("user-1", "P2", "M", 0)
    with pytest.raises(ClientError):
        services.carts.add("user-1", "P2", "XXL")


def test_update_quantity(services, db):
    add_product(db, "P1", stock=5)
    services.carts.add("user-1", "P1", "M")
    cart = services.carts.update("user-1", "P1", "M", 5)
    assert cart["items"][0]["quantity"] == 5

    with pytest.raises(InsufficientStock):
        services.carts.update("user-1", "P1", "M", 6)
    with pytest.raises(InvalidQuantity):
        services.carts.update("user-1", "P1", "M", 0)
    with pytest.raises(NotFoundError):
        services.carts.update("user-1", "P1", "L", 1)


def test_update_without_cart(services, db):
    add_product(db, "P1")
    with pytest.raises(NotFoundError):
        services.carts.update("nobody", "P1", "M", 1)


def test_remove_is_idempotent(services, db):
    add_product(db, "P1")
    services.carts.add("user-1", "P1", "M", 2)
    before = services.carts.get("user-1")

    assert services.carts.remove("user-1", "P1", "L")["items"] == before["items"]
    assert services.carts.remove("user-1", "P1", "M")["items"] == []
    assert services.carts.remove("user-1", "P1", "M")["items"] == []


def test_mutations_invalidate_cached_cart(services, db, redis_client):
    add_product(db, "P1")
    services.carts.get("user-1")
    assert redis_client.exists("cart:user-1") == 1

    services.carts.add("user-1", "P1", "M")
    assert redis_client.exists("cart:user-1") == 0
    assert services.carts.get("user-1")["items"][0]["quantity"] == 1


def test_clear_keeps_document(services, db):
    add_product(db, "P1")
    services.carts.add("user-1", "P1", "M")
    services.carts.clear("user-1")
    assert db["cart"].find_one({"user_id": "user-1"})["items"] == []
    assert services.carts.get("user-1")["items"] == []
