from conftest import PAYMENT_SECRET, SHIPPING_ADDRESS, add_product, add_sale, auth, line
from payments import sign


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "ok"
    assert client.get("/test").json()["backend"] == "✅ Running"


def test_public_catalog(client, db):
    add_product(db, "P1", price=500)
    add_product(db, "P2", price=1500, name="Red Kurti")

    assert len(client.get("/api/products").json()) == 2
    assert [p["product_id"] for p in client.get("/api/products", params={"min_price": 1000}).json()] == ["P2"]
    assert len(client.get("/api/products/featured").json()) == 2
    assert client.get("/api/products/P1").json()["price"] == 500

    missing = client.get("/api/products/nope")
    assert missing.status_code == 404
    assert missing.json() == {"error": "Product not found"}


def test_cart_requires_auth(client):
    response = client.get("/api/cart")
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized - No token provided"}
    assert client.get("/api/cart", headers=auth("forged")).status_code == 401


def test_cart_flow(client, db):
    add_product(db, "P1", stock=5)

    r = client.post("/api/cart/add", json={"product_id": "P1", "size": "M", "quantity": 2}, headers=auth())
    assert r.status_code == 200
    r = client.post("/api/cart/add", json={"product_id": "P1", "size": "M", "quantity": 2}, headers=auth())
    assert r.json()["items"][0]["quantity"] == 4

    r = client.post("/api/cart/add", json={"product_id": "P1", "size": "M", "quantity": 3}, headers=auth())
    assert r.status_code == 400
    assert "available in stock" in r.json()["error"]

    r = client.put("/api/cart/update", json={"product_id": "P1", "size": "M", "quantity": 1}, headers=auth())
    assert r.json()["items"][0]["quantity"] == 1

    r = client.delete("/api/cart/remove/P1/M", headers=auth())
    assert r.json()["items"] == []
    assert client.delete("/api/cart/remove/P1/M", headers=auth()).status_code == 200

    assert client.delete("/api/cart/clear", headers=auth()).json()["message"] == "Cart cleared successfully"


def test_request_validation_is_400(client):
    r = client.post("/api/cart/add", json={"size": "M"}, headers=auth())
    assert r.status_code == 400
    body = r.json()
    assert body["error"] == "Validation failed"
    assert any(d["field"] == "product_id" for d in body["details"])


def test_order_flow(client, db):
    add_product(db, "P1", price=600, stock=5)
    payload = {"items": [line("P1", 600, 3)], "shipping_address": SHIPPING_ADDRESS, "payment_method": "cod"}

    r = client.post("/api/orders", json=payload, headers=auth())
    assert r.status_code == 201
    order = r.json()["order"]
    assert order["total"] == 1899
    assert order["payment_status"] == "cod"

    listing = client.get("/api/orders", headers=auth()).json()
    assert [o["order_id"] for o in listing["orders"]] == [order["order_id"]]
    assert client.get(f"/api/orders/{order['order_id']}", headers=auth()).json()["subtotal"] == 1800
    assert client.get(f"/api/orders/{order['order_id']}", headers=auth("other-token")).status_code == 404

    r = client.post(f"/api/orders/{order['order_id']}/cancel", json={"reason": "Ordered twice"}, headers=auth())
    assert r.json()["order"]["order_status"] == "cancelled"
    r = client.post(f"/api/orders/{order['order_id']}/cancel", headers=auth())
    assert r.status_code == 400


def test_order_rejects_incomplete_address(client, db):
    add_product(db, "P1")
    payload = {
        "items": [line("P1")],
        "shipping_address": {**SHIPPING_ADDRESS, "city": ""},
        "payment_method": "cod",
    }
    assert client.post("/api/orders", json=payload, headers=auth()).status_code == 400
    payload = {"items": [line("P1")], "shipping_address": SHIPPING_ADDRESS, "payment_method": "cheque"}
    assert client.post("/api/orders", json=payload, headers=auth()).status_code == 400
    assert db["order"].count_documents({}) == 0


def test_payment_endpoints(client):
    r = client.post("/api/payment/create-order", json={"amount": 499}, headers=auth())
    assert r.json()["amount"] == 49900

    assert client.post("/api/payment/create-order", json={"amount": -1}, headers=auth()).status_code == 400

    signature = sign(PAYMENT_SECRET, "order_1", "pay_1")
    body = {"razorpay_order_id": "order_1", "razorpay_payment_id": "pay_1", "razorpay_signature": signature}
    assert client.post("/api/payment/verify", json=body, headers=auth()).json()["success"] is True
    body["razorpay_signature"] = "forged"
    r = client.post("/api/payment/verify", json=body, headers=auth())
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid payment signature"}


def test_user_addresses(client):
    assert client.get("/api/users/me", headers=auth()).json()["email"] == "shopper@shewear.test"

    r = client.post("/api/users/addresses", json=SHIPPING_ADDRESS, headers=auth())
    assert r.status_code == 201
    address_id = r.json()["addresses"][0]["address_id"]

    r = client.put(f"/api/users/addresses/{address_id}", json={"city": "Nashik"}, headers=auth())
    assert r.json()["addresses"][0]["city"] == "Nashik"

    assert client.post("/api/users/addresses", json={**SHIPPING_ADDRESS, "pincode": "12"}, headers=auth()).status_code == 400
    assert client.delete(f"/api/users/addresses/{address_id}", headers=auth()).json()["addresses"] == []


def test_admin_routes_forbidden_for_shoppers(client):
    assert client.get("/api/admin/stats", headers=auth()).status_code == 403
    assert client.delete("/api/products/P1", headers=auth()).status_code == 403
    r = client.post("/api/sales/modes", json={"sale_name": "Diwali", "is_active": True}, headers=auth())
    assert r.status_code == 403
    assert r.json() == {"error": "Admin access required"}


def test_admin_product_management(client, db, uploader):
    form = {
        "name": "Anarkali Kurti",
        "price": "1299",
        "category": "Kurtis",
        "sizes": '["S", "M"]',
        "description": "Flared cotton kurti",
        "isNew": "true",
    }
    files = [
        ("image", ("main.jpg", b"main", "image/jpeg")),
        ("images", ("a.jpg", b"a", "image/jpeg")),
        ("images", ("b.jpg", b"b", "image/jpeg")),
    ]
    r = client.post("/api/products", data=form, files=files, headers=auth("admin-token"))
    assert r.status_code == 201
    product = r.json()
    assert product["new_arrival"] is True
    assert len(product["images"]) == 2

    assert client.get("/api/products/" + product["product_id"]).json()["price"] == 1299
    r = client.put(f"/api/products/{product['product_id']}", data={"price": "999"}, headers=auth("admin-token"))
    assert r.json()["price"] == 999
    assert client.get("/api/products/" + product["product_id"]).json()["price"] == 999

    r = client.post("/api/products", data=form, headers=auth("admin-token"))
    assert r.status_code == 400

    uploader.fail = True
    r = client.post("/api/products", data=form, files=files[:1], headers=auth("admin-token"))
    assert r.status_code == 502

    bulk = [{**form, "image": "https://img.shewear.test/x.jpg"}]
    r = client.post("/api/products/bulk", json=bulk, headers=auth("admin-token"))
    assert r.status_code == 201

    assert client.delete(f"/api/products/{product['product_id']}", headers=auth("admin-token")).status_code == 200
    assert client.get("/api/products/" + product["product_id"]).status_code == 404


def test_admin_sales(client, db):
    add_sale(db, "S1", sale_mode="Diwali")
    admin = auth("admin-token")

    assert client.get("/api/sales/items/active").json() == []
    client.post("/api/sales/modes", json={"sale_name": "Diwali", "is_active": True}, headers=admin)
    client.post("/api/sales/modes", json={"sale_name": "Holi"}, headers=admin)
    assert client.get("/api/sales/modes/active").json()["sale_name"] == "Diwali"
    assert [s["sale_id"] for s in client.get("/api/sales/items/active").json()] == ["S1"]

    client.put("/api/sales/modes/Holi/toggle", headers=admin)
    assert client.get("/api/sales/modes/active").json()["sale_name"] == "Holi"
    assert client.get("/api/sales/items/active").json() == []
    assert client.put("/api/sales/modes/Nope/toggle", headers=admin).status_code == 404

    r = client.put("/api/sales/items/S1", data={"discount": "40"}, headers=admin)
    assert r.json()["discount"] == 40
    assert client.get("/api/sales/items/S1").json()["discount"] == 40
    assert client.delete("/api/sales/modes/Holi", headers=admin).status_code == 200


def test_admin_orders(client, db):
    add_product(db, "P1", stock=5)
    payload = {"items": [line("P1", 500, 1)], "shipping_address": SHIPPING_ADDRESS, "payment_method": "cod"}
    order_id = client.post("/api/orders", json=payload, headers=auth()).json()["order"]["order_id"]
    admin = auth("admin-token")

    r = client.put(f"/api/admin/orders/{order_id}", json={"status": "shipped", "tracking_number": "TRK1"}, headers=admin)
    assert r.json()["order_status"] == "shipped"
    r = client.put(f"/api/admin/orders/{order_id}", json={"status": "confirmed"}, headers=admin)
    assert r.status_code == 400
    r = client.put(f"/api/admin/orders/{order_id}", json={"status": "delivered"}, headers=admin)
    assert r.json()["payment_status"] == "paid"

    listing = client.get("/api/admin/orders", params={"status": "delivered"}, headers=admin).json()
    assert listing["pagination"]["total"] == 1
    stats = client.get("/api/admin/stats", headers=admin).json()
    assert stats["total_orders"] == 1
    assert stats["total_revenue"] == 599
    assert stats["total_users"] == 2


def test_admin_create_with_client_ids(client, db):
    admin = auth("admin-token")
    form = {
        "name": "Banarasi Saree",
        "price": "2499",
        "category": "Sarees",
        "sizes": "Free",
        "description": "Silk saree",
    }
    files = [("image", ("main.jpg", b"main", "image/jpeg"))]

    r = client.post("/api/products", data={**form, "product_id": "PROD-FIXED"}, files=files, headers=admin)
    assert r.status_code == 201
    assert r.json()["product_id"] == "PROD-FIXED"
    r = client.put("/api/products/PROD-FIXED", data={"stock": "7"}, headers=admin)
    assert r.json()["stock"] == 7

    sale_form = {**form, "sale_id": "SALE-FIXED", "sale_mode": "Diwali", "discount": "20"}
    r = client.post("/api/sales/items", data=sale_form, files=files, headers=admin)
    assert r.status_code == 201
    assert client.get("/api/sales/items/SALE-FIXED").json()["discount"] == 20


def test_checkout_rejects_sub_cent_prices(client, db):
    add_product(db, "P1", price=10.01)
    payload = {"items": [line("P1", 10.005, 1000)], "shipping_address": SHIPPING_ADDRESS, "payment_method": "cod"}
    r = client.post("/api/orders", json=payload, headers=auth())
    assert r.status_code == 400
    assert any(d["field"].endswith("price") for d in r.json()["details"])
    assert db["order"].count_documents({}) == 0


def test_admin_can_move_order_back_before_shipping(client, db):
    add_product(db, "P1")
    payload = {"items": [line("P1", 500, 1)], "shipping_address": SHIPPING_ADDRESS, "payment_method": "cod"}
    order_id = client.post("/api/orders", json=payload, headers=auth()).json()["order"]["order_id"]
    admin = auth("admin-token")

    assert client.put(f"/api/admin/orders/{order_id}", json={"status": "processing"}, headers=admin).status_code == 200
    r = client.put(f"/api/admin/orders/{order_id}", json={"status": "confirmed"}, headers=admin)
    assert r.status_code == 200
    assert r.json()["order_status"] == "confirmed"
