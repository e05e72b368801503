"""Checkout: pricing, inventory conflicts and all-or-nothing order creation."""
from __future__ import annotations

from decimal import Decimal

from fastapi.testclient import TestClient

ADDRESS = {
    "firstName": "Ada",
    "lastName": "Buyer",
    "address": "1 Stage Door",
    "city": "Austin",
    "state": "TX",
    "zipCode": "78701",
    "country": "US",
}


def _body(*costume_ids, price=1.0):
    return {
        "items": [{"costumeId": cid, "price": price, "quantity": 1} for cid in costume_ids],
        "shippingAddress": ADDRESS,
        "paymentMethod": "card",
    }


def _setup(store):
    seller = store.add_user("seller")
    buyer = store.add_user("buyer")
    c1 = store.add_costume(seller["id"], "Swan Tutu", price="150.00")
    c2 = store.add_costume(seller["id"], "Jazz Vest", price="75.00")
    return seller, buyer, c1, c2


# ---------- Happy path ----------

def test_checkout_prices_from_listings_and_marks_sold(client, store, gateway, auth_headers):
    _, buyer, c1, c2 = _setup(store)

    # client-supplied prices are ignored
    resp = client.post("/api/checkout", json=_body(c1, c2, price=0.01), headers=auth_headers(buyer))
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["totalPrice"] == 225.0
    assert data["message"] == "Order placed successfully"
    assert data["paymentIntentId"] == "pi_1"
    assert data["clientSecret"] == "pi_1_secret"

    assert store.costumes[c1]["status"] == "sold"
    assert store.costumes[c2]["status"] == "sold"

    (order,) = store.orders
    assert order["id"] == data["orderId"]
    assert order["totalPrice"] == Decimal("225.00")
    assert order["paymentIntentId"] == "pi_1"
    assert order["shippingAddress"]["city"] == "Austin"
    assert sorted(it["priceAtPurchase"] for it in store.order_items) == [Decimal("75.00"), Decimal("150.00")]
    # order total equals the sum of its items
    assert sum(it["priceAtPurchase"] * it["quantity"] for it in store.order_items) == order["totalPrice"]

    (intent,) = gateway.intents
    assert intent["amount"] == 22500
    assert intent["metadata"]["platform_fee"] == "2700"
    assert intent["metadata"]["seller_amount"] == "19800"
    assert intent["metadata"]["orderId"] == data["orderId"]
    # the SDK call ran in the threadpool, not on the event loop
    assert gateway.calls_on_loop == [False]


def test_single_active_seller_gets_destination_charge(client, store, gateway, auth_headers):
    seller, buyer, c1, _ = _setup(store)
    seller.update(stripeAccountId="acct_seller", stripeAccountStatus="active")

    resp = client.post("/api/checkout", json=_body(c1), headers=auth_headers(buyer))
    assert resp.status_code == 200

    (intent,) = gateway.intents
    assert intent["destination_account"] == "acct_seller"
    assert intent["application_fee_amount"] == 1800


def test_pending_seller_is_charged_on_platform(client, store, gateway, auth_headers):
    seller, buyer, c1, _ = _setup(store)
    seller.update(stripeAccountId="acct_seller", stripeAccountStatus="pending")

    resp = client.post("/api/checkout", json=_body(c1), headers=auth_headers(buyer))
    assert resp.status_code == 200
    assert "destination_account" not in gateway.intents[0]


def test_multi_seller_order_is_charged_on_platform(client, store, gateway, auth_headers):
    seller, buyer, c1, _ = _setup(store)
    seller.update(stripeAccountId="acct_seller", stripeAccountStatus="active")
    other = store.add_user("other", stripeAccountId="acct_other", stripeAccountStatus="active")
    c3 = store.add_costume(other["id"], "Tap Shoes", price="40.00")

    resp = client.post("/api/checkout", json=_body(c1, c3), headers=auth_headers(buyer))
    assert resp.status_code == 200
    assert resp.json()["totalPrice"] == 190.0
    assert "destination_account" not in gateway.intents[0]


# ---------- Conflicts ----------

def test_sold_costume_rejects_whole_order(client, store, gateway, auth_headers):
    _, buyer, c1, c2 = _setup(store)
    store.costumes[c2]["status"] = "sold"

    resp = client.post("/api/checkout", json=_body(c1, c2), headers=auth_headers(buyer))
    assert resp.status_code == 400
    assert resp.json() == {
        "error": "Some costumes are no longer available",
        "code": "COSTUMES_UNAVAILABLE",
    }
    assert store.orders == []
    assert store.order_items == []
    assert store.costumes[c1]["status"] == "available"
    assert gateway.intents == []


def test_unknown_costume_rejects_order(client, store, auth_headers):
    _, buyer, c1, _ = _setup(store)
    resp = client.post("/api/checkout", json=_body(c1, "missing"), headers=auth_headers(buyer))
    assert resp.status_code == 400
    assert store.orders == []


def test_duplicate_costume_ids_are_rejected(client, store, auth_headers):
    _, buyer, c1, _ = _setup(store)
    resp = client.post("/api/checkout", json=_body(c1, c1), headers=auth_headers(buyer))
    assert resp.status_code == 400
    assert store.orders == []
    assert store.costumes[c1]["status"] == "available"


def test_second_checkout_of_same_costume_fails(client, store, auth_headers):
    _, buyer, c1, _ = _setup(store)
    rival = store.add_user("rival")

    first = client.post("/api/checkout", json=_body(c1), headers=auth_headers(buyer))
    second = client.post("/api/checkout", json=_body(c1), headers=auth_headers(rival))
    assert first.status_code == 200
    assert second.status_code == 400
    assert len(store.orders) == 1


def test_lost_race_on_sold_update_rejects_order(client, store, gateway, auth_headers, monkeypatch):
    _, buyer, c1, c2 = _setup(store)

    # rows were locked as available but another checkout flipped them first
    async def nothing_flipped(costume_ids):
        return 0

    monkeypatch.setattr(store, "mark_costumes_sold", nothing_flipped)
    resp = client.post("/api/checkout", json=_body(c1, c2), headers=auth_headers(buyer))
    assert resp.status_code == 400
    assert resp.json()["code"] == "COSTUMES_UNAVAILABLE"
    assert store.orders == []
    assert store.order_items == []
    assert gateway.intents == []


def test_payment_failure_rolls_back_order(app, store, gateway, auth_headers):
    _, buyer, c1, c2 = _setup(store)
    gateway.fail_with = RuntimeError("card network down")

    client = TestClient(app, raise_server_exceptions=False)
    resp = client.post("/api/checkout", json=_body(c1, c2), headers=auth_headers(buyer))
    assert resp.status_code == 500
    assert resp.json()["error"] == "Internal server error"

    assert store.orders == []
    assert store.order_items == []
    assert store.costumes[c1]["status"] == "available"
    assert store.costumes[c2]["status"] == "available"


# ---------- Preconditions ----------

def test_checkout_requires_token(client, store):
    _, _, c1, _ = _setup(store)
    resp = client.post("/api/checkout", json=_body(c1))
    assert resp.status_code == 401
    assert resp.json()["error"] == "Authorization token required"


def test_checkout_validates_body(client, store, auth_headers):
    _, buyer, _, _ = _setup(store)
    body = {"items": [], "shippingAddress": {**ADDRESS, "city": ""}, "paymentMethod": "card"}
    resp = client.post("/api/checkout", json=body, headers=auth_headers(buyer))
    assert resp.status_code == 400
    data = resp.json()
    assert data["error"] == "Validation failed"
    assert "items" in data["errors"]
    assert "shippingAddress.city" in data["errors"]


def test_checkout_without_stripe_key_is_503(client, store, gateway, auth_headers):
    _, buyer, c1, _ = _setup(store)
    gateway.api_key = None
    resp = client.post("/api/checkout", json=_body(c1), headers=auth_headers(buyer))
    assert resp.status_code == 503
    assert store.costumes[c1]["status"] == "available"


def test_deleted_buyer_is_404(client, store, auth_headers):
    _, buyer, c1, _ = _setup(store)
    headers = auth_headers(buyer)
    del store.users[buyer["id"]]
    resp = client.post("/api/checkout", json=_body(c1), headers=headers)
    assert resp.status_code == 404
    assert resp.json()["error"] == "User not found"


def test_total_below_stripe_minimum(client, store, auth_headers):
    seller, buyer, _, _ = _setup(store)
    cheap = store.add_costume(seller["id"], "Hair Bow", price="0.25")
    resp = client.post("/api/checkout", json=_body(cheap), headers=auth_headers(buyer))
    assert resp.status_code == 400
    assert resp.json()["error"] == "Order total is below the minimum charge"
    assert store.costumes[cheap]["status"] == "available"


# ---------- Order history ----------

def test_order_history_lists_items_newest_first(client, store, auth_headers):
    seller, buyer, c1, c2 = _setup(store)
    client.post("/api/checkout", json=_body(c1), headers=auth_headers(buyer))
    client.post("/api/checkout", json=_body(c2), headers=auth_headers(buyer))

    resp = client.get("/api/users/me/orders", headers=auth_headers(buyer))
    assert resp.status_code == 200
    orders = resp.json()
    assert [o["orderItems"][0]["costumeId"] for o in orders] == [c2, c1]
    item = orders[1]["orderItems"][0]
    assert item["priceAtPurchase"] == 150.0
    assert item["costume"]["seller"] == {"id": seller["id"], "username": "seller"}
    assert len(item["costume"]["images"]) == 1
