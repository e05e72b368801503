"""Shared fixtures: an in-memory store and fake collaborators so tests run without Postgres, Stripe or Resend."""
from __future__ import annotations

import asyncio
import copy
import itertools
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest

from secondact import security
from secondact.db.store import duplicate_user_error
from secondact.services.payments import StripeGateway
from secondact.services.search import CostumeSearch
from secondact.services.storage import ImageStorage
from secondact.settings import Settings

JWT_SECRET = "test-secret"


# ---------- Fake store ----------

class MemoryStore:
    """Dict-backed stand-in for PgStore with the same async API and transaction rollback."""

    _STATE = ("users", "categories", "costumes", "images", "costume_categories", "orders", "order_items")

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}
        self.categories: Dict[str, str] = {}
        self.costumes: Dict[str, Dict[str, Any]] = {}
        self.images: Dict[str, List[Dict[str, Any]]] = {}
        self.costume_categories: Dict[str, List[str]] = {}
        self.orders: List[Dict[str, Any]] = []
        self.order_items: List[Dict[str, Any]] = []
        self._clock = itertools.count()
        self._epoch = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _now(self) -> str:
        # strictly increasing so "newest first" is deterministic
        return (self._epoch + timedelta(seconds=next(self._clock))).isoformat()

    @asynccontextmanager
    async def transaction(self):
        snapshot = {name: copy.deepcopy(getattr(self, name)) for name in self._STATE}
        try:
            yield self
        except BaseException:
            for name, value in snapshot.items():
                setattr(self, name, value)
            raise

    # --- users ---

    async def get_user(self, user_id):
        u = self.users.get(user_id)
        return copy.deepcopy(u) if u else None

    async def get_user_by_username(self, username):
        return next((copy.deepcopy(u) for u in self.users.values() if u["username"] == username), None)

    async def get_user_by_email(self, email):
        return next((copy.deepcopy(u) for u in self.users.values() if u["email"] == email), None)

    async def find_user_by_login(self, email_or_username):
        return next(
            (copy.deepcopy(u) for u in self.users.values()
             if email_or_username in (u["email"], u["username"])),
            None,
        )

    async def find_users_by_email_or_username(self, email, username):
        return [copy.deepcopy(u) for u in self.users.values()
                if u["email"] == email or u["username"] == username]

    async def username_taken(self, username, exclude_user_id):
        return any(u["username"] == username and u["id"] != exclude_user_id for u in self.users.values())

    async def create_user(self, data):
        for u in self.users.values():
            # same unique constraints as the users table
            if u["email"] == data["email"]:
                raise duplicate_user_error("users_email_key")
            if u["username"] == data["username"]:
                raise duplicate_user_error("users_username_key")
        now = self._now()
        user = {
            "id": uuid.uuid4().hex,
            "firstName": data["firstName"],
            "lastName": data["lastName"],
            "username": data["username"],
            "email": data["email"],
            "passwordHash": data.get("passwordHash"),
            "profilePictureUrl": data.get("profilePictureUrl"),
            "stripeAccountId": None,
            "stripeAccountStatus": None,
            "passwordResetToken": None,
            "passwordResetExpires": None,
            "createdAt": now,
            "updatedAt": now,
        }
        self.users[user["id"]] = user
        return copy.deepcopy(user)

    async def update_user(self, user_id, fields):
        user = self.users.get(user_id)
        if not user:
            return None
        for key in ("firstName", "lastName", "username", "profilePictureUrl"):
            if key in fields:
                user[key] = fields[key]
        user["updatedAt"] = self._now()
        return copy.deepcopy(user)

    async def set_password_reset(self, user_id, token_hash, expires):
        self.users[user_id].update(passwordResetToken=token_hash, passwordResetExpires=expires)

    async def find_user_by_reset_token(self, token_hash, now):
        for u in self.users.values():
            if u["passwordResetToken"] == token_hash and u["passwordResetExpires"] and u["passwordResetExpires"] > now:
                return copy.deepcopy(u)
        return None

    async def reset_password(self, user_id, token_hash, password_hash):
        user = self.users.get(user_id)
        if not user or user["passwordResetToken"] != token_hash:
            return False
        user.update(passwordHash=password_hash, passwordResetToken=None, passwordResetExpires=None)
        return True

    async def set_stripe_account(self, user_id, account_id, status):
        user = self.users[user_id]
        if account_id is not None:
            user["stripeAccountId"] = account_id
        user["stripeAccountStatus"] = status

    async def get_stripe_accounts(self, user_ids):
        return {
            i: {"accountId": self.users[i]["stripeAccountId"], "status": self.users[i]["stripeAccountStatus"]}
            for i in user_ids if i in self.users
        }

    # --- categories ---

    async def list_categories(self):
        return sorted(({"id": i, "name": n} for i, n in self.categories.items()), key=lambda c: c["name"])

    async def existing_category_ids(self, ids):
        return [i for i in ids if i in self.categories]

    async def upsert_category(self, name):
        if name not in self.categories.values():
            self.categories[uuid.uuid4().hex] = name

    # --- costumes ---

    def _attach(self, costume, primary_image_only=False, with_categories=True, with_seller=True):
        c = copy.deepcopy(costume)
        images = sorted(self.images.get(c["id"], []), key=lambda im: not im["isPrimary"])
        c["images"] = [im for im in images if im["isPrimary"]][:1] if primary_image_only else images
        if with_categories:
            c["categories"] = sorted(
                ({"id": i, "name": self.categories[i]} for i in self.costume_categories.get(c["id"], [])),
                key=lambda x: x["name"],
            )
        if with_seller:
            u = self.users.get(c["sellerId"])
            c["seller"] = {k: u[k] for k in ("id", "username", "firstName", "lastName", "profilePictureUrl")} if u else None
        return copy.deepcopy(c)

    def _replace_images(self, costume_id, image_urls, primary_index):
        self.images[costume_id] = [
            {"id": uuid.uuid4().hex, "imageUrl": url, "isPrimary": i == primary_index}
            for i, url in enumerate(image_urls)
        ]

    async def create_costume(self, seller_id, fields, image_urls, primary_index, category_ids):
        now = self._now()
        costume_id = uuid.uuid4().hex
        self.costumes[costume_id] = {
            "id": costume_id,
            "sellerId": seller_id,
            "title": fields["title"],
            "description": fields["description"],
            "price": Decimal(fields["price"]),
            "size": fields["size"],
            "condition": fields["condition"],
            "status": "available",
            "shippingCost": Decimal(fields.get("shippingCost") or 0),
            "shippingMethod": fields.get("shippingMethod"),
            "estimatedDelivery": fields.get("estimatedDelivery"),
            "createdAt": now,
            "updatedAt": now,
        }
        self._replace_images(costume_id, image_urls, primary_index)
        self.costume_categories[costume_id] = list(dict.fromkeys(category_ids))
        return costume_id

    async def get_costume_row(self, costume_id):
        c = self.costumes.get(costume_id)
        return copy.deepcopy(c) if c else None

    async def get_costume(self, costume_id):
        c = self.costumes.get(costume_id)
        return self._attach(c) if c else None

    async def update_costume(self, costume_id, fields, image_urls=None, primary_index=0, category_ids=None):
        c = self.costumes[costume_id]
        c.update(fields)
        c["updatedAt"] = self._now()
        if image_urls is not None:
            self._replace_images(costume_id, image_urls, primary_index)
        if category_ids is not None:
            self.costume_categories[costume_id] = list(dict.fromkeys(category_ids))

    async def delete_costume(self, costume_id):
        self.costumes.pop(costume_id, None)
        self.images.pop(costume_id, None)
        self.costume_categories.pop(costume_id, None)

    async def list_seller_costumes(self, seller_id, status=None):
        rows = [c for c in self.costumes.values()
                if c["sellerId"] == seller_id and (status is None or c["status"] == status)]
        rows.sort(key=lambda c: c["createdAt"], reverse=True)
        return [self._attach(c, primary_image_only=True, with_seller=False) for c in rows]

    def _matches(self, c, s: CostumeSearch) -> bool:
        if c["status"] != "available":
            return False
        if s.text and not any(s.text.lower() in c[k].lower() for k in ("title", "description")):
            return False
        cat_ids = self.costume_categories.get(c["id"], [])
        if s.category_name and not any(s.category_name.lower() in self.categories[i].lower() for i in cat_ids):
            return False
        if s.category_ids and not set(cat_ids) & set(s.category_ids):
            return False
        if s.size_contains and s.size_contains.lower() not in c["size"].lower():
            return False
        if s.sizes and c["size"] not in s.sizes:
            return False
        if s.conditions and c["condition"] not in s.conditions:
            return False
        if s.min_price is not None and c["price"] < s.min_price:
            return False
        if s.max_price is not None and c["price"] > s.max_price:
            return False
        return True

    async def search_costumes(self, s: CostumeSearch):
        rows = [c for c in self.costumes.values() if self._matches(c, s)]
        key = {"price": "price", "title": "title"}.get(s.sort_by, "createdAt")
        rows.sort(key=lambda c: (c[key], c["id"]), reverse=s.sort_order != "asc")
        page = rows[s.offset:s.offset + s.limit]
        return [self._attach(c, primary_image_only=True) for c in page], len(rows)

    # --- orders ---

    async def lock_available_costumes(self, costume_ids):
        return [copy.deepcopy(self.costumes[i]) for i in sorted(set(costume_ids))
                if i in self.costumes and self.costumes[i]["status"] == "available"]

    async def create_order(self, buyer_id, total_price, shipping_address, items):
        now = self._now()
        order_id = uuid.uuid4().hex
        self.orders.append({
            "id": order_id,
            "buyerId": buyer_id,
            "totalPrice": total_price,
            "status": "processing",
            "shippingAddress": dict(shipping_address),
            "paymentIntentId": None,
            "createdAt": now,
            "updatedAt": now,
        })
        for it in items:
            self.order_items.append({
                "id": uuid.uuid4().hex,
                "orderId": order_id,
                "costumeId": it["costumeId"],
                "priceAtPurchase": it["priceAtPurchase"],
                "quantity": it["quantity"],
            })
        return order_id

    async def mark_costumes_sold(self, costume_ids):
        flipped = 0
        for i in costume_ids:
            c = self.costumes.get(i)
            if c and c["status"] == "available":
                c["status"] = "sold"
                flipped += 1
        return flipped

    async def set_order_payment(self, order_id, payment_intent_id):
        for o in self.orders:
            if o["id"] == order_id:
                o["paymentIntentId"] = payment_intent_id

    async def list_orders_for_buyer(self, buyer_id):
        out = []
        for o in sorted(self.orders, key=lambda o: o["createdAt"], reverse=True):
            if o["buyerId"] != buyer_id:
                continue
            order = {**copy.deepcopy(o), "orderItems": []}
            for it in self.order_items:
                if it["orderId"] != o["id"]:
                    continue
                costume = self.costumes.get(it["costumeId"])
                if costume:
                    costume = self._attach(costume, primary_image_only=True, with_categories=False)
                    costume["seller"] = {k: (costume["seller"] or {}).get(k) for k in ("id", "username")}
                order["orderItems"].append({
                    "id": it["id"],
                    "costumeId": it["costumeId"],
                    "priceAtPurchase": it["priceAtPurchase"],
                    "quantity": it["quantity"],
                    "costume": costume,
                })
            out.append(order)
        return out

    # --- test helpers ---

    def add_user(self, username="seller", email=None, password="password123", **extra):
        user_id = uuid.uuid4().hex
        now = self._now()
        self.users[user_id] = {
            "id": user_id,
            "firstName": extra.pop("firstName", username.title()),
            "lastName": extra.pop("lastName", "Tester"),
            "username": username,
            "email": email or f"{username}@example.com",
            "passwordHash": security.hash_password(password) if password else None,
            "profilePictureUrl": None,
            "stripeAccountId": None,
            "stripeAccountStatus": None,
            "passwordResetToken": None,
            "passwordResetExpires": None,
            "createdAt": now,
            "updatedAt": now,
            **extra,
        }
        return self.users[user_id]

    def add_category(self, name):
        cat_id = uuid.uuid4().hex
        self.categories[cat_id] = name
        return cat_id

    def add_costume(self, seller_id, title="Swan Tutu", price="100.00", size="Adult M",
                    condition="LIKE_NEW", status="available", categories=(), description=None):
        now = self._now()
        costume_id = uuid.uuid4().hex
        self.costumes[costume_id] = {
            "id": costume_id,
            "sellerId": seller_id,
            "title": title,
            "description": description or f"{title} worn once",
            "price": Decimal(price),
            "size": size,
            "condition": condition,
            "status": status,
            "shippingCost": Decimal("0"),
            "shippingMethod": "USPS",
            "estimatedDelivery": None,
            "createdAt": now,
            "updatedAt": now,
        }
        self._replace_images(costume_id, [f"https://img.example.com/{costume_id}.jpg"], 0)
        self.costume_categories[costume_id] = list(categories)
        return costume_id


# ---------- Fake collaborators ----------

def _on_event_loop() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class FakeGateway(StripeGateway):
    """StripeGateway with the SDK calls replaced by recorded, canned responses."""

    def __init__(self, api_key: Optional[str] = "sk_test_fake", **kw):
        super().__init__(api_key, **kw)
        self.intents: List[Dict[str, Any]] = []
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.fail_with: Optional[Exception] = None
        # one entry per SDK call: was it made on the event loop thread?
        self.calls_on_loop: List[bool] = []

    def create_payment_intent(self, amount, currency="usd", **kw):
        self.calls_on_loop.append(_on_event_loop())
        self._require_key()
        if self.fail_with is not None:
            raise self.fail_with
        intent_id = f"pi_{len(self.intents) + 1}"
        self.intents.append({"id": intent_id, "amount": amount, "currency": currency, **kw})
        return {"id": intent_id, "client_secret": f"{intent_id}_secret"}

    def create_connect_account(self, seller_id, email):
        self.calls_on_loop.append(_on_event_loop())
        self._require_key()
        account_id = f"acct_{len(self.accounts) + 1}"
        self.accounts[account_id] = {"sellerId": seller_id, "email": email, "charges_enabled": False,
                                     "payouts_enabled": False}
        return {"id": account_id}

    def create_account_link(self, account_id, refresh_url, return_url):
        self.calls_on_loop.append(_on_event_loop())
        self._require_key()
        return {"url": f"https://connect.stripe.test/{account_id}?return={return_url}"}

    def retrieve_account_status(self, account_id):
        self.calls_on_loop.append(_on_event_loop())
        self._require_key()
        acct = self.accounts[account_id]
        return {
            "id": account_id,
            "charges_enabled": acct["charges_enabled"],
            "payouts_enabled": acct["payouts_enabled"],
            "details_submitted": acct["charges_enabled"],
            "requirements": {"currently_due": []},
        }


class RecordingMailer:
    def __init__(self):
        self.sent: List[Dict[str, Any]] = []

    async def send_welcome_email(self, to, name):
        self.sent.append({"kind": "welcome", "to": to, "name": name})
        return True

    async def send_password_reset_email(self, to, name, token):
        self.sent.append({"kind": "reset", "to": to, "name": name, "token": token})
        return True


# ---------- Fixtures ----------

@pytest.fixture(autouse=True)
def _fast_bcrypt(monkeypatch):
    monkeypatch.setattr(security, "BCRYPT_ROUNDS", 4)


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        JWT_SECRET=JWT_SECRET,
        STRIPE_SECRET_KEY="sk_test_fake",
        UPLOADS_DIR=str(tmp_path / "uploads"),
        APP_BASE_URL="http://localhost:3000",
    )


@pytest.fixture()
def store():
    return MemoryStore()


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def mailer():
    return RecordingMailer()


@pytest.fixture()
def storage(settings):
    return ImageStorage(settings.uploads_dir)


@pytest.fixture()
def app(store, gateway, mailer, storage, settings):
    from secondact.main import create_app
    return create_app(store=store, payments=gateway, mailer=mailer, storage=storage, settings=settings)


@pytest.fixture()
def client(app):
    """FastAPI TestClient (sync)."""
    from fastapi.testclient import TestClient
    return TestClient(app)


@pytest.fixture()
def auth_headers(settings):
    def _headers(user: Dict[str, Any]) -> Dict[str, str]:
        token = security.create_access_token(user, settings.jwt_secret, settings.jwt_expires_hours)
        return {"Authorization": f"Bearer {token}"}
    return _headers
