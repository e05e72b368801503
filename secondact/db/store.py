"""
Postgres-backed data access for the marketplace.

``PgStore`` wraps either the pool (each call checks out its own connection)
or a single connection inside ``transaction()``; asyncpg exposes the same
fetch/execute API on both. Rows come back as dicts in the camelCase shape the
routes return.
"""
from __future__ import annotations

import json
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple

import asyncpg

from ..exceptions import ConflictError
from ..services.search import CostumeSearch, build_search_sql


def _now():
    return datetime.now(timezone.utc)


def _oid():
    return uuid.uuid4().hex


def _iso(v: Optional[datetime]) -> Optional[str]:
    return v.isoformat() if v else None


# ---- Row mappers -------------------------------------------------------------

def _user_row_to_dict(row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "firstName": row["first_name"],
        "lastName": row["last_name"],
        "username": row["username"],
        "email": row["email"],
        "passwordHash": row["password_hash"],
        "profilePictureUrl": row["profile_picture_url"],
        "stripeAccountId": row["stripe_account_id"],
        "stripeAccountStatus": row["stripe_account_status"],
        "passwordResetToken": row["password_reset_token"],
        "passwordResetExpires": row["password_reset_expires"],
        "createdAt": _iso(row["created_at"]),
        "updatedAt": _iso(row["updated_at"]),
    }


def _seller_row_to_dict(row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "username": row["username"],
        "firstName": row["first_name"],
        "lastName": row["last_name"],
        "profilePictureUrl": row["profile_picture_url"],
    }


def _costume_row_to_dict(row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "sellerId": row["seller_id"],
        "title": row["title"],
        "description": row["description"],
        "price": row["price"],
        "size": row["size"],
        "condition": row["condition"],
        "status": row["status"],
        "shippingCost": row["shipping_cost"],
        "shippingMethod": row["shipping_method"],
        "estimatedDelivery": row["estimated_delivery"],
        "createdAt": _iso(row["created_at"]),
        "updatedAt": _iso(row["updated_at"]),
    }


def _image_row_to_dict(row) -> Dict[str, Any]:
    return {"id": row["id"], "imageUrl": row["image_url"], "isPrimary": row["is_primary"]}


# column names a costume update may touch (camelCase key -> column)
COSTUME_COLUMNS = {
    "title": "title",
    "description": "description",
    "price": "price",
    "size": "size",
    "condition": "condition",
    "shippingCost": "shipping_cost",
    "shippingMethod": "shipping_method",
    "estimatedDelivery": "estimated_delivery",
}

USER_COLUMNS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "username": "username",
    "profilePictureUrl": "profile_picture_url",
}

DUPLICATE_FIELD_MESSAGES = {
    "email": "An account with this email already exists",
    "username": "This username is already taken",
}


def duplicate_user_error(constraint: Optional[str]) -> ConflictError:
    """409 for a unique-constraint hit on users (e.g. ``users_email_key``)."""
    field = "email" if constraint and "email" in constraint else "username"
    return ConflictError("User already exists", {field: [DUPLICATE_FIELD_MESSAGES[field]]})


class PgStore:
    def __init__(self, executor):
        # asyncpg.Pool or asyncpg.Connection
        self._db = executor

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["PgStore"]:
        """Yield a store bound to one connection inside a transaction."""
        if isinstance(self._db, asyncpg.Pool):
            async with self._db.acquire() as conn:
                async with conn.transaction():
                    yield PgStore(conn)
        else:
            # nested: savepoint on the same connection
            async with self._db.transaction():
                yield self

    # --- users --------------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        row = await self._db.fetchrow("SELECT * FROM users WHERE id = $1", user_id)
        return _user_row_to_dict(row) if row else None

    async def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        row = await self._db.fetchrow("SELECT * FROM users WHERE username = $1", username)
        return _user_row_to_dict(row) if row else None

    async def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        row = await self._db.fetchrow("SELECT * FROM users WHERE email = $1", email)
        return _user_row_to_dict(row) if row else None

    async def find_user_by_login(self, email_or_username: str) -> Optional[Dict[str, Any]]:
        row = await self._db.fetchrow(
            "SELECT * FROM users WHERE email = $1 OR username = $1 LIMIT 1",
            email_or_username,
        )
        return _user_row_to_dict(row) if row else None

    async def find_users_by_email_or_username(self, email: str, username: str) -> List[Dict[str, Any]]:
        rows = await self._db.fetch(
            "SELECT * FROM users WHERE email = $1 OR username = $2", email, username
        )
        return [_user_row_to_dict(r) for r in rows]

    async def username_taken(self, username: str, exclude_user_id: str) -> bool:
        found = await self._db.fetchval(
            "SELECT 1 FROM users WHERE username = $1 AND id <> $2", username, exclude_user_id
        )
        return found is not None

    async def create_user(self, data: Dict[str, Any]) -> Dict[str, Any]:
        now = _now()
        try:
            row = await self._create_user_row(data, now)
        except asyncpg.UniqueViolationError as e:
            # lost a race with a concurrent registration
            raise duplicate_user_error(e.constraint_name) from e
        return _user_row_to_dict(row)

    async def _create_user_row(self, data: Dict[str, Any], now: datetime):
        return await self._db.fetchrow(
            """
            INSERT INTO users (id, first_name, last_name, username, email, password_hash,
                               profile_picture_url, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $8)
            RETURNING *
            """,
            _oid(),
            data["firstName"],
            data["lastName"],
            data["username"],
            data["email"],
            data.get("passwordHash"),
            data.get("profilePictureUrl"),
            now,
        )

    async def update_user(self, user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        sets, params = [], [user_id]
        for key, col in USER_COLUMNS.items():
            if key in fields:
                params.append(fields[key])
                sets.append(f"{col} = ${len(params)}")
        params.append(_now())
        sets.append(f"updated_at = ${len(params)}")
        try:
            row = await self._db.fetchrow(
                f"UPDATE users SET {', '.join(sets)} WHERE id = $1 RETURNING *", *params
            )
        except asyncpg.UniqueViolationError as e:
            raise ConflictError("Username is already taken", {"username": ["Username is already taken"]}) from e
        return _user_row_to_dict(row) if row else None

    async def set_password_reset(self, user_id: str, token_hash: str, expires: datetime) -> None:
        await self._db.execute(
            """
            UPDATE users
            SET password_reset_token = $2, password_reset_expires = $3, updated_at = $4
            WHERE id = $1
            """,
            user_id, token_hash, expires, _now(),
        )

    async def find_user_by_reset_token(self, token_hash: str, now: datetime) -> Optional[Dict[str, Any]]:
        row = await self._db.fetchrow(
            """
            SELECT * FROM users
            WHERE password_reset_token = $1 AND password_reset_expires > $2
            """,
            token_hash, now,
        )
        return _user_row_to_dict(row) if row else None

    async def reset_password(self, user_id: str, token_hash: str, password_hash: str) -> bool:
        """Swap the password and burn the token; False if the token was already used."""
        result = await self._db.execute(
            """
            UPDATE users
            SET password_hash = $3,
                password_reset_token = NULL,
                password_reset_expires = NULL,
                updated_at = $4
            WHERE id = $1 AND password_reset_token = $2
            """,
            user_id, token_hash, password_hash, _now(),
        )
        # result looks like "UPDATE 1"
        return int(result.split()[-1]) == 1

    async def set_stripe_account(self, user_id: str, account_id: Optional[str], status: Optional[str]) -> None:
        await self._db.execute(
            """
            UPDATE users
            SET stripe_account_id = COALESCE($2, stripe_account_id),
                stripe_account_status = $3,
                updated_at = $4
            WHERE id = $1
            """,
            user_id, account_id, status, _now(),
        )

    async def get_stripe_accounts(self, user_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        rows = await self._db.fetch(
            "SELECT id, stripe_account_id, stripe_account_status FROM users WHERE id = ANY($1::text[])",
            list(user_ids),
        )
        return {
            r["id"]: {"accountId": r["stripe_account_id"], "status": r["stripe_account_status"]}
            for r in rows
        }

    # --- categories ---------------------------------------------------------

    async def list_categories(self) -> List[Dict[str, Any]]:
        rows = await self._db.fetch("SELECT id, name FROM costume_categories ORDER BY name ASC")
        return [{"id": r["id"], "name": r["name"]} for r in rows]

    async def existing_category_ids(self, ids: List[str]) -> List[str]:
        rows = await self._db.fetch(
            "SELECT id FROM costume_categories WHERE id = ANY($1::text[])", ids
        )
        return [r["id"] for r in rows]

    async def upsert_category(self, name: str) -> None:
        await self._db.execute(
            "INSERT INTO costume_categories (id, name) VALUES ($1, $2) ON CONFLICT (name) DO NOTHING",
            _oid(), name,
        )

    # --- costumes -----------------------------------------------------------

    async def _attach(
        self,
        costumes: List[Dict[str, Any]],
        primary_image_only: bool = False,
        with_categories: bool = True,
        with_seller: bool = True,
    ) -> List[Dict[str, Any]]:
        """Load images / categories / seller for a batch of costume dicts."""
        if not costumes:
            return costumes
        ids = [c["id"] for c in costumes]

        images: Dict[str, List[Dict[str, Any]]] = {i: [] for i in ids}
        img_sql = "SELECT * FROM costume_images WHERE costume_id = ANY($1::text[])"
        if primary_image_only:
            img_sql += " AND is_primary"
        for r in await self._db.fetch(img_sql + " ORDER BY is_primary DESC, id", ids):
            images[r["costume_id"]].append(_image_row_to_dict(r))

        cats: Dict[str, List[Dict[str, Any]]] = {i: [] for i in ids}
        if with_categories:
            rows = await self._db.fetch(
                """
                SELECT ctc.costume_id, cc.id, cc.name
                FROM costume_to_category ctc
                JOIN costume_categories cc ON cc.id = ctc.category_id
                WHERE ctc.costume_id = ANY($1::text[])
                ORDER BY cc.name
                """,
                ids,
            )
            for r in rows:
                cats[r["costume_id"]].append({"id": r["id"], "name": r["name"]})

        sellers: Dict[str, Dict[str, Any]] = {}
        if with_seller:
            rows = await self._db.fetch(
                "SELECT * FROM users WHERE id = ANY($1::text[])",
                list({c["sellerId"] for c in costumes}),
            )
            sellers = {r["id"]: _seller_row_to_dict(r) for r in rows}

        for c in costumes:
            c["images"] = images[c["id"]][:1] if primary_image_only else images[c["id"]]
            if with_categories:
                c["categories"] = cats[c["id"]]
            if with_seller:
                c["seller"] = sellers.get(c["sellerId"])
        return costumes

    async def _replace_images(self, costume_id: str, image_urls: List[str], primary_index: int) -> None:
        await self._db.execute("DELETE FROM costume_images WHERE costume_id = $1", costume_id)
        await self._db.executemany(
            "INSERT INTO costume_images (id, costume_id, image_url, is_primary) VALUES ($1, $2, $3, $4)",
            [(_oid(), costume_id, url, i == primary_index) for i, url in enumerate(image_urls)],
        )

    async def _replace_categories(self, costume_id: str, category_ids: List[str]) -> None:
        await self._db.execute("DELETE FROM costume_to_category WHERE costume_id = $1", costume_id)
        await self._db.executemany(
            "INSERT INTO costume_to_category (costume_id, category_id) VALUES ($1, $2)",
            [(costume_id, cid) for cid in dict.fromkeys(category_ids)],
        )

    async def create_costume(
        self,
        seller_id: str,
        fields: Dict[str, Any],
        image_urls: List[str],
        primary_index: int,
        category_ids: List[str],
    ) -> str:
        costume_id = _oid()
        now = _now()
        await self._db.execute(
            """
            INSERT INTO costumes (id, seller_id, title, description, price, size, condition,
                                  status, shipping_cost, shipping_method, estimated_delivery,
                                  created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, 'available', $8, $9, $10, $11, $11)
            """,
            costume_id,
            seller_id,
            fields["title"],
            fields["description"],
            fields["price"],
            fields["size"],
            fields["condition"],
            fields.get("shippingCost") or Decimal("0"),
            fields.get("shippingMethod"),
            fields.get("estimatedDelivery"),
            now,
        )
        await self._replace_images(costume_id, image_urls, primary_index)
        await self._replace_categories(costume_id, category_ids)
        return costume_id

    async def get_costume_row(self, costume_id: str) -> Optional[Dict[str, Any]]:
        row = await self._db.fetchrow("SELECT * FROM costumes WHERE id = $1", costume_id)
        return _costume_row_to_dict(row) if row else None

    async def get_costume(self, costume_id: str) -> Optional[Dict[str, Any]]:
        c = await self.get_costume_row(costume_id)
        if not c:
            return None
        (c,) = await self._attach([c])
        return c

    async def update_costume(
        self,
        costume_id: str,
        fields: Dict[str, Any],
        image_urls: Optional[List[str]] = None,
        primary_index: int = 0,
        category_ids: Optional[List[str]] = None,
    ) -> None:
        sets, params = [], [costume_id]
        for key, col in COSTUME_COLUMNS.items():
            if key in fields:
                params.append(fields[key])
                sets.append(f"{col} = ${len(params)}")
        params.append(_now())
        sets.append(f"updated_at = ${len(params)}")
        await self._db.execute(
            f"UPDATE costumes SET {', '.join(sets)} WHERE id = $1", *params
        )
        if image_urls is not None:
            await self._replace_images(costume_id, image_urls, primary_index)
        if category_ids is not None:
            await self._replace_categories(costume_id, category_ids)

    async def delete_costume(self, costume_id: str) -> None:
        await self._db.execute("DELETE FROM costumes WHERE id = $1", costume_id)

    async def list_seller_costumes(self, seller_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM costumes WHERE seller_id = $1"
        params: List[Any] = [seller_id]
        if status:
            sql += " AND status = $2"
            params.append(status)
        rows = await self._db.fetch(sql + " ORDER BY created_at DESC", *params)
        costumes = [_costume_row_to_dict(r) for r in rows]
        return await self._attach(costumes, primary_image_only=True, with_seller=False)

    async def search_costumes(self, s: CostumeSearch) -> Tuple[List[Dict[str, Any]], int]:
        where_sql, order_sql, params = build_search_sql(s)
        total = await self._db.fetchval(
            f"SELECT COUNT(*) FROM costumes c WHERE {where_sql}", *params
        )
        n = len(params)
        rows = await self._db.fetch(
            f"SELECT c.* FROM costumes c WHERE {where_sql} {order_sql} "
            f"LIMIT ${n + 1} OFFSET ${n + 2}",
            *params, s.limit, s.offset,
        )
        costumes = [_costume_row_to_dict(r) for r in rows]
        return await self._attach(costumes, primary_image_only=True), int(total or 0)

    # --- orders -------------------------------------------------------------

    async def lock_available_costumes(self, costume_ids: List[str]) -> List[Dict[str, Any]]:
        """
        Fetch the requested costumes that are still available, locking their
        rows until the surrounding transaction ends. Ids are sorted so two
        checkouts always lock in the same order.
        """
        rows = await self._db.fetch(
            """
            SELECT * FROM costumes
            WHERE id = ANY($1::text[]) AND status = 'available'
            ORDER BY id
            FOR UPDATE
            """,
            sorted(set(costume_ids)),
        )
        return [_costume_row_to_dict(r) for r in rows]

    async def create_order(
        self,
        buyer_id: str,
        total_price: Decimal,
        shipping_address: Dict[str, Any],
        items: List[Dict[str, Any]],
    ) -> str:
        order_id = _oid()
        now = _now()
        await self._db.execute(
            """
            INSERT INTO orders (id, buyer_id, total_price, status, shipping_address,
                                created_at, updated_at)
            VALUES ($1, $2, $3, 'processing', $4::jsonb, $5, $5)
            """,
            order_id, buyer_id, total_price, json.dumps(shipping_address), now,
        )
        await self._db.executemany(
            """
            INSERT INTO order_items (id, order_id, costume_id, price_at_purchase, quantity)
            VALUES ($1, $2, $3, $4, $5)
            """,
            [
                (_oid(), order_id, it["costumeId"], it["priceAtPurchase"], it["quantity"])
                for it in items
            ],
        )
        return order_id

    async def mark_costumes_sold(self, costume_ids: List[str]) -> int:
        """available -> sold; returns how many rows actually flipped."""
        result = await self._db.execute(
            """
            UPDATE costumes SET status = 'sold', updated_at = $2
            WHERE id = ANY($1::text[]) AND status = 'available'
            """,
            list(costume_ids), _now(),
        )
        return int(result.split()[-1])

    async def set_order_payment(self, order_id: str, payment_intent_id: str) -> None:
        await self._db.execute(
            "UPDATE orders SET payment_intent_id = $2, updated_at = $3 WHERE id = $1",
            order_id, payment_intent_id, _now(),
        )

    async def list_orders_for_buyer(self, buyer_id: str) -> List[Dict[str, Any]]:
        rows = await self._db.fetch(
            "SELECT * FROM orders WHERE buyer_id = $1 ORDER BY created_at DESC", buyer_id
        )
        if not rows:
            return []
        orders = [
            {
                "id": r["id"],
                "buyerId": r["buyer_id"],
                "totalPrice": r["total_price"],
                "status": r["status"],
                "shippingAddress": (
                    json.loads(r["shipping_address"])
                    if isinstance(r["shipping_address"], str) else r["shipping_address"]
                ),
                "paymentIntentId": r["payment_intent_id"],
                "createdAt": _iso(r["created_at"]),
                "updatedAt": _iso(r["updated_at"]),
                "orderItems": [],
            }
            for r in rows
        ]
        by_id = {o["id"]: o for o in orders}

        item_rows = await self._db.fetch(
            "SELECT * FROM order_items WHERE order_id = ANY($1::text[]) ORDER BY id",
            list(by_id),
        )
        costume_rows = await self._db.fetch(
            "SELECT * FROM costumes WHERE id = ANY($1::text[])",
            list({r["costume_id"] for r in item_rows}),
        )
        costumes = await self._attach(
            [_costume_row_to_dict(r) for r in costume_rows],
            primary_image_only=True,
            with_categories=False,
        )
        costume_map = {c["id"]: c for c in costumes}
        for c in costumes:
            seller = c.get("seller") or {}
            c["seller"] = {"id": seller.get("id"), "username": seller.get("username")}

        for r in item_rows:
            by_id[r["order_id"]]["orderItems"].append({
                "id": r["id"],
                "costumeId": r["costume_id"],
                "priceAtPurchase": r["price_at_purchase"],
                "quantity": r["quantity"],
                "costume": costume_map.get(r["costume_id"]),
            })
        return orders
