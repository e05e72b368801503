# secondact/services/cart.py
"""
Shopping cart as an immutable value.

The storefront keeps the cart client-side; this module is the single
definition of its rules so the API, scripts and tests agree on them. Every
operation returns a new ``Cart``. Persistence goes through an injected
``CartStorage`` (anything with ``get(key)`` / ``set(key, value)``).
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

CART_KEY = "cart"


@dataclass(frozen=True)
class CartSeller:
    id: str
    username: str


@dataclass(frozen=True)
class CartLine:
    costumeId: str
    title: str
    price: Decimal
    size: str
    seller: CartSeller
    condition: str = ""
    imageUrl: str = ""
    quantity: int = 1
    shippingCost: Decimal = Decimal("0")
    shippingMethod: str = ""
    estimatedDelivery: str = ""
    id: str = ""

    def same_listing(self, other: "CartLine") -> bool:
        return (
            self.seller.id == other.seller.id
            and self.title == other.title
            and self.size == other.size
        )


@dataclass(frozen=True)
class Cart:
    lines: Tuple[CartLine, ...] = field(default_factory=tuple)

    def add(self, line: CartLine) -> "Cart":
        """Append ``line``; a line for the same seller/title/size is ignored."""
        if any(existing.same_listing(line) for existing in self.lines):
            return self
        line_id = line.id or "-".join(
            [line.costumeId, line.seller.id, line.title, line.size, str(time.time_ns())]
        )
        return Cart(self.lines + (replace(line, id=line_id, quantity=line.quantity or 1),))

    def remove(self, line_id: str) -> "Cart":
        return Cart(tuple(ln for ln in self.lines if ln.id != line_id))

    def clear(self) -> "Cart":
        return Cart()

    def contains(self, line: CartLine) -> bool:
        return any(existing.same_listing(line) for existing in self.lines)

    @property
    def total_price(self) -> Decimal:
        return sum((ln.price * ln.quantity for ln in self.lines), Decimal("0"))

    @property
    def item_count(self) -> int:
        return len(self.lines)

    def to_checkout_items(self) -> List[Dict[str, Any]]:
        """Request body ``items`` for POST /api/checkout."""
        return [
            {"costumeId": ln.costumeId, "price": float(ln.price), "quantity": ln.quantity}
            for ln in self.lines
        ]

    # --- serialization ---

    def to_json(self) -> str:
        rows = []
        for ln in self.lines:
            row = asdict(ln)
            row["price"] = str(ln.price)
            row["shippingCost"] = str(ln.shippingCost)
            rows.append(row)
        return json.dumps(rows)

    @classmethod
    def from_json(cls, raw: str) -> "Cart":
        rows = json.loads(raw)
        if not isinstance(rows, list):
            raise ValueError("cart payload must be a list")
        lines = []
        for row in rows:
            row = dict(row)
            row["seller"] = CartSeller(**row["seller"])
            row["price"] = Decimal(str(row["price"]))
            row["shippingCost"] = Decimal(str(row.get("shippingCost", "0")))
            lines.append(CartLine(**row))
        return cls(tuple(lines))


class CartStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


def load_cart(storage: CartStorage, key: str = CART_KEY) -> Cart:
    raw = storage.get(key)
    if not raw:
        return Cart()
    try:
        return Cart.from_json(raw)
    except (ValueError, KeyError, TypeError, InvalidOperation) as e:
        logger.warning("Discarding unreadable cart %r: %s", key, e)
        return Cart()


def save_cart(storage: CartStorage, cart: Cart, key: str = CART_KEY) -> None:
    storage.set(key, cart.to_json())
