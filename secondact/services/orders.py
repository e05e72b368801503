from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from starlette.concurrency import run_in_threadpool

from ..exceptions import (
    BadRequestError,
    InventoryConflictError,
    NotFoundError,
    PaymentsNotConfiguredError,
)
from .payments import (
    MIN_CHARGE_CENTS,
    StripeGateway,
    process_marketplace_payment,
    shipping_for_stripe,
    to_cents,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def price_lines(
    requested: List[Dict[str, Any]],
    available: List[Dict[str, Any]],
) -> Tuple[List[Dict[str, Any]], Decimal]:
    """
    Price the requested lines against the freshly fetched available listings.

    The client's ``price`` is never used: each line is priced from the
    listing row, and the total is the sum of those lines. Any requested id
    that is missing from ``available`` (sold, deleted, or listed twice in the
    request) fails the whole checkout.
    """
    ids = [r["costumeId"] for r in requested]
    by_id = {c["id"]: c for c in available}
    if len(set(ids)) != len(ids) or any(i not in by_id for i in ids):
        raise InventoryConflictError()

    lines: List[Dict[str, Any]] = []
    total = Decimal("0")
    for r in requested:
        costume = by_id[r["costumeId"]]
        unit = Decimal(costume["price"]).quantize(CENT)
        qty = int(r.get("quantity") or 1)
        lines.append({
            "costumeId": costume["id"],
            "sellerId": costume["sellerId"],
            "title": costume.get("title"),
            "priceAtPurchase": unit,
            "quantity": qty,
        })
        total += unit * qty
    return lines, total.quantize(CENT)


async def _seller_destination(store, lines: List[Dict[str, Any]]) -> Optional[str]:
    """Connected account to route funds to, if the whole order goes to one active seller."""
    sellers = {ln["sellerId"] for ln in lines}
    if len(sellers) != 1:
        return None
    accounts = await store.get_stripe_accounts(sellers)
    acct = accounts.get(next(iter(sellers))) or {}
    if acct.get("accountId") and acct.get("status") == "active":
        return acct["accountId"]
    return None


async def _create_order_intent(
    store,
    gateway: StripeGateway,
    order_id: str,
    buyer_id: str,
    lines: List[Dict[str, Any]],
    amount: int,
    shipping_address: Dict[str, Any],
) -> Dict[str, Any]:
    metadata = {"orderId": order_id, "buyerId": buyer_id}

    destination = await _seller_destination(store, lines)
    if destination:
        result = await run_in_threadpool(
            process_marketplace_payment, gateway, amount, destination, lines, metadata
        )
        return result["payment_intent"]

    # multi-seller or not yet onboarded: charge on the platform, record the split
    fee = gateway.platform_fee(amount)
    n = len(lines)
    return await run_in_threadpool(
        gateway.create_payment_intent,
        amount,
        metadata={
            **metadata,
            "platform_fee": str(fee),
            "seller_amount": str(amount - fee),
            "item_count": str(n),
        },
        description=f"Second Act order {order_id[-6:]} - {n} costume{'s' if n != 1 else ''}",
        shipping=shipping_for_stripe(shipping_address),
    )


async def checkout(store, gateway: StripeGateway, buyer_id: str, body) -> Dict[str, Any]:
    """
    Validate stock, write the order and its items, mark the costumes sold and
    open the payment intent, all inside one transaction. If any step fails
    nothing is committed.
    """
    buyer = await store.get_user(buyer_id)
    if not buyer:
        raise NotFoundError("User not found")
    if not gateway.configured:
        raise PaymentsNotConfiguredError()

    requested = [ln.model_dump() for ln in body.items]
    address = body.shippingAddress.model_dump()
    ids = [r["costumeId"] for r in requested]

    async with store.transaction() as tx:
        available = await tx.lock_available_costumes(ids)
        lines, total = price_lines(requested, available)

        amount = to_cents(total)
        if amount < MIN_CHARGE_CENTS:
            raise BadRequestError("Order total is below the minimum charge")

        order_id = await tx.create_order(buyer_id, total, address, lines)

        flipped = await tx.mark_costumes_sold(ids)
        if flipped != len(ids):
            # a concurrent checkout won the race after our read
            raise InventoryConflictError()

        intent = await _create_order_intent(tx, gateway, order_id, buyer_id, lines, amount, address)
        await tx.set_order_payment(order_id, intent["id"])

    logger.info("Order %s created for buyer %s (total %s, intent %s)", order_id, buyer_id, total, intent["id"])
    return {
        "success": True,
        "orderId": order_id,
        "paymentIntentId": intent["id"],
        "clientSecret": intent["client_secret"],
        "totalPrice": total,
        "message": "Order placed successfully",
    }


async def list_orders(store, buyer_id: str) -> List[Dict[str, Any]]:
    """Order history for one buyer, newest first."""
    buyer = await store.get_user(buyer_id)
    if not buyer:
        raise NotFoundError("User not found")
    return await store.list_orders_for_buyer(buyer_id)
