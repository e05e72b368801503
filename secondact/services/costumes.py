# secondact/services/costumes.py
from __future__ import annotations

import logging
from typing import Any, Dict, List

from ..exceptions import AuthorizationError, BadRequestError, NotFoundError

logger = logging.getLogger(__name__)

LISTING_FIELDS = (
    "title", "description", "price", "size", "condition",
    "shippingCost", "shippingMethod", "estimatedDelivery",
)


# --- READ HELPERS -------------------------------------------------------------
async def list_categories(store) -> List[Dict[str, Any]]:
    return await store.list_categories()


async def get_costume(store, costume_id: str) -> Dict[str, Any]:
    costume = await store.get_costume(costume_id)
    if not costume:
        raise NotFoundError("Costume not found")
    return costume


async def list_seller_costumes(store, seller_id: str) -> List[Dict[str, Any]]:
    """Seller's own listings, every status, newest first."""
    return await store.list_seller_costumes(seller_id)


# --- WRITES -------------------------------------------------------------------
async def _require_categories(store, category_ids: List[str]) -> None:
    wanted = set(category_ids)
    found = set(await store.existing_category_ids(list(wanted)))
    if found != wanted:
        raise BadRequestError("One or more categories not found")


async def create_costume(store, seller_id: str, body) -> Dict[str, Any]:
    await _require_categories(store, body.categoryIds)

    fields = body.model_dump(include=set(LISTING_FIELDS))
    async with store.transaction() as tx:
        costume_id = await tx.create_costume(
            seller_id,
            fields,
            body.imageUrls,
            body.primaryImageIndex,
            body.categoryIds,
        )
    logger.info("Seller %s listed costume %s", seller_id, costume_id)
    return await get_costume(store, costume_id)


async def _owned_unsold(store, user_id: str, costume_id: str, verb: str) -> Dict[str, Any]:
    costume = await store.get_costume_row(costume_id)
    if not costume:
        raise NotFoundError("Costume not found")
    if costume["sellerId"] != user_id:
        raise AuthorizationError()
    # sold listings are frozen: they back an order's price snapshot
    if costume["status"] == "sold":
        raise BadRequestError(f"Cannot {verb} sold costumes")
    return costume


async def update_costume(store, user_id: str, costume_id: str, body) -> Dict[str, Any]:
    await _owned_unsold(store, user_id, costume_id, "edit")

    changes = body.model_dump(exclude_unset=True)
    if body.categoryIds is not None:
        await _require_categories(store, body.categoryIds)

    fields = {k: v for k, v in changes.items() if k in LISTING_FIELDS}
    async with store.transaction() as tx:
        await tx.update_costume(
            costume_id,
            fields,
            image_urls=body.imageUrls,
            primary_index=body.primaryImageIndex or 0,
            category_ids=body.categoryIds,
        )
    return await get_costume(store, costume_id)


async def delete_costume(store, user_id: str, costume_id: str) -> None:
    await _owned_unsold(store, user_id, costume_id, "delete")
    await store.delete_costume(costume_id)
    logger.info("Seller %s deleted costume %s", user_id, costume_id)
