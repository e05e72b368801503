from __future__ import annotations

from typing import Any, Dict

from ..exceptions import ConflictError, NotFoundError

PROFILE_FIELDS = (
    "id", "firstName", "lastName", "username", "email",
    "profilePictureUrl", "createdAt", "updatedAt",
)
PUBLIC_FIELDS = ("id", "firstName", "lastName", "username", "profilePictureUrl", "createdAt")


def _pick(user: Dict[str, Any], fields) -> Dict[str, Any]:
    return {k: user.get(k) for k in fields}


async def get_profile(store, user_id: str) -> Dict[str, Any]:
    user = await store.get_user(user_id)
    if not user:
        raise NotFoundError("User not found")
    costumes = await store.list_seller_costumes(user_id)
    stats = {
        "totalCostumes": len(costumes),
        "totalSales": sum(1 for c in costumes if c.get("status") == "sold"),
        # reviews are not implemented yet
        "averageRating": 0,
        "totalReviews": 0,
    }
    return {"user": _pick(user, PROFILE_FIELDS), "stats": stats}


async def update_profile(store, user_id: str, body) -> Dict[str, Any]:
    if await store.username_taken(body.username, user_id):
        raise ConflictError("Username is already taken", {"username": ["Username is already taken"]})

    user = await store.update_user(user_id, body.model_dump())
    if not user:
        raise NotFoundError("User not found")
    return {"message": "Profile updated successfully", "user": _pick(user, PROFILE_FIELDS)}


async def get_public_profile(store, username: str) -> Dict[str, Any]:
    user = await store.get_user_by_username(username)
    if not user:
        raise NotFoundError("User not found")
    costumes = await store.list_seller_costumes(user["id"], status="available")
    return {
        "user": {**_pick(user, PUBLIC_FIELDS), "averageRating": 0, "totalReviews": 0},
        "costumes": costumes,
    }
