# secondact/routes/users.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..dependencies import get_current_user_id, get_store
from ..schemas.auth import ProfileUpdateIn
from ..services import users as user_service
from ..services.costumes import list_seller_costumes
from ..services.orders import list_orders

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/profile")
async def get_profile(user_id: str = Depends(get_current_user_id), store=Depends(get_store)):
    return await user_service.get_profile(store, user_id)


@router.put("/profile")
async def update_profile(
    body: ProfileUpdateIn,
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_store),
):
    return await user_service.update_profile(store, user_id, body)


# /me/* must be declared before /{username}
@router.get("/me/orders")
async def my_orders(user_id: str = Depends(get_current_user_id), store=Depends(get_store)):
    return await list_orders(store, user_id)


@router.get("/me/costumes")
async def my_costumes(user_id: str = Depends(get_current_user_id), store=Depends(get_store)):
    return await list_seller_costumes(store, user_id)


@router.get("/{username}")
async def public_profile(username: str, store=Depends(get_store)):
    return await user_service.get_public_profile(store, username)
