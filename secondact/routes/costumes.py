# secondact/routes/costumes.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_current_user_id, get_store
from ..schemas.costumes import CostumeIn, CostumeUpdate
from ..services import costumes as costume_service
from ..services.search import (
    browse_filters,
    browse_page,
    faceted_filters,
    run_search,
    search_page,
)

router = APIRouter(prefix="/api/costumes", tags=["costumes"])


# ---- Browse / search ---------------------------------------------------------
# GET /api/costumes
@router.get("")
async def browse_costumes(
    page: int = Query(1),
    limit: int = Query(20),
    search: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    minPrice: Optional[Decimal] = Query(None),
    maxPrice: Optional[Decimal] = Query(None),
    size: Optional[str] = Query(None),
    condition: Optional[str] = Query(None),
    sortBy: Optional[str] = Query("createdAt"),
    sortOrder: Optional[str] = Query("desc"),
    store=Depends(get_store),
) -> Dict[str, Any]:
    s = browse_filters(
        page=page,
        limit=limit,
        search=search,
        category=category,
        min_price=minPrice,
        max_price=maxPrice,
        size=size,
        condition=condition,
        sort_by=sortBy,
        sort_order=sortOrder,
    )
    costumes, total = await run_search(store, s)
    return browse_page(costumes, total, s)


# GET /api/costumes/search
@router.get("/search")
async def search_costumes(
    q: Optional[str] = Query(None),
    categories: Optional[str] = Query(None),
    sizes: Optional[str] = Query(None),
    conditions: Optional[str] = Query(None),
    minPrice: Optional[Decimal] = Query(None),
    maxPrice: Optional[Decimal] = Query(None),
    sortBy: Optional[str] = Query("createdAt"),
    sortOrder: Optional[str] = Query("desc"),
    page: int = Query(1),
    limit: int = Query(24),
    store=Depends(get_store),
) -> Dict[str, Any]:
    s = faceted_filters(
        q=q,
        categories=categories,
        sizes=sizes,
        conditions=conditions,
        min_price=minPrice,
        max_price=maxPrice,
        sort_by=sortBy,
        sort_order=sortOrder,
        page=page,
        limit=limit,
    )
    costumes, total = await run_search(store, s)
    return search_page(costumes, total, s)


@router.get("/categories")
async def list_categories(store=Depends(get_store)):
    return await costume_service.list_categories(store)


# ---- Single listing ----------------------------------------------------------
@router.get("/{costume_id}")
async def get_costume(costume_id: str, store=Depends(get_store)):
    return await costume_service.get_costume(store, costume_id)


@router.post("", status_code=201)
async def create_costume(
    body: CostumeIn,
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_store),
):
    return await costume_service.create_costume(store, user_id, body)


@router.put("/{costume_id}")
async def update_costume(
    costume_id: str,
    body: CostumeUpdate,
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_store),
):
    return await costume_service.update_costume(store, user_id, costume_id, body)


@router.delete("/{costume_id}")
async def delete_costume(
    costume_id: str,
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_store),
):
    await costume_service.delete_costume(store, user_id, costume_id)
    return {"message": "Costume deleted successfully"}
