# secondact/routes/checkout.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from ..dependencies import get_current_user_id, get_payments, get_store
from ..schemas.orders import CheckoutIn
from ..services.orders import checkout

router = APIRouter(prefix="/api", tags=["checkout"])


@router.post("/checkout")
async def checkout_endpoint(
    body: CheckoutIn,
    user_id: str = Depends(get_current_user_id),
    store=Depends(get_store),
    payments=Depends(get_payments),
):
    return await checkout(store, payments, user_id, body)
