# secondact/routes/stripe.py
from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..dependencies import get_current_user, get_payments, get_settings, get_store
from ..schemas.orders import PaymentIntentIn
from ..services.payments import (
    create_seller_account,
    create_storefront_intent,
    refresh_seller_account,
)

router = APIRouter(prefix="/api/stripe", tags=["stripe"])


# ---- Connect (seller onboarding) ---------------------------------------------
@router.post("/connect/create-account")
async def create_account(
    user: Dict[str, Any] = Depends(get_current_user),
    store=Depends(get_store),
    payments=Depends(get_payments),
    settings=Depends(get_settings),
):
    return await create_seller_account(store, payments, user, settings.app_base_url)


@router.get("/connect/account-status")
async def account_status(
    user: Dict[str, Any] = Depends(get_current_user),
    store=Depends(get_store),
    payments=Depends(get_payments),
):
    return await refresh_seller_account(store, payments, user)


# ---- Storefront card form ----------------------------------------------------
@router.post("/create-payment-intent")
def create_payment_intent(
    body: PaymentIntentIn,
    user: Dict[str, Any] = Depends(get_current_user),
    payments=Depends(get_payments),
):
    return create_storefront_intent(
        payments,
        user["id"],
        body.amount,
        body.currency,
        [it.model_dump() for it in body.items],
        body.shippingAddress.model_dump(),
    )
