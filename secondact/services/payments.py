# secondact/services/payments.py
"""
Commission split and the Stripe (Connect) gateway.

Amounts crossing this module are integer cents. The platform fee is a
fixed percentage of the gross amount; Stripe itself moves the money to the
seller's connected account via ``transfer_data.destination`` and keeps
``application_fee_amount`` for the platform.
"""
from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

import stripe
from starlette.concurrency import run_in_threadpool

from ..exceptions import BadRequestError, PaymentsNotConfiguredError

logger = logging.getLogger(__name__)

DEFAULT_COMMISSION_PERCENTAGE = Decimal("12")
MIN_CHARGE_CENTS = 50  # Stripe minimum for USD


# ---- Commission arithmetic ---------------------------------------------------

def to_cents(usd: Decimal) -> int:
    return int((Decimal(usd) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_platform_fee(amount: int, percentage: Decimal = DEFAULT_COMMISSION_PERCENTAGE) -> int:
    """round(amount * percentage / 100), halves rounded up."""
    fee = Decimal(amount) * Decimal(percentage) / Decimal(100)
    return int(fee.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_seller_amount(amount: int, percentage: Decimal = DEFAULT_COMMISSION_PERCENTAGE) -> int:
    return amount - calculate_platform_fee(amount, percentage)


# ---- Gateway -----------------------------------------------------------------

class StripeGateway:
    """
    Thin wrapper over the stripe SDK. The API key is passed per call so no
    module-level ``stripe.api_key`` is ever set.
    """

    def __init__(self, api_key: Optional[str], commission_percentage: Decimal = DEFAULT_COMMISSION_PERCENTAGE,
                 connect_country: str = "US"):
        self.api_key = api_key
        self.commission_percentage = commission_percentage
        self.connect_country = connect_country

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _require_key(self) -> str:
        if not self.api_key:
            raise PaymentsNotConfiguredError()
        return self.api_key

    def platform_fee(self, amount: int) -> int:
        return calculate_platform_fee(amount, self.commission_percentage)

    def seller_amount(self, amount: int) -> int:
        return calculate_seller_amount(amount, self.commission_percentage)

    def create_payment_intent(
        self,
        amount: int,
        currency: str = "usd",
        *,
        destination_account: Optional[str] = None,
        application_fee_amount: Optional[int] = None,
        metadata: Optional[Dict[str, str]] = None,
        description: Optional[str] = None,
        shipping: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "amount": amount,
            "currency": currency.lower(),
            "automatic_payment_methods": {"enabled": True},
            "metadata": metadata or {},
        }
        if description:
            params["description"] = description
        if shipping:
            params["shipping"] = shipping
        if destination_account:
            params["transfer_data"] = {"destination": destination_account}
            if application_fee_amount is not None:
                params["application_fee_amount"] = application_fee_amount

        intent = stripe.PaymentIntent.create(api_key=self._require_key(), **params)
        return {"id": intent["id"], "client_secret": intent["client_secret"]}

    def create_connect_account(self, seller_id: str, email: Optional[str]) -> Dict[str, Any]:
        account = stripe.Account.create(
            api_key=self._require_key(),
            type="express",
            country=self.connect_country,
            email=email,
            metadata={"sellerId": seller_id},
        )
        return {"id": account["id"]}

    def create_account_link(self, account_id: str, refresh_url: str, return_url: str) -> Dict[str, Any]:
        link = stripe.AccountLink.create(
            api_key=self._require_key(),
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
        )
        return {"url": link["url"]}

    def retrieve_account_status(self, account_id: str) -> Dict[str, Any]:
        account = stripe.Account.retrieve(account_id, api_key=self._require_key())
        requirements = getattr(account, "requirements", None)
        return {
            "id": account["id"],
            "charges_enabled": bool(getattr(account, "charges_enabled", False)),
            "payouts_enabled": bool(getattr(account, "payouts_enabled", False)),
            "details_submitted": bool(getattr(account, "details_submitted", False)),
            "requirements": requirements.to_dict() if hasattr(requirements, "to_dict") else requirements,
        }


# ---- Marketplace helpers -----------------------------------------------------

def process_marketplace_payment(
    gateway: StripeGateway,
    total_amount: int,
    seller_account_id: str,
    items: List[Dict[str, Any]],
    metadata: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Destination charge to one seller with the platform commission as application fee."""
    platform_fee = gateway.platform_fee(total_amount)
    seller_amount = total_amount - platform_fee

    intent = gateway.create_payment_intent(
        total_amount,
        destination_account=seller_account_id,
        application_fee_amount=platform_fee,
        metadata={
            **(metadata or {}),
            "platform_fee": str(platform_fee),
            "seller_amount": str(seller_amount),
            "item_count": str(len(items)),
        },
    )
    return {"payment_intent": intent, "platform_fee": platform_fee, "seller_amount": seller_amount}


def shipping_for_stripe(address: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": f"{address['firstName']} {address['lastName']}",
        "address": {
            "line1": address["address"],
            "city": address["city"],
            "state": address["state"],
            "postal_code": address["zipCode"],
            "country": address["country"],
        },
    }


def create_storefront_intent(
    gateway: StripeGateway,
    user_id: str,
    amount: int,
    currency: str,
    items: List[Dict[str, Any]],
    shipping_address: Dict[str, Any],
) -> Dict[str, Any]:
    """Client-side card form intent; the commission is recorded in metadata."""
    platform_fee = gateway.platform_fee(amount)
    n = len(items)
    intent = gateway.create_payment_intent(
        amount,
        currency,
        metadata={
            "userId": user_id,
            "itemCount": str(n),
            "platformFee": str(platform_fee),
        },
        description=f"Second Act - {n} costume{'s' if n != 1 else ''}",
        shipping=shipping_for_stripe(shipping_address),
    )
    return {"clientSecret": intent["client_secret"]}


# ---- Connect onboarding ------------------------------------------------------

async def create_seller_account(store, gateway: StripeGateway, user: Dict[str, Any], base_url: str) -> Dict[str, Any]:
    """
    no-account -> pending: create the express account, remember it, and hand
    back the hosted onboarding link.
    """
    if user.get("stripeAccountId"):
        raise BadRequestError("Stripe account already exists")

    account = await run_in_threadpool(gateway.create_connect_account, user["id"], user.get("email"))
    await store.set_stripe_account(user["id"], account["id"], "pending")
    logger.info("Created Stripe Connect account %s for user %s", account["id"], user["id"])

    base = base_url.rstrip("/")
    link = await run_in_threadpool(
        gateway.create_account_link, account["id"], f"{base}/dashboard", f"{base}/dashboard"
    )
    return {
        "accountId": account["id"],
        "onboardingUrl": link["url"],
        "message": "Stripe account created successfully",
    }


async def refresh_seller_account(store, gateway: StripeGateway, user: Dict[str, Any]) -> Dict[str, Any]:
    """Poll Stripe for onboarding progress and cache the coarse status."""
    account_id = user.get("stripeAccountId")
    if not account_id:
        return {"hasAccount": False, "message": "No Stripe account found"}

    status = await run_in_threadpool(gateway.retrieve_account_status, account_id)
    cached = "active" if status["charges_enabled"] and status["payouts_enabled"] else "pending"
    if cached != user.get("stripeAccountStatus"):
        await store.set_stripe_account(user["id"], None, cached)

    return {
        "hasAccount": True,
        "accountId": account_id,
        "status": status,
        "canReceivePayments": status["charges_enabled"] and status["payouts_enabled"],
    }
