from typing import List
from pydantic import BaseModel, Field

class CheckoutItemIn(BaseModel):
    costumeId: str = Field(..., min_length=1)
    # informational only; totals are priced from the listing
    price: float
    quantity: int = Field(1, ge=1)

class ShippingAddress(BaseModel):
    firstName: str = Field(..., min_length=1)
    lastName: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zipCode: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)

class CheckoutIn(BaseModel):
    items: List[CheckoutItemIn] = Field(..., min_length=1)
    shippingAddress: ShippingAddress
    paymentMethod: str

class PaymentIntentIn(BaseModel):
    amount: int = Field(..., ge=50)  # cents; Stripe minimum is $0.50
    currency: str = "usd"
    items: List[CheckoutItemIn]
    shippingAddress: ShippingAddress
