from decimal import Decimal
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

Condition = Literal["NEW", "LIKE_NEW", "GOOD", "FAIR"]
Money = Decimal


class CostumeIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=1000)
    price: Money = Field(..., gt=0, max_digits=10, decimal_places=2)
    size: str = Field(..., min_length=1)
    condition: Condition
    categoryIds: List[str] = Field(..., min_length=1)
    imageUrls: List[str] = Field(..., min_length=1, max_length=10)
    primaryImageIndex: int = Field(0, ge=0, le=9)
    shippingCost: Money = Field(Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    shippingMethod: str = Field(..., min_length=1)
    estimatedDelivery: Optional[str] = None

    @model_validator(mode="after")
    def _primary_points_at_an_image(self):
        if self.primaryImageIndex >= len(self.imageUrls):
            raise ValueError("primaryImageIndex must point at one of imageUrls")
        return self


class CostumeUpdate(BaseModel):
    """Partial update; omitted fields are left as they are."""
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, min_length=1, max_length=1000)
    price: Optional[Money] = Field(None, gt=0, max_digits=10, decimal_places=2)
    size: Optional[str] = Field(None, min_length=1)
    condition: Optional[Condition] = None
    categoryIds: Optional[List[str]] = Field(None, min_length=1)
    imageUrls: Optional[List[str]] = Field(None, min_length=1, max_length=10)
    primaryImageIndex: Optional[int] = Field(None, ge=0, le=9)
    shippingCost: Optional[Money] = Field(None, ge=0, max_digits=10, decimal_places=2)
    shippingMethod: Optional[str] = Field(None, min_length=1)
    estimatedDelivery: Optional[str] = None

    @field_validator(
        "title", "description", "price", "size", "condition",
        "categoryIds", "imageUrls", "primaryImageIndex", "shippingCost", "shippingMethod",
        mode="before",
    )
    @classmethod
    def _not_null(cls, v):
        # omitted means unchanged; only estimatedDelivery may be cleared
        if v is None:
            raise ValueError("must not be null")
        return v

    @model_validator(mode="after")
    def _primary_points_at_an_image(self):
        if self.imageUrls is not None and (self.primaryImageIndex or 0) >= len(self.imageUrls):
            raise ValueError("primaryImageIndex must point at one of imageUrls")
        return self
