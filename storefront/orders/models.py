from typing import List, Optional
from pydantic import BaseModel, Field, field_validator
from storefront.orders.constants import SHIPPING_RATES


class ShippingAddress(BaseModel):
    line1: str = Field(..., min_length=1, max_length=255)
    line2: Optional[str] = None
    city: str = Field(..., min_length=1, max_length=128)
    postal_code: str = Field(..., min_length=1, max_length=32)
    country: str = Field(default="EE", max_length=2)


class OrderIn(BaseModel):
    customer_email: str = Field(..., example="buyer@example.com", max_length=320)
    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_phone: Optional[str] = Field(default=None, max_length=32)
    shipping_method: str = Field(..., example="omniva")
    shipping_address: ShippingAddress
    payment_method: Optional[str] = Field(default=None, example="montonio", max_length=32)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("customer_email")
    @classmethod
    def _email_shape(cls, v: str) -> str:
        v = v.strip()
        local, _, domain = v.partition("@")
        if not local or "." not in domain:
            raise ValueError("invalid email address")
        return v.lower()

    @field_validator("shipping_method")
    @classmethod
    def _known_shipping(cls, v: str) -> str:
        if v not in SHIPPING_RATES:
            raise ValueError(f"shipping_method must be one of {sorted(SHIPPING_RATES)}")
        return v


class CheckoutItemInput(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=1, le=100)


class CheckoutIn(BaseModel):
    order: OrderIn
    items: List[CheckoutItemInput] = Field(..., min_length=1)


class ShipIn(BaseModel):
    tracking_number: Optional[str] = Field(default=None, max_length=128)
