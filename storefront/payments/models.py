import enum
from decimal import Decimal
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field


class PaymentProvider(str, enum.Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"
    MONTONIO = "montonio"
    PAYSERA = "paysera"
    MANUAL = "manual"


class WebhookPaymentStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


class PaymentWebhookData(BaseModel):
    """Provider callback normalized into one shape."""
    provider: PaymentProvider
    event_id: str = Field(..., min_length=1, max_length=255)
    event_type: str = Field(..., min_length=1, max_length=64)
    order_id: str = Field(..., min_length=1, description="order public id or order number")
    payment_id: Optional[str] = Field(default=None, max_length=128)
    status: WebhookPaymentStatus
    amount: Optional[Decimal] = None
    currency: Optional[str] = Field(default=None, max_length=8)
    raw_payload: Optional[Dict[str, Any]] = None


class WebhookOutcome(BaseModel):
    success: bool = True
    idempotent: bool = False
    action: str
    order_number: Optional[str] = None
    payment_status: Optional[str] = None
    status: Optional[str] = None
