import enum
import uuid
from decimal import Decimal
from sqlalchemy import JSON, Boolean, Enum, ForeignKey, Index, Integer, Numeric, Text, UniqueConstraint, Uuid, false, text
from uuid6 import uuid7
from datetime import datetime
from typing import List, Optional
from sqlmodel import Column, SQLModel, Field, Relationship, String
from storefront.common.utils import now
from storefront.db.utils import TZDateTime


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


def enum_column(enum_cls, **kwargs) -> Column:
    # stored as varchar of the enum *values* so raw sql and partial indexes can match on 'reserved' etc.
    return Column(Enum(enum_cls, native_enum=False, length=32, values_callable=_enum_values), **kwargs)


def money_column(**kwargs) -> Column:
    return Column(Numeric(10, 2), **kwargs)


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    sku: str = Field(sa_column=Column(String(128), nullable=False, unique=True, index=True))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    description: Optional[str] = Field(default=None, sa_column=Column(Text(), nullable=True))
    price: Decimal = Field(sa_column=money_column(nullable=False))  # gross, vat included
    #* only ever changed through relative decrements by the reservation ledger
    stock: int = Field(default=0, sa_column=Column(Integer(), nullable=False, default=0))
    low_stock_threshold: int = Field(default=10, sa_column=Column(Integer(), nullable=False, default=10))

    created_at: datetime = Field(default_factory=now,
        sa_column=Column(TZDateTime(), nullable=False,default=now))
    updated_at: datetime = Field(default_factory=now,
        sa_column=Column(TZDateTime(), nullable=False,default=now, onupdate=now))

# --------------------------------------------------------------------------------------------
class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

class ReservationStatus(str, enum.Enum):
    RESERVED = "reserved"
    COMMITTED = "committed"
    RELEASED = "released"

class ReleaseReason(str, enum.Enum):
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILED = "payment_failed"
    TIMEOUT = "timeout"
    ADMIN_CANCEL = "admin_cancel"


# Order --> OrderItems (1:many), Order --> StockReservation (1:many), Order --> PaymentEvent (1:many)
class Orders(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False))
    order_number: str = Field(sa_column=Column(String(32), nullable=False, unique=True, index=True))
    status: OrderStatus = Field(default=OrderStatus.PENDING, sa_column=enum_column(OrderStatus, nullable=False, index=True, default=OrderStatus.PENDING))
    payment_status: PaymentStatus = Field(default=PaymentStatus.PENDING, sa_column=enum_column(PaymentStatus, nullable=False, index=True, default=PaymentStatus.PENDING))
    payment_method: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))  # "stripe", "montonio", "paysera" ...
    payment_id: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))  # provider payment reference, set on commit
    reservation_expires_at: Optional[datetime] = Field(default=None, sa_column=Column(TZDateTime(), nullable=True))

    currency: str = Field(default="EUR", sa_column=Column(String(8), nullable=False))
    subtotal: Decimal = Field(default=Decimal("0.00"), sa_column=money_column(nullable=False))  # net of vat
    shipping_cost: Decimal = Field(default=Decimal("0.00"), sa_column=money_column(nullable=False))  # net of vat
    tax: Decimal = Field(default=Decimal("0.00"), sa_column=money_column(nullable=False))
    total: Decimal = Field(default=Decimal("0.00"), sa_column=money_column(nullable=False))  # gross

    customer_email: str = Field(sa_column=Column(String(320), nullable=False, index=True))
    customer_name: str = Field(sa_column=Column(String(255), nullable=False))
    customer_phone: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    shipping_method: str = Field(sa_column=Column(String(32), nullable=False))
    shipping_address: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    notes: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    tracking_number: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    # set when a payment needs manual reconciliation (refund or manual fulfilment)
    review_reason: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True, index=True))

    created_at: datetime = Field(default_factory=now, sa_column=Column(TZDateTime(), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now,sa_column=Column(TZDateTime(), nullable=False,default=now, onupdate=now))
    paid_at: Optional[datetime] = Field(default=None, sa_column=Column(TZDateTime(), nullable=True))
    shipped_at: Optional[datetime] = Field(default=None, sa_column=Column(TZDateTime(), nullable=True))
    delivered_at: Optional[datetime] = Field(default=None, sa_column=Column(TZDateTime(), nullable=True))
    cancelled_at: Optional[datetime] = Field(default=None, sa_column=Column(TZDateTime(), nullable=True))

    items: List["OrderItem"] = Relationship(back_populates="order", sa_relationship_kwargs={"cascade": "all, delete-orphan", "lazy": "selectin"})


# OrderItem is a snapshot of the product at checkout time
class OrderItem(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True))
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="RESTRICT"), nullable=False))
    sku: str = Field(sa_column=Column(String(128), nullable=False))
    product_name: str = Field(sa_column=Column(String(255), nullable=False))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    price: Decimal = Field(sa_column=money_column(nullable=False))  # unit price snapshot, gross
    subtotal: Decimal = Field(sa_column=money_column(nullable=False))

    order: "Orders" = Relationship(back_populates="items")

    __table_args__ = (
        UniqueConstraint("order_id", "product_id", name="uq_order_product"),
    )


class StockReservation(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True))
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="RESTRICT"), nullable=False, index=True))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    status: ReservationStatus = Field(default=ReservationStatus.RESERVED, sa_column=enum_column(ReservationStatus, nullable=False, index=True, default=ReservationStatus.RESERVED))
    expires_at: datetime = Field(sa_column=Column(TZDateTime(), nullable=False, index=True))
    released_at: Optional[datetime] = Field(default=None, sa_column=Column(TZDateTime(), nullable=True))
    release_reason: Optional[ReleaseReason] = Field(default=None, sa_column=enum_column(ReleaseReason, nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(TZDateTime(), nullable=False, default=now))

    __table_args__ = (
        # at most one live hold per (order, product)
        Index(
            "uq_reservation_active_order_product",
            "order_id",
            "product_id",
            unique=True,
            postgresql_where=text("status = 'reserved'"),
            sqlite_where=text("status = 'reserved'"),
        ),
    )

# --------------------------------------------------------------------------------------------------------------------------------

class PaymentEvent(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: Optional[int] = Field(default=None, sa_column=Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=True, index=True))
    provider: str = Field(sa_column=Column(String(64), nullable=False, index=True))
    provider_event_id: str = Field(sa_column=Column(String(255), nullable=False, unique=True))  # idempotency key
    event_type: str = Field(sa_column=Column(String(64), nullable=False))
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON, nullable=True))
    processed: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False, server_default=false()))
    processed_at: Optional[datetime] = Field(default=None, sa_column=Column(TZDateTime(), nullable=True, index=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(TZDateTime(), nullable=False, default=now))
