"""Append-only store of provider callbacks; ``provider_event_id`` is the idempotency key."""
from typing import Optional
from fastapi.encoders import jsonable_encoder
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.common.utils import now
from storefront.db.utils import upsert_insert
from storefront.payments.models import PaymentWebhookData
from storefront.schema.full_schema import PaymentEvent


async def record(session: AsyncSession, event: PaymentWebhookData, order_id: Optional[int] = None) -> Optional[int]:
    """Insert the event unprocessed. Returns the new row id, or None when it was already recorded."""
    payload = jsonable_encoder(event.raw_payload) if event.raw_payload is not None else None
    stmt = (
        upsert_insert(session, PaymentEvent)
        .values(
            order_id=order_id,
            provider=event.provider.value,
            provider_event_id=event.event_id,
            event_type=event.event_type,
            payload=payload,
            processed=False,
            created_at=now(),
        )
        .on_conflict_do_nothing(index_elements=["provider_event_id"])
        .returning(PaymentEvent.id)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def mark_processed(session: AsyncSession, provider_event_id: str) -> bool:
    stmt = (
        update(PaymentEvent)
        .where(PaymentEvent.provider_event_id == provider_event_id, PaymentEvent.processed.is_(False))
        .values(processed=True, processed_at=now())
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return bool(res.rowcount)


async def is_processed(session: AsyncSession, provider_event_id: str) -> bool:
    stmt = select(PaymentEvent.processed).where(PaymentEvent.provider_event_id == provider_event_id)
    res = await session.execute(stmt)
    processed = res.scalar_one_or_none()
    return bool(processed)


async def get_event(session: AsyncSession, provider_event_id: str) -> Optional[PaymentEvent]:
    stmt = (
        select(PaymentEvent)
        .where(PaymentEvent.provider_event_id == provider_event_id)
        .execution_options(populate_existing=True)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()
