"""Single entry point turning normalized payment callbacks into ledger and order transitions.

The whole sequence (dedupe, record, commit/release, order update, mark processed) runs in
one database transaction; any failure rolls all of it back so a provider retry starts
from a clean slate.
"""
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.common.custom_exceptions import OrderNotFoundError
from storefront.inventory import ledger
from storefront.orders import state_machine
from storefront.orders.repository import get_order_by_id, get_order_by_ref
from storefront.payments import event_store
from storefront.payments.constants import (
    REVIEW_LATE_PAYMENT_OUT_OF_STOCK, REVIEW_PAYMENT_AFTER_CANCEL, REVIEW_PAYMENT_WITHOUT_HOLDS,
    WEBHOOK_EVENTS, logger,
)
from storefront.payments.models import PaymentWebhookData, WebhookOutcome, WebhookPaymentStatus
from storefront.schema.full_schema import OrderStatus, Orders, PaymentStatus, ReleaseReason


def _check_amount(order: Orders, data: PaymentWebhookData) -> None:
    # informational only; the provider is the authority on what was charged
    if data.amount is not None and Decimal(data.amount) != order.total:
        logger.warning("payment.webhook.amount_mismatch", extra={
            "order_number": order.order_number, "provider_event_id": data.event_id,
            "expected": str(order.total), "received": str(data.amount),
        })
    if data.currency and data.currency.upper() != order.currency:
        logger.warning("payment.webhook.currency_mismatch", extra={
            "order_number": order.order_number, "provider_event_id": data.event_id,
            "expected": order.currency, "received": data.currency,
        })


async def _apply_success(session: AsyncSession, order: Orders, data: PaymentWebhookData) -> str:
    payment_id = data.payment_id or data.event_id
    log_ctx = {"order_number": order.order_number, "provider_event_id": data.event_id, "provider": data.provider.value}

    committed = await ledger.commit(session, order.id, payment_id)
    if committed:
        await state_machine.mark_paid(session, order.id, payment_id)
        return "committed"

    # nothing left in `reserved`
    if order.payment_status == PaymentStatus.COMPLETED:
        return "already_paid"

    if order.status == OrderStatus.CANCELLED:
        await state_machine.flag_for_review(session, order.id, REVIEW_PAYMENT_AFTER_CANCEL, payment_id)
        logger.error("payment.webhook.paid_after_cancel", extra=log_ctx)
        return "flagged_for_review"

    result = await ledger.reacquire_expired(session, order.id, payment_id)
    if result.acquired:
        await state_machine.mark_paid(session, order.id, payment_id)
        logger.warning("payment.webhook.late_payment_reacquired", extra=log_ctx)
        return "committed_late"

    if result.short_product_ids:
        await state_machine.cancel_paid_without_stock(session, order.id, payment_id, REVIEW_LATE_PAYMENT_OUT_OF_STOCK)
        logger.error("payment.webhook.late_payment_out_of_stock", extra={**log_ctx, "product_ids": result.short_product_ids})
        return "flagged_for_review"

    await state_machine.flag_for_review(session, order.id, REVIEW_PAYMENT_WITHOUT_HOLDS, payment_id)
    logger.error("payment.webhook.paid_without_holds", extra=log_ctx)
    return "flagged_for_review"


async def _apply_failure(session: AsyncSession, order: Orders, data: PaymentWebhookData) -> str:
    released = await ledger.release(session, order.id, ReleaseReason.PAYMENT_FAILED)
    cancelled = await state_machine.mark_payment_failed(session, order.id)
    if released or cancelled:
        return "released"
    logger.info("payment.webhook.failure_ignored", extra={
        "order_number": order.order_number, "provider_event_id": data.event_id,
        "status": order.status.value, "payment_status": order.payment_status.value,
    })
    return "ignored"


async def _process(session: AsyncSession, data: PaymentWebhookData) -> WebhookOutcome:
    if await event_store.is_processed(session, data.event_id):
        logger.info("payment.webhook.already_processed", extra={"provider_event_id": data.event_id, "provider": data.provider.value})
        return WebhookOutcome(idempotent=True, action="already_processed")

    order = await get_order_by_ref(session, data.order_id, for_update=True)
    if order is None:
        logger.error("payment.webhook.order_not_found", extra={
            "order_ref": data.order_id, "provider_event_id": data.event_id, "provider": data.provider.value,
        })
        raise OrderNotFoundError("order not found for payment event", details={"order_ref": data.order_id, "event_id": data.event_id})

    if await event_store.record(session, data, order_id=order.id) is None:
        # a concurrent delivery of the same event got there first
        logger.info("payment.webhook.duplicate", extra={"provider_event_id": data.event_id, "order_number": order.order_number})
        return WebhookOutcome(idempotent=True, action="duplicate", order_number=order.order_number,
                              payment_status=order.payment_status.value, status=order.status.value)

    _check_amount(order, data)

    if data.status == WebhookPaymentStatus.SUCCESS:
        action = await _apply_success(session, order, data)
    elif data.status == WebhookPaymentStatus.FAILED:
        action = await _apply_failure(session, order, data)
    else:
        action = "pending"

    await event_store.mark_processed(session, data.event_id)

    updated = await get_order_by_id(session, order.id)
    logger.info("payment.webhook.applied", extra={
        "provider": data.provider.value, "provider_event_id": data.event_id,
        "order_number": updated.order_number, "action": action,
        "status": updated.status.value, "payment_status": updated.payment_status.value,
    })
    return WebhookOutcome(action=action, order_number=updated.order_number,
                          payment_status=updated.payment_status.value, status=updated.status.value)


async def handle_payment_webhook(session: AsyncSession, data: PaymentWebhookData) -> WebhookOutcome:
    try:
        outcome = await _process(session, data)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    WEBHOOK_EVENTS.labels(data.provider.value, outcome.action).inc()
    return outcome
