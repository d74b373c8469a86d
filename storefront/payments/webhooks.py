from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from storefront.common.constants import request_id_ctx
from storefront.common.custom_exceptions import StorefrontError
from storefront.common.utils import success_response
from storefront.db.dependencies import get_session
from storefront.payments.constants import WEBHOOK_EVENTS, logger
from storefront.payments.orchestrator import handle_payment_webhook
from storefront.payments.providers import get_provider

webhooks_router = APIRouter()


@webhooks_router.post("/{provider}")
async def payment_webhook(provider: str, request: Request, session: AsyncSession = Depends(get_session)):
    """Provider callbacks. ``/webhooks/payment`` takes events that are already normalized.

    200 for applied or replayed events, non 2xx only when a provider retry could help
    (or the integration is broken and should keep alerting).
    """
    body = await request.body()
    rid = request_id_ctx.get(None)
    adapter = get_provider(provider)

    try:
        data = adapter.normalize(request.headers, body)
        if data is None:
            WEBHOOK_EVENTS.labels(adapter.name, "ignored").inc()
            return success_response({"action": "ignored"}, request_id=rid)

        outcome = await handle_payment_webhook(session, data)

    except StorefrontError as exc:
        WEBHOOK_EVENTS.labels(adapter.name, exc.code.lower()).inc()
        raise
    except SQLAlchemyError:
        WEBHOOK_EVENTS.labels(adapter.name, "db_error").inc()
        logger.error("payment.webhook.transaction_failed", exc_info=True, extra={"provider": adapter.name, "request_id": rid})
        raise

    return success_response(outcome.model_dump(), request_id=rid)
