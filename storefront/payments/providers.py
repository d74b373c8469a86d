"""Provider adapters: verify a callback against its raw body and normalize it to PaymentWebhookData.

Adding a provider means writing one adapter class and registering it; the orchestrator
never looks at provider specific payloads.
"""
import base64
import hashlib
import hmac
import json
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional, Type
from urllib.parse import parse_qs
from pydantic import ValidationError
from storefront.common.custom_exceptions import (
    ProviderNotConfiguredError, UnknownProviderError, WebhookPayloadError, WebhookSignatureError,
)
from storefront.common.utils import secrets_match
from storefront.config.settings import config_settings
from storefront.payments.constants import (
    MONTONIO_SIGNATURE_HEADER, PAYMENT_SIGNATURE_HEADER, STRIPE_SIGNATURE_HEADER, logger,
)
from storefront.payments.models import PaymentProvider, PaymentWebhookData, WebhookPaymentStatus


def hmac_sha256_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def _load_json(body: bytes) -> Dict[str, Any]:
    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise WebhookPayloadError("webhook body is not valid json")
    if not isinstance(payload, dict):
        raise WebhookPayloadError("webhook body must be a json object")
    return payload


def _minor_units(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return (Decimal(str(value)) / 100).quantize(Decimal("0.01"))
    except InvalidOperation:
        raise WebhookPayloadError("invalid amount in webhook", details={"amount": value})


def _major_units(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except InvalidOperation:
        raise WebhookPayloadError("invalid amount in webhook", details={"amount": value})


def _build(**fields) -> PaymentWebhookData:
    try:
        return PaymentWebhookData(**fields)
    except ValidationError as exc:
        raise WebhookPayloadError("webhook payload could not be normalized", details=exc.errors(include_url=False, include_context=False))


class ProviderAdapter:
    name: str = ""
    signature_header: Optional[str] = None

    def secret(self) -> Optional[str]:
        raise NotImplementedError

    def _require_secret(self) -> str:
        secret = self.secret()
        if not secret:
            raise ProviderNotConfiguredError(f"{self.name} webhooks are not configured")
        return secret

    def verify(self, headers: Mapping[str, str], body: bytes) -> None:
        secret = self._require_secret()
        sig = headers.get(self.signature_header)
        if not sig:
            logger.error("payment.webhook.missing_signature", extra={"provider": self.name})
            raise WebhookSignatureError("missing webhook signature")
        expected = hmac_sha256_hex(secret, body)
        if not secrets_match(expected, sig.strip().lower()):
            logger.error("payment.webhook.invalid_signature", extra={"provider": self.name})
            raise WebhookSignatureError("invalid webhook signature")

    def parse(self, body: bytes) -> Optional[PaymentWebhookData]:
        """Normalized event, or None for event types this provider sends that we do not act on."""
        raise NotImplementedError

    def normalize(self, headers: Mapping[str, str], body: bytes) -> Optional[PaymentWebhookData]:
        self.verify(headers, body)
        return self.parse(body)


_REGISTRY: Dict[str, ProviderAdapter] = {}


def register_provider(cls: Type[ProviderAdapter]) -> Type[ProviderAdapter]:
    _REGISTRY[cls.name] = cls()
    return cls


def get_provider(name: str) -> ProviderAdapter:
    try:
        return _REGISTRY[name.lower()]
    except KeyError:
        raise UnknownProviderError("unknown payment provider", details={"provider": name})


def registered_providers():
    return sorted(_REGISTRY)


@register_provider
class UnifiedPaymentAdapter(ProviderAdapter):
    """Already normalized events (internal tools, paypal relay, manual confirmations)."""
    name = "payment"
    signature_header = PAYMENT_SIGNATURE_HEADER

    def secret(self) -> Optional[str]:
        return config_settings.PAYMENT_WEBHOOK_SECRET

    def parse(self, body: bytes) -> PaymentWebhookData:
        payload = _load_json(body)
        data = _build(**payload)
        if data.raw_payload is None:
            data.raw_payload = payload
        return data


_MONTONIO_STATUS = {
    "PAID": WebhookPaymentStatus.SUCCESS,
    "ABANDONED": WebhookPaymentStatus.FAILED,
    "VOIDED": WebhookPaymentStatus.FAILED,
    "FAILED": WebhookPaymentStatus.FAILED,
    "PENDING": WebhookPaymentStatus.PENDING,
    "AUTHORIZED": WebhookPaymentStatus.PENDING,
}


@register_provider
class MontonioAdapter(ProviderAdapter):
    name = "montonio"
    signature_header = MONTONIO_SIGNATURE_HEADER

    def secret(self) -> Optional[str]:
        return config_settings.MONTONIO_SECRET_KEY

    def parse(self, body: bytes) -> Optional[PaymentWebhookData]:
        payload = _load_json(body)
        reference = payload.get("merchant_reference") or payload.get("merchantReference")
        raw_status = str(payload.get("status") or payload.get("paymentStatus") or "").upper()
        if not reference or not raw_status:
            raise WebhookPayloadError("montonio webhook missing merchant_reference or status")

        status = _MONTONIO_STATUS.get(raw_status)
        if status is None:
            logger.info("payment.webhook.montonio.ignored_status", extra={"provider": self.name, "status": raw_status})
            return None

        # a retried notification carries the same uuid; fall back to reference+status
        event_ref = payload.get("uuid") or payload.get("id") or f"{reference}:{raw_status.lower()}"
        amount = payload.get("grand_total", payload.get("grandTotal"))
        return _build(
            provider=PaymentProvider.MONTONIO,
            event_id=f"montonio:{event_ref}",
            event_type=f"payment.{raw_status.lower()}",
            order_id=str(reference),
            payment_id=payload.get("payment_uuid") or payload.get("paymentUuid"),
            status=status,
            amount=_major_units(amount),
            currency=payload.get("currency"),
            raw_payload=payload,
        )


_STRIPE_EVENTS = {
    "checkout.session.async_payment_succeeded": WebhookPaymentStatus.SUCCESS,
    "checkout.session.async_payment_failed": WebhookPaymentStatus.FAILED,
    "checkout.session.expired": WebhookPaymentStatus.FAILED,
    "payment_intent.succeeded": WebhookPaymentStatus.SUCCESS,
    "payment_intent.payment_failed": WebhookPaymentStatus.FAILED,
    "payment_intent.canceled": WebhookPaymentStatus.FAILED,
    "payment_intent.processing": WebhookPaymentStatus.PENDING,
}


@register_provider
class StripeAdapter(ProviderAdapter):
    name = "stripe"
    signature_header = STRIPE_SIGNATURE_HEADER

    def secret(self) -> Optional[str]:
        return config_settings.STRIPE_WEBHOOK_SECRET

    def verify(self, headers: Mapping[str, str], body: bytes) -> None:
        # Stripe-Signature: t=<unix ts>,v1=<hex hmac of "t.body">[,v1=...]
        secret = self._require_secret()
        header = headers.get(self.signature_header)
        if not header:
            logger.error("payment.webhook.missing_signature", extra={"provider": self.name})
            raise WebhookSignatureError("missing webhook signature")

        timestamp = None
        candidates = []
        for part in header.split(","):
            key, _, value = part.strip().partition("=")
            if key == "t":
                timestamp = value
            elif key == "v1":
                candidates.append(value)
        if not timestamp or not (timestamp.isascii() and timestamp.isdigit()) or not candidates:
            raise WebhookSignatureError("malformed stripe signature header")

        tolerance = int(config_settings.STRIPE_SIGNATURE_TOLERANCE_SECONDS)
        if tolerance and abs(time.time() - int(timestamp)) > tolerance:
            logger.error("payment.webhook.stale_signature", extra={"provider": self.name, "timestamp": timestamp})
            raise WebhookSignatureError("stripe signature timestamp outside tolerance")

        expected = hmac_sha256_hex(secret, timestamp.encode() + b"." + body)
        if not any(secrets_match(expected, c) for c in candidates):
            logger.error("payment.webhook.invalid_signature", extra={"provider": self.name})
            raise WebhookSignatureError("invalid webhook signature")

    def parse(self, body: bytes) -> Optional[PaymentWebhookData]:
        event = _load_json(body)
        event_id = event.get("id")
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}
        if not event_id or not event_type:
            raise WebhookPayloadError("stripe event missing id or type")

        if event_type == "checkout.session.completed":
            # card payments are paid here; async methods settle later
            status = WebhookPaymentStatus.SUCCESS if obj.get("payment_status") == "paid" else WebhookPaymentStatus.PENDING
        else:
            status = _STRIPE_EVENTS.get(event_type)
        if status is None:
            logger.info("payment.webhook.stripe.ignored_type", extra={"provider": self.name, "event_type": event_type})
            return None

        metadata = obj.get("metadata") or {}
        order_ref = metadata.get("order_id") or metadata.get("order_number") or obj.get("client_reference_id")
        if not order_ref:
            raise WebhookPayloadError("stripe event has no order reference", details={"event_id": event_id})

        payment_id = obj.get("payment_intent") if event_type.startswith("checkout.session") else obj.get("id")
        amount = obj.get("amount_total", obj.get("amount_received", obj.get("amount")))
        currency = obj.get("currency")
        return _build(
            provider=PaymentProvider.STRIPE,
            event_id=str(event_id),
            event_type=event_type,
            order_id=str(order_ref),
            payment_id=payment_id,
            status=status,
            amount=_minor_units(amount),
            currency=currency.upper() if currency else None,
            raw_payload=event,
        )


_PAYSERA_STATUS = {
    "1": WebhookPaymentStatus.SUCCESS,
    "0": WebhookPaymentStatus.FAILED,
    "2": WebhookPaymentStatus.PENDING,
}


@register_provider
class PayseraAdapter(ProviderAdapter):
    """Paysera callback: form fields ``data`` (base64url query string) and ``ss1`` = md5(data + password)."""
    name = "paysera"

    def secret(self) -> Optional[str]:
        return config_settings.PAYSERA_SIGN_PASSWORD

    @staticmethod
    def _fields(body: bytes) -> Dict[str, str]:
        try:
            form = parse_qs(body.decode(), keep_blank_values=True)
        except UnicodeDecodeError:
            raise WebhookPayloadError("paysera callback is not form encoded")
        return {k: v[0] for k, v in form.items() if v}

    def verify(self, headers: Mapping[str, str], body: bytes) -> None:
        password = self._require_secret()
        fields = self._fields(body)
        data, ss1 = fields.get("data"), fields.get("ss1")
        if not data or not ss1:
            logger.error("payment.webhook.missing_signature", extra={"provider": self.name})
            raise WebhookSignatureError("missing paysera data or ss1")
        expected = hashlib.md5((data + password).encode()).hexdigest()
        if not secrets_match(expected, ss1.lower()):
            logger.error("payment.webhook.invalid_signature", extra={"provider": self.name})
            raise WebhookSignatureError("invalid webhook signature")

    def parse(self, body: bytes) -> Optional[PaymentWebhookData]:
        data = self._fields(body).get("data", "")
        try:
            decoded = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4)).decode()
        except (ValueError, UnicodeDecodeError):
            raise WebhookPayloadError("paysera data is not valid base64")
        params = {k: v[0] for k, v in parse_qs(decoded, keep_blank_values=True).items() if v}

        order_ref = params.get("orderid")
        raw_status = params.get("status")
        if not order_ref or raw_status is None:
            raise WebhookPayloadError("paysera callback missing orderid or status")
        status = _PAYSERA_STATUS.get(raw_status)
        if status is None:
            logger.info("payment.webhook.paysera.ignored_status", extra={"provider": self.name, "status": raw_status})
            return None

        request_ref = params.get("requestid") or order_ref
        return _build(
            provider=PaymentProvider.PAYSERA,
            event_id=f"paysera:{request_ref}:{raw_status}",
            event_type=f"callback.status_{raw_status}",
            order_id=order_ref,
            payment_id=params.get("requestid"),
            status=status,
            amount=_minor_units(params.get("payamount") or params.get("amount")),
            currency=params.get("paycurrency") or params.get("currency"),
            raw_payload=params,
        )
