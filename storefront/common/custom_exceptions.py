from typing import Any, Optional
from fastapi import FastAPI, HTTPException, Request,status
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from storefront.common.logging_setup import get_logger
from storefront.common.utils import build_error, json_error
from storefront.common.constants import request_id_ctx

logger = get_logger("storefront.errors")


class StorefrontError(Exception):
    """Base for domain errors that map onto an http error envelope."""
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "STOREFRONT_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class OrderNotFoundError(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "ORDER_NOT_FOUND"


class ProductNotFoundError(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "PRODUCT_NOT_FOUND"


class InvalidTransitionError(StorefrontError):
    status_code = status.HTTP_409_CONFLICT
    code = "INVALID_TRANSITION"


class UnknownProviderError(StorefrontError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "UNKNOWN_PROVIDER"


class ProviderNotConfiguredError(StorefrontError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "PROVIDER_NOT_CONFIGURED"


class WebhookSignatureError(StorefrontError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "INVALID_SIGNATURE"


class WebhookPayloadError(StorefrontError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "INVALID_WEBHOOK_PAYLOAD"


async def storefront_exception_handler(request: Request, exc: StorefrontError):
    rid = request_id_ctx.get(None)
    details = {"message": exc.message}
    if exc.details is not None:
        details["info"] = exc.details

    payload = build_error(code=exc.code, details=details, request_id=rid)
    return json_error(payload, status_code=exc.status_code)


async def database_exception_handler(request: Request, exc: SQLAlchemyError):
    # transaction already rolled back by the session context; 503 lets providers retry
    rid = request_id_ctx.get(None)
    logger.error(
        "database.error",
        extra={"path": request.url.path, "method": request.method, "request_id": rid},
        exc_info=exc,
    )
    payload = build_error(code="DATABASE_UNAVAILABLE", details={"message": "temporary storage failure, retry later"}, request_id=rid)
    return json_error(payload, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


async def fallback_handler(request: Request, exc: Exception):

    rid = request_id_ctx.get(None)
    body = {"message": "Internal Server Error "}

    logger.error(
        "unexpected.exception",
        extra={
            "path": request.url.path,
            "method": request.method,
            "request_id": rid,
        },
        exc_info=exc,
    )

    status_code = getattr(exc, "status_code", status.HTTP_500_INTERNAL_SERVER_ERROR)
    code = "SERVER_ERROR"

    payload = build_error(code=code, details=body, request_id=rid)
    return json_error(payload, status_code=status_code)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = request_id_ctx.get(None)
    logger.warning(
        "request.validation_failed",
        extra={
            "errors": exc.errors(),
            "path": request.url.path,
            "request_id": rid,
        },
    )

    payload = build_error(code="UNPROCESSABLE_ENTITY", details={"message":"invalid request"}, request_id=rid)
    return json_error(payload, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


async def http_exception_handler(request: Request, exc: HTTPException):

    rid = request_id_ctx.get(None)

    error_code = f"HTTP_{exc.status_code}"
    payload = build_error(code=error_code, details={"message":exc.detail}, request_id=rid)
    return json_error(payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


def register_all_exceptions(app: FastAPI):

    app.add_exception_handler(
        Exception, # catch all unidentified/unhandled exceptions
        fallback_handler
    )

    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler
    )

    app.add_exception_handler(
        HTTPException,
        http_exception_handler
    )

    app.add_exception_handler(
        StorefrontError,
        storefront_exception_handler
    )

    app.add_exception_handler(
        SQLAlchemyError,
        database_exception_handler
    )
