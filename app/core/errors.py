"""Exception handlers producing the ``{code, message, data, details}`` error body."""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.services.payment_gateway import PaymentGatewayError
from app.services.storage.adapter import StorageError

logger = logging.getLogger(__name__)

STATUS_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    413: "payload_too_large",
    422: "validation_error",
    429: "rate_limited",
    500: "internal_server_error",
    502: "bad_gateway",
    503: "service_unavailable",
}

# Location prefixes FastAPI adds to validation errors
_REQUEST_SECTIONS = {"body", "query", "path", "header", "cookie"}


def _phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def error_body(code: str, message: str, details: Any = None) -> dict[str, Any]:
    if details is None:
        details = {}
    elif isinstance(details, list):
        details = {"errors": details}
    elif not isinstance(details, dict):
        details = {"detail": str(details)}
    return {"code": code, "message": message, "data": None, "details": details}


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(error_body(code, message, details), custom_encoder={bytes: lambda _: None}),
        headers=headers,
    )


def parse_detail(detail: Any, status_code: int) -> tuple[str, str, Any]:
    """Split an ``HTTPException.detail`` into (code, message, details).

    Services raise either a plain message or a dict carrying ``code``,
    ``message`` and optionally ``details``; any other dict keys become details.
    """
    code = STATUS_CODES.get(status_code, "http_error")
    if isinstance(detail, str):
        return code, detail, None
    if isinstance(detail, dict):
        message = detail.get("message") or _phrase(status_code)
        if "details" in detail:
            details = detail["details"]
        else:
            details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return detail.get("code") or code, message, details
    return code, _phrase(status_code), detail


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message, details = parse_detail(exc.detail, exc.status_code)
    return error_response(exc.status_code, code, message, details, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Validation failed"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in _REQUEST_SECTIONS)
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg") or message)
    # Multipart bodies carry UploadFile objects, so only plain JSON bodies are echoed back
    body = exc.body if isinstance(exc.body, (dict, list, str)) else None
    return error_response(422, "validation_error", message, {"errors": errors, "body": body})


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    headers = getattr(exc, "headers", None)
    return error_response(
        429,
        "rate_limited",
        "Too many requests, please try again later",
        {"limit": str(getattr(exc, "detail", "") or "")},
        headers=headers if isinstance(headers, dict) else None,
    )


async def upstream_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, PaymentGatewayError):
        code, fallback = "payment_gateway_error", "Payment gateway error"
    else:
        code, fallback = "storage_error", "Object storage unavailable"
    logger.error("%s on %s %s: %s", code, request.method, request.url.path, exc)
    return error_response(502, code, str(exc) or fallback)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "internal_server_error", "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)
    app.add_exception_handler(StorageError, upstream_exception_handler)
    app.add_exception_handler(PaymentGatewayError, upstream_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
