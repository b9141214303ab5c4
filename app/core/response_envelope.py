from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any

from starlette.types import ASGIApp, Message, Receive, Scope, Send


def _success_code(status_code: int) -> str:
    mapping = {
        200: "ok",
        201: "created",
        202: "accepted",
    }
    return mapping.get(status_code, "ok")


def _success_message(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Success"


def _build_success_envelope(data: Any, status_code: int) -> dict[str, Any]:
    return {
        "code": _success_code(status_code),
        "message": _success_message(status_code),
        "data": data,
        "details": {},
    }


def _is_enveloped(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    if "code" in payload and "message" in payload:
        return "data" in payload or "details" in payload
    return False


def _normalize_envelope(payload: dict[str, Any], status_code: int) -> dict[str, Any]:
    normalized = dict(payload)
    normalized.setdefault("code", _success_code(status_code))
    normalized.setdefault("message", _success_message(status_code))
    normalized.setdefault("data", None)
    normalized.setdefault("details", {})
    return normalized


def wrap_payload(raw_body: bytes, status_code: int) -> bytes | None:
    """Return the enveloped body, or None when the body should pass through untouched."""
    try:
        text = raw_body.decode("utf-8")
        payload = json.loads(text) if text else None
    except (UnicodeDecodeError, ValueError):
        return None
    if _is_enveloped(payload):
        wrapped = _normalize_envelope(payload, status_code)
    else:
        wrapped = _build_success_envelope(payload, status_code)
    return json.dumps(wrapped, separators=(",", ":")).encode("utf-8")


def _replace_header(headers: list[tuple[bytes, bytes]], name: bytes, value: bytes) -> list[tuple[bytes, bytes]]:
    updated = [(k, v) for k, v in headers if k.lower() != name]
    updated.append((name, value))
    return updated


class ResponseEnvelopeMiddleware:
    """Wrap successful JSON responses in the ``{code, message, data, details}`` envelope.

    Non-JSON responses (file downloads, CSV exports, server-sent events) and error
    responses pass through untouched; errors are already enveloped by the exception
    handlers. A 204 becomes a 200 envelope with ``data: null``.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_message: Message | None = None
        buffering = False
        chunks: list[bytes] = []

        async def send_wrapped(message: Message) -> None:
            nonlocal start_message, buffering

            if message["type"] == "http.response.start":
                status_code = message["status"]
                headers = dict(message.get("headers", []))
                content_type = headers.get(b"content-type", b"").decode("latin-1")
                if status_code == 204:
                    body = json.dumps(_build_success_envelope(None, 200)).encode("utf-8")
                    new_headers = [
                        (k, v)
                        for k, v in message.get("headers", [])
                        if k.lower() not in {b"content-length", b"content-type"}
                    ]
                    new_headers.append((b"content-type", b"application/json"))
                    new_headers.append((b"content-length", str(len(body)).encode()))
                    await send({"type": "http.response.start", "status": 200, "headers": new_headers})
                    await send({"type": "http.response.body", "body": body})
                    start_message = {"skip_body": True}
                    return
                if 200 <= status_code < 300 and content_type.startswith("application/json"):
                    start_message = message
                    buffering = True
                    return
                await send(message)
                return

            if message["type"] == "http.response.body":
                if start_message is not None and start_message.get("skip_body"):
                    return
                if not buffering:
                    await send(message)
                    return
                chunks.append(message.get("body", b""))
                if message.get("more_body", False):
                    return
                raw_body = b"".join(chunks)
                status_code = start_message["status"]
                wrapped = wrap_payload(raw_body, status_code)
                body = wrapped if wrapped is not None else raw_body
                headers = _replace_header(
                    list(start_message.get("headers", [])),
                    b"content-length",
                    str(len(body)).encode(),
                )
                await send({"type": "http.response.start", "status": status_code, "headers": headers})
                await send({"type": "http.response.body", "body": body})
                return

            await send(message)

        await self.app(scope, receive, send_wrapped)


def register_response_envelope(app) -> None:
    app.add_middleware(ResponseEnvelopeMiddleware)
