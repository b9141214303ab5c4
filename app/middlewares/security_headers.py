from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core.settings import settings

# Responses under these prefixes may carry KYC identifiers, tokens or payment data.
NO_STORE_PREFIXES = (
    "/api/v1/auth",
    "/api/v1/applications",
    "/api/v1/dsa",
    "/api/v1/files",
    "/api/v1/payment",
    "/api/v1/users",
    "/api/v1/admin",
)


def _default_headers(enable_hsts: bool) -> list[tuple[bytes, bytes]]:
    headers = [
        (b"x-content-type-options", b"nosniff"),
        (b"x-frame-options", b"DENY"),
        (b"referrer-policy", b"origin-when-cross-origin"),
        (b"x-xss-protection", b"0"),
        (b"permissions-policy", b"camera=(), microphone=(), geolocation=()"),
    ]
    if enable_hsts:
        headers.append((b"strict-transport-security", b"max-age=63072000; includeSubDomains"))
    if settings.content_security_policy:
        name = (
            b"content-security-policy-report-only"
            if settings.content_security_policy_report_only
            else b"content-security-policy"
        )
        headers.append((name, settings.content_security_policy.encode()))
    return headers


class SecurityHeadersMiddleware:
    """Add security headers the route did not set itself; sensitive routes are never cached."""

    def __init__(self, app: ASGIApp, enable_hsts: bool = True) -> None:
        self.app = app
        self.defaults = _default_headers(enable_hsts)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        extra = list(self.defaults)
        if scope.get("path", "").startswith(NO_STORE_PREFIXES):
            extra.append((b"cache-control", b"no-store"))

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers", []))
                present = {key.lower() for key, _ in headers}
                headers.extend((key, value) for key, value in extra if key not in present)
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_headers)
