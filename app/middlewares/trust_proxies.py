from starlette.types import ASGIApp, Receive, Scope, Send


class TrustedProxiesMiddleware:
    """Rewrite ``scope["client"]`` from X-Forwarded-For, trusting the last N hops.

    Login throttling and slowapi both key on ``request.client.host``, so the
    address has to be the caller's and not the load balancer's.
    """

    def __init__(self, app: ASGIApp, proxies_count: int = 1) -> None:
        self.app = app
        self.proxies_count = proxies_count

    def client_ip(self, forwarded_for: str) -> str | None:
        hops = [ip.strip() for ip in forwarded_for.split(",") if ip.strip()]
        if len(hops) <= self.proxies_count:
            return None
        return hops[-(self.proxies_count + 1)]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and self.proxies_count > 0:
            headers = dict(scope.get("headers", []))
            forwarded_for = headers.get(b"x-forwarded-for", b"").decode()
            real_ip = self.client_ip(forwarded_for) if forwarded_for else None
            if real_ip:
                port = scope["client"][1] if scope.get("client") else 0
                scope["client"] = (real_ip, port)

        await self.app(scope, receive, send)
