"""
Rate limiting middleware for adding rate limit headers to responses.
"""
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send


class RateLimitHeaderMiddleware:
    """
    Adds X-RateLimit-* headers to HTTP responses of rate limited endpoints.
    The values are left in request.state.rate_limit_info by the rate_limit
    decorator; WebSocket traffic passes through untouched.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                info = scope.get("state", {}).get("rate_limit_info")
                if info:
                    headers = MutableHeaders(scope=message)
                    headers.setdefault("X-RateLimit-Limit", str(info.get("limit", 0)))
                    headers.setdefault("X-RateLimit-Remaining", str(info.get("remaining", 0)))
                    headers.setdefault("X-RateLimit-Reset", str(info.get("reset", 0)))
            await send(message)

        await self.app(scope, receive, send_with_headers)
