from watchparty.utils.rate_limit import (
    rate_limit,
    RateLimiter,
    WebSocketRateLimiter,
    WebSocketRateLimits,
    get_client_identifier,
)

__all__ = [
    "rate_limit", "RateLimiter", "WebSocketRateLimiter", "WebSocketRateLimits",
    "get_client_identifier"
]
