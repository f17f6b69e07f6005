"""
Rate limiting utility.
Supports both HTTP endpoints and WebSocket rate limiting.

State is process-local: one RateLimiter and one WebSocketRateLimits bundle
per application, stored on `app.state`.
"""
import time
from typing import Optional, Callable
from functools import wraps
from fastapi import Request, HTTPException, status


class RateLimiter:
    """
    In-memory sliding-window rate limiter for HTTP endpoints.

    Keeps the timestamps of the accepted requests of each key; a request is
    allowed while fewer than `limit` of them fall inside the last `window`
    seconds.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        # {key: {"window": seconds, "timestamps": [...]}}
        self._store: dict[str, dict] = {}

    def _cleanup(self, now: float):
        """Drop timestamps that left their window, and keys with none left."""
        for key in list(self._store):
            entry = self._store[key]
            entry["timestamps"] = [ts for ts in entry["timestamps"] if now - ts < entry["window"]]
            if not entry["timestamps"]:
                del self._store[key]

    def is_allowed(
        self,
        key: str,
        limit: int,
        window: int
    ) -> tuple[bool, dict]:
        """
        Check if request is allowed under rate limit.

        Args:
            key: Unique identifier (e.g., IP)
            limit: Maximum requests allowed
            window: Time window in seconds

        Returns:
            Tuple of (is_allowed, info_dict)
        """
        now = self.clock()
        self._cleanup(now)

        entry = self._store.setdefault(key, {"window": window, "timestamps": []})
        timestamps = entry["timestamps"]
        is_allowed = len(timestamps) < limit
        if is_allowed:
            timestamps.append(now)

        return is_allowed, {
            "limit": limit,
            "remaining": max(0, limit - len(timestamps)),
            "reset": int(timestamps[0] + window)
        }

    def reset(self):
        self._store.clear()


def get_client_identifier(request: Request) -> str:
    """
    Get a unique identifier for the client (IP address).
    """
    # Use forwarded IP if behind proxy
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        # Safely access client.host - client can be None
        ip: str = "unknown"
        if request.client is not None:
            ip = request.client.host

    return f"ip:{ip}"


def rate_limit(
    limit: int,
    window: int,
    key_func: Optional[Callable] = None,
    identifier: str = "default"
):
    """
    Rate limiting decorator for FastAPI endpoints.

    The endpoint must take a `request: Request` parameter.

    Args:
        limit: Maximum requests allowed
        window: Time window in seconds
        key_func: Optional function to generate custom key
        identifier: Endpoint identifier for the key

    Raises:
        HTTPException: When rate limit is exceeded
    """
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            # Find Request object in args/kwargs
            request = None
            for arg in args:
                if isinstance(arg, Request):
                    request = arg
                    break
            if not request:
                for v in kwargs.values():
                    if isinstance(v, Request):
                        request = v
                        break

            if request and request.app.state.settings.RATE_LIMIT_ENABLED:
                limiter: RateLimiter = request.app.state.rate_limiter

                # Get client identifier
                if key_func:
                    client_key = key_func(request)
                else:
                    client_key = get_client_identifier(request)

                # Full key with endpoint identifier
                full_key = f"rate_limit:{identifier}:{client_key}"

                is_allowed, info = limiter.is_allowed(full_key, limit, window)

                if not is_allowed:
                    raise HTTPException(
                        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                        detail="Rate limit exceeded. Please try again later.",
                        headers={
                            "X-RateLimit-Limit": str(info["limit"]),
                            "X-RateLimit-Remaining": "0",
                            "X-RateLimit-Reset": str(info["reset"]),
                            "Retry-After": str(window)
                        }
                    )

                # Store info for headers
                request.state.rate_limit_info = info

            return await func(*args, **kwargs)

        return wrapper
    return decorator


class WebSocketRateLimiter:
    """
    Rate limiter for WebSocket connections.
    Limits messages per connection within a time window.
    """

    def __init__(
        self,
        message_limit: int = 60,
        window_seconds: int = 60,
        burst_limit: int = 10,
        burst_window: int = 1,
        clock: Callable[[], float] = time.time
    ):
        """
        Args:
            message_limit: Max messages per window
            window_seconds: Time window in seconds
            burst_limit: Max messages in burst window
            burst_window: Burst window in seconds
        """
        self.message_limit = message_limit
        self.window = window_seconds
        self.burst_limit = burst_limit
        self.burst_window = burst_window
        self.clock = clock
        # Track per-connection: {connection_id: {...}}
        self.connections: dict = {}

    def check_rate_limit(self, connection_id: str) -> tuple[bool, Optional[str]]:
        """
        Check if WebSocket message is allowed.

        Returns:
            Tuple of (is_allowed, error_message)
        """
        now = self.clock()

        if connection_id not in self.connections:
            self.connections[connection_id] = {
                "messages": [],  # List of timestamps
                "burst_start": now,
                "burst_count": 0
            }

        conn_data = self.connections[connection_id]

        # Clean old messages outside the main window
        conn_data["messages"] = [
            ts for ts in conn_data["messages"]
            if now - ts < self.window
        ]

        # Check main rate limit
        if len(conn_data["messages"]) >= self.message_limit:
            return False, f"Rate limit exceeded: max {self.message_limit} messages per {self.window} seconds"

        # Check burst limit
        if now - conn_data["burst_start"] > self.burst_window:
            conn_data["burst_start"] = now
            conn_data["burst_count"] = 0

        if conn_data["burst_count"] >= self.burst_limit:
            return False, f"Too many messages: max {self.burst_limit} messages per {self.burst_window} seconds"

        # Add current message
        conn_data["messages"].append(now)
        conn_data["burst_count"] += 1

        return True, None

    def cleanup(self, connection_id: str):
        """Remove connection from tracking."""
        self.connections.pop(connection_id, None)


CHAT_EVENTS = frozenset({"send-message", "send-reaction"})
SIGNALING_EVENTS = frozenset({
    "voice-offer", "voice-answer", "voice-ice-candidate",
    "webrtc-offer", "webrtc-answer", "webrtc-ice-candidate",
    "request-screen-share-webrtc", "screen-share-frame",
})


def rate_limit_category(event_type: Optional[str]) -> str:
    if event_type in CHAT_EVENTS:
        return "chat"
    if event_type in SIGNALING_EVENTS:
        return "signaling"
    return "default"


class WebSocketRateLimits:
    """Per-category WebSocket limiters of one application"""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.limiters = {
            "chat": WebSocketRateLimiter(
                message_limit=60,   # 60 messages per minute
                window_seconds=60,
                burst_limit=10,     # Max 10 messages per second
                burst_window=1,
                clock=clock
            ),
            "signaling": WebSocketRateLimiter(
                message_limit=300,  # 300 messages per minute (for WebRTC signaling)
                window_seconds=60,
                burst_limit=30,     # Max 30 messages per second
                burst_window=1,
                clock=clock
            ),
            "default": WebSocketRateLimiter(
                message_limit=120,
                window_seconds=60,
                burst_limit=20,
                burst_window=1,
                clock=clock
            ),
        }

    def check(self, connection_id: str, event_type: Optional[str]) -> tuple[bool, Optional[str]]:
        """
        Check WebSocket rate limit based on event type.

        Returns:
            Tuple of (is_allowed, error_message)
        """
        return self.limiters[rate_limit_category(event_type)].check_rate_limit(connection_id)

    def cleanup(self, connection_id: str):
        """Clean up rate limit tracking for a connection."""
        for limiter in self.limiters.values():
            limiter.cleanup(connection_id)
