from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from watchparty.config import Settings, get_settings
from watchparty.error_handlers import register_exception_handlers
from watchparty.middleware import RateLimitHeaderMiddleware
from watchparty.routers import rooms_router, websocket_router
from watchparty.services.connection_manager import ConnectionManager
from watchparty.services.event_router import EventRouter
from watchparty.services.registry import RoomRegistry
from watchparty.utils.logging_config import fastapi_logger, setup_logging
from watchparty.utils.rate_limit import RateLimiter, WebSocketRateLimits


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    # Setup logging first
    settings: Settings = app.state.settings
    setup_logging(settings)
    fastapi_logger.info(
        "Starting application",
        extra={"app_name": settings.APP_NAME, "max_users_per_room": settings.MAX_USERS_PER_ROOM}
    )
    yield
    # Shutdown
    fastapi_logger.info("Shutting down application", extra=app.state.registry.stats())
    await app.state.event_router.shutdown()
    app.state.registry.shutdown()
    fastapi_logger.info("Pending room timers cancelled")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory.

    Every app owns its registry, connections and limiters, so tests can
    build isolated instances with their own settings.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Watch party room server: synchronized playback, chat and voice signaling",
        version="1.0.0",
        debug=settings.DEBUG,
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.registry = RoomRegistry(settings)
    app.state.connections = ConnectionManager()
    app.state.event_router = EventRouter(settings, app.state.registry, app.state.connections)
    app.state.rate_limiter = RateLimiter()
    app.state.ws_rate_limits = WebSocketRateLimits()

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate Limit Headers Middleware (must be added after CORS)
    if settings.RATE_LIMIT_ENABLED:
        app.add_middleware(RateLimitHeaderMiddleware)

    # Global Exception Handlers
    register_exception_handlers(app)

    # API Routers
    app.include_router(rooms_router)
    app.include_router(websocket_router)

    # Health Check
    @app.get("/health")
    async def health_check(request: Request):
        state = request.app.state
        return {
            "status": "healthy",
            "service": settings.APP_NAME,
            **state.registry.stats(),
            "connections": state.connections.connection_count,
        }

    return app


app = create_app()

