"""
Rooms Router

HTTP side channel of the watch party: room creation, room lookup before
joining, ICE server configuration and the debug snapshot.
"""
from typing import Annotated, Any

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, status

from watchparty.config import Settings
from watchparty.schemas.room import IceServersResponse, RoomCreateResponse, RoomInfoResponse
from watchparty.services.registry import RoomRegistry
from watchparty.utils.logging_config import room_logger
from watchparty.utils.rate_limit import rate_limit

router = APIRouter(prefix="/api", tags=["Rooms"])

ICE_REQUEST_TIMEOUT_SECONDS = 5.0


def get_registry(request: Request) -> RoomRegistry:
    return request.app.state.registry


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


@router.post("/create-room", response_model=RoomCreateResponse)
@rate_limit(limit=10, window=60, identifier="create_room")
async def create_room(
    request: Request,
    registry: Annotated[RoomRegistry, Depends(get_registry)]
):
    """Create an empty room - 10 requests / minute"""
    room = registry.create_room()
    return RoomCreateResponse(room_code=room.code)


@router.get("/room/{room_code}", response_model=RoomInfoResponse)
async def get_room(
    room_code: str,
    registry: Annotated[RoomRegistry, Depends(get_registry)]
):
    """Check that a room exists before joining it"""
    room = registry.require_room(room_code.strip().upper())
    return RoomInfoResponse(
        room_code=room.code,
        user_count=len(room.members),
        has_video=room.video is not None,
    )


def static_ice_servers(settings: Settings) -> list[dict[str, Any]]:
    servers: list[dict[str, Any]] = [{"urls": url} for url in settings.STUN_SERVERS]
    if settings.TURN_SERVER:
        servers.append({
            "urls": settings.TURN_SERVER,
            "username": settings.TURN_USERNAME,
            "credential": settings.TURN_CREDENTIAL,
        })
    return servers


@router.get("/ice-servers", response_model=IceServersResponse)
async def get_ice_servers(settings: Annotated[Settings, Depends(get_app_settings)]):
    """
    WebRTC ICE server configuration for voice chat and screen share.
    Uses Metered TURN credentials when an API key is configured.
    """
    if settings.METERED_API_KEY:
        try:
            async with httpx.AsyncClient(timeout=ICE_REQUEST_TIMEOUT_SECONDS) as client:
                response = await client.get(
                    settings.METERED_API_URL,
                    params={"apiKey": settings.METERED_API_KEY},
                )
                if response.status_code == 200:
                    return IceServersResponse(ice_servers=response.json())
                room_logger.warning(
                    "Metered API returned an error, using static fallback",
                    extra={"status_code": response.status_code}
                )
        except (httpx.HTTPError, ValueError) as e:
            room_logger.warning(
                "Failed to get dynamic ICE config, using static fallback",
                extra={"error": str(e)}
            )

    # Static config (fallback)
    return IceServersResponse(ice_servers=static_ice_servers(settings))


@router.get("/debug/rooms")
async def debug_rooms(
    registry: Annotated[RoomRegistry, Depends(get_registry)],
    settings: Annotated[Settings, Depends(get_app_settings)]
):
    """Registry snapshot, only in DEBUG mode"""
    if not settings.DEBUG:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")
    return registry.snapshot()
