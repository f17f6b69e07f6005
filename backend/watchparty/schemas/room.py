from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RoomCreateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_code: str = Field(..., alias="roomCode")


class RoomInfoResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_code: str = Field(..., alias="roomCode")
    user_count: int = Field(..., alias="userCount")
    has_video: bool = Field(..., alias="hasVideo")


class IceServersResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ice_servers: list[dict[str, Any]] = Field(..., alias="iceServers")
