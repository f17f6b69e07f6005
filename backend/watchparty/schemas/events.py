"""
Inbound WebSocket events

Every client frame is a JSON object `{"type": "<event>", ...}` validated
against this closed set of models. Field names follow the client's
camelCase wire format through aliases.
"""

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from watchparty.exceptions import InvalidPayloadException


class InboundEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RelayEvent(InboundEvent):
    """Signaling relayed to one connection; extra fields pass through untouched."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    to: str = Field(..., min_length=1)

    def relay_fields(self) -> dict[str, Any]:
        extra = dict(self.model_extra or {})
        extra.pop("from", None)
        return extra


# ==================== Membership ====================

class JoinRoomEvent(InboundEvent):
    type: Literal["join-room"]
    room_code: str = Field(..., alias="roomCode", min_length=1, max_length=32)
    username: str = Field(..., max_length=100)

    @field_validator("room_code")
    @classmethod
    def normalize_room_code(cls, v: str) -> str:
        return v.strip().upper()


class LeaveRoomEvent(InboundEvent):
    type: Literal["leave-room"]


class TransferHostEvent(InboundEvent):
    type: Literal["transfer-host"]
    new_host_username: str = Field(..., alias="newHostUsername")


# ==================== Playback ====================

class SetVideoEvent(InboundEvent):
    type: Literal["set-video"]
    video: Any = None
    video_url: Optional[str] = Field(default=None, alias="videoUrl")

    @property
    def descriptor(self) -> Any:
        return self.video if self.video is not None else self.video_url


class VideoActionEvent(InboundEvent):
    type: Literal["video-action"]
    action: Literal["play", "pause", "seek"]
    current_time: Optional[float] = Field(default=None, alias="currentTime", ge=0, allow_inf_nan=False)


class VideoSyncRequestEvent(InboundEvent):
    type: Literal["video-sync-request"]
    action: Literal["play", "pause", "seek"]
    current_time: Optional[float] = Field(default=None, alias="currentTime", ge=0, allow_inf_nan=False)


# ==================== Chat ====================

class SendMessageEvent(InboundEvent):
    type: Literal["send-message"]
    message: str


class SendReactionEvent(InboundEvent):
    type: Literal["send-reaction"]
    emoji: str = Field(..., min_length=1, max_length=32)


class TypingStartEvent(InboundEvent):
    type: Literal["typing-start"]


class TypingStopEvent(InboundEvent):
    type: Literal["typing-stop"]


# ==================== Voice chat ====================

class StartVoiceChatEvent(InboundEvent):
    type: Literal["start-voice-chat"]


class JoinVoiceChatEvent(InboundEvent):
    type: Literal["join-voice-chat"]


class LeaveVoiceChatEvent(InboundEvent):
    type: Literal["leave-voice-chat"]


class VoiceOfferEvent(InboundEvent):
    type: Literal["voice-offer"]
    offer: Any = None
    target_socket_id: str = Field(..., alias="targetSocketId")


class VoiceAnswerEvent(InboundEvent):
    type: Literal["voice-answer"]
    answer: Any = None
    target_socket_id: str = Field(..., alias="targetSocketId")


class VoiceIceCandidateEvent(InboundEvent):
    type: Literal["voice-ice-candidate"]
    candidate: Any = None
    target_socket_id: str = Field(..., alias="targetSocketId")


class VoiceMuteStatusEvent(InboundEvent):
    type: Literal["voice-chat-mute-status"]
    is_muted: bool = Field(..., alias="isMuted")


# ==================== Screen share ====================

class ScreenShareStartedEvent(InboundEvent):
    type: Literal["screen-share-started"]


class ScreenShareStoppedEvent(InboundEvent):
    type: Literal["screen-share-stopped"]


class RequestScreenShareEvent(RelayEvent):
    type: Literal["request-screen-share-webrtc"]


class WebRTCOfferEvent(RelayEvent):
    type: Literal["webrtc-offer"]


class WebRTCAnswerEvent(RelayEvent):
    type: Literal["webrtc-answer"]


class WebRTCIceCandidateEvent(RelayEvent):
    type: Literal["webrtc-ice-candidate"]


class ScreenShareFrameEvent(InboundEvent):
    type: Literal["screen-share-frame"]
    frame: Any = None


# ==================== Misc ====================

class PingEvent(InboundEvent):
    type: Literal["ping"]


ClientEvent = Annotated[
    Union[
        JoinRoomEvent,
        LeaveRoomEvent,
        TransferHostEvent,
        SetVideoEvent,
        VideoActionEvent,
        VideoSyncRequestEvent,
        SendMessageEvent,
        SendReactionEvent,
        TypingStartEvent,
        TypingStopEvent,
        StartVoiceChatEvent,
        JoinVoiceChatEvent,
        LeaveVoiceChatEvent,
        VoiceOfferEvent,
        VoiceAnswerEvent,
        VoiceIceCandidateEvent,
        VoiceMuteStatusEvent,
        ScreenShareStartedEvent,
        ScreenShareStoppedEvent,
        RequestScreenShareEvent,
        WebRTCOfferEvent,
        WebRTCAnswerEvent,
        WebRTCIceCandidateEvent,
        ScreenShareFrameEvent,
        PingEvent,
    ],
    Field(discriminator="type"),
]

client_event_adapter: TypeAdapter[ClientEvent] = TypeAdapter(ClientEvent)


def parse_inbound_event(data: Any) -> InboundEvent:
    """
    Validate a decoded frame.

    Raises:
        InvalidPayloadException: not an object, unknown type or bad fields
    """
    if not isinstance(data, dict):
        raise InvalidPayloadException("expected a JSON object")

    try:
        return client_event_adapter.validate_python(data)
    except ValidationError as e:
        first = e.errors()[0]
        if first["type"] == "union_tag_not_found":
            raise InvalidPayloadException("missing event type")
        if first["type"] == "union_tag_invalid":
            raise InvalidPayloadException(
                f"unknown event type '{data.get('type')}'",
                {"eventType": str(data.get("type"))},
            )

        errors = [
            {
                "field": ".".join(str(loc) for loc in err["loc"][1:]),
                "message": err["msg"],
            }
            for err in e.errors()
        ]
        raise InvalidPayloadException(
            f"invalid fields for '{data.get('type')}'",
            {"eventType": str(data.get("type")), "validation_errors": errors},
        )
