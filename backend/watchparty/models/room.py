import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass
class Member:
    """A connected participant of a room"""
    connection_id: str
    display_name: str
    color: str
    joined_at: float = field(default_factory=time.time)

    def to_dict(self, host_id: Optional[str]) -> dict[str, Any]:
        return {
            "id": self.connection_id,
            "username": self.display_name,
            "color": self.color,
            "isHost": self.connection_id == host_id,
        }


@dataclass
class PlaybackState:
    """
    Logical clock for the room's video.

    `position_seconds` is authoritative only as of `last_update`; readers
    extrapolate while `is_playing` is set.
    """
    is_playing: bool = False
    position_seconds: float = 0.0
    last_update: float = field(default_factory=time.time)

    def position_at(self, now: float) -> float:
        if self.is_playing:
            return self.position_seconds + (now - self.last_update)
        return self.position_seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "isPlaying": self.is_playing,
            "currentTime": self.position_seconds,
            "lastUpdate": int(self.last_update * 1000),
        }


@dataclass(frozen=True)
class ChatMessage:
    """Immutable chat entry, user-authored or synthesized by the server"""
    message: str
    kind: str = "user"  # "user" | "system"
    username: Optional[str] = None
    color: Optional[str] = None
    icon: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "kind": self.kind,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.kind == "user":
            data["username"] = self.username
            data["color"] = self.color
        else:
            data["icon"] = self.icon
            if self.color:
                data["color"] = self.color
        return data


@dataclass
class VoiceSession:
    """Active voice chat; never kept around with an empty member list"""
    initiator_id: str
    initiator_name: str
    member_ids: list[str] = field(default_factory=list)


@dataclass
class Room:
    """Authoritative in-memory state of one watch party"""
    code: str
    members: list[Member] = field(default_factory=list)
    host_id: Optional[str] = None
    video: Optional[dict[str, Any]] = None
    playback: PlaybackState = field(default_factory=PlaybackState)
    chat_history: list[ChatMessage] = field(default_factory=list)
    voice_session: Optional[VoiceSession] = None
    empty_since: Optional[float] = None
    typing: set[str] = field(default_factory=set)
    screen_sharers: dict[str, str] = field(default_factory=dict)  # connection_id -> username
    created_at: float = field(default_factory=time.time)

    @property
    def is_empty(self) -> bool:
        return not self.members

    @property
    def host(self) -> Optional[Member]:
        return self.get_member(self.host_id) if self.host_id else None

    def get_member(self, connection_id: str) -> Optional[Member]:
        for member in self.members:
            if member.connection_id == connection_id:
                return member
        return None

    def find_member_by_name(self, display_name: str) -> Optional[Member]:
        for member in self.members:
            if member.display_name == display_name:
                return member
        return None

    def is_host(self, connection_id: str) -> bool:
        return self.host_id is not None and self.host_id == connection_id

    def usernames(self) -> list[str]:
        return [m.display_name for m in self.members]

    def users_payload(self) -> list[dict[str, Any]]:
        return [m.to_dict(self.host_id) for m in self.members]

    def voice_usernames(self) -> list[str]:
        if not self.voice_session:
            return []
        names = []
        for connection_id in self.voice_session.member_ids:
            member = self.get_member(connection_id)
            if member:
                names.append(member.display_name)
        return names

    def snapshot(self, history_limit: int) -> dict[str, Any]:
        """Full state sent to a member right after joining"""
        return {
            "roomCode": self.code,
            "users": self.users_payload(),
            "video": self.video,
            "videoState": self.playback.to_dict(),
            "messages": [m.to_dict() for m in self.chat_history[-history_limit:]] if history_limit else [],
            "voiceChat": {
                "initiator": self.voice_session.initiator_name,
                "members": self.voice_usernames(),
                "memberIds": list(self.voice_session.member_ids),
            } if self.voice_session else None,
            "screenSharers": [
                {"socketId": cid, "username": name} for cid, name in self.screen_sharers.items()
            ],
        }
