"""
Voice chat membership

The server only tracks who is in the voice session; audio flows peer to
peer and the signaling is relayed verbatim by the event router.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from watchparty.models.room import Room, VoiceSession
from watchparty.utils.logging_config import voice_logger


@dataclass
class VoiceJoinResult:
    started: bool
    joined: bool
    username: str
    # Voice members present before the joiner, for peer setup
    existing_members: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class VoiceLeaveResult:
    username: str
    ended: bool
    remaining_ids: list[str]


class VoiceChatService:

    def start(self, room: Room, connection_id: str) -> Optional[VoiceJoinResult]:
        """Start a session, or join the active one."""
        member = room.get_member(connection_id)
        if member is None:
            return None

        if room.voice_session is not None:
            return self.join(room, connection_id)

        room.voice_session = VoiceSession(
            initiator_id=connection_id,
            initiator_name=member.display_name,
            member_ids=[connection_id],
        )
        voice_logger.info(
            "Voice chat started",
            extra={"room_code": room.code, "initiator": member.display_name}
        )
        return VoiceJoinResult(started=True, joined=True, username=member.display_name)

    def join(self, room: Room, connection_id: str) -> Optional[VoiceJoinResult]:
        """
        Add a member to the active session.

        Returns None when no session is active; `joined` is False when the
        member was already in it.
        """
        member = room.get_member(connection_id)
        session = room.voice_session
        if member is None or session is None:
            return None

        if connection_id in session.member_ids:
            return VoiceJoinResult(started=False, joined=False, username=member.display_name)

        existing = []
        for member_id in session.member_ids:
            voice_member = room.get_member(member_id)
            if voice_member:
                existing.append({"username": voice_member.display_name, "socketId": member_id})

        session.member_ids.append(connection_id)
        voice_logger.info(
            "Voice chat member joined",
            extra={"room_code": room.code, "username": member.display_name, "voice_members": len(session.member_ids)}
        )
        return VoiceJoinResult(
            started=False,
            joined=True,
            username=member.display_name,
            existing_members=existing,
        )

    def leave(self, room: Room, connection_id: str) -> Optional[VoiceLeaveResult]:
        """
        Remove a member from the session; the session ends with its last member.

        Used both for explicit leave and for disconnect cleanup.
        """
        session = room.voice_session
        if session is None or connection_id not in session.member_ids:
            return None

        member = room.get_member(connection_id)
        username = member.display_name if member else connection_id
        session.member_ids.remove(connection_id)

        ended = not session.member_ids
        if ended:
            room.voice_session = None

        voice_logger.info(
            "Voice chat member left",
            extra={"room_code": room.code, "username": username, "ended": ended}
        )
        return VoiceLeaveResult(
            username=username,
            ended=ended,
            remaining_ids=[] if ended else list(session.member_ids),
        )
