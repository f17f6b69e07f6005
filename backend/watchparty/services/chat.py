"""
Chat, reactions and typing indicators
"""

import random
import time
import uuid
from typing import Any, Optional

from watchparty.config import Settings
from watchparty.exceptions import InvalidPayloadException
from watchparty.models.room import ChatMessage, Room

# System message icons
ICON_JOINED = "👋"
ICON_LEFT = "🚪"
ICON_HOST = "👑"
ICON_VOICE_STARTED = "🎤"
ICON_VOICE_JOINED = "🔊"
ICON_VOICE_LEFT = "🔇"
ICON_VOICE_ENDED = "🎤"


class ChatService:
    def __init__(self, settings: Settings):
        self.settings = settings

    def _append(self, room: Room, message: ChatMessage) -> ChatMessage:
        room.chat_history.append(message)
        limit = self.settings.CHAT_HISTORY_LIMIT
        if len(room.chat_history) > limit:
            del room.chat_history[:-limit]
        return message

    def post_message(self, room: Room, connection_id: str, body: Any) -> Optional[ChatMessage]:
        """
        Store a user message.

        Empty bodies are dropped (None). Posting clears the sender's
        typing state.

        Raises:
            InvalidPayloadException: body longer than MAX_MESSAGE_LENGTH
        """
        member = room.get_member(connection_id)
        if member is None:
            return None

        text = body.strip() if isinstance(body, str) else ""
        if not text:
            return None
        if len(text) > self.settings.MAX_MESSAGE_LENGTH:
            raise InvalidPayloadException(
                f"message longer than {self.settings.MAX_MESSAGE_LENGTH} characters",
                {"length": len(text)},
            )

        room.typing.discard(connection_id)
        return self._append(room, ChatMessage(
            message=text,
            kind="user",
            username=member.display_name,
            color=member.color,
        ))

    def system_message(self, room: Room, text: str, icon: str) -> ChatMessage:
        return self._append(room, ChatMessage(message=text, kind="system", icon=icon))

    def set_typing(self, room: Room, connection_id: str, is_typing: bool) -> bool:
        """Record a typing transition; False when it changes nothing."""
        if is_typing:
            if connection_id in room.typing:
                return False
            room.typing.add(connection_id)
            return True

        if connection_id not in room.typing:
            return False
        room.typing.discard(connection_id)
        return True


def build_reaction(username: str, emoji: str) -> dict[str, Any]:
    """Reactions float over the player at a random spot; they are not stored."""
    return {
        "id": str(uuid.uuid4()),
        "username": username,
        "emoji": emoji,
        "timestamp": int(time.time() * 1000),
        "x": random.random() * 100,
        "y": random.random() * 100,
    }
