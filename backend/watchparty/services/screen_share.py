"""
Screen share tracking

Media never passes through the server; it only remembers who is sharing so
late joiners and disconnects can be reported.
"""

from watchparty.config import Settings
from watchparty.models.room import Room
from watchparty.utils.logging_config import get_logger

logger = get_logger(__name__)


class ScreenShareService:
    def __init__(self, settings: Settings):
        self.settings = settings

    def start(self, room: Room, connection_id: str) -> bool:
        """Mark the member as sharing; False if it already was."""
        member = room.get_member(connection_id)
        if member is None or connection_id in room.screen_sharers:
            return False
        room.screen_sharers[connection_id] = member.display_name
        logger.info("Screen share started", extra={"room_code": room.code, "username": member.display_name})
        return True

    def stop(self, room: Room, connection_id: str) -> bool:
        """Drop the sharer; False if it was not sharing."""
        username = room.screen_sharers.pop(connection_id, None)
        if username is None:
            return False
        logger.info("Screen share stopped", extra={"room_code": room.code, "username": username})
        return True

    def can_relay_frame(self, room: Room, connection_id: str) -> bool:
        """Frame relay is a degraded fallback, off unless configured."""
        return self.settings.SCREEN_FRAME_RELAY_ENABLED and connection_id in room.screen_sharers
