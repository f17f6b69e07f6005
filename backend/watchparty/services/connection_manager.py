from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from fastapi import WebSocket

from watchparty.error_handlers import WebSocketErrorHandler
from watchparty.models.room import Room
from watchparty.utils.logging_config import websocket_logger


@dataclass
class ClientSession:
    """Server-side identity of one WebSocket connection"""
    connection_id: str
    websocket: WebSocket
    room_code: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def joined(self) -> bool:
        return self.room_code is not None


class ConnectionManager:
    """Live connections and fan-out to room audiences"""

    def __init__(self):
        # connection_id -> ClientSession
        self.sessions: Dict[str, ClientSession] = {}

    def register(self, connection_id: str, websocket: WebSocket) -> ClientSession:
        session = ClientSession(connection_id=connection_id, websocket=websocket)
        self.sessions[connection_id] = session
        websocket_logger.info(
            "Client connected",
            extra={"connection_id": connection_id, "connections": len(self.sessions)}
        )
        return session

    def unregister(self, connection_id: str) -> None:
        session = self.sessions.pop(connection_id, None)
        websocket_logger.info(
            "Client disconnected",
            extra={
                "connection_id": connection_id,
                "room_code": session.room_code if session else None,
                "connections": len(self.sessions),
            }
        )

    def get(self, connection_id: str) -> Optional[ClientSession]:
        return self.sessions.get(connection_id)

    @property
    def connection_count(self) -> int:
        return len(self.sessions)

    async def send_personal(self, message: dict[str, Any], websocket: WebSocket) -> None:
        try:
            await websocket.send_json(message)
        except Exception as e:
            WebSocketErrorHandler.log_websocket_error(
                error=e,
                message_type=message.get("type", "send_personal")
            )

    async def send_to_connection(self, connection_id: str, message: dict[str, Any]) -> bool:
        """Send to one connection, log on failure"""
        session = self.sessions.get(connection_id)
        if session is None:
            websocket_logger.warning(
                "Connection not found for send_to_connection",
                extra={"target_connection_id": connection_id, "message_type": message.get("type")}
            )
            return False

        try:
            await session.websocket.send_json(message)
            return True
        except Exception as e:
            WebSocketErrorHandler.log_websocket_error(
                error=e,
                room_code=session.room_code,
                connection_id=connection_id,
                message_type=message.get("type", "send_to_connection")
            )
            return False

    async def send_to_many(self, connection_ids: Iterable[str], message: dict[str, Any]) -> None:
        for connection_id in list(connection_ids):
            await self.send_to_connection(connection_id, message)

    async def broadcast_to_room(self, room: Room, message: dict[str, Any], exclude: Optional[str] = None) -> None:
        """Send to every member of the room, log failed recipients"""
        failed = []
        for member in list(room.members):
            if member.connection_id == exclude:
                continue
            if not await self.send_to_connection(member.connection_id, message):
                failed.append(member.connection_id)

        if failed:
            websocket_logger.warning(
                "Failed to send message to some users in room",
                extra={
                    "room_code": room.code,
                    "failed_connections": failed,
                    "failed_count": len(failed),
                    "message_type": message.get("type"),
                }
            )
