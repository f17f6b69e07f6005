"""
Event Router

Single integration point between the WebSocket endpoint and the room
services. For every inbound event it resolves the sender's session and room,
runs the service call (all state changes happen synchronously, before the
first send) and fans the outbound events out to their audience:
sender only, the rest of the room, the whole room or one connection.

Errors raised by the services are AppExceptions; they reach only the sender
as an `error` frame (`sync-error` for sync requests) and leave the room
untouched.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Dict, Optional

from watchparty.config import Settings
from watchparty.error_handlers import WebSocketErrorHandler
from watchparty.exceptions import AlreadyInRoomException, AppException, ErrorCode, RoomNotFoundException
from watchparty.models.room import ChatMessage, Room
from watchparty.schemas import events as ev
from watchparty.services.chat import (
    ICON_HOST,
    ICON_JOINED,
    ICON_LEFT,
    ICON_VOICE_ENDED,
    ICON_VOICE_JOINED,
    ICON_VOICE_LEFT,
    ICON_VOICE_STARTED,
    ChatService,
    build_reaction,
)
from watchparty.services.connection_manager import ClientSession, ConnectionManager
from watchparty.services.membership import MembershipService
from watchparty.services.playback import PlaybackService
from watchparty.services.registry import RoomRegistry
from watchparty.services.screen_share import ScreenShareService
from watchparty.services.voice_chat import VoiceChatService, VoiceJoinResult, VoiceLeaveResult
from watchparty.utils.logging_config import websocket_logger

Handler = Callable[[ClientSession, Any, Optional[Room]], Awaitable[None]]

# Events accepted before joining a room
SESSIONLESS_EVENTS = frozenset({"join-room", "ping"})

# Events whose failures are reported as sync-error
SYNC_EVENTS = frozenset({"video-sync-request"})

DEFAULT_VOICE_COLOR = "#4ECDC4"


@dataclass
class VoiceLeaveNotice:
    """What the room is told when someone leaves the voice chat"""
    connection_id: str
    result: VoiceLeaveResult
    members: list[str]
    messages: list[ChatMessage]


@dataclass
class Departure:
    """What the remaining members are told when someone leaves the room"""
    connection_id: str
    username: str
    new_host_id: Optional[str]
    was_sharing: bool
    was_typing: bool
    users: list[dict[str, Any]]
    voice_notice: Optional[VoiceLeaveNotice]
    messages: list[ChatMessage]


class EventRouter:
    def __init__(self, settings: Settings, registry: RoomRegistry, connections: ConnectionManager):
        self.settings = settings
        self.registry = registry
        self.connections = connections

        self.membership = MembershipService(registry)
        self.playback = PlaybackService(registry.clock)
        self.chat = ChatService(settings)
        self.voice = VoiceChatService()
        self.screen_share = ScreenShareService(settings)

        # Initial syncs and disconnect announcements
        self._tasks: set[asyncio.Task] = set()

        self._handlers: Dict[str, Handler] = {
            "join-room": self.handle_join_room,
            "leave-room": self.handle_leave_room,
            "transfer-host": self.handle_transfer_host,
            "set-video": self.handle_set_video,
            "video-action": self.handle_video_action,
            "video-sync-request": self.handle_video_sync_request,
            "send-message": self.handle_send_message,
            "send-reaction": self.handle_send_reaction,
            "typing-start": self.handle_typing,
            "typing-stop": self.handle_typing,
            "start-voice-chat": self.handle_start_voice_chat,
            "join-voice-chat": self.handle_join_voice_chat,
            "leave-voice-chat": self.handle_leave_voice_chat,
            "voice-offer": self.handle_voice_signal,
            "voice-answer": self.handle_voice_signal,
            "voice-ice-candidate": self.handle_voice_signal,
            "voice-chat-mute-status": self.handle_voice_mute_status,
            "screen-share-started": self.handle_screen_share_started,
            "screen-share-stopped": self.handle_screen_share_stopped,
            "request-screen-share-webrtc": self.handle_webrtc_relay,
            "webrtc-offer": self.handle_webrtc_relay,
            "webrtc-answer": self.handle_webrtc_relay,
            "webrtc-ice-candidate": self.handle_webrtc_relay,
            "screen-share-frame": self.handle_screen_share_frame,
            "ping": self.handle_ping,
        }

    # ==================== Dispatch ====================

    def resolve_room(self, session: ClientSession) -> Optional[Room]:
        """The sender's room, if it still exists and still lists the sender"""
        if not session.joined:
            return None
        room = self.registry.get_room(session.room_code)
        if room is None or room.get_member(session.connection_id) is None:
            return None
        return room

    async def dispatch(self, session: ClientSession, event: ev.InboundEvent) -> None:
        event_type = event.type
        handler = self._handlers[event_type]

        room = None
        if event_type not in SESSIONLESS_EVENTS:
            room = self.resolve_room(session)
            if room is None:
                websocket_logger.debug(
                    "Dropped event from connection outside a room",
                    extra={"connection_id": session.connection_id, "message_type": event_type}
                )
                return

        try:
            await handler(session, event, room)
        except AppException as exc:
            WebSocketErrorHandler.log_websocket_error(
                error=exc,
                room_code=session.room_code,
                connection_id=session.connection_id,
                message_type=event_type,
            )
            await WebSocketErrorHandler.send_exception(
                session.websocket,
                exc,
                event_type="sync-error" if event_type in SYNC_EVENTS else "error",
            )
        except Exception as e:
            websocket_logger.exception(
                "Unhandled error while processing event",
                extra={
                    "connection_id": session.connection_id,
                    "room_code": session.room_code,
                    "message_type": event_type,
                    "error_type": type(e).__name__,
                }
            )
            await WebSocketErrorHandler.send_error_message(
                session.websocket,
                "Internal server error",
                ErrorCode.INTERNAL_SERVER_ERROR.value,
            )

    def handle_disconnect(self, session: ClientSession) -> None:
        """
        Transport closed: voice and screen-share cleanup, then leave.

        State is updated immediately; the announcements to the remaining
        members run in a tracked task so a cancelled handler cannot drop them.
        """
        room = self.resolve_room(session)
        if room is None:
            return
        departure = self._leave(session, room)
        if departure is not None:
            self._spawn(self._announce_departure(room, departure))

    # ==================== Helpers ====================

    def _voice_started_payload(self, room: Room) -> dict[str, Any]:
        session = room.voice_session
        return {
            "type": "voice-chat-started",
            "initiator": session.initiator_name,
            "members": room.voice_usernames(),
        }

    def _voice_notification_payload(self, room: Room) -> dict[str, Any]:
        session = room.voice_session
        initiator = room.get_member(session.initiator_id)
        return {
            "type": "voice-chat-notification",
            "initiator": session.initiator_name,
            "initiatorColor": initiator.color if initiator else DEFAULT_VOICE_COLOR,
            "message": f"{session.initiator_name} started Voice chat, want to join?",
        }

    async def _send_host_status(self, connection_id: str, is_host: bool) -> None:
        await self.connections.send_to_connection(connection_id, {"type": "host-status", "isHost": is_host})

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _initial_sync(self, room_code: str, connection_id: str) -> None:
        """Late-joiner catch-up, derived from the room as it is when the delay ends"""
        await asyncio.sleep(self.settings.INITIAL_SYNC_DELAY_SECONDS)

        room = self.registry.get_room(room_code)
        if room is None or room.get_member(connection_id) is None or room.video is None:
            return

        await self.connections.send_to_connection(
            connection_id,
            {"type": "initial-video-sync", **self.playback.initial_sync_payload(room)},
        )

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # ==================== Membership ====================

    async def handle_join_room(self, session: ClientSession, event: ev.JoinRoomEvent, _room) -> None:
        if session.joined:
            if self.resolve_room(session) is not None:
                raise AlreadyInRoomException(session.room_code)
            session.room_code = None
            session.display_name = None

        room = self.registry.get_room(event.room_code)
        if room is None:
            raise RoomNotFoundException(event.room_code, len(self.registry.rooms))
        result = self.membership.join(room, event.username, session.connection_id)
        member = result.member

        session.room_code = room.code
        session.display_name = member.display_name

        snapshot = room.snapshot(self.settings.JOIN_HISTORY_LIMIT)
        joined_message = self.chat.system_message(room, f"{member.display_name} joined the room", ICON_JOINED)
        users = room.users_payload()
        is_host = room.is_host(member.connection_id)
        voice_payloads = []
        if room.voice_session is not None:
            voice_payloads = [self._voice_notification_payload(room), self._voice_started_payload(room)]

        if result.became_host:
            await self._send_host_status(member.connection_id, True)

        await self.connections.send_to_connection(
            member.connection_id,
            {"type": "room-joined", **snapshot, "isHost": is_host},
        )

        for payload in voice_payloads:
            await self.connections.send_to_connection(member.connection_id, payload)

        await self.connections.broadcast_to_room(
            room,
            {"type": "user-joined", "user": member.to_dict(room.host_id)},
            exclude=member.connection_id,
        )
        await self.connections.broadcast_to_room(room, {"type": "users-updated", "users": users})
        await self.connections.broadcast_to_room(room, {"type": "new-message", **joined_message.to_dict()})

        if room.video is not None:
            self._spawn(self._initial_sync(room.code, member.connection_id))

    async def handle_leave_room(self, session: ClientSession, event: ev.LeaveRoomEvent, room: Room) -> None:
        departure = self._leave(session, room)
        if departure is not None:
            await self._announce_departure(room, departure)

    def _leave(self, session: ClientSession, room: Room) -> Optional[Departure]:
        """Every state change of a departure; the announcements are built here too."""
        connection_id = session.connection_id

        voice_result = self.voice.leave(room, connection_id)
        was_sharing = self.screen_share.stop(room, connection_id)
        was_typing = connection_id in room.typing
        result = self.membership.leave(room, connection_id)

        session.room_code = None
        session.display_name = None

        if result is None:
            return None

        voice_notice = None
        if voice_result is not None:
            voice_notice = self._voice_leave_notice(room, connection_id, voice_result)

        left_message = self.chat.system_message(room, f"{result.member.display_name} left the room", ICON_LEFT)
        host_message = None
        if result.new_host is not None:
            host_message = self.chat.system_message(
                room, f"{result.new_host.display_name} is now the host", ICON_HOST
            )

        if room.is_empty:
            return None

        return Departure(
            connection_id=connection_id,
            username=result.member.display_name,
            new_host_id=result.new_host.connection_id if result.new_host else None,
            was_sharing=was_sharing,
            was_typing=was_typing,
            users=room.users_payload(),
            voice_notice=voice_notice,
            messages=[m for m in (left_message, host_message) if m is not None],
        )

    async def _announce_departure(self, room: Room, departure: Departure) -> None:
        if departure.voice_notice is not None:
            await self._send_voice_leave(room, departure.voice_notice)

        if departure.was_sharing:
            await self.connections.broadcast_to_room(
                room,
                {"type": "screen-share-stopped", "username": departure.username, "socketId": departure.connection_id},
            )

        if departure.was_typing:
            await self.connections.broadcast_to_room(
                room, {"type": "user-typing", "username": departure.username, "isTyping": False}
            )

        if departure.new_host_id is not None:
            await self._send_host_status(departure.new_host_id, True)

        await self.connections.broadcast_to_room(
            room,
            {"type": "user-left", "userId": departure.connection_id, "username": departure.username},
        )
        await self.connections.broadcast_to_room(room, {"type": "users-updated", "users": departure.users})
        for message in departure.messages:
            await self.connections.broadcast_to_room(room, {"type": "new-message", **message.to_dict()})

    async def handle_transfer_host(self, session: ClientSession, event: ev.TransferHostEvent, room: Room) -> None:
        result = self.membership.transfer_host(room, session.connection_id, event.new_host_username)

        if not result.changed:
            await self._send_host_status(result.new_host.connection_id, True)
            return

        host_message = self.chat.system_message(room, f"{result.new_host.display_name} is now the host", ICON_HOST)

        statuses = [(m.connection_id, room.is_host(m.connection_id)) for m in room.members]
        users = room.users_payload()

        for connection_id, is_host in statuses:
            await self._send_host_status(connection_id, is_host)
        await self.connections.broadcast_to_room(room, {"type": "users-updated", "users": users})
        await self.connections.broadcast_to_room(room, {"type": "new-message", **host_message.to_dict()})

    # ==================== Playback ====================

    async def handle_set_video(self, session: ClientSession, event: ev.SetVideoEvent, room: Room) -> None:
        video = self.playback.set_video(room, session.connection_id, event.descriptor)
        await self.connections.broadcast_to_room(
            room,
            {"type": "video-set", "video": video, "videoState": room.playback.to_dict()},
        )

    async def handle_video_action(self, session: ClientSession, event: ev.VideoActionEvent, room: Room) -> None:
        payload = self.playback.apply_action(room, session.connection_id, event.action, event.current_time)
        await self.connections.broadcast_to_room(
            room, {"type": "video-sync", **payload}, exclude=session.connection_id
        )

    async def handle_video_sync_request(self, session: ClientSession, event: ev.VideoSyncRequestEvent, room: Room) -> None:
        payload = self.playback.request_sync_all(room, session.connection_id, event.action, event.current_time)
        await self.connections.broadcast_to_room(
            room, {"type": "video-sync", **payload}, exclude=session.connection_id
        )
        await self.connections.send_to_connection(
            session.connection_id, {"type": "sync-success", "message": "Sync sent to all users"}
        )

    # ==================== Chat ====================

    async def handle_send_message(self, session: ClientSession, event: ev.SendMessageEvent, room: Room) -> None:
        was_typing = session.connection_id in room.typing
        message = self.chat.post_message(room, session.connection_id, event.message)
        if message is None:
            return

        if was_typing:
            await self.connections.broadcast_to_room(
                room,
                {"type": "user-typing", "username": session.display_name, "isTyping": False},
                exclude=session.connection_id,
            )
        await self.connections.broadcast_to_room(room, {"type": "new-message", **message.to_dict()})

    async def handle_send_reaction(self, session: ClientSession, event: ev.SendReactionEvent, room: Room) -> None:
        reaction = build_reaction(session.display_name, event.emoji)
        await self.connections.broadcast_to_room(room, {"type": "new-reaction", **reaction})

    async def handle_typing(self, session: ClientSession, event, room: Room) -> None:
        is_typing = event.type == "typing-start"
        if not self.chat.set_typing(room, session.connection_id, is_typing):
            return
        await self.connections.broadcast_to_room(
            room,
            {"type": "user-typing", "username": session.display_name, "isTyping": is_typing},
            exclude=session.connection_id,
        )

    # ==================== Voice chat ====================

    async def handle_start_voice_chat(self, session: ClientSession, event, room: Room) -> None:
        result = self.voice.start(room, session.connection_id)
        if result is None:
            return
        if not result.started:
            if result.joined:
                await self._announce_voice_join(room, session.connection_id, result)
            return

        started_message = self.chat.system_message(room, f"{result.username} started a voice chat", ICON_VOICE_STARTED)

        await self.connections.broadcast_to_room(room, {"type": "new-message", **started_message.to_dict()})
        await self.connections.broadcast_to_room(
            room, self._voice_notification_payload(room), exclude=session.connection_id
        )
        await self.connections.send_to_connection(session.connection_id, self._voice_started_payload(room))

    async def handle_join_voice_chat(self, session: ClientSession, event, room: Room) -> None:
        result = self.voice.join(room, session.connection_id)
        if result is None or not result.joined:
            return
        await self._announce_voice_join(room, session.connection_id, result)

    async def _announce_voice_join(self, room: Room, connection_id: str, result: VoiceJoinResult) -> None:
        joined_message = self.chat.system_message(room, f"{result.username} joined the voice chat", ICON_VOICE_JOINED)
        members = room.voice_usernames()
        voice_member_ids = list(room.voice_session.member_ids)
        started_payload = self._voice_started_payload(room)

        await self.connections.broadcast_to_room(room, {"type": "new-message", **joined_message.to_dict()})

        for member_id in voice_member_ids:
            payload = {
                "type": "voice-chat-member-joined",
                "newMember": result.username,
                "socketId": connection_id,
                "members": members,
            }
            if member_id == connection_id:
                payload["existingMembers"] = result.existing_members
            await self.connections.send_to_connection(member_id, payload)

        await self.connections.broadcast_to_room(
            room,
            {"type": "voice-chat-member-updated", "members": members, "action": "joined", "newMember": result.username},
        )
        await self.connections.send_to_connection(connection_id, started_payload)

    async def handle_leave_voice_chat(self, session: ClientSession, event, room: Room) -> None:
        result = self.voice.leave(room, session.connection_id)
        if result is None:
            return
        await self._send_voice_leave(room, self._voice_leave_notice(room, session.connection_id, result))

    def _voice_leave_notice(self, room: Room, connection_id: str, result: VoiceLeaveResult) -> VoiceLeaveNotice:
        messages = [self.chat.system_message(room, f"{result.username} left the voice chat", ICON_VOICE_LEFT)]
        if result.ended:
            messages.append(self.chat.system_message(room, "Voice chat ended", ICON_VOICE_ENDED))
        return VoiceLeaveNotice(
            connection_id=connection_id,
            result=result,
            members=room.voice_usernames(),
            messages=messages,
        )

    async def _send_voice_leave(self, room: Room, notice: VoiceLeaveNotice) -> None:
        result = notice.result
        for message in notice.messages:
            await self.connections.broadcast_to_room(room, {"type": "new-message", **message.to_dict()})

        if result.ended:
            await self.connections.broadcast_to_room(room, {"type": "voice-chat-ended"})
            return

        await self.connections.send_to_many(
            result.remaining_ids,
            {
                "type": "voice-chat-member-left",
                "leftMember": result.username,
                "socketId": notice.connection_id,
                "members": notice.members,
            },
        )
        await self.connections.broadcast_to_room(
            room,
            {"type": "voice-chat-member-updated", "members": notice.members, "action": "left", "leftMember": result.username},
        )

    async def handle_voice_signal(self, session: ClientSession, event, room: Room) -> None:
        target = event.target_socket_id
        if room.get_member(target) is None:
            websocket_logger.debug(
                "Dropped signal for connection outside the room",
                extra={"room_code": room.code, "message_type": event.type}
            )
            return

        body_field = {"voice-offer": "offer", "voice-answer": "answer", "voice-ice-candidate": "candidate"}[event.type]
        await self.connections.send_to_connection(
            target,
            {"type": event.type, body_field: getattr(event, body_field), "fromSocketId": session.connection_id},
        )

    async def handle_voice_mute_status(self, session: ClientSession, event: ev.VoiceMuteStatusEvent, room: Room) -> None:
        await self.connections.broadcast_to_room(
            room,
            {
                "type": "voice-chat-mute-status",
                "username": session.display_name,
                "socketId": session.connection_id,
                "isMuted": event.is_muted,
            },
            exclude=session.connection_id,
        )

    # ==================== Screen share ====================

    async def handle_screen_share_started(self, session: ClientSession, event, room: Room) -> None:
        if not self.screen_share.start(room, session.connection_id):
            return
        await self.connections.broadcast_to_room(
            room,
            {"type": "screen-share-started", "username": session.display_name, "socketId": session.connection_id},
            exclude=session.connection_id,
        )

    async def handle_screen_share_stopped(self, session: ClientSession, event, room: Room) -> None:
        if not self.screen_share.stop(room, session.connection_id):
            return
        await self.connections.broadcast_to_room(
            room,
            {"type": "screen-share-stopped", "username": session.display_name, "socketId": session.connection_id},
            exclude=session.connection_id,
        )

    async def handle_webrtc_relay(self, session: ClientSession, event: ev.RelayEvent, room: Room) -> None:
        if room.get_member(event.to) is None:
            websocket_logger.debug(
                "Dropped relay for connection outside the room",
                extra={"room_code": room.code, "message_type": event.type}
            )
            return

        await self.connections.send_to_connection(
            event.to,
            {"type": event.type, **event.relay_fields(), "from": session.connection_id},
        )

    async def handle_screen_share_frame(self, session: ClientSession, event: ev.ScreenShareFrameEvent, room: Room) -> None:
        if not self.screen_share.can_relay_frame(room, session.connection_id):
            return
        await self.connections.broadcast_to_room(
            room,
            {
                "type": "screen-share-frame",
                "frame": event.frame,
                "from": session.connection_id,
                "username": session.display_name,
            },
            exclude=session.connection_id,
        )

    # ==================== Misc ====================

    async def handle_ping(self, session: ClientSession, event, _room) -> None:
        await self.connections.send_personal(
            {"type": "pong", "timestamp": int(self.registry.clock() * 1000)}, session.websocket
        )
