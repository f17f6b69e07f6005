import json
from typing import Any, Optional
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from watchparty.error_handlers import WebSocketErrorHandler
from watchparty.exceptions import InvalidPayloadException, RateLimitExceededException
from watchparty.schemas.events import parse_inbound_event
from watchparty.services.connection_manager import ConnectionManager
from watchparty.services.event_router import EventRouter
from watchparty.utils.logging_config import websocket_logger
from watchparty.utils.rate_limit import WebSocketRateLimits

router = APIRouter(tags=["WebSocket"])


async def receive_frame(websocket: WebSocket) -> str:
    """Next text frame; binary frames are decoded as UTF-8."""
    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", 1000))

    text = message.get("text")
    if text is None:
        raw = message.get("bytes") or b""
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise InvalidPayloadException("binary frames must be UTF-8 JSON")
    return text


def decode_frame(text: str, max_bytes: int) -> Any:
    if len(text.encode("utf-8")) > max_bytes:
        raise InvalidPayloadException("payload too large", {"maxBytes": max_bytes})
    try:
        return json.loads(text)
    except ValueError:
        raise InvalidPayloadException("malformed JSON")


@router.websocket("/ws")
async def websocket_room(websocket: WebSocket):
    """
    WebSocket endpoint for watch party rooms.
    Handles: membership, playback sync, chat, voice and screen-share signaling
    """
    state = websocket.app.state
    settings = state.settings
    manager: ConnectionManager = state.connections
    event_router: EventRouter = state.event_router
    rate_limits: WebSocketRateLimits = state.ws_rate_limits

    await websocket.accept()
    connection_id = str(uuid4())
    session = manager.register(connection_id, websocket)

    await manager.send_personal({"type": "connected", "socketId": connection_id}, websocket)

    try:
        while True:
            msg_type: Optional[str] = None
            try:
                data = decode_frame(await receive_frame(websocket), settings.MAX_WS_PAYLOAD_BYTES)
                if isinstance(data, dict) and isinstance(data.get("type"), str):
                    msg_type = data["type"]

                # Rate limiting based on message type
                if settings.RATE_LIMIT_ENABLED:
                    is_allowed, error_msg = rate_limits.check(connection_id, msg_type)
                    if not is_allowed:
                        await WebSocketErrorHandler.send_exception(
                            websocket,
                            RateLimitExceededException(error_msg or "Rate limit exceeded"),
                            event_type="rate-limit-exceeded",
                        )
                        continue

                event = parse_inbound_event(data)
            except InvalidPayloadException as exc:
                WebSocketErrorHandler.log_websocket_error(
                    error=exc,
                    room_code=session.room_code,
                    connection_id=connection_id,
                    message_type=msg_type,
                )
                await WebSocketErrorHandler.send_exception(websocket, exc)
                continue

            websocket_logger.debug(
                "WebSocket message received",
                extra={
                    "room_code": session.room_code,
                    "connection_id": connection_id,
                    "username": session.display_name,
                    "msg_type": msg_type
                }
            )

            await event_router.dispatch(session, event)

    except WebSocketDisconnect:
        websocket_logger.info(
            "WebSocket disconnected",
            extra={
                "room_code": session.room_code,
                "connection_id": connection_id,
                "username": session.display_name
            }
        )
    except Exception as e:
        websocket_logger.error(
            "WebSocket error",
            extra={
                "room_code": session.room_code,
                "connection_id": connection_id,
                "username": session.display_name,
                "error": str(e),
                "error_type": type(e).__name__
            }
        )
    finally:
        manager.unregister(connection_id)
        rate_limits.cleanup(connection_id)
        event_router.handle_disconnect(session)
