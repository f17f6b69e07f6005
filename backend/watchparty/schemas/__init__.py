from watchparty.schemas.events import ClientEvent, InboundEvent, parse_inbound_event
from watchparty.schemas.room import RoomCreateResponse, RoomInfoResponse, IceServersResponse

__all__ = [
    "ClientEvent", "InboundEvent", "parse_inbound_event",
    "RoomCreateResponse", "RoomInfoResponse", "IceServersResponse"
]
