"""
Membership & Authority

Admission control (capacity, unique display names), color assignment and
host assignment on join, leave and explicit transfer.
"""

import random
from dataclasses import dataclass
from typing import Optional

from watchparty.exceptions import (
    InvalidPayloadException,
    MemberNotFoundException,
    NotRoomHostException,
    RoomFullException,
    RoomNotFoundException,
    UsernameTakenException,
)
from watchparty.models.room import Member, Room
from watchparty.services.registry import RoomRegistry
from watchparty.utils.logging_config import room_logger

# The first members get maximally distinct colors, in join order
PREDEFINED_COLORS = [
    "#FF6B6B",  # Red
    "#4ECDC4",  # Teal
    "#45B7D1",  # Blue
    "#96CEB4",  # Green
    "#FFEAA7",  # Yellow
    "#DDA0DD",  # Plum
    "#98D8C8",  # Mint
    "#F7DC6F",  # Light Yellow
    "#BB8FCE",  # Light Purple
    "#85C1E9",  # Light Blue
    "#F8C471",  # Orange
    "#82E0AA",  # Light Green
]


def assign_color(join_index: int) -> str:
    if join_index < len(PREDEFINED_COLORS):
        return PREDEFINED_COLORS[join_index]
    return f"hsl({random.randint(0, 359)}, 75%, 60%)"


@dataclass
class JoinResult:
    member: Member
    became_host: bool


@dataclass
class LeaveResult:
    member: Member
    was_host: bool
    new_host: Optional[Member]
    room_empty: bool


@dataclass
class TransferResult:
    previous_host: Member
    new_host: Member
    changed: bool


class MembershipService:
    """Join/leave/transfer-host rules for a room"""

    def __init__(self, registry: RoomRegistry):
        self.registry = registry
        self.settings = registry.settings

    def join(self, room: Optional[Room], display_name: str, connection_id: str) -> JoinResult:
        """
        Admit a connection into a room.

        Raises:
            RoomNotFoundException: room is gone
            RoomFullException: capacity reached
            UsernameTakenException: a live member already uses the name
            InvalidPayloadException: display name empty or too long
        """
        if room is None:
            raise RoomNotFoundException()

        capacity = self.settings.MAX_USERS_PER_ROOM
        if len(room.members) >= capacity:
            raise RoomFullException(room.code, capacity, room.usernames())

        name = (display_name or "").strip()
        if not name or len(name) > self.settings.MAX_USERNAME_LENGTH:
            raise InvalidPayloadException(
                f"username must be 1-{self.settings.MAX_USERNAME_LENGTH} characters"
            )

        if room.find_member_by_name(name) is not None:
            raise UsernameTakenException(room.code, name, room.usernames())

        member = Member(
            connection_id=connection_id,
            display_name=name,
            color=assign_color(len(room.members)),
            joined_at=self.registry.clock(),
        )
        room.members.append(member)
        room.empty_since = None

        became_host = room.host_id is None
        if became_host:
            room.host_id = connection_id

        room_logger.info(
            "User joined room",
            extra={
                "room_code": room.code,
                "connection_id": connection_id,
                "username": name,
                "is_host": became_host,
                "room_size": len(room.members),
            }
        )
        return JoinResult(member=member, became_host=became_host)

    def leave(self, room: Room, connection_id: str) -> Optional[LeaveResult]:
        """
        Remove a member; hand the host role to the earliest remaining member.

        Returns None when the connection is not a member of the room.
        """
        member = room.get_member(connection_id)
        if member is None:
            return None

        was_host = room.is_host(connection_id)
        room.members.remove(member)
        room.typing.discard(connection_id)
        room.screen_sharers.pop(connection_id, None)

        new_host = None
        if was_host:
            if room.members:
                new_host = room.members[0]
                room.host_id = new_host.connection_id
            else:
                room.host_id = None

        room_empty = room.is_empty
        if room_empty:
            room.empty_since = self.registry.clock()
            self.registry.schedule_empty_room_sweep(room.code)

        room_logger.info(
            "User left room",
            extra={
                "room_code": room.code,
                "connection_id": connection_id,
                "username": member.display_name,
                "new_host": new_host.display_name if new_host else None,
                "room_size": len(room.members),
            }
        )
        return LeaveResult(member=member, was_host=was_host, new_host=new_host, room_empty=room_empty)

    def transfer_host(self, room: Room, requesting_connection_id: str, target_display_name: str) -> TransferResult:
        """
        Hand the host role to another member.

        Raises:
            NotRoomHostException: requester is not the host
            MemberNotFoundException: no member with that display name
        """
        if not room.is_host(requesting_connection_id):
            raise NotRoomHostException("Only host can transfer host")

        target = room.find_member_by_name((target_display_name or "").strip())
        if target is None:
            raise MemberNotFoundException(target_display_name)

        previous_host = room.get_member(requesting_connection_id)
        changed = target.connection_id != requesting_connection_id
        room.host_id = target.connection_id

        if changed:
            room_logger.info(
                "Host transferred",
                extra={
                    "room_code": room.code,
                    "from": previous_host.display_name,
                    "to": target.display_name,
                }
            )
        return TransferResult(previous_host=previous_host, new_host=target, changed=changed)
