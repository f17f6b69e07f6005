"""
Room Registry

Owns every live Room of the process, keyed by its short code.

Rooms are created empty on request, looked up by code on every event and
reclaimed by a deferred sweep once they have been empty for the grace
period. The registry is an ordinary instance created by the application
factory and injected where needed, so tests can build as many isolated
registries as they like.
"""

import asyncio
import secrets
import string
import time
from typing import Any, Callable, Dict, Optional

from watchparty.config import Settings
from watchparty.exceptions import RoomCodeGenerationException, RoomNotFoundException
from watchparty.models.room import Room
from watchparty.utils.logging_config import room_logger

BASE36_ALPHABET = string.digits + string.ascii_lowercase

Clock = Callable[[], float]
Scheduler = Callable[[float, Callable[[], None]], Any]

# Event loop timers and the wall clock may disagree by a hair
SWEEP_TOLERANCE_SECONDS = 1.0


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_room_code(length: int = 6, clock: Clock = time.time) -> str:
    """
    Build a candidate room code.

    Combines the tail of the millisecond clock with random base-36
    characters; uniqueness is still checked against the registry.
    """
    timestamp = _to_base36(int(clock() * 1000))[-2:]
    random_part = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(max(length - len(timestamp), 0)))
    return (timestamp + random_part).upper()[:length]


def call_later(delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
    """Default timer scheduler: a one-shot callback on the running event loop."""
    return asyncio.get_running_loop().call_later(delay, callback)


class RoomRegistry:
    """In-memory room store with empty-room expiry"""

    def __init__(
        self,
        settings: Settings,
        clock: Clock = time.time,
        scheduler: Scheduler = call_later,
        code_factory: Optional[Callable[[], str]] = None,
    ):
        self.settings = settings
        self.clock = clock
        self._scheduler = scheduler
        self._code_factory = code_factory or (
            lambda: generate_room_code(settings.ROOM_CODE_LENGTH, clock)
        )
        self.rooms: Dict[str, Room] = {}
        self._pending_sweeps: Dict[str, list[Any]] = {}

    def create_room(self) -> Room:
        """
        Create and register an empty room under a fresh code.

        Raises:
            RoomCodeGenerationException: no free code after the retry bound
        """
        max_attempts = self.settings.ROOM_CODE_MAX_ATTEMPTS
        code = self._code_factory()
        attempts = 0
        while code in self.rooms and attempts < max_attempts:
            code = self._code_factory()
            attempts += 1

        if code in self.rooms:
            room_logger.error(
                "Could not generate unique room code",
                extra={"attempts": attempts, "total_rooms": len(self.rooms)}
            )
            raise RoomCodeGenerationException(attempts)

        now = self.clock()
        room = Room(code=code, created_at=now, empty_since=now)
        room.playback.last_update = now
        self.rooms[code] = room
        # A room nobody joins expires like one everybody left
        self.schedule_empty_room_sweep(code)

        room_logger.info(
            "Room created",
            extra={"room_code": code, "total_rooms": len(self.rooms)}
        )
        return room

    def get_room(self, code: str) -> Optional[Room]:
        return self.rooms.get(code)

    def require_room(self, code: str) -> Room:
        room = self.rooms.get(code)
        if room is None:
            raise RoomNotFoundException(code, len(self.rooms))
        return room

    def delete_room(self, code: str) -> bool:
        room = self.rooms.pop(code, None)
        if room is None:
            return False
        room_logger.info("Room deleted", extra={"room_code": code, "total_rooms": len(self.rooms)})
        return True

    # ==================== Empty Room Sweep ====================

    def schedule_empty_room_sweep(self, code: str) -> None:
        """Arm a one-shot check that deletes the room if it stays empty."""
        delay = self.settings.EMPTY_ROOM_TTL_SECONDS
        handle = self._scheduler(delay, lambda: self.sweep_if_empty(code))
        if handle is not None:
            self._pending_sweeps.setdefault(code, []).append(handle)

        room_logger.debug(
            "Empty room sweep scheduled",
            extra={"room_code": code, "delay_seconds": delay}
        )

    def sweep_if_empty(self, code: str) -> bool:
        """
        Timer body of the empty-room sweep.

        Re-reads the room by code; a rejoin in the meantime clears
        `empty_since`, and a later empty period arms its own sweep, so only
        a room empty for the whole grace period is deleted.
        """
        pending = self._pending_sweeps.get(code)
        if pending:
            pending.pop(0)
            if not pending:
                del self._pending_sweeps[code]

        room = self.rooms.get(code)
        if room is None or not room.is_empty or room.empty_since is None:
            return False

        empty_for = self.clock() - room.empty_since
        if empty_for < self.settings.EMPTY_ROOM_TTL_SECONDS - SWEEP_TOLERANCE_SECONDS:
            return False

        self.delete_room(code)
        room_logger.info(
            "Room deleted after being empty",
            extra={"room_code": code, "empty_seconds": round(empty_for, 1)}
        )
        return True

    def shutdown(self) -> None:
        """Cancel pending timers (application shutdown)."""
        for handles in self._pending_sweeps.values():
            for handle in handles:
                cancel = getattr(handle, "cancel", None)
                if cancel:
                    cancel()
        self._pending_sweeps.clear()

    # ==================== Introspection ====================

    def stats(self) -> dict[str, Any]:
        return {
            "rooms": len(self.rooms),
            "members": sum(len(r.members) for r in self.rooms.values()),
            "empty_rooms": sum(1 for r in self.rooms.values() if r.is_empty),
        }

    def snapshot(self) -> dict[str, Any]:
        """Debug view of every room"""
        return {
            "totalRooms": len(self.rooms),
            "rooms": [
                {
                    "roomCode": code,
                    "userCount": len(room.members),
                    "users": [{"id": m.connection_id, "username": m.display_name} for m in room.members],
                    "hasVideo": room.video is not None,
                    "emptySince": int(room.empty_since * 1000) if room.empty_since else None,
                }
                for code, room in self.rooms.items()
            ],
        }
