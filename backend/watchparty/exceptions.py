"""
Custom Exception Classes for the Watch Party backend

Every recoverable failure of a room operation is an AppException subclass.
HTTP handlers turn them into the standard error body; the WebSocket layer
turns them into a sender-only "error" frame and leaves room state untouched.
"""

from typing import Any, Optional
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes shared by HTTP and WebSocket responses"""

    # Room & Membership (ROOM_xxx)
    ROOM_NOT_FOUND = "ROOM_001"
    ROOM_FULL = "ROOM_003"
    NOT_ROOM_HOST = "ROOM_005"
    ALREADY_IN_ROOM = "ROOM_006"
    USERNAME_TAKEN = "ROOM_010"
    MEMBER_NOT_FOUND = "ROOM_011"
    ROOM_CODE_EXHAUSTED = "ROOM_012"

    # Playback (VID_xxx)
    INVALID_VIDEO = "VID_001"

    # WebSocket (WS_xxx)
    WS_INVALID_MESSAGE = "WS_002"

    # Validation (VAL_xxx)
    VALIDATION_ERROR = "VAL_001"
    NOT_FOUND = "VAL_005"

    # General (GEN_xxx)
    INTERNAL_SERVER_ERROR = "GEN_001"
    RATE_LIMIT_EXCEEDED = "GEN_003"


class AppException(Exception):
    """
    Base exception class for all application errors.

    Attributes:
        message: Human readable message shown to the client
        code: Error code (ErrorCode enum)
        status_code: HTTP status code
        details: Extra diagnostic detail (optional)
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_SERVER_ERROR,
        status_code: int = 500,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses"""
        result = {
            "error": self.code.value,
            "message": self.message,
            "status_code": self.status_code,
        }
        if self.details:
            result["details"] = self.details
        return result


# ==================== Room Exceptions ====================

class RoomException(AppException):
    """General room error"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.ROOM_NOT_FOUND,
        status_code: int = 404,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, code, status_code, details)


class RoomNotFoundException(RoomException):
    """Room does not exist"""

    def __init__(self, room_code: Optional[str] = None, available_rooms: int = 0):
        details = None
        if room_code is not None:
            details = {
                "requestedRoom": room_code,
                "detail": f"Room {room_code} does not exist. Available rooms: {available_rooms}",
            }
        super().__init__("Room not found", ErrorCode.ROOM_NOT_FOUND, 404, details)


class RoomFullException(RoomException):
    """Room reached its capacity"""

    def __init__(self, room_code: str, capacity: int, current_users: list[str]):
        super().__init__(
            "Room is full",
            ErrorCode.ROOM_FULL,
            400,
            {
                "detail": f"Room {room_code} has {len(current_users)}/{capacity} users",
                "currentUsers": current_users,
            },
        )


class UsernameTakenException(RoomException):
    """Display name already used by a live member"""

    def __init__(self, room_code: str, username: str, existing_users: list[str]):
        super().__init__(
            "Username already taken",
            ErrorCode.USERNAME_TAKEN,
            409,
            {
                "detail": f'Username "{username}" is already in use in room {room_code}',
                "existingUsers": existing_users,
            },
        )


class NotRoomHostException(RoomException):
    """Only the host may perform this action"""

    def __init__(self, message: str = "Only host can perform this action"):
        super().__init__(message, ErrorCode.NOT_ROOM_HOST, 403)


class AlreadyInRoomException(RoomException):
    """Connection already joined a room"""

    def __init__(self, room_code: str):
        super().__init__(
            "Already joined a room on this connection",
            ErrorCode.ALREADY_IN_ROOM,
            400,
            {"roomCode": room_code},
        )


class MemberNotFoundException(RoomException):
    """Target member is not in the room"""

    def __init__(self, username: str):
        super().__init__(
            "User not found in room",
            ErrorCode.MEMBER_NOT_FOUND,
            404,
            {"username": username},
        )


class RoomCodeGenerationException(RoomException):
    """Could not find a free room code"""

    def __init__(self, attempts: int):
        super().__init__(
            "Failed to generate unique room code",
            ErrorCode.ROOM_CODE_EXHAUSTED,
            500,
            {"attempts": attempts},
        )


# ==================== Playback Exceptions ====================

class InvalidVideoException(AppException):
    """Video descriptor cannot be used"""

    def __init__(self, message: str = "Invalid video data", details: Optional[dict[str, Any]] = None):
        super().__init__(message, ErrorCode.INVALID_VIDEO, 400, details)


# ==================== WebSocket Exceptions ====================

class InvalidPayloadException(AppException):
    """Inbound event does not match any known shape"""

    def __init__(self, reason: str = "Invalid message format", details: Optional[dict[str, Any]] = None):
        super().__init__(
            f"Invalid message: {reason}",
            ErrorCode.WS_INVALID_MESSAGE,
            400,
            {"reason": reason, **(details or {})},
        )


class RateLimitExceededException(AppException):
    """Too many events from one connection"""

    def __init__(self, message: str = "Rate limit exceeded"):
        super().__init__(message, ErrorCode.RATE_LIMIT_EXCEEDED, 429)
