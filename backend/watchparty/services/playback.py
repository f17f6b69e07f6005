"""
Playback Synchronization

Keeps the room's logical video clock. Two kinds of updates exist and stay
separate: passive `video-action` reports from any member, and the host-only
`video-sync-request` that forcibly realigns everyone else.
"""

import re
from typing import Any, Optional

from watchparty.exceptions import InvalidPayloadException, InvalidVideoException, NotRoomHostException
from watchparty.models.room import PlaybackState, Room
from watchparty.services.registry import Clock
from watchparty.utils.logging_config import playback_logger

YOUTUBE_ID_PATTERN = re.compile(
    r"(?:youtube\.com\/(?:[^\/]+\/.+\/|(?:v|e(?:mbed)?)\/|.*[?&]v=)|youtu\.be\/)([^\"&?\/\s]{11})"
)

# Kinds that only carry a url
URL_VIDEO_KINDS = frozenset({
    "hls", "direct", "vimeo", "dailymotion", "twitch", "facebook",
    "instagram", "tiktok", "embed", "dash", "generic",
})

PLAYBACK_ACTIONS = ("play", "pause", "seek")


def extract_youtube_id(url: str) -> Optional[str]:
    if not isinstance(url, str):
        return None
    match = YOUTUBE_ID_PATTERN.search(url)
    return match.group(1) if match else None


def normalize_video(raw: Any) -> dict[str, Any]:
    """
    Turn a client-supplied descriptor into the stored form.

    Accepts a typed descriptor (`{"type": ..., ...}`), the legacy
    `{"videoUrl": ...}` form or a bare YouTube url string.

    Raises:
        InvalidVideoException: unusable descriptor
    """
    if isinstance(raw, dict):
        kind = raw.get("type")

        if kind == "youtube":
            video_id = raw.get("videoId") or extract_youtube_id(raw.get("url"))
            if not video_id:
                raise InvalidVideoException("Invalid YouTube URL", {"kind": kind})
            return {"type": "youtube", "videoId": video_id, "url": raw.get("url")}

        if kind == "local":
            if not raw.get("url"):
                raise InvalidVideoException(details={"kind": kind, "reason": "url is required"})
            return {
                "type": "local",
                "url": raw["url"],
                "filename": raw.get("filename"),
                "duration": raw.get("duration"),
            }

        if kind in URL_VIDEO_KINDS:
            if not raw.get("url"):
                raise InvalidVideoException(details={"kind": kind, "reason": "url is required"})
            return {"type": kind, "url": raw["url"]}

        if kind is None and raw.get("videoUrl"):
            return _legacy_youtube(raw["videoUrl"])

        raise InvalidVideoException(details={"kind": kind} if kind else None)

    if isinstance(raw, str) and raw:
        return _legacy_youtube(raw)

    raise InvalidVideoException()


def _legacy_youtube(url: str) -> dict[str, Any]:
    video_id = extract_youtube_id(url)
    if not video_id:
        raise InvalidVideoException("Invalid YouTube URL", {"url": url})
    # `id` is kept for older clients
    return {"type": "youtube", "videoId": video_id, "url": url, "id": video_id}


class PlaybackService:
    """Host-gated video control and the room's playback clock"""

    def __init__(self, clock: Clock):
        self.clock = clock

    def set_video(self, room: Room, connection_id: str, raw_descriptor: Any) -> dict[str, Any]:
        """
        Replace the room's video and reset the clock to paused at 0.

        Raises:
            NotRoomHostException: sender is not the host
            InvalidVideoException: descriptor rejected
        """
        if not room.is_host(connection_id):
            raise NotRoomHostException("Only host can set video")

        video = normalize_video(raw_descriptor)
        room.video = video
        room.playback = PlaybackState(is_playing=False, position_seconds=0.0, last_update=self.clock())

        playback_logger.info(
            "Video set",
            extra={"room_code": room.code, "video_type": video["type"]}
        )
        return video

    def _update_clock(self, room: Room, action: str, position: Optional[float]) -> None:
        if action not in PLAYBACK_ACTIONS:
            raise InvalidPayloadException(f"unknown video action '{action}'")
        # No video means a paused clock at zero
        if room.video is None:
            raise InvalidPayloadException("no video set")

        state = room.playback
        if position is not None:
            state.position_seconds = max(float(position), 0.0)
        state.last_update = self.clock()

        if action == "play":
            state.is_playing = True
        elif action == "pause":
            state.is_playing = False

    def _sync_payload(self, room: Room, action: str) -> dict[str, Any]:
        state = room.playback
        return {
            "action": action,
            "currentTime": state.position_seconds,
            "isPlaying": state.is_playing,
            "timestamp": int(state.last_update * 1000),
        }

    def apply_action(self, room: Room, connection_id: str, action: str, position: Optional[float]) -> dict[str, Any]:
        """Passive play/pause/seek report from any member; returns the advisory video-sync body."""
        self._update_clock(room, action, position)
        playback_logger.debug(
            "Video action",
            extra={"room_code": room.code, "connection_id": connection_id, "action": action}
        )
        return self._sync_payload(room, action)

    def request_sync_all(self, room: Room, connection_id: str, action: str, position: Optional[float]) -> dict[str, Any]:
        """
        Host-only forced realignment.

        Returns the video-sync body tagged with `syncedBy`.

        Raises:
            NotRoomHostException: sender is not the host
            InvalidPayloadException: no video set
        """
        host = room.host
        if host is None or host.connection_id != connection_id:
            raise NotRoomHostException("Only host can sync video")

        self._update_clock(room, action, position)
        payload = self._sync_payload(room, action)
        payload["syncedBy"] = host.display_name

        playback_logger.info(
            "Host synced room",
            extra={
                "room_code": room.code,
                "action": action,
                "position": room.playback.position_seconds,
            }
        )
        return payload

    def compute_extrapolated_position(self, room: Room, now: Optional[float] = None) -> float:
        return room.playback.position_at(self.clock() if now is None else now)

    def initial_sync_payload(self, room: Room) -> dict[str, Any]:
        """Catch-up body for a late joiner, derived from the current room state"""
        now = self.clock()
        return {
            "action": "play" if room.playback.is_playing else "pause",
            "currentTime": self.compute_extrapolated_position(room, now),
            "timestamp": int(now * 1000),
        }
