import pytest

from watchparty.exceptions import ErrorCode, InvalidPayloadException
from watchparty.schemas import events as ev
from watchparty.schemas.events import parse_inbound_event


def test_join_room_uses_camel_case_fields():
    event = parse_inbound_event({"type": "join-room", "roomCode": " ab12cd ", "username": "Alice"})

    assert isinstance(event, ev.JoinRoomEvent)
    assert event.room_code == "AB12CD"
    assert event.username == "Alice"


def test_set_video_descriptor_prefers_video_over_legacy_url():
    event = parse_inbound_event({"type": "set-video", "video": {"type": "youtube", "videoId": "abc123"}})
    assert event.descriptor == {"type": "youtube", "videoId": "abc123"}

    legacy = parse_inbound_event({"type": "set-video", "videoUrl": "https://youtu.be/dQw4w9WgXcQ"})
    assert legacy.descriptor == "https://youtu.be/dQw4w9WgXcQ"


def test_video_action_fields():
    event = parse_inbound_event({"type": "video-action", "action": "seek", "currentTime": 12})
    assert isinstance(event, ev.VideoActionEvent)
    assert event.current_time == 12.0


def test_client_supplied_username_is_ignored_on_voice_events():
    event = parse_inbound_event({"type": "start-voice-chat", "username": "Mallory"})
    assert isinstance(event, ev.StartVoiceChatEvent)
    assert not hasattr(event, "username")


def test_webrtc_relay_keeps_payload_but_not_sender_claims():
    event = parse_inbound_event({
        "type": "webrtc-offer",
        "to": "peer-1",
        "from": "spoofed",
        "offer": {"sdp": "v=0", "type": "offer"},
    })

    assert event.to == "peer-1"
    assert event.relay_fields() == {"offer": {"sdp": "v=0", "type": "offer"}}


def test_voice_signal_requires_target():
    with pytest.raises(InvalidPayloadException):
        parse_inbound_event({"type": "voice-offer", "offer": {}})


@pytest.mark.parametrize("data, reason", [
    ("just text", "expected a JSON object"),
    ([1, 2], "expected a JSON object"),
    ({"roomCode": "X"}, "missing event type"),
    ({"type": "launch-rockets"}, "unknown event type 'launch-rockets'"),
])
def test_malformed_frames(data, reason):
    with pytest.raises(InvalidPayloadException) as exc_info:
        parse_inbound_event(data)

    assert exc_info.value.code == ErrorCode.WS_INVALID_MESSAGE
    assert exc_info.value.message == f"Invalid message: {reason}"


def test_field_errors_are_reported():
    with pytest.raises(InvalidPayloadException) as exc_info:
        parse_inbound_event({"type": "video-action", "action": "rewind"})

    errors = exc_info.value.details["validation_errors"]
    assert {e["field"] for e in errors} == {"action"}


@pytest.mark.parametrize("event_type", ["video-action", "video-sync-request"])
@pytest.mark.parametrize("position", [float("nan"), float("inf"), -1.0])
def test_position_must_be_a_finite_non_negative_number(event_type, position):
    with pytest.raises(InvalidPayloadException) as exc_info:
        parse_inbound_event({"type": event_type, "action": "seek", "currentTime": position})

    assert exc_info.value.details["eventType"] == event_type
    assert exc_info.value.details["validation_errors"]
