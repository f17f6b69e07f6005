import pytest

from watchparty.exceptions import InvalidPayloadException
from watchparty.services.chat import ICON_JOINED, ChatService, build_reaction

from conftest import make_settings


@pytest.fixture
def chat(settings):
    return ChatService(settings)


@pytest.fixture
def room(registry, membership):
    room = registry.create_room()
    membership.join(room, "Alice", "c1")
    membership.join(room, "Bob", "c2")
    return room


def test_post_message_trims_and_stores(chat, room):
    message = chat.post_message(room, "c1", "  hello there  ")

    assert message.message == "hello there"
    assert message.username == "Alice"
    assert message.color == room.members[0].color
    assert room.chat_history == [message]

    data = message.to_dict()
    assert data["kind"] == "user"
    assert data["username"] == "Alice"
    assert "icon" not in data


@pytest.mark.parametrize("body", ["", "    ", None, 5])
def test_empty_messages_are_dropped(chat, room, body):
    assert chat.post_message(room, "c1", body) is None
    assert room.chat_history == []


def test_message_length_limit(chat, room):
    assert chat.post_message(room, "c1", "x" * 500) is not None

    with pytest.raises(InvalidPayloadException):
        chat.post_message(room, "c1", "x" * 501)
    assert len(room.chat_history) == 1


def test_history_is_capped_oldest_first(room):
    chat = ChatService(make_settings(CHAT_HISTORY_LIMIT=100))
    for i in range(105):
        chat.post_message(room, "c1", f"msg {i}")

    assert len(room.chat_history) == 100
    assert room.chat_history[0].message == "msg 5"
    assert room.chat_history[-1].message == "msg 104"


def test_system_message_shape(chat, room):
    message = chat.system_message(room, "Alice joined the room", ICON_JOINED)
    data = message.to_dict()

    assert data["kind"] == "system"
    assert data["icon"] == ICON_JOINED
    assert "username" not in data
    assert room.chat_history[-1] is message


def test_typing_transitions_are_deduplicated(chat, room):
    assert chat.set_typing(room, "c1", True) is True
    assert chat.set_typing(room, "c1", True) is False
    assert chat.set_typing(room, "c1", False) is True
    assert chat.set_typing(room, "c1", False) is False


def test_posting_clears_typing(chat, room):
    chat.set_typing(room, "c1", True)
    chat.post_message(room, "c1", "done typing")
    assert "c1" not in room.typing


def test_reaction_position_is_a_percentage():
    reaction = build_reaction("Alice", "🎉")

    assert reaction["username"] == "Alice"
    assert reaction["emoji"] == "🎉"
    assert 0 <= reaction["x"] <= 100
    assert 0 <= reaction["y"] <= 100
