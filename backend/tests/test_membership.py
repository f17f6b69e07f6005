import re

import pytest

from watchparty.exceptions import (
    ErrorCode,
    InvalidPayloadException,
    MemberNotFoundException,
    NotRoomHostException,
    RoomFullException,
    RoomNotFoundException,
    UsernameTakenException,
)
from watchparty.services.membership import PREDEFINED_COLORS, MembershipService
from watchparty.services.registry import RoomRegistry

from conftest import make_settings


def fill(membership, room, count):
    for i in range(count):
        membership.join(room, f"user{i}", f"c{i}")


class TestJoin:

    def test_first_member_becomes_host(self, registry, membership):
        room = registry.create_room()
        result = membership.join(room, "Alice", "c1")

        assert result.became_host is True
        assert room.host_id == "c1"
        assert result.member.display_name == "Alice"
        assert result.member.color == PREDEFINED_COLORS[0]

    def test_later_members_do_not_take_the_host_role(self, registry, membership):
        room = registry.create_room()
        membership.join(room, "Alice", "c1")
        result = membership.join(room, "Bob", "c2")

        assert result.became_host is False
        assert room.host_id == "c1"
        assert result.member.color == PREDEFINED_COLORS[1]
        assert room.usernames() == ["Alice", "Bob"]

    def test_display_name_is_trimmed(self, registry, membership):
        room = registry.create_room()
        result = membership.join(room, "  Alice  ", "c1")
        assert result.member.display_name == "Alice"

    @pytest.mark.parametrize("name", ["", "   ", "x" * 21])
    def test_rejects_invalid_display_names(self, registry, membership, name):
        room = registry.create_room()
        with pytest.raises(InvalidPayloadException):
            membership.join(room, name, "c1")
        assert room.members == []

    def test_missing_room(self, membership):
        with pytest.raises(RoomNotFoundException):
            membership.join(None, "Alice", "c1")

    def test_name_must_be_unique_among_live_members(self, registry, membership):
        room = registry.create_room()
        membership.join(room, "Alice", "c1")

        with pytest.raises(UsernameTakenException) as exc_info:
            membership.join(room, "Alice", "c2")

        assert exc_info.value.code == ErrorCode.USERNAME_TAKEN
        assert exc_info.value.details["existingUsers"] == ["Alice"]
        assert len(room.members) == 1

    def test_names_are_case_sensitive(self, registry, membership):
        room = registry.create_room()
        membership.join(room, "Alice", "c1")
        membership.join(room, "alice", "c2")
        assert room.usernames() == ["Alice", "alice"]

    def test_seventh_join_is_rejected(self, registry, membership):
        room = registry.create_room()
        fill(membership, room, 6)

        with pytest.raises(RoomFullException) as exc_info:
            membership.join(room, "late", "c99")

        assert exc_info.value.code == ErrorCode.ROOM_FULL
        assert len(exc_info.value.details["currentUsers"]) == 6
        assert len(room.members) == 6

    def test_capacity_is_checked_before_the_name(self, registry, membership):
        room = registry.create_room()
        fill(membership, room, 6)
        with pytest.raises(RoomFullException):
            membership.join(room, "user0", "c99")

    def test_join_clears_empty_since(self, registry, membership):
        room = registry.create_room()
        membership.join(room, "Alice", "c1")
        membership.leave(room, "c1")
        assert room.empty_since is not None

        membership.join(room, "Alice", "c2")
        assert room.empty_since is None
        assert room.host_id == "c2"

    def test_random_color_after_palette_is_exhausted(self, clock, scheduler):
        registry = RoomRegistry(make_settings(MAX_USERS_PER_ROOM=20), clock=clock, scheduler=scheduler)
        membership = MembershipService(registry)
        room = registry.create_room()
        fill(membership, room, 13)

        assert [m.color for m in room.members[:12]] == PREDEFINED_COLORS
        assert re.fullmatch(r"hsl\(\d{1,3}, 75%, 60%\)", room.members[12].color)


class TestLeave:

    def test_host_leaving_hands_over_to_earliest_member(self, registry, membership):
        room = registry.create_room()
        fill(membership, room, 3)

        result = membership.leave(room, "c0")

        assert result.was_host is True
        assert result.new_host.connection_id == "c1"
        assert room.host_id == "c1"
        assert result.room_empty is False

    def test_non_host_leaving_keeps_host(self, registry, membership):
        room = registry.create_room()
        fill(membership, room, 3)

        result = membership.leave(room, "c1")

        assert result.was_host is False
        assert result.new_host is None
        assert room.host_id == "c0"

    def test_leave_clears_typing_and_screen_share(self, registry, membership):
        room = registry.create_room()
        fill(membership, room, 2)
        room.typing.add("c1")
        room.screen_sharers["c1"] = "user1"

        membership.leave(room, "c1")

        assert "c1" not in room.typing
        assert "c1" not in room.screen_sharers

    def test_last_member_leaving_marks_room_empty(self, registry, membership, clock, scheduler):
        room = registry.create_room()
        membership.join(room, "Alice", "c1")

        result = membership.leave(room, "c1")

        assert result.room_empty is True
        assert room.host_id is None
        assert room.empty_since == clock()
        # The creation sweep plus the one armed by leaving
        assert len(scheduler.calls) == 2

    def test_leave_unknown_connection(self, registry, membership):
        room = registry.create_room()
        assert membership.leave(room, "ghost") is None


class TestTransferHost:

    def test_host_transfers_to_member(self, registry, membership):
        room = registry.create_room()
        fill(membership, room, 2)

        result = membership.transfer_host(room, "c0", "user1")

        assert result.changed is True
        assert result.previous_host.connection_id == "c0"
        assert room.host_id == "c1"

    def test_non_host_cannot_transfer(self, registry, membership):
        room = registry.create_room()
        fill(membership, room, 2)

        with pytest.raises(NotRoomHostException):
            membership.transfer_host(room, "c1", "user1")
        assert room.host_id == "c0"

    def test_target_must_be_a_member(self, registry, membership):
        room = registry.create_room()
        fill(membership, room, 2)

        with pytest.raises(MemberNotFoundException):
            membership.transfer_host(room, "c0", "nobody")
        assert room.host_id == "c0"

    def test_transfer_to_self_is_a_no_op(self, registry, membership):
        room = registry.create_room()
        fill(membership, room, 2)

        result = membership.transfer_host(room, "c0", "user0")

        assert result.changed is False
        assert room.host_id == "c0"


def test_snapshot_reports_host_flags(registry, membership):
    room = registry.create_room()
    fill(membership, room, 2)

    snapshot = room.snapshot(50)

    assert snapshot["roomCode"] == room.code
    assert [u["isHost"] for u in snapshot["users"]] == [True, False]
    assert snapshot["video"] is None
    assert snapshot["voiceChat"] is None
    assert snapshot["screenSharers"] == []
