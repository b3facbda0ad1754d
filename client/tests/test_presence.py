"""Tests for PresenceNotifier join/leave notices."""
import pytest

from conftest import ts
from pickup.chat.presence import SYSTEM_SENDER_ID, PresenceNotifier
from pickup.chat.schemas import MessageKind


@pytest.fixture
def notifier():
    return PresenceNotifier()


class TestPresenceNotice:
    def test_join_notice(self, notifier):
        message = notifier.notice("user-joined", {"username": "Ann"}, "game-1", ts(150))

        assert message.body == "Ann joined the game"
        assert message.kind == MessageKind.SYSTEM
        assert message.sender_id == SYSTEM_SENDER_ID
        assert message.room_id == "game-1"
        assert message.id.startswith("system-")
        assert message.timestamp == ts(150)

    def test_leave_notice(self, notifier):
        message = notifier.notice("user-left", {"username": "Bo", "gameId": "game-1"}, "game-1", ts(150))
        assert message.body == "Bo left the game"

    def test_each_notice_gets_fresh_id(self, notifier):
        a = notifier.notice("user-joined", {"username": "Ann"}, "game-1", ts(150))
        b = notifier.notice("user-joined", {"username": "Ann"}, "game-1", ts(150))
        assert a.id != b.id

    def test_timestamp_never_precedes_last_entry(self, notifier):
        message = notifier.notice(
            "user-joined", {"username": "Ann"}, "game-1", ts(120), last_timestamp=ts(150)
        )
        assert message.timestamp == ts(150)

    def test_other_game_is_ignored(self, notifier):
        assert notifier.notice("user-joined", {"username": "Ann", "gameId": "game-2"}, "game-1", ts(150)) is None

    def test_no_active_room(self, notifier):
        assert notifier.notice("user-joined", {"username": "Ann"}, None, ts(150)) is None

    def test_unknown_event(self, notifier):
        assert notifier.notice("typing", {"username": "Ann"}, "game-1", ts(150)) is None

    @pytest.mark.parametrize("payload", [None, {}, {"username": ""}, "Ann", {"user": "Ann"}])
    def test_malformed_payload(self, notifier, payload):
        assert notifier.notice("user-left", payload, "game-1", ts(150)) is None


class TestEventNames:
    def test_presence_events_match_transport(self):
        from pickup.chat import presence, transport

        assert presence.USER_JOINED is transport.USER_JOINED
        assert presence.USER_LEFT is transport.USER_LEFT
