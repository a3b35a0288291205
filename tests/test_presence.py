import json

from wardrobe_chat.utils.websocket_manager import PresenceRegistry, SocketConnection, encode_frame


class DummySocket:
    pass


def test_latest_identify_wins():
    registry = PresenceRegistry()
    old = SocketConnection(DummySocket())
    new = SocketConnection(DummySocket())

    assert registry.set("u1", old) is None
    assert registry.set("u1", new) is old
    assert registry.get("u1") is new
    assert registry.online_users() == ["u1"]


def test_stale_disconnect_does_not_clobber_newer_connection():
    registry = PresenceRegistry()
    old = SocketConnection(DummySocket())
    new = SocketConnection(DummySocket())
    registry.set("u1", old)
    registry.set("u1", new)

    assert registry.remove_if_current("u1", old) is False
    assert registry.get("u1") is new
    assert registry.remove_if_current("u1", new) is True
    assert registry.get("u1") is None


def test_reidentify_same_connection_is_not_a_supersede():
    registry = PresenceRegistry()
    conn = SocketConnection(DummySocket())
    registry.set("u1", conn)
    assert registry.set("u1", conn) is None


def test_encode_frame_serializes_datetimes():
    from datetime import datetime, timezone

    frame = json.loads(encode_frame("chatCleared", {"chatId": "c1", "at": datetime(2024, 1, 1, tzinfo=timezone.utc)}))
    assert frame == {"event": "chatCleared", "data": {"chatId": "c1", "at": "2024-01-01T00:00:00+00:00"}}
