"""Tests for frame encoding and validation."""
import json

import pytest

from chatsession import protocol
from chatsession.broadcaster import ChatEvent
from chatsession.errors import ProtocolError
from chatsession.registry import Participant


def test_chat_event_frame():
    frame = protocol.chat_event(ChatEvent(3, "Alice", "hi", (255, 128, 0)))
    assert json.loads(frame) == {
        "type": protocol.CHAT_EVENT,
        "payload": {"senderId": 3, "senderName": "Alice", "text": "hi", "color": "#ff8000"},
    }


def test_roster_update_frame():
    frame = protocol.roster_update(Participant(2, "Bob", (1, 2, 3)), joined=False)
    message_type, payload = protocol.parse_message(frame, protocol.SERVER_MESSAGE_TYPES)
    assert message_type == protocol.ROSTER_UPDATE
    assert payload == {"connectionId": 2, "name": "Bob", "color": "#010203", "joined": False}


def test_join_accepted_type_survives_json():
    frame = protocol.join_accepted(Participant(1, "Player1000", (200, 200, 200)))
    message_type, _ = protocol.parse_message(frame, protocol.SERVER_MESSAGE_TYPES)
    assert message_type == protocol.JOIN_ACCEPTED


def test_bytes_frames_are_accepted():
    message_type, payload = protocol.parse_message(b'{"type": 1, "payload": {"text": "yo"}}',
                                                   protocol.CLIENT_MESSAGE_TYPES)
    assert message_type == protocol.CHAT_SUBMIT
    assert payload["text"] == "yo"


@pytest.mark.parametrize("frame", [
    "not json",
    "[1, 2]",
    '{"payload": {}}',
    '{"type": "chat", "payload": {}}',
    '{"type": true, "payload": {}}',
    '{"type": 1, "payload": "text"}',
    '{"type": 1, "payload": {}}',
    '{"type": 1, "payload": {"text": 5}}',
    '{"type": 3, "payload": {"color": "red"}}',
    '{"type": 42, "payload": {}}',
])
def test_invalid_client_frames(frame):
    with pytest.raises(ProtocolError):
        protocol.parse_message(frame, protocol.CLIENT_MESSAGE_TYPES)


def test_server_types_rejected_from_clients():
    frame = protocol.chat_event(ChatEvent(1, "Eve", "spoof", (0, 0, 0)))
    with pytest.raises(ProtocolError):
        protocol.parse_message(frame, protocol.CLIENT_MESSAGE_TYPES)


def test_parse_color():
    assert protocol.parse_color("#FFa000") == (255, 160, 0)
    assert protocol.parse_color([1, 2, 3]) == (1, 2, 3)
    for bad in ("#fff", "00ff00", (1, 2), (1, 2, 300), ("a", 2, 3), None):
        with pytest.raises(ProtocolError):
            protocol.parse_color(bad)
