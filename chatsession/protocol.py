# chatsession/protocol.py
# Wire format shared by the server and client sides of a chat session.
# Every frame is a JSON text message of the form {"type": <number>, "payload": {...}}.
# Inbound frames are validated here before the session ever looks at them, so the rest of
# the code can trust field types.

import json
import logging
import re

from . import config
from .errors import ProtocolError

# --- Message Types ---
# Client -> server
JOIN_REQUEST = 0
CHAT_SUBMIT = 1
RENAME_REQUEST = 2
COLOR_REQUEST = 3

# Server -> client
JOIN_ACCEPTED = 0.1
JOIN_REJECTED = 0.2
CHAT_EVENT = 10
ROSTER_UPDATE = 11

CLIENT_MESSAGE_TYPES = (JOIN_REQUEST, CHAT_SUBMIT, RENAME_REQUEST, COLOR_REQUEST)
SERVER_MESSAGE_TYPES = (JOIN_ACCEPTED, JOIN_REJECTED, CHAT_EVENT, ROSTER_UPDATE)

# Colors travel as '#rrggbb'.
COLOR_REGEX = re.compile(r"^#[0-9a-fA-F]{6}$")


# --- Colors ---
def color_to_hex(color):
    """Format an (r, g, b) tuple of 0-255 ints as '#rrggbb'."""
    r, g, b = color
    return f"#{r:02x}{g:02x}{b:02x}"


def parse_color(value):
    """
    Convert a color given as '#rrggbb' or an (r, g, b) sequence into a tuple of ints.

    Raises:
        ProtocolError: If the value is not a valid color.
    """
    if isinstance(value, str):
        if not COLOR_REGEX.match(value):
            raise ProtocolError(f"Invalid color {value!r}")
        return tuple(int(value[i:i + 2], 16) for i in (1, 3, 5))
    if isinstance(value, (tuple, list)) and len(value) == 3:
        if all(isinstance(c, int) and not isinstance(c, bool) and 0 <= c <= 255 for c in value):
            return tuple(value)
    raise ProtocolError(f"Invalid color {value!r}")


# --- Encoding ---
def make_message(message_type, payload):
    """Serialize a message type and payload dict into a JSON text frame."""
    message = json.dumps({"type": message_type, "payload": payload})
    if config.DEBUG:
        logging.info(f"Encoded frame: {message}")
    return message


def join_request():
    return make_message(JOIN_REQUEST, {})


def chat_submit(text):
    return make_message(CHAT_SUBMIT, {"text": text})


def rename_request(name):
    return make_message(RENAME_REQUEST, {"name": name})


def color_request(color):
    return make_message(COLOR_REQUEST, {"color": color_to_hex(color)})


def join_accepted(participant):
    return make_message(JOIN_ACCEPTED, {
        "connectionId": participant.connection_id,
        "name": participant.display_name,
        "color": color_to_hex(participant.color),
    })


def join_rejected(error):
    return make_message(JOIN_REJECTED, {"error": error})


def chat_event(event):
    return make_message(CHAT_EVENT, {
        "senderId": event.sender_id,
        "senderName": event.sender_name,
        "text": event.body,
        "color": color_to_hex(event.color),
    })


def roster_update(participant, joined):
    return make_message(ROSTER_UPDATE, {
        "connectionId": participant.connection_id,
        "name": participant.display_name,
        "color": color_to_hex(participant.color),
        "joined": joined,
    })


# --- Decoding and Validation ---
def _is_string(value):
    return isinstance(value, str)


def _is_id(value):
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _is_color(value):
    return isinstance(value, str) and COLOR_REGEX.match(value) is not None


# Required payload fields per message type and the check each must pass.
PAYLOAD_FIELDS = {
    JOIN_REQUEST: {},
    CHAT_SUBMIT: {"text": _is_string},
    RENAME_REQUEST: {"name": _is_string},
    COLOR_REQUEST: {"color": _is_color},
    JOIN_ACCEPTED: {"connectionId": _is_id, "name": _is_string, "color": _is_color},
    JOIN_REJECTED: {"error": _is_string},
    CHAT_EVENT: {"senderId": _is_id, "senderName": _is_string, "text": _is_string, "color": _is_color},
    ROSTER_UPDATE: {"connectionId": _is_id, "name": _is_string, "color": _is_color,
                    "joined": lambda v: isinstance(v, bool)},
}


def parse_message(raw, allowed_types):
    """
    Decode and validate a received frame.

    Args:
        raw (str | bytes): The frame as received from the transport.
        allowed_types (tuple): Message types acceptable for the receiving side
            (CLIENT_MESSAGE_TYPES on the server, SERVER_MESSAGE_TYPES on a client).

    Returns:
        tuple: (message_type, payload dict).

    Raises:
        ProtocolError: If the frame is not valid JSON, does not have the envelope structure,
            carries an unexpected type, or a required payload field is missing or mistyped.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError("Frame is not valid UTF-8") from e
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError("Invalid JSON") from e

    if not isinstance(data, dict):
        raise ProtocolError("Frame is not a JSON object")
    message_type = data.get("type")
    payload = data.get("payload")
    if isinstance(message_type, bool) or not isinstance(message_type, (int, float)):
        raise ProtocolError(f"Invalid 'type' {message_type!r}")
    if not isinstance(payload, dict):
        raise ProtocolError("Missing or invalid 'payload'")
    if message_type not in allowed_types:
        raise ProtocolError(f"Unexpected message type {message_type}")

    for field, check in PAYLOAD_FIELDS[message_type].items():
        if field not in payload or not check(payload[field]):
            raise ProtocolError(f"Invalid '{field}' in type {message_type} payload")
    return message_type, payload
