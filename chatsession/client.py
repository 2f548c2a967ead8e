# chatsession/client.py
# The participant-facing side of a chat session.
# A ChatClient turns local user input into request frames and turns frames from the authoritative
# side into presentation notifications. It is used both for a remote client connection and for the
# host's own loopback participant. Its roster is a read-only mirror built from RosterUpdate frames.

import asyncio
import logging

from . import protocol
from .errors import ConnectionFailed, ProtocolError
from .registry import Participant


class ChatClient:
    """
    Args:
        hub (SinkHub): Where notifications go.
        display_name (str | None): Name to request right after joining. None keeps the server's default.
    """

    def __init__(self, hub, display_name=None):
        self._hub = hub
        self._send = None
        self.display_name = display_name
        self.connection_id = None
        self._roster = {}  # connection_id -> Participant
        self._settled = asyncio.Event()
        self._failure = None

    @property
    def joined(self):
        return self.connection_id is not None and self._send is not None

    def attach(self, send):
        """Bind the function used to send frames to the authoritative side."""
        self._send = send

    def detach(self):
        self._send = None
        self.connection_id = None
        self._roster.clear()

    def roster(self):
        return [Participant(p.connection_id, p.display_name, p.color) for p in self._roster.values()]

    # --- Handshake ---
    def request_join(self):
        self._send(protocol.join_request())

    async def wait_joined(self):
        """Wait for the join to be accepted. Raises ConnectionFailed if it was rejected or aborted."""
        await self._settled.wait()
        if self._failure is not None:
            raise self._failure

    def fail(self, reason):
        if not self._settled.is_set():
            self._failure = ConnectionFailed(reason)
            self._settled.set()

    # --- Local input ---
    def submit(self, text):
        # Blank input does nothing; the server trims and checks again.
        if not isinstance(text, str) or not text.strip():
            return
        if not self.joined:
            return
        self._send(protocol.chat_submit(text.strip()))

    def rename(self, name):
        if self.joined:
            self._send(protocol.rename_request(name))

    def set_color(self, color):
        try:
            color = protocol.parse_color(color)
        except ProtocolError:
            self._hub.error(f"Invalid color {color!r}, expected #rrggbb")
            return
        if self.joined:
            self._send(protocol.color_request(color))

    # --- Frames from the authoritative side ---
    def handle_payload(self, frame):
        try:
            message_type, payload = protocol.parse_message(frame, protocol.SERVER_MESSAGE_TYPES)
        except ProtocolError as e:
            logging.warning(f"Ignoring invalid frame from server: {e}")
            return

        if message_type == protocol.CHAT_EVENT:
            self._hub.message(payload["senderName"], payload["text"], protocol.parse_color(payload["color"]))
        elif message_type == protocol.ROSTER_UPDATE:
            self._apply_roster_update(payload)
        elif message_type == protocol.JOIN_ACCEPTED:
            self._on_join_accepted(payload)
        elif message_type == protocol.JOIN_REJECTED:
            logging.warning(f"Join rejected: {payload['error']}")
            self._hub.error(payload["error"])
            self.fail(payload["error"])

    def _on_join_accepted(self, payload):
        self.connection_id = payload["connectionId"]
        participant = Participant(self.connection_id, payload["name"], protocol.parse_color(payload["color"]))
        self._roster[self.connection_id] = participant
        logging.info(f"Joined as '{participant.display_name}' (connection {self.connection_id})")
        self._hub.system_message(f"Joined the chat as {participant.display_name}")
        self._settled.set()
        if self.display_name:
            self.rename(self.display_name)

    def _apply_roster_update(self, payload):
        connection_id = payload["connectionId"]
        name = payload["name"]
        color = protocol.parse_color(payload["color"])

        if not payload["joined"]:
            participant = self._roster.pop(connection_id, None)
            if participant is not None:
                self._hub.system_message(f"{participant.display_name} left the chat")
            return

        existing = self._roster.get(connection_id)
        self._roster[connection_id] = Participant(connection_id, name, color)
        # Entries received before our own join are the initial snapshot, not news.
        if self.connection_id is None:
            return
        if existing is None:
            if connection_id != self.connection_id:
                self._hub.system_message(f"{name} joined the chat")
        elif existing.display_name != name:
            self._hub.system_message(f"{existing.display_name} is now known as {name}")
