# chatsession/broadcaster.py
# Validates chat submissions and relays them to every participant on the authoritative side.

import logging
from dataclasses import dataclass

from . import config
from . import protocol


@dataclass(frozen=True)
class ChatEvent:
    """One chat line on its way to the roster. Never stored."""

    sender_id: int
    sender_name: str
    body: str
    color: tuple  # Sender's color when the message was submitted.


class MessageBroadcaster:
    """
    Turns raw submissions into ChatEvents and fans them out.

    Args:
        registry (ParticipantRegistry): The authoritative roster, used to resolve senders and recipients.
        send (callable): send(connection_id, frame) of the server transport. Must not block;
            each connection keeps its own FIFO outbound queue.
    """

    def __init__(self, registry, send):
        self.registry = registry
        self._send = send

    def submit(self, connection_id, raw_text):
        """
        Handle a chat submission from `connection_id`.

        The sender is always resolved from the connection, never from the payload. Blank text and
        unknown senders are discarded without raising.

        Returns:
            ChatEvent | None: The relayed event, or None if the submission was discarded.
        """
        if not isinstance(raw_text, str):
            return None
        body = raw_text.strip()
        if not body:
            return None

        sender = self.registry.lookup(connection_id)
        if sender is None:
            # The connection raced with its own disconnect.
            logging.warning(f"Discarding chat message from unknown connection {connection_id}")
            return None

        event = ChatEvent(sender.connection_id, sender.display_name, body, sender.color)
        self.relay(event)
        return event

    def relay(self, event):
        """Send `event` to every participant, the sender included. Returns the number of recipients."""
        logging.info(f"[chat] {event.sender_name}: {event.body}")
        frame = protocol.chat_event(event)
        recipients = self.registry.enumerate()
        for participant in recipients:
            if config.DEBUG:
                logging.info(f"Relaying chat from {event.sender_id} to {participant.connection_id}")
            self._send(participant.connection_id, frame)
        return len(recipients)
