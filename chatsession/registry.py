# chatsession/registry.py
# The authoritative roster of a chat session.
# Maps each joined connection id to a Participant (display name + color). Only the session's
# event worker mutates it; everyone else reads through enumerate() snapshots.

import logging
import random
from dataclasses import dataclass, replace

from . import config
from .errors import DuplicateConnection, SessionFull


@dataclass
class Participant:
    """One connected identity, scoped to a single live connection."""

    connection_id: int
    display_name: str
    color: tuple  # (r, g, b), 0-255 each


class ParticipantRegistry:
    """
    Roster keyed by connection id, in join order.

    Args:
        max_participants (int): Roster capacity; joins beyond it raise SessionFull.
        rng (random.Random | None): Source for default names and colors. Tests pass a seeded one.
    """

    def __init__(self, max_participants=config.MAX_PARTICIPANTS, rng=None):
        self.max_participants = max_participants
        self._rng = rng or random.Random()
        self._participants = {}  # connection_id -> Participant; dicts keep insertion (join) order.

    def __len__(self):
        return len(self._participants)

    def __contains__(self, connection_id):
        return connection_id in self._participants

    def default_name(self):
        # Collisions are allowed; names are not deduplicated.
        return f"{config.DEFAULT_NAME_PREFIX}{self._rng.randint(1000, 9999)}"

    def random_color(self):
        # Light colors only, so names stay readable on a dark background.
        return tuple(self._rng.randint(128, 255) for _ in range(3))

    def on_join(self, connection_id):
        """
        Create and register the participant for a newly joined connection.

        Raises:
            DuplicateConnection: If the connection id is already registered.
            SessionFull: If the roster is at capacity.
        """
        if connection_id in self._participants:
            raise DuplicateConnection(connection_id)
        if len(self._participants) >= self.max_participants:
            raise SessionFull(self.max_participants)
        participant = Participant(connection_id, self.default_name(), self.random_color())
        self._participants[connection_id] = participant
        logging.info(f"Participant '{participant.display_name}' joined on connection {connection_id}")
        return participant

    def on_leave(self, connection_id):
        """Remove a participant. Unknown ids are ignored; returns the removed participant or None."""
        participant = self._participants.pop(connection_id, None)
        if participant:
            logging.info(f"Participant '{participant.display_name}' left (connection {connection_id})")
        return participant

    def rename(self, connection_id, new_name):
        """Rename the participant owning `connection_id`. Blank names get a fresh default name."""
        participant = self._participants.get(connection_id)
        if participant is None:
            return None
        name = new_name.strip() if isinstance(new_name, str) else ""
        old_name = participant.display_name
        participant.display_name = name or self.default_name()
        logging.info(f"Participant renamed: {old_name} -> {participant.display_name}")
        return participant

    def set_color(self, connection_id, color):
        participant = self._participants.get(connection_id)
        if participant is None:
            return None
        participant.color = tuple(color)
        return participant

    def lookup(self, connection_id):
        return self._participants.get(connection_id)

    def enumerate(self):
        """Return a snapshot list of participants in join order."""
        return [replace(p) for p in self._participants.values()]
