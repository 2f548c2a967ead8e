# chatsession/__init__.py
# Minimal real-time chat session: one authoritative server (or host) assigns every participant an
# identity and relays chat messages to all of them.

from .broadcaster import ChatEvent, MessageBroadcaster
from .client import ChatClient
from .errors import (
    AlreadyActive,
    BindError,
    ConnectionFailed,
    DuplicateConnection,
    ProtocolError,
    SessionError,
    SessionFull,
)
from .registry import Participant, ParticipantRegistry
from .session import SessionManager, SessionRole
from .sink import ConsoleSink, LifecycleEvent, PresentationSink, Subscription

__all__ = [
    "AlreadyActive",
    "BindError",
    "ChatClient",
    "ChatEvent",
    "ConnectionFailed",
    "ConsoleSink",
    "DuplicateConnection",
    "LifecycleEvent",
    "MessageBroadcaster",
    "Participant",
    "ParticipantRegistry",
    "PresentationSink",
    "ProtocolError",
    "SessionError",
    "SessionFull",
    "SessionManager",
    "SessionRole",
    "Subscription",
]
