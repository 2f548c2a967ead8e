"""Shared fixtures: in-memory transports and a recording presentation sink."""
import asyncio
import itertools
import json
import random

import pytest

from chatsession.errors import BindError, ConnectionFailed
from chatsession.session import SessionManager
from chatsession.sink import PresentationSink


class FakeServerTransport:
    """Server transport without sockets. Tests drive it with connect()/receive()/drop()."""

    def __init__(self, on_connected, on_disconnected, on_data, fail_bind=False):
        self._on_connected = on_connected
        self._on_disconnected = on_disconnected
        self._on_data = on_data
        self.fail_bind = fail_bind
        self._ids = itertools.count(1)
        self.connections = {}  # id -> None (remote) or deliver callable (local)
        self.sent = {}  # id -> [frame, ...]
        self.closed = {}  # id -> (code, reason)
        self.listening = False
        self.stopped = False

    async def start(self, host, port):
        if self.fail_bind:
            raise BindError(f"Could not listen on {host}:{port}: address already in use")
        self.listening = True

    async def stop(self):
        self.connections.clear()
        self.listening = False
        self.stopped = True

    def send(self, connection_id, frame):
        if connection_id not in self.connections:
            return False
        self.sent.setdefault(connection_id, []).append(frame)
        deliver = self.connections[connection_id]
        if deliver is not None:
            deliver(frame)
        return True

    def disconnect(self, connection_id, code=1000, reason=""):
        self.closed[connection_id] = (code, reason)
        self.drop(connection_id)

    def open_local(self, deliver):
        connection_id = next(self._ids)
        self.connections[connection_id] = deliver
        self._on_connected(connection_id)
        return connection_id

    def receive_local(self, connection_id, frame):
        if connection_id in self.connections:
            self._on_data(connection_id, frame)

    # --- test helpers ---
    def connect(self):
        connection_id = next(self._ids)
        self.connections[connection_id] = None
        self._on_connected(connection_id)
        return connection_id

    def receive(self, connection_id, frame):
        if not isinstance(frame, str):
            frame = json.dumps(frame)
        self._on_data(connection_id, frame)

    def drop(self, connection_id):
        if self.connections.pop(connection_id, "missing") != "missing":
            self._on_disconnected(connection_id)

    def frames(self, connection_id, message_type=None):
        decoded = [json.loads(f) for f in self.sent.get(connection_id, [])]
        if message_type is None:
            return decoded
        return [f for f in decoded if f["type"] == message_type]


class FakeClientTransport:
    """Client transport without sockets. `behavior` is 'ok', 'refuse' or 'hang'."""

    def __init__(self, on_data, on_disconnected, behavior="ok"):
        self._on_data = on_data
        self._on_disconnected = on_disconnected
        self.behavior = behavior
        self.uri = None
        self.sent = []
        self.closed = False
        self.connected = False

    async def connect(self, uri):
        self.uri = uri
        if self.behavior == "refuse":
            raise ConnectionFailed(f"Could not connect to {uri}: connection refused")
        if self.behavior == "hang":
            await asyncio.Event().wait()
        self.connected = True

    def send(self, frame):
        if not self.connected or self.closed:
            return False
        self.sent.append(json.loads(frame))
        return True

    async def close(self):
        self.closed = True
        self.connected = False

    # --- test helpers ---
    def deliver(self, message_type, payload):
        self._on_data(json.dumps({"type": message_type, "payload": payload}))

    def server_drop(self):
        self.connected = False
        self._on_disconnected()


class RecordingSink(PresentationSink):
    def __init__(self):
        self.events = []

    def notify_connection_status(self, connected):
        self.events.append(("status", connected))

    def notify_message(self, sender, text, color):
        self.events.append(("message", sender, text, color))

    def notify_system_message(self, text):
        self.events.append(("system", text))

    def notify_error(self, text):
        self.events.append(("error", text))

    def notify_lifecycle(self, event):
        self.events.append(("lifecycle", event))
        super().notify_lifecycle(event)

    def of(self, kind):
        return [e for e in self.events if e[0] == kind]


async def wait_until(predicate, attempts=200):
    """Yield to the event loop until predicate() holds."""
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0)
    return predicate()


@pytest.fixture
def server_transports():
    return []


@pytest.fixture
def client_transports():
    return []


@pytest.fixture
def make_session(server_transports, client_transports):
    """Build a SessionManager wired to fake transports. Extra kwargs go to the SessionManager."""

    def factory(fail_bind=False, client_behavior="ok", **kwargs):
        def server_factory(on_connected, on_disconnected, on_data):
            transport = FakeServerTransport(on_connected, on_disconnected, on_data, fail_bind=fail_bind)
            server_transports.append(transport)
            return transport

        def client_factory(on_data, on_disconnected):
            transport = FakeClientTransport(on_data, on_disconnected, behavior=client_behavior)
            client_transports.append(transport)
            return transport

        kwargs.setdefault("rng", random.Random(0))
        return SessionManager(
            server_transport_factory=server_factory,
            client_transport_factory=client_factory,
            **kwargs,
        )

    return factory


@pytest.fixture
def sink():
    return RecordingSink()
