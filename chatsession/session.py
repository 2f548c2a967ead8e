# chatsession/session.py
# The Session Manager: owns the process's network role and the authoritative session state.
# Responsibilities include:
# - Role transitions (offline / client / server / host) through a single dispatch point.
# - Running the event worker: the one task that mutates the roster. Transport callbacks only
#   enqueue connected / disconnected / data events, which the worker handles in order.
# - Handling join requests, renames and color changes, and handing chat submissions to the broadcaster.
# - Reporting lifecycle changes to the subscribed presentation sinks.
# Construct one SessionManager per process and pass it to whatever needs it.

import asyncio
import contextlib
import enum
import logging

from . import config
from . import protocol
from .broadcaster import MessageBroadcaster
from .client import ChatClient
from .errors import AlreadyActive, BindError, ConnectionFailed, DuplicateConnection, ProtocolError, SessionFull
from .registry import ParticipantRegistry
from .sink import LifecycleEvent, SinkHub
from .transport import (
    CLOSE_POLICY_VIOLATION,
    CLOSE_TRY_AGAIN_LATER,
    WebSocketClientTransport,
    WebSocketServerTransport,
)


class SessionRole(enum.Enum):
    OFFLINE = "offline"
    CLIENT_ONLY = "client"
    SERVER_ONLY = "server"
    HOST = "host"


class SessionManager:
    """
    Args:
        listen_address (str): Bind address for server and host roles.
        remote_address (str): Server address for the client role.
        port (int): Port to listen on or connect to (1-65535).
        max_participants (int): Roster capacity on the authoritative side.
        connect_timeout (float): Seconds a client waits for the join handshake.
        display_name (str | None): Name the local participant requests after joining.
        server_transport_factory, client_transport_factory: Transport classes (or compatible
            callables) taking the same arguments as WebSocketServerTransport / WebSocketClientTransport.
        rng (random.Random | None): Source of default names and colors.
    """

    def __init__(
        self,
        listen_address=config.HOST,
        remote_address=config.REMOTE_ADDRESS,
        port=config.PORT,
        max_participants=config.MAX_PARTICIPANTS,
        connect_timeout=config.CONNECT_TIMEOUT_SECONDS,
        display_name=None,
        server_transport_factory=WebSocketServerTransport,
        client_transport_factory=WebSocketClientTransport,
        rng=None,
    ):
        self.listen_address = listen_address
        self.remote_address = remote_address
        self.port = config.validate_port(port)
        self.max_participants = config.validate_max_participants(max_participants)
        self.connect_timeout = connect_timeout
        self.display_name = display_name
        self._server_transport_factory = server_transport_factory
        self._client_transport_factory = client_transport_factory
        self._rng = rng

        self._hub = SinkHub()
        self._role = SessionRole.OFFLINE
        self._transitioning = False

        # Authoritative side (server / host).
        self.registry = None
        self.broadcaster = None
        self._server_transport = None
        self._events = None
        self._worker = None

        # Local participant (client / host).
        self._local_client = None
        self._local_id = None
        self._client_transport = None
        self._connect_task = None

    @property
    def role(self):
        return self._role

    @property
    def local_client(self):
        return self._local_client

    def subscribe(self, sink):
        """Attach a presentation sink. The returned Subscription detaches it when cancelled or exited."""
        return self._hub.subscribe(sink)

    # --- Role Transitions ---
    async def start(self, role):
        """
        Start `role` from offline.

        Raises:
            AlreadyActive: If the session is not offline (or another transition is in progress).
            BindError: If a server or host could not start listening.
            ConnectionFailed: If a host's own participant was not admitted.
        """
        if self._role is not SessionRole.OFFLINE or self._transitioning:
            raise AlreadyActive(f"Cannot start {role.value}: session is already {self._role.value}")
        starter = self._STARTERS.get(role)
        if starter is None:
            raise ValueError(f"Cannot start role {role!r}")
        self._transitioning = True
        try:
            await starter(self)
        finally:
            self._transitioning = False

    async def stop(self):
        """Stop whatever role is active. Returns once every participant has been evicted."""
        stopper = self._STOPPERS.get(self._role)
        if stopper is None:
            return
        logging.info(f"Stopping {self._role.value} session")
        await stopper(self)

    async def start_host(self):
        await self.start(SessionRole.HOST)

    async def start_server(self):
        await self.start(SessionRole.SERVER_ONLY)

    async def start_client(self):
        await self.start(SessionRole.CLIENT_ONLY)

    async def stop_host(self):
        await self._stop_role(SessionRole.HOST)

    async def stop_server(self):
        await self._stop_role(SessionRole.SERVER_ONLY)

    async def stop_client(self):
        await self._stop_role(SessionRole.CLIENT_ONLY)

    async def _stop_role(self, role):
        if self._role is not role:
            logging.info(f"Ignoring stop of {role.value}: session is {self._role.value}")
            return
        await self.stop()

    # --- Role strategies ---
    async def _start_server(self):
        await self._open_server()
        self._role = SessionRole.SERVER_ONLY
        logging.info(f"Server started on {self.listen_address}:{self.port}")
        self._hub.lifecycle(LifecycleEvent.SERVER_STARTED)

    async def _start_host(self):
        await self._open_server()
        self._role = SessionRole.HOST
        logging.info(f"Host started on {self.listen_address}:{self.port}")
        self._hub.lifecycle(LifecycleEvent.SERVER_STARTED)

        transport = self._server_transport
        client = ChatClient(self._hub, display_name=self.display_name)
        local_id = transport.open_local(client.handle_payload)
        client.attach(lambda frame: transport.receive_local(local_id, frame))
        self._local_client = client
        self._local_id = local_id
        client.request_join()
        await self.drain()
        if not client.joined:
            logging.error("Local participant was not admitted. Shutting the host down.")
            await self._close_server()
            self._local_client = None
            self._local_id = None
            self._role = SessionRole.OFFLINE
            self._hub.lifecycle(LifecycleEvent.SERVER_STOPPED)
            raise ConnectionFailed("Local participant could not join the session")
        self._hub.lifecycle(LifecycleEvent.CONNECTED)

    async def _start_client(self):
        # The role changes right away; a failed handshake reverts it.
        self._role = SessionRole.CLIENT_ONLY
        client = ChatClient(self._hub, display_name=self.display_name)
        transport = self._client_transport_factory(client.handle_payload, self._on_server_lost)
        self._local_client = client
        self._client_transport = transport
        self._connect_task = asyncio.create_task(self._connect(client, transport))

    async def _stop_server(self):
        await self._close_server()
        self._role = SessionRole.OFFLINE
        self._hub.lifecycle(LifecycleEvent.SERVER_STOPPED)

    async def _stop_host(self):
        client = self._local_client
        await self._close_server()
        if client is not None:
            client.detach()
        self._local_client = None
        self._local_id = None
        self._role = SessionRole.OFFLINE
        self._hub.lifecycle(LifecycleEvent.DISCONNECTED)
        self._hub.lifecycle(LifecycleEvent.SERVER_STOPPED)

    async def _stop_client(self):
        task, self._connect_task = self._connect_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        client, self._local_client = self._local_client, None
        transport, self._client_transport = self._client_transport, None
        self._role = SessionRole.OFFLINE
        if client is not None:
            client.detach()
        if transport is not None:
            await transport.close()
        logging.info("Client stopped")
        self._hub.lifecycle(LifecycleEvent.DISCONNECTED)

    _STARTERS = {
        SessionRole.HOST: _start_host,
        SessionRole.SERVER_ONLY: _start_server,
        SessionRole.CLIENT_ONLY: _start_client,
    }

    _STOPPERS = {
        SessionRole.HOST: _stop_host,
        SessionRole.SERVER_ONLY: _stop_server,
        SessionRole.CLIENT_ONLY: _stop_client,
    }

    # --- Authoritative side setup / teardown ---
    async def _open_server(self):
        registry = ParticipantRegistry(self.max_participants, self._rng)
        transport = self._server_transport_factory(self._on_connected, self._on_disconnected, self._on_data)
        try:
            await transport.start(self.listen_address, self.port)
        except BindError as e:
            self._hub.error(str(e))
            raise
        self.registry = registry
        self._server_transport = transport
        self.broadcaster = MessageBroadcaster(registry, transport.send)
        self._events = asyncio.Queue()
        self._worker = asyncio.create_task(self._process_events(self._events))

    async def _close_server(self):
        # From here on, late transport callbacks are dropped.
        self._events = None
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await worker

        # Evict everyone, the local participant last so it sees the others leave.
        evicted = sorted(self.registry.enumerate(), key=lambda p: p.connection_id == self._local_id)
        for participant in evicted:
            self.registry.on_leave(participant.connection_id)
            self._send_to_roster(protocol.roster_update(participant, False))

        await self._server_transport.stop()
        self._server_transport = None
        self.broadcaster = None
        logging.info(f"Server stopped, {len(evicted)} participant(s) evicted")

    # --- Client connection ---
    async def _connect(self, client, transport):
        uri = f"ws://{self.remote_address}:{self.port}"
        logging.info(f"Connecting to {uri}")
        try:
            await asyncio.wait_for(self._handshake(client, transport, uri), self.connect_timeout)
        except (asyncio.TimeoutError, ConnectionFailed) as e:
            reason = str(e) or f"Timed out connecting to {uri}"
            logging.warning(f"Connection to {uri} failed: {reason}")
            self._local_client = None
            self._client_transport = None
            self._role = SessionRole.OFFLINE
            await transport.close()
            self._hub.error(f"Connection failed: {reason}")
            self._hub.connection_status(False)
            return False
        self._hub.lifecycle(LifecycleEvent.CONNECTED)
        return True

    async def _handshake(self, client, transport, uri):
        await transport.connect(uri)
        client.attach(transport.send)
        client.request_join()
        await client.wait_joined()

    def _on_server_lost(self):
        client = self._local_client
        if self._connect_task is not None and not self._connect_task.done():
            if client is not None:
                client.fail("Connection closed during handshake")
            return
        if self._role is not SessionRole.CLIENT_ONLY:
            return
        logging.info("Disconnected from server")
        if client is not None:
            client.detach()
        self._local_client = None
        self._client_transport = None
        self._connect_task = None
        self._role = SessionRole.OFFLINE
        self._hub.lifecycle(LifecycleEvent.DISCONNECTED)

    async def wait_for_handshake(self):
        """Wait for an in-flight client connection attempt. Returns True if the local participant is joined."""
        task = self._connect_task
        if task is not None:
            await asyncio.wait({task})
        return self._local_client is not None and self._local_client.joined

    # --- Transport callbacks: enqueue only ---
    def _on_connected(self, connection_id):
        self._enqueue(("connected", connection_id, None))

    def _on_disconnected(self, connection_id):
        self._enqueue(("disconnected", connection_id, None))

    def _on_data(self, connection_id, frame):
        self._enqueue(("data", connection_id, frame))

    def _enqueue(self, event):
        if self._events is None:
            logging.info(f"Dropping {event[0]} event for connection {event[1]}: server is not running")
            return
        self._events.put_nowait(event)

    async def drain(self):
        """Wait until every queued event has been handled."""
        if self._events is not None:
            await self._events.join()

    # --- Event worker ---
    async def _process_events(self, events):
        while True:
            kind, connection_id, frame = await events.get()
            try:
                if kind == "connected":
                    logging.info(f"Connection {connection_id} waiting for a join request")
                elif kind == "disconnected":
                    self._handle_leave(connection_id)
                elif kind == "data":
                    self._handle_data(connection_id, frame)
            except Exception:
                # Only this event is lost; the worker keeps serving everyone else.
                logging.exception(f"Unexpected error handling {kind} event for connection {connection_id}")
            finally:
                events.task_done()

    def _handle_data(self, connection_id, frame):
        try:
            message_type, payload = protocol.parse_message(frame, protocol.CLIENT_MESSAGE_TYPES)
        except ProtocolError as e:
            logging.warning(f"Invalid frame from connection {connection_id}. Ignoring: {e}")
            return

        if message_type == protocol.JOIN_REQUEST:
            self._handle_join(connection_id)
        elif message_type == protocol.CHAT_SUBMIT:
            self.broadcaster.submit(connection_id, payload["text"])
        elif connection_id not in self.registry:
            logging.warning(f"Received type {message_type} from connection {connection_id} before it joined. Ignoring.")
        elif message_type == protocol.RENAME_REQUEST:
            participant = self.registry.rename(connection_id, payload["name"])
            self._send_to_roster(protocol.roster_update(participant, True))
        elif message_type == protocol.COLOR_REQUEST:
            participant = self.registry.set_color(connection_id, protocol.parse_color(payload["color"]))
            self._send_to_roster(protocol.roster_update(participant, True))

    def _handle_join(self, connection_id):
        try:
            participant = self.registry.on_join(connection_id)
        except SessionFull as e:
            logging.warning(f"Rejecting join from connection {connection_id}: {e}")
            self._server_transport.send(connection_id, protocol.join_rejected(str(e)))
            self._server_transport.disconnect(connection_id, CLOSE_TRY_AGAIN_LATER, "Session full")
            return
        except DuplicateConnection:
            logging.exception(f"Connection {connection_id} joined twice. Closing it.")
            self._server_transport.disconnect(connection_id, CLOSE_POLICY_VIOLATION, "Duplicate join")
            return

        # The newcomer gets the current roster first, then its own identity.
        for existing in self.registry.enumerate():
            if existing.connection_id != connection_id:
                self._server_transport.send(connection_id, protocol.roster_update(existing, True))
        self._server_transport.send(connection_id, protocol.join_accepted(participant))
        self._send_to_roster(protocol.roster_update(participant, True))

    def _handle_leave(self, connection_id):
        participant = self.registry.on_leave(connection_id)
        if participant is not None:
            self._send_to_roster(protocol.roster_update(participant, False))
        if connection_id == self._local_id and self._local_client is not None:
            # The host's own participant was dropped; the server keeps running.
            self._local_client.detach()
            self._local_client = None
            self._local_id = None
            self._hub.lifecycle(LifecycleEvent.DISCONNECTED)

    def _send_to_roster(self, frame):
        for participant in self.registry.enumerate():
            self._server_transport.send(participant.connection_id, frame)

    # --- Local participant input ---
    def submit(self, text):
        """Send a chat line as the local participant. Discarded silently when not connected."""
        if self._local_client is not None:
            self._local_client.submit(text)

    def rename(self, name):
        if self._local_client is not None:
            self._local_client.rename(name)

    def set_color(self, color):
        if self._local_client is not None:
            self._local_client.set_color(color)

    # --- Presentation reads ---
    def roster(self):
        """Snapshot of the current participants as seen from this process."""
        if self._role in (SessionRole.SERVER_ONLY, SessionRole.HOST):
            return self.registry.enumerate()
        if self._role is SessionRole.CLIENT_ONLY and self._local_client is not None:
            return self._local_client.roster()
        return []

    def describe(self):
        """One-line status text for the current role."""
        if self._role is SessionRole.HOST:
            return f"Host: running on {self.listen_address}:{self.port} via WebSocket"
        if self._role is SessionRole.SERVER_ONLY:
            return f"Server: running on {self.listen_address}:{self.port} via WebSocket"
        if self._role is SessionRole.CLIENT_ONLY:
            if self._local_client is not None and self._local_client.joined:
                return f"Client: connected to {self.remote_address}:{self.port} via WebSocket"
            return f"Client: connecting to {self.remote_address}:{self.port}.."
        return "Offline"
