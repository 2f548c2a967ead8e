# chatsession/transport.py
# WebSocket transport for chat sessions.
# Responsibilities include:
# - Accepting client connections (server side) and assigning each one a connection id.
# - Connecting to a remote server (client side).
# - A socket-less loopback connection for the host's own participant.
# - Per-connection FIFO outbound queues, so callers can send without awaiting.
# The transport never interprets frames: it reports connects, disconnects and raw data through
# callbacks, and those callbacks only enqueue work for the session.

import asyncio
import itertools
import logging
from collections import namedtuple

import websockets

from . import config
from .errors import BindError, ConnectionFailed

# Close codes used by the session.
CLOSE_NORMAL = 1000
CLOSE_POLICY_VIOLATION = 1008
CLOSE_TRY_AGAIN_LATER = 1013

# Connection ids are unique for the life of the process and never reused.
_connection_ids = itertools.count(1)

CloseRequest = namedtuple("CloseRequest", ["code", "reason"])


class RemoteConnection:
    """A client connected over a WebSocket. Frames are queued and written by a dedicated task."""

    def __init__(self, connection_id, websocket):
        self.connection_id = connection_id
        self.websocket = websocket
        self.outbox = asyncio.Queue()

    def send(self, frame):
        self.outbox.put_nowait(frame)

    def close(self, code, reason):
        # Queued behind pending frames so a rejection reason is delivered before the close.
        self.outbox.put_nowait(CloseRequest(code, reason))


class LocalConnection:
    """The host's own participant. Frames are handed straight to the local client endpoint."""

    def __init__(self, connection_id, deliver, on_close):
        self.connection_id = connection_id
        self._deliver = deliver
        self._on_close = on_close

    def send(self, frame):
        self._deliver(frame)

    def close(self, code, reason):
        self._on_close(self.connection_id)


class WebSocketServerTransport:
    """
    Listening side of the transport.

    Args:
        on_connected (callable): on_connected(connection_id), called when a connection opens.
        on_disconnected (callable): on_disconnected(connection_id), called once when it closes.
        on_data (callable): on_data(connection_id, frame), called for every received frame.
        max_message_size (int): Largest accepted incoming frame, in bytes.
    """

    def __init__(self, on_connected, on_disconnected, on_data, max_message_size=config.MAX_MESSAGE_SIZE):
        self._on_connected = on_connected
        self._on_disconnected = on_disconnected
        self._on_data = on_data
        self.max_message_size = max_message_size
        self._connections = {}  # connection_id -> RemoteConnection | LocalConnection
        self._server = None

    async def start(self, host, port):
        """
        Start listening on host:port.

        Raises:
            BindError: If the address cannot be bound (e.g. port already in use).
        """
        try:
            self._server = await websockets.serve(
                self._connection_handler,
                host,
                port,
                max_size=self.max_message_size,
            )
        except OSError as e:
            logging.error(f"OSError starting server on {host}:{port} - Is the port already in use?")
            raise BindError(f"Could not listen on {host}:{port}: {e}") from e
        logging.info(f"Listening on ws://{host}:{port}")

    async def stop(self):
        """Close every connection and the listening socket. No disconnect callbacks fire after this."""
        connections = list(self._connections.values())
        self._connections.clear()
        for connection in connections:
            if isinstance(connection, RemoteConnection):
                connection.close(1001, "Server shutting down")
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logging.info("Server socket closed")

    # --- Sending ---
    def send(self, connection_id, frame):
        """Queue `frame` for one connection. Returns False if the connection is gone."""
        connection = self._connections.get(connection_id)
        if connection is None:
            logging.warning(f"Dropping frame for unknown connection {connection_id}")
            return False
        if config.DEBUG:
            logging.info(f"Sending to connection {connection_id}: {frame}")
        connection.send(frame)
        return True

    def disconnect(self, connection_id, code=CLOSE_NORMAL, reason=""):
        connection = self._connections.get(connection_id)
        if connection is not None:
            logging.info(f"Closing connection {connection_id} (code {code}: {reason})")
            connection.close(code, reason)

    # --- Loopback ---
    def open_local(self, deliver):
        """Register the in-process participant of a host session and return its connection id."""
        connection_id = next(_connection_ids)
        self._connections[connection_id] = LocalConnection(connection_id, deliver, self._close_local)
        logging.info(f"Local connection {connection_id} opened")
        self._on_connected(connection_id)
        return connection_id

    def receive_local(self, connection_id, frame):
        """Feed a frame sent by the local participant into the session."""
        if connection_id in self._connections:
            self._on_data(connection_id, frame)

    def _close_local(self, connection_id):
        if self._connections.pop(connection_id, None) is not None:
            self._on_disconnected(connection_id)

    # --- Per-connection tasks ---
    async def _write_loop(self, connection):
        while True:
            item = await connection.outbox.get()
            try:
                if isinstance(item, CloseRequest):
                    await connection.websocket.close(code=item.code, reason=item.reason)
                    return
                await connection.websocket.send(item)
            except websockets.exceptions.ConnectionClosed:
                logging.warning(f"Failed to send to connection {connection.connection_id} because connection is closed.")
                return

    async def _connection_handler(self, websocket):
        """
        Lifecycle of one WebSocket connection: register it, pump received frames into on_data
        until it closes, then unregister it and report the disconnect.
        """
        connection_id = next(_connection_ids)
        connection = RemoteConnection(connection_id, websocket)
        self._connections[connection_id] = connection
        writer = asyncio.create_task(self._write_loop(connection))
        logging.info(f"Connection {connection_id} opened from {websocket.remote_address}")
        self._on_connected(connection_id)

        try:
            async for message in websocket:
                if config.DEBUG:
                    logging.info(f"Raw frame from connection {connection_id}: {message}")
                self._on_data(connection_id, message)
        except websockets.exceptions.ConnectionClosedOK:
            logging.info(f"Connection {connection_id} disconnected gracefully.")
        except websockets.exceptions.ConnectionClosedError as e:
            logging.info(f"Connection {connection_id} disconnected with error: {e}")
        finally:
            writer.cancel()
            # stop() already dropped the entry when the whole server is shutting down.
            if self._connections.pop(connection_id, None) is not None:
                self._on_disconnected(connection_id)
            logging.info(f"Connection closed for {connection_id}")


class WebSocketClientTransport:
    """
    Outbound side of the transport: a single connection to a remote server.

    Args:
        on_data (callable): on_data(frame), called for every frame received from the server.
        on_disconnected (callable): on_disconnected(), called if the server side drops the connection.
            Not called for closes requested through close().
        max_message_size (int): Largest accepted incoming frame, in bytes.
    """

    def __init__(self, on_data, on_disconnected, max_message_size=config.MAX_MESSAGE_SIZE):
        self._on_data = on_data
        self._on_disconnected = on_disconnected
        self.max_message_size = max_message_size
        self._websocket = None
        self._outbox = None
        self._reader = None
        self._writer = None
        self._closing = False

    @property
    def connected(self):
        return self._websocket is not None and not self._closing

    async def connect(self, uri):
        """
        Open the connection. The caller bounds the wait (the session applies its handshake timeout).

        Raises:
            ConnectionFailed: If the server is unreachable or refuses the WebSocket handshake.
        """
        try:
            self._websocket = await websockets.connect(uri, max_size=self.max_message_size, open_timeout=None)
        except (OSError, websockets.exceptions.InvalidURI, websockets.exceptions.InvalidHandshake) as e:
            raise ConnectionFailed(f"Could not connect to {uri}: {e}") from e
        logging.info(f"Connected to {uri}")
        self._outbox = asyncio.Queue()
        self._reader = asyncio.create_task(self._read_loop())
        self._writer = asyncio.create_task(self._write_loop())

    def send(self, frame):
        if not self.connected:
            return False
        if config.DEBUG:
            logging.info(f"Sending to server: {frame}")
        self._outbox.put_nowait(frame)
        return True

    async def close(self):
        self._closing = True
        if self._writer is not None:
            self._writer.cancel()
        if self._websocket is not None:
            await self._websocket.close()
        if self._reader is not None and self._reader is not asyncio.current_task():
            self._reader.cancel()

    async def _write_loop(self):
        while True:
            frame = await self._outbox.get()
            try:
                await self._websocket.send(frame)
            except websockets.exceptions.ConnectionClosed:
                logging.warning("Failed to send to server because connection is closed.")
                return

    async def _read_loop(self):
        try:
            async for message in self._websocket:
                if config.DEBUG:
                    logging.info(f"Raw frame from server: {message}")
                self._on_data(message)
        except websockets.exceptions.ConnectionClosedError as e:
            logging.info(f"Server connection closed with error: {e}")
        finally:
            if not self._closing:
                self._closing = True
                self._on_disconnected()
