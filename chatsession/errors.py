# chatsession/errors.py
# Error taxonomy for the chat session.
# Role-transition errors are raised to the caller of the SessionManager; the others are handled
# inside the session and surface to presentation sinks as notifications.


class SessionError(Exception):
    pass


class AlreadyActive(SessionError):
    """Raised when a role is started while the session is not offline."""


class BindError(SessionError):
    """Raised when the listening socket cannot be established."""


class ConnectionFailed(SessionError):
    """The outbound connection or its join handshake did not complete."""


class DuplicateConnection(SessionError):
    """The same connection id joined twice without an intervening leave."""

    def __init__(self, connection_id):
        super().__init__(f"Connection {connection_id} is already registered")
        self.connection_id = connection_id


class SessionFull(SessionError):
    """Raised when a join arrives while the roster is at capacity."""

    def __init__(self, max_participants):
        super().__init__(f"Session is full ({max_participants} participants)")
        self.max_participants = max_participants


class ProtocolError(SessionError):
    """A received frame could not be decoded or failed validation."""
