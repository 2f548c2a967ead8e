# chatsession/config.py
# This file centralizes configuration settings for the chat session (server, host and client roles).
# The SessionManager reads its defaults from here; the command line entry point can override them.

# --- Network Configuration ---

# HOST: The IP address the server (or host) should listen on.
# - '0.0.0.0': Listen on all available network interfaces (reachable from other machines on the network).
# - '127.0.0.1' or 'localhost': Listen only on the local machine.
HOST = '0.0.0.0'

# REMOTE_ADDRESS: The address a client connects to when started in client mode.
REMOTE_ADDRESS = '127.0.0.1'

# PORT: The TCP port the server listens on and the client connects to. Must be within 1-65535.
PORT = 7777

# CONNECT_TIMEOUT_SECONDS: How long a client waits for the join handshake (socket open + join accepted)
# before giving up and reverting to offline.
CONNECT_TIMEOUT_SECONDS = 5.0

# MAX_MESSAGE_SIZE: Maximum size (in bytes) of a single incoming WebSocket frame.
# This is a transport limit only; chat bodies themselves are not capped.
MAX_MESSAGE_SIZE = 64 * 1024

# --- Session Configuration ---

# MAX_PARTICIPANTS: Roster capacity. Join requests beyond this are rejected and the connection is closed.
MAX_PARTICIPANTS = 16

# DEFAULT_NAME_PREFIX: Prefix of the randomized placeholder name given to every participant on join
# (e.g. 'Player4821').
DEFAULT_NAME_PREFIX = 'Player'

# --- Presentation Configuration ---

# MAX_HISTORY_RENDERED: Number of chat lines the console sink keeps; the oldest line is dropped first.
# Not part of the session state.
MAX_HISTORY_RENDERED = 100

# --- Debugging Configuration ---

# DEBUG: Debug flag for verbose logging.
# - True: log every raw frame sent and received.
# - False: only connections, joins, leaves, chat lines, warnings and errors are logged.
DEBUG = False


def validate_port(port):
    """Return `port` if it is an integer in 1-65535, raise ValueError otherwise."""
    if isinstance(port, bool) or not isinstance(port, int) or not (1 <= port <= 65535):
        raise ValueError(f"Port must be an integer between 1 and 65535, got {port!r}")
    return port


def validate_max_participants(max_participants):
    """Return `max_participants` if it is an integer of at least 1, raise ValueError otherwise."""
    if isinstance(max_participants, bool) or not isinstance(max_participants, int) or max_participants < 1:
        raise ValueError(f"Max participants must be an integer of at least 1, got {max_participants!r}")
    return max_participants
