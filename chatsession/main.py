# chatsession/main.py
# Main entry point for running a chat session from a terminal.
# Sets up logging, parses the command line, starts the requested role (host, server or client)
# and, for roles with a local participant, reads chat lines and slash-commands from stdin.

import argparse
import asyncio
import logging
import shlex
import threading

from colorama import just_fix_windows_console

from . import config
from .errors import AlreadyActive, BindError, ConnectionFailed
from .session import SessionManager, SessionRole
from .sink import ConsoleSink, PresentationSink

MODES = {
    "host": SessionRole.HOST,
    "server": SessionRole.SERVER_ONLY,
    "client": SessionRole.CLIENT_ONLY,
}

HELP_TEXT = "Commands: /name <name>, /color #rrggbb, /who, /status, /quit"


def build_parser():
    parser = argparse.ArgumentParser("chatsession", description="Minimal real-time chat session")
    parser.add_argument("mode", choices=sorted(MODES), help="Run as host (server + local client), server or client")
    parser.add_argument("--address", default=None,
                        help=f"Listen address (host/server, default {config.HOST}) "
                             f"or server address (client, default {config.REMOTE_ADDRESS})")
    parser.add_argument("--port", type=int, default=config.PORT, help="TCP port (1-65535)")
    parser.add_argument("--name", default=None, help="Display name to use after joining")
    parser.add_argument("--max-participants", type=int, default=config.MAX_PARTICIPANTS)
    parser.add_argument("--debug", action="store_true", help="Log every frame sent and received")
    return parser


def handle_command(session, sink, line):
    """
    Execute one slash-command typed by the user.

    Returns:
        bool: False if the user asked to quit.
    """
    try:
        cmd, *args = shlex.split(line)
    except ValueError as e:
        sink.notify_error(f"Parse error: {e}")
        return True

    match cmd.lower():
        case "/quit":
            return False
        case "/name":
            if not args:
                sink.notify_error("Usage: /name <name>")
            else:
                session.rename(" ".join(args))
        case "/color":
            if len(args) != 1:
                sink.notify_error("Usage: /color #rrggbb")
            else:
                session.set_color(args[0])
        case "/who":
            names = ", ".join(p.display_name for p in session.roster())
            sink.notify_system_message(f"Online: {names or 'nobody'}")
        case "/status":
            sink.notify_system_message(session.describe())
        case _:
            sink.notify_error(f"Unknown command. {HELP_TEXT}")
    return True


class InputQueue(PresentationSink):
    """
    Lines typed on stdin, followed by a None marker once stdin reaches EOF or the local
    participant is disconnected. Subscribe it to the session so a dropped connection ends
    the input loop without waiting for another line.
    """

    def __init__(self):
        self.lines = asyncio.Queue()

    def notify_connection_status(self, connected):
        if not connected:
            self.lines.put_nowait(None)

    def start_stdin_reader(self):
        loop = asyncio.get_running_loop()
        reader = threading.Thread(target=self._pump_stdin, args=(loop,), name="stdin-reader", daemon=True)
        reader.start()

    def _pump_stdin(self, loop):
        # Runs in a daemon thread; a pending input() must not keep the process alive.
        while True:
            try:
                line = input()
            except EOFError:
                line = None
            try:
                loop.call_soon_threadsafe(self.lines.put_nowait, line)
            except RuntimeError:
                return  # Event loop already closed.
            if line is None:
                return


async def read_input(session, sink, inputs):
    """Handle queued stdin lines until /quit, EOF, or the session goes offline."""
    while session.role is not SessionRole.OFFLINE:
        line = await inputs.lines.get()
        if line is None:
            return
        if line.startswith("/"):
            if not handle_command(session, sink, line):
                return
            continue
        session.submit(line)


async def run(args):
    role = MODES[args.mode]
    if args.address is None:
        address = config.REMOTE_ADDRESS if role is SessionRole.CLIENT_ONLY else config.HOST
    else:
        address = args.address

    session = SessionManager(
        listen_address=address,
        remote_address=address,
        port=args.port,
        max_participants=args.max_participants,
        display_name=args.name,
    )
    sink = ConsoleSink()
    with session.subscribe(sink):
        sink.notify_system_message("Chat system ready")
        try:
            await session.start(role)
        except (AlreadyActive, BindError, ConnectionFailed) as e:
            logging.error(f"Could not start {args.mode}: {e}")
            return 1

        try:
            if role is SessionRole.SERVER_ONLY:
                # Nothing to type on a dedicated server; run until interrupted.
                await asyncio.Future()
            else:
                if role is SessionRole.CLIENT_ONLY and not await session.wait_for_handshake():
                    return 1
                sink.notify_system_message(HELP_TEXT)
                inputs = InputQueue()
                with session.subscribe(inputs):
                    inputs.start_stdin_reader()
                    await read_input(session, sink, inputs)
        finally:
            await session.stop()
    return 0


def main():
    args = build_parser().parse_args()
    if args.debug:
        config.DEBUG = True
    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO,
                        format='%(asctime)s - %(levelname)s - %(message)s')
    just_fix_windows_console()

    try:
        config.validate_port(args.port)
        config.validate_max_participants(args.max_participants)
    except ValueError as e:
        logging.error(str(e))
        raise SystemExit(2)

    try:
        raise SystemExit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        logging.info("Session stopped manually via KeyboardInterrupt.")


if __name__ == "__main__":
    main()
