# chatsession/sink.py
# Presentation side of a chat session.
# - PresentationSink: the interface the session calls to render status, chat lines and errors.
# - SinkHub / Subscription: fan-out of notifications to every attached sink, with scoped unsubscription.
# - ConsoleSink: a terminal renderer with a bounded history.

import enum
import logging
from collections import deque

from colorama import Fore, Style

from . import config


class LifecycleEvent(enum.Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    SERVER_STARTED = "server_started"
    SERVER_STOPPED = "server_stopped"


class PresentationSink:
    """
    Base class for anything that renders a chat session. Every method is a no-op by default,
    so sinks only override what they display.
    """

    def notify_connection_status(self, connected):
        pass

    def notify_message(self, sender, text, color):
        pass

    def notify_system_message(self, text):
        pass

    def notify_error(self, text):
        pass

    def notify_lifecycle(self, event):
        if event is LifecycleEvent.CONNECTED:
            self.notify_connection_status(True)
        elif event is LifecycleEvent.DISCONNECTED:
            self.notify_connection_status(False)
        elif event is LifecycleEvent.SERVER_STARTED:
            self.notify_system_message("Server started")
        elif event is LifecycleEvent.SERVER_STOPPED:
            self.notify_system_message("Server stopped")


class Subscription:
    """Handle returned by SinkHub.subscribe(). Use as a context manager or call cancel()."""

    def __init__(self, hub, sink):
        self._hub = hub
        self.sink = sink
        self.active = True

    def cancel(self):
        if self.active:
            self.active = False
            self._hub._remove(self.sink)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.cancel()
        return False


class SinkHub:
    """Dispatches notifications to every subscribed sink. A failing sink never breaks the session."""

    def __init__(self):
        self._sinks = []

    def subscribe(self, sink):
        self._sinks.append(sink)
        return Subscription(self, sink)

    def _remove(self, sink):
        if sink in self._sinks:
            self._sinks.remove(sink)

    def _dispatch(self, method, *args):
        for sink in list(self._sinks):
            try:
                getattr(sink, method)(*args)
            except Exception:
                logging.exception(f"Presentation sink {sink!r} failed in {method}")

    def connection_status(self, connected):
        self._dispatch("notify_connection_status", connected)

    def message(self, sender, text, color):
        self._dispatch("notify_message", sender, text, color)

    def system_message(self, text):
        self._dispatch("notify_system_message", text)

    def error(self, text):
        self._dispatch("notify_error", text)

    def lifecycle(self, event):
        self._dispatch("notify_lifecycle", event)


class ConsoleSink(PresentationSink):
    """
    Renders the session to a terminal: sender names in their own color, system lines in yellow,
    errors in red. Keeps the last `max_history` lines so the view can be redrawn.
    """

    SYSTEM_LABEL = "System"
    ERROR_LABEL = "Error"

    def __init__(self, max_history=config.MAX_HISTORY_RENDERED, output=print):
        self.history = deque(maxlen=max_history)
        self.connected = False
        self._output = output

    def _render(self, line):
        self.history.append(line)  # deque drops the oldest line once full
        self._output(line)

    def notify_connection_status(self, connected):
        self.connected = connected
        if connected:
            self._output(f"Status: {Fore.GREEN}connected{Style.RESET_ALL}")
        else:
            self._output(f"Status: {Fore.RED}not connected{Style.RESET_ALL}")

    def notify_message(self, sender, text, color):
        r, g, b = color
        # 24-bit ANSI foreground for the sender's own color.
        self._render(f"\x1b[38;2;{r};{g};{b}m[{sender}]{Style.RESET_ALL}: {text}")

    def notify_system_message(self, text):
        self._render(f"{Fore.YELLOW}[{self.SYSTEM_LABEL}]{Style.RESET_ALL}: {text}")

    def notify_error(self, text):
        self._render(f"{Fore.RED}[{self.ERROR_LABEL}]{Style.RESET_ALL}: {text}")

    def clear(self):
        self.history.clear()

    def __repr__(self):
        return f"ConsoleSink(connected={self.connected}, lines={len(self.history)})"
