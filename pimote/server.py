"""
Pimote socket mode: TCP clients and the console drive the relay.
"""

import logging
import threading

from .base import RelayControllerBase
from .console import ConsoleReader
from .mailbox import CommandMailbox
from .sessions import SessionRegistry, SocketListener

logger = logging.getLogger(__name__)


class SocketRelay(RelayControllerBase):
    """Socket mode: applies the latest client/console command every poll interval."""

    mode = "socket"

    def __init__(self, settings, shutdown_event=None, gpio=None, console_stream=None,
                 blink_cycles=5, blink_interval=1.0):
        super().__init__(settings, settings.timing.restart_delay, shutdown_event, gpio)
        self.mailbox = CommandMailbox()
        self.registry = SessionRegistry()
        self.listener = None
        self.console = None
        self.console_stream = console_stream
        self.blink_cycles = blink_cycles
        self.blink_interval = blink_interval
        self._session_stop = threading.Event()

    def wake(self):
        self._session_stop.set()

    def request_restart(self):
        logger.info("Restart requested")
        self._session_stop.set()

    def start_console(self):
        if self.console is None:
            self.console = ConsoleReader(self, self.console_stream)
            self.console.start()

    def start_listener(self):
        server = self.settings.server
        timing = self.settings.timing
        self.listener = SocketListener(
            server.host,
            server.port,
            self.mailbox,
            self.registry,
            retry_delay=timing.server_retry_delay,
            accept_timeout=timing.accept_timeout
        )
        self.listener.start()

    def run_session(self):
        self._session_stop.clear()
        self.mailbox.clear()
        self.relay = self.create_relay()
        self.start_listener()

        self.relay.blink(self.blink_cycles, self.blink_interval, stop_event=self._session_stop)

        logger.info("Running...")
        poll_interval = self.settings.timing.poll_interval
        while not self._session_stop.is_set() and not self.shutdown_flag.is_set():
            self.apply_pending()
            self._session_stop.wait(poll_interval)

    def apply_pending(self):
        """Drain the mailbox, drive the relay and notify every client."""
        state = self.mailbox.drain()
        if state is None:
            return None
        logger.info(f"Updated to {'on' if state else 'off'}")
        self.relay.set_state(state)
        self.registry.broadcast(state)
        return state

    def cleanup(self):
        """Close the listener and its clients, then release the relay."""
        if self.listener is not None:
            self.listener.close()
            self.listener.join(timeout=self.settings.timing.accept_timeout + 1.0)
            if self.listener.is_alive():
                logger.warning("Socket listener did not finish within timeout")
            self.listener = None
        super().cleanup()

    def run(self):
        self.start_console()
        super().run()
