"""
Operator console for the socket relay, read from stdin.
"""

import logging
import sys
import threading

logger = logging.getLogger(__name__)


class ConsoleReader(threading.Thread):
    """Reads operator commands line by line and forwards them to the relay controller.

    Commands (case-insensitive): restart, stop, on, off, clients.
    """

    def __init__(self, controller, stream=None):
        super().__init__(name="ConsoleReader", daemon=True)
        self.controller = controller
        self.stream = stream if stream is not None else sys.stdin

    def run(self):
        logger.info("Attached to console")
        try:
            for line in self.stream:
                self.handle_command(line)
        except Exception as e:
            logger.error(f"Console input failed: {e}")
        logger.info("Console input closed")

    def handle_command(self, line):
        """Apply one console command. Returns False for unknown commands."""
        command = line.strip().lower()
        if not command:
            return True

        if command == "restart":
            self.controller.request_restart()
        elif command == "stop":
            self.controller.request_stop()
        elif command in ("on", "off"):
            self.controller.mailbox.put(command == "on")
        elif command == "clients":
            ids = self.controller.registry.ids()
            logger.info(f"Connected clients ({len(ids)}): {', '.join(ids) if ids else 'none'}")
        else:
            logger.warning(f"Unknown command: '{line.strip()}'")
            return False
        return True
