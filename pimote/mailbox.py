"""
Single-slot command mailbox shared by the socket sessions and the control loop.
"""

import logging
import threading

logger = logging.getLogger(__name__)


class CommandMailbox:
    """Last-write-wins store for relay commands.

    Sessions put booleans in; the control loop drains it and only ever sees
    the most recent value. Anything enqueued before that is lost.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending = None

    def put(self, state):
        with self._lock:
            if self._pending is not None:
                logger.debug(f"Dropping pending update {self._pending}, superseded by {bool(state)}")
            self._pending = bool(state)

    def drain(self):
        """Return the last enqueued value (or None) and empty the mailbox."""
        with self._lock:
            value, self._pending = self._pending, None
            return value

    def clear(self):
        with self._lock:
            self._pending = None

    def is_empty(self):
        with self._lock:
            return self._pending is None
