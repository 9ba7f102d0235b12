"""
Socket sessions for the TCP relay protocol.

Wire format is one byte per message. Clients send 0 (off), 1 (on) or 3
(stop accepting); any other byte ends that client's session. The server
broadcasts the new relay state as a single 0/1 byte.
"""

import logging
import random
import socket
import string
import threading

logger = logging.getLogger(__name__)

BYTE_OFF = 0
BYTE_ON = 1
BYTE_STOP = 3


def generate_session_id(length=12):
    """Random mixed-case letters used to tell sessions apart in the logs."""
    chars = [random.choice(string.ascii_lowercase) for _ in range(length)]
    return "".join(c.upper() if random.random() > 0.5 else c for c in chars)


class ClientSession(threading.Thread):
    """Receive loop for one connected client."""

    def __init__(self, conn, address, mailbox, registry, on_stop_request):
        super().__init__(daemon=True)
        self.conn = conn
        self.address = address
        self.mailbox = mailbox
        self.registry = registry
        self.on_stop_request = on_stop_request
        self.id = generate_session_id()
        self.name = f"ClientSession-{self.id}"
        self._send_lock = threading.Lock()
        self._closed = threading.Event()
        logger.info(f"New connection '{self.id}' [{address[0]}]")

    def run(self):
        logger.info(f"Listening '{self.id}'")
        try:
            while True:
                data = self.conn.recv(1)
                if not data:
                    break
                value = data[0]
                logger.debug(f"Received {value} from '{self.id}'")
                if value in (BYTE_OFF, BYTE_ON):
                    self.mailbox.put(value == BYTE_ON)
                elif value == BYTE_STOP:
                    logger.warning(f"Client '{self.id}' requested server stop")
                    self.on_stop_request()
                else:
                    logger.info(f"Unknown byte {value} from '{self.id}', closing session")
                    break
        except OSError as e:
            if not self._closed.is_set():
                logger.warning(f"Connection error on '{self.id}': {e}")
        finally:
            self.close()
            self.registry.remove(self)
            logger.info(f"Removing client '{self.id}'")

    def send(self, state):
        with self._send_lock:
            self.conn.sendall(bytes([BYTE_ON if state else BYTE_OFF]))

    def close(self):
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            # Unblocks a recv() pending in the session thread
            self.conn.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"Shutdown of '{self.id}' socket: {e}")
        self.conn.close()

    @property
    def closed(self):
        return self._closed.is_set()


class SessionRegistry:
    """Thread-safe set of connected sessions."""

    def __init__(self):
        self._lock = threading.Lock()
        self._sessions = []

    def add(self, session):
        with self._lock:
            self._sessions.append(session)

    def remove(self, session):
        with self._lock:
            if session in self._sessions:
                self._sessions.remove(session)

    def clear(self):
        """Empty the registry and return what was in it."""
        with self._lock:
            sessions, self._sessions = self._sessions, []
            return sessions

    def snapshot(self):
        with self._lock:
            return list(self._sessions)

    def ids(self):
        return [session.id for session in self.snapshot()]

    def __len__(self):
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session):
        with self._lock:
            return session in self._sessions

    def broadcast(self, state):
        """Send the relay state to every session, dropping any that fail."""
        for session in self.snapshot():
            logger.debug(f"Notifying '{session.id}'")
            try:
                session.send(state)
            except OSError as e:
                logger.warning(f"Failed to notify '{session.id}', dropping it: {e}")
                session.close()
                self.remove(session)


class SocketListener(threading.Thread):
    """Accepts clients on the relay port, retrying the whole server after failures.

    A client sending the stop byte ends the accept loop; the listener then
    closes, clears pending updates, waits `retry_delay` and listens again.
    """

    def __init__(self, host, port, mailbox, registry, retry_delay=60.0, accept_timeout=1.0):
        super().__init__(name="SocketListener", daemon=True)
        self.host = host
        self.port = port
        self.mailbox = mailbox
        self.registry = registry
        self.retry_delay = retry_delay
        self.accept_timeout = accept_timeout
        self.address = None
        self.listening = threading.Event()
        self._accepting = threading.Event()
        self._closed = threading.Event()

    def run(self):
        while not self._closed.is_set():
            logger.info("Initiating server")
            listener = None
            try:
                listener = self._open()
                self.serve(listener)
            except Exception as e:
                logger.error(f"Server failed: {e}")
            finally:
                if listener is not None:
                    listener.close()
                self.listening.clear()

            if self._closed.is_set():
                break
            logger.info(f"Waiting {self.retry_delay:g}s before restarting server")
            self._closed.wait(self.retry_delay)

        self._drop_sessions()
        logger.info("Socket listener stopped")

    def _open(self):
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind((self.host, self.port))
            listener.listen()
            listener.settimeout(self.accept_timeout)
        except OSError:
            listener.close()
            raise
        self.address = listener.getsockname()
        return listener

    def _drop_sessions(self):
        for session in self.registry.clear():
            session.close()

    def serve(self, listener):
        """Accept loop; runs until a client sends the stop byte or close() is called."""
        self._drop_sessions()
        self._accepting.set()
        self.listening.set()
        logger.info(f"Listening for clients on {self.address[0]}:{self.address[1]}")

        while self._accepting.is_set() and not self._closed.is_set():
            try:
                conn, address = listener.accept()
            except socket.timeout:
                continue
            session = ClientSession(conn, address, self.mailbox, self.registry, self.stop_accepting)
            self.registry.add(session)
            session.start()

        self.mailbox.clear()
        logger.info("Stopped accepting clients")

    def stop_accepting(self):
        self._accepting.clear()

    def close(self):
        """Stop the listener for good."""
        self._closed.set()
        self._accepting.clear()
