"""
Pimote MQTT mode: the relay is driven by messages from a broker.

Topics, with `<prefix>` and `<tag>` from the settings:

    <prefix>/list/<tag>     retained presence {"name", "type", "state"}
    <prefix>/set/<tag>      incoming {"state": true|false}
    <prefix>/restart/<tag>  incoming {"key": "<device key>"}
"""

import hmac
import logging
import threading
from enum import Enum

from .base import RelayControllerBase
from .mqtt import MQTTManager

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHORIZING = "authorizing"
    RUNNING = "running"
    STOPPING = "stopping"


def device_topic(prefix, kind, tag):
    return f"{prefix}/{kind}/{tag}"


def presence_payload(name, online):
    return {"name": name, "type": "switch", "state": "online" if online else "offline"}


class RemoteSession:
    """One connection to the broker, from connect to disconnect."""

    def __init__(self, settings, relay, manager_factory=MQTTManager):
        self.settings = settings
        self.relay = relay

        prefix = settings.mqtt.prefix
        tag = settings.device.tag
        self.list_topic = device_topic(prefix, "list", tag)
        self.set_topic = device_topic(prefix, "set", tag)
        self.restart_topic = device_topic(prefix, "restart", tag)
        self.online_presence = presence_payload(settings.device.name, True)
        self.offline_presence = presence_payload(settings.device.name, False)

        self.state = SessionState.DISCONNECTED
        # Reentrant: the signal handler may call request_stop() on a thread already holding it
        self._lock = threading.RLock()
        self._wake = threading.Event()
        self._stop_requested = threading.Event()
        self._stopped = False

        # If we crash, the broker marks us offline (retained)
        will = (self.list_topic, self.offline_presence, 1, True)
        self.mqtt = manager_factory(settings.mqtt, f"pimote-{tag}", will=will)
        self.mqtt.set_message_callback(self.handle_message)
        self.mqtt.set_disconnect_callback(self.wake)

    def _set_state(self, state):
        if state is not self.state:
            logger.debug(f"Session state {self.state.value} -> {state.value}")
            self.state = state

    def start(self, shutdown_event=None):
        """Connect, announce, subscribe, then block until the session ends."""
        with self._lock:
            if self._stop_requested.is_set():
                logger.info("Stop requested before connecting, not starting session")
                return
            if self.state is SessionState.DISCONNECTED:
                self._set_state(SessionState.CONNECTING)
        self.mqtt.connect()

        with self._lock:
            if self.state is SessionState.CONNECTING:
                self._set_state(SessionState.AUTHORIZING)
        connected = self.mqtt.wait_for_connection(timeout=self.settings.mqtt.connect_timeout)
        if self._stop_requested.is_set():
            logger.info("Stop requested while connecting, not announcing")
            return
        if not connected:
            reason = self.mqtt.connect_error or "timed out"
            raise ConnectionError(f"Client hasn't authorized with broker: {reason}")

        self.mqtt.publish(self.list_topic, self.online_presence, retain=True, qos=1)
        self.mqtt.subscribe(self.set_topic, qos=1)
        self.mqtt.subscribe(self.restart_topic, qos=1)

        with self._lock:
            if self.state is SessionState.AUTHORIZING:
                self._set_state(SessionState.RUNNING)
        logger.info(f"Running as '{self.settings.device.name}' on {self.list_topic}")

        wait_interval = self.settings.timing.wait_interval
        while not self._stop_requested.is_set():
            if shutdown_event is not None and shutdown_event.is_set():
                break
            if not self.mqtt.is_connected():
                logger.warning("Lost connection to broker")
                break
            self._wake.wait(wait_interval)
            self._wake.clear()

    def wake(self):
        self._wake.set()

    def handle_message(self, topic, payload):
        """Apply a decoded JSON message from a subscribed topic."""
        if not isinstance(payload, dict):
            logger.warning(f"Invalid JSON message received on {topic}: value must be an object")
            return

        if topic == self.set_topic:
            state = payload.get("state")
            if not isinstance(state, bool):
                logger.warning(f"Invalid set message on {topic}: 'state' must be a boolean, got {state!r}")
                return
            logger.info(f"Changing switch state: {state}")
            self.relay.set_state(state)
        elif topic == self.restart_topic:
            key = payload.get("key")
            if isinstance(key, str) and hmac.compare_digest(key.encode(), self.settings.device.key.encode()):
                logger.warning("Server stop received with correct key")
                self.request_stop()
            else:
                logger.warning("Incorrect device key")
        else:
            logger.debug(f"Ignoring message on unexpected topic {topic}")

    def request_stop(self):
        """Leave Running; the thread blocked in start() returns and calls stop()."""
        with self._lock:
            if self.state not in (SessionState.STOPPING, SessionState.DISCONNECTED):
                self._set_state(SessionState.STOPPING)
        self._stop_requested.set()
        self.wake()

    @property
    def stop_requested(self):
        return self._stop_requested.is_set()

    def stop(self):
        """Announce offline, release the relay and disconnect. Runs once."""
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            self._set_state(SessionState.STOPPING)
        self._stop_requested.set()

        logger.warning("Stopping session and closing resources")
        try:
            if self.mqtt.is_connected():
                self.mqtt.publish(self.list_topic, self.offline_presence, retain=True, qos=1)
        finally:
            self.relay.cleanup()
            self.mqtt.disconnect()
            with self._lock:
                self._set_state(SessionState.DISCONNECTED)


class MqttRelay(RelayControllerBase):
    """MQTT mode: one RemoteSession per attempt, restarted after every end."""

    mode = "mqtt"

    def __init__(self, settings, shutdown_event=None, gpio=None, manager_factory=MQTTManager,
                 blink_cycles=3, blink_interval=0.5):
        super().__init__(settings, settings.timing.mqtt_retry_delay, shutdown_event, gpio)
        self.manager_factory = manager_factory
        self.blink_cycles = blink_cycles
        self.blink_interval = blink_interval
        self.session = None

    def log_summary(self):
        super().log_summary()
        logger.info(f"MQTT broker: {self.settings.mqtt.host}:{self.settings.mqtt.port}")
        logger.info(f"Device: {self.settings.device.name} ({self.settings.device.tag})")

    def wake(self):
        session = self.session
        if session is not None:
            session.request_stop()

    def run_session(self):
        self.relay = self.create_relay()
        self.session = RemoteSession(self.settings, self.relay, self.manager_factory)
        self.relay.blink(self.blink_cycles, self.blink_interval, stop_event=self.shutdown_flag)
        self.session.start(self.shutdown_flag)

    def cleanup(self):
        if self.session is not None:
            self.session.stop()
            self.session = None
        super().cleanup()
