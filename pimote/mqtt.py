"""
MQTT communication manager for Pimote.
"""

import json
import logging
import threading

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)


class MQTTManager:
    """Manages the paho client, JSON publishing and message decoding for one session."""

    def __init__(self, mqtt_settings, client_id, will=None):
        self.mqtt_settings = mqtt_settings
        self.client_id = client_id
        self.will = will

        # Connection state
        self.mqtt_client = None
        self.mqtt_connected = False
        self.mqtt_connected_event = threading.Event()
        self.connect_error = None

        # Callbacks
        self.message_callback = None
        self.disconnect_callback = None

        self.setup_mqtt()

    def setup_mqtt(self):
        """Create the MQTT client, set credentials and the last will."""
        self.mqtt_client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id
        )

        # Set callbacks
        self.mqtt_client.on_connect = self._on_connect
        self.mqtt_client.on_disconnect = self._on_disconnect
        self.mqtt_client.on_message = self._on_message

        logger.info(f"Using MQTT authentication for user: {self.mqtt_settings.user}")
        self.mqtt_client.username_pw_set(self.mqtt_settings.user, self.mqtt_settings.password)

        if self.will is not None:
            topic, payload, qos, retain = self.will
            self.mqtt_client.will_set(topic, json.dumps(payload), qos=qos, retain=retain)
            logger.debug(f"Last will registered on {topic}: {payload}")

    def connect(self):
        """Start connecting in the background; see wait_for_connection()."""
        host = self.mqtt_settings.host
        port = self.mqtt_settings.port
        logger.info(f"Connecting to MQTT broker at {host}:{port}")
        self.mqtt_client.connect_async(host, port, self.mqtt_settings.keepalive)

        # Start MQTT loop in separate thread
        self.mqtt_client.loop_start()

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        """Called when the broker answers our CONNECT."""
        if not reason_code.is_failure:
            logger.info("Connected to MQTT broker")
            self.mqtt_connected = True
            self.connect_error = None
            self.mqtt_connected_event.set()
        else:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")
            self.mqtt_connected = False
            self.connect_error = str(reason_code)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        """Called when the client disconnects from the broker."""
        if reason_code.is_failure:
            logger.warning(f"Disconnected from MQTT broker: {reason_code}")
        else:
            logger.info("Disconnected from MQTT broker")
        self.mqtt_connected = False
        self.mqtt_connected_event.clear()

        if self.disconnect_callback:
            self.disconnect_callback()

    def _on_message(self, client, userdata, msg):
        """Decode a JSON message and hand it to the message callback."""
        topic = msg.topic
        try:
            payload_str = msg.payload.decode('utf-8')

            # Handle empty payloads
            if not payload_str.strip():
                logger.warning(f"Received empty MQTT message on topic: {topic}")
                return

            payload = json.loads(payload_str)
            logger.debug(f"Received MQTT message: {topic} = {payload}")
        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON message received on topic {topic}: {e}, payload: {msg.payload}")
            return
        except UnicodeDecodeError as e:
            logger.warning(f"Error decoding MQTT message payload on topic {topic}: {e}")
            return

        if self.message_callback:
            try:
                self.message_callback(topic, payload)
            except Exception as e:
                logger.error(f"Error handling MQTT message on topic {topic}: {e}")

    def set_message_callback(self, callback):
        """Set callback function for received messages."""
        self.message_callback = callback

    def set_disconnect_callback(self, callback):
        """Set callback function for disconnection events."""
        self.disconnect_callback = callback

    def subscribe(self, topic, qos=1):
        """Subscribe to MQTT topic with specified QoS (default QoS 1 for reliability)."""
        result, _ = self.mqtt_client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise ConnectionError(f"Failed to subscribe to {topic}: {mqtt.error_string(result)}")
        logger.info(f"Subscribed to topic: {topic} (QoS {qos})")

    def publish(self, topic, payload, retain=False, qos=1, timeout=1.0):
        """Publish a JSON payload. Returns True if it was handed to the broker."""
        if not self.is_connected():
            logger.warning(f"Cannot publish MQTT message to {topic}: not connected")
            return False

        message = json.dumps(payload)
        result = self.mqtt_client.publish(topic, message, qos=qos, retain=retain)
        if result.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error(f"Failed to publish MQTT message: {mqtt.error_string(result.rc)}")
            return False

        logger.debug(f"Published MQTT message: {topic} = {payload} (QoS={qos}, retain={retain})")
        if timeout:
            result.wait_for_publish(timeout=timeout)
        return True

    def wait_for_connection(self, timeout=10):
        """Wait for MQTT connection with timeout."""
        return self.mqtt_connected_event.wait(timeout=timeout)

    def is_connected(self):
        """Check if MQTT client is connected."""
        return self.mqtt_connected and self.mqtt_client.is_connected()

    def disconnect(self):
        """Disconnect from the broker and stop the network thread."""
        if self.mqtt_client:
            self.mqtt_client.disconnect()
            self.mqtt_client.loop_stop()
            self.mqtt_connected = False
            self.mqtt_connected_event.clear()
