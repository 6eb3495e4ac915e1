"""MQTT connector implementation."""

import logging
import ssl
import threading
import uuid
from typing import Dict, Optional, Protocol, Union

import paho.mqtt.client as mqtt

from config import MqttSettings
from constants import (
    MQTT_RECONNECT_MAX_DELAY,
    MQTT_RECONNECT_MIN_DELAY,
    VALID_QOS_LEVELS,
)
from data_codec import DecodeError, decode_for_resource
from models import ActuatorCommand, SensorReading, SystemPerformanceSample
from topics import INBOUND_RESOURCES, ResourceName, resolve_topic

logger = logging.getLogger(__name__)

TopicRef = Union[ResourceName, str]


class DataMessageListener(Protocol):
    """Receives decoded inbound records, one handler per record type."""

    def handle_sensor_message(self, resource: ResourceName, data: SensorReading) -> bool:
        ...

    def handle_actuator_command_response(self, resource: ResourceName, data: ActuatorCommand) -> bool:
        ...

    def handle_system_performance_message(self, resource: ResourceName, data: SystemPerformanceSample) -> bool:
        ...

    def handle_incoming_message(self, resource: ResourceName, message: str) -> bool:
        ...


def generate_client_id() -> str:
    return f"gateway-{uuid.uuid4().hex[:12]}"


class MqttClientConnector:
    """One logical broker connection with automatic resubscription."""

    def __init__(self, settings: MqttSettings):
        self.settings = settings
        self.client_id = settings.client_id or generate_client_id()
        self.host = settings.host
        self.port = settings.effective_port
        self.use_tls = settings.enable_crypt

        self.client: Optional[mqtt.Client] = None
        self.listener: Optional[DataMessageListener] = None

        # topic -> qos, re-issued on every successful connect
        self.required_subscriptions: Dict[str, int] = {
            r.topic: settings.default_qos for r in INBOUND_RESOURCES
        }
        self._sub_lock = threading.Lock()
        self._connected = threading.Event()
        self._has_connected = False
        self.connect_count = 0

    @property
    def broker_addr(self) -> str:
        protocol = "ssl" if self.use_tls else "tcp"
        return f"{protocol}://{self.host}:{self.port}"

    def set_data_message_listener(self, listener: Optional[DataMessageListener]) -> bool:
        if listener is None:
            logger.warning("Cannot set a null data message listener")
            return False
        self.listener = listener
        return True

    def is_connected(self) -> bool:
        return self.client is not None and self._connected.is_set()

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=False,
            protocol=mqtt.MQTTv311,
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_publish = self._on_publish
        client.reconnect_delay_set(min_delay=MQTT_RECONNECT_MIN_DELAY, max_delay=MQTT_RECONNECT_MAX_DELAY)

        if self.settings.username and self.settings.password:
            client.username_pw_set(self.settings.username, self.settings.password)

        if self.use_tls:
            try:
                client.tls_set(ca_certs=self.settings.cert_file, cert_reqs=ssl.CERT_REQUIRED)
                logger.info(f"TLS enabled for MQTT connection on port {self.port}")
            except (ValueError, OSError, ssl.SSLError) as e:
                logger.error(f"Failed to set up TLS, falling back to plaintext: {e}")
                self.use_tls = False
                self.port = self.settings.port
        return client

    def connect(self) -> bool:
        """Connect to MQTT broker, waiting a bounded time for the handshake."""
        if self.is_connected():
            logger.warning(f"MQTT client already connected to broker: {self.broker_addr}")
            return False

        try:
            if self.client is None:
                self.client = self._build_client()

            logger.info(f"Connecting to MQTT broker at {self.broker_addr}")
            self.client.connect(self.host, self.port, keepalive=self.settings.keep_alive)
            self.client.loop_start()
        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker {self.broker_addr}: {e}", exc_info=True)
            return False

        if self._connected.wait(timeout=self.settings.connect_timeout):
            return True

        logger.error(f"MQTT connection to {self.broker_addr} timed out after {self.settings.connect_timeout}s")
        try:
            self.client.loop_stop()
            self.client.disconnect()
        except Exception as e:
            logger.debug(f"Error cleaning up after connect timeout: {e}")
        return False

    def disconnect(self) -> bool:
        """Close MQTT connection and stop the network loop.

        The loop is stopped even when the link is already down, otherwise
        paho keeps reconnecting in the background.
        """
        if self.client is None:
            logger.warning(f"MQTT client not connected to broker: {self.broker_addr}")
            return False

        was_connected = self._connected.is_set()
        try:
            logger.info(f"Disconnecting MQTT client from broker: {self.broker_addr}")
            try:
                self.client.disconnect()
            finally:
                self.client.loop_stop()
        except Exception as e:
            logger.error(f"Failed to disconnect from MQTT broker {self.broker_addr}: {e}", exc_info=True)
            return False
        finally:
            self._connected.clear()

        if not was_connected:
            logger.warning(f"MQTT client was not connected to broker: {self.broker_addr}, network loop stopped")
        return was_connected

    def publish(self, topic: TopicRef, payload: Optional[str], qos: int) -> bool:
        """Publish a message; fails fast when not connected."""
        topic_str = resolve_topic(topic)
        if topic_str is None or payload is None:
            logger.warning("Invalid parameters for publish()")
            return False
        if qos not in VALID_QOS_LEVELS:
            logger.warning(f"Invalid QoS {qos!r} for publish to {topic_str}")
            return False
        if not self.is_connected():
            logger.warning(f"MQTT client not connected. Cannot publish to {topic_str}")
            return False

        try:
            info = self.client.publish(topic_str, payload=payload, qos=qos)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                logger.error(f"Publish to {topic_str} failed: {mqtt.error_string(info.rc)}")
                return False
            logger.debug(f"Published to {topic_str} (qos={qos}, mid={info.mid}): {payload}")
            return True
        except Exception as e:
            logger.error(f"Failed to publish to {topic_str}: {e}", exc_info=True)
            return False

    def subscribe(self, topic: TopicRef, qos: int) -> bool:
        topic_str = resolve_topic(topic)
        if topic_str is None:
            logger.warning("Invalid topic for subscribe()")
            return False
        if qos not in VALID_QOS_LEVELS:
            logger.warning(f"Invalid QoS {qos!r} for subscribe to {topic_str}")
            return False
        if not self.is_connected():
            logger.warning(f"MQTT client not connected. Cannot subscribe to {topic_str}")
            return False

        if not self._subscribe(topic_str, qos):
            return False
        with self._sub_lock:
            self.required_subscriptions[topic_str] = qos
        return True

    def unsubscribe(self, topic: TopicRef) -> bool:
        topic_str = resolve_topic(topic)
        if topic_str is None:
            logger.warning("Invalid topic for unsubscribe()")
            return False
        if not self.is_connected():
            logger.warning(f"MQTT client not connected. Cannot unsubscribe from {topic_str}")
            return False

        try:
            rc, _ = self.client.unsubscribe(topic_str)
            if rc != mqtt.MQTT_ERR_SUCCESS:
                logger.error(f"Unsubscribe from {topic_str} failed: {mqtt.error_string(rc)}")
                return False
        except Exception as e:
            logger.error(f"Failed to unsubscribe from {topic_str}: {e}", exc_info=True)
            return False

        with self._sub_lock:
            self.required_subscriptions.pop(topic_str, None)
        logger.info(f"Unsubscribed from: {topic_str}")
        return True

    def _subscribe(self, topic: str, qos: int) -> bool:
        try:
            rc, _ = self.client.subscribe(topic, qos=qos)
            if rc != mqtt.MQTT_ERR_SUCCESS:
                logger.error(f"Subscribe to {topic} failed: {mqtt.error_string(rc)}")
                return False
            logger.info(f"Subscribed to: {topic} (qos={qos})")
            return True
        except Exception as e:
            logger.error(f"Failed to subscribe to {topic}: {e}", exc_info=True)
            return False

    def on_connected(self, is_reconnect: bool):
        """Re-issue every required subscription."""
        logger.info(f"MQTT connection successful (is reconnect = {is_reconnect}). Broker: {self.broker_addr}")
        with self._sub_lock:
            subscriptions = dict(self.required_subscriptions)
        for topic, qos in subscriptions.items():
            self._subscribe(topic, qos)

    def on_connection_lost(self, cause):
        logger.warning(f"Lost connection to MQTT broker {self.broker_addr}: {cause}")

    def on_message(self, topic: str, payload: bytes):
        """Decode an inbound message and hand it to the listener."""
        logger.info(f"MQTT message arrived on topic: {topic}")
        if self.listener is None:
            logger.warning(f"No data message listener, dropping message on {topic}")
            return

        resource = ResourceName.from_topic(topic)
        if resource is None:
            logger.debug(f"Ignoring message on unknown topic: {topic}")
            return

        try:
            data = decode_for_resource(resource, payload)
        except DecodeError as e:
            logger.warning(f"Dropping malformed payload on {topic}: {e}")
            return

        try:
            if resource == ResourceName.CDA_SENSOR_MSG_RESOURCE:
                self.listener.handle_sensor_message(resource, data)
            elif resource == ResourceName.CDA_ACTUATOR_RESPONSE_RESOURCE:
                self.listener.handle_actuator_command_response(resource, data)
            elif resource == ResourceName.CDA_SYSTEM_PERF_MSG_RESOURCE:
                self.listener.handle_system_performance_message(resource, data)
            else:
                self.listener.handle_incoming_message(resource, payload_text(payload))
        except Exception as e:
            logger.error(f"Error handling MQTT message on {topic}: {e}", exc_info=True)

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        """Handle MQTT connection."""
        if reason_code.is_failure:
            logger.warning(f"Connected to MQTT broker with code {reason_code}")
            return

        is_reconnect = self._has_connected
        self._has_connected = True
        self.connect_count += 1
        # subscriptions go out before connect() is released
        self.on_connected(is_reconnect)
        self._connected.set()

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties):
        """Handle MQTT disconnection."""
        was_connected = self._connected.is_set()
        self._connected.clear()
        if reason_code.is_failure and was_connected:
            self.on_connection_lost(reason_code)
        else:
            logger.info("Disconnected from MQTT broker")

    def _on_message(self, client, userdata, msg):
        """Handle incoming MQTT message."""
        self.on_message(msg.topic, msg.payload)

    def _on_publish(self, client, userdata, mid, reason_code, properties):
        logger.debug(f"Delivered MQTT message with ID: {mid}")


def payload_text(payload) -> str:
    if isinstance(payload, (bytes, bytearray)):
        return payload.decode("utf-8", errors="replace")
    return payload
