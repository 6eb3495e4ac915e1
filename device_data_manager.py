"""Device data manager: routes telemetry between the broker and the actuation engine."""

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, Optional

from actuation_engine import ActuationEngine
from config import GatewayConfig
from data_codec import actuator_command_to_json, system_performance_to_json
from models import ActuatorCommand, SensorReading, SystemPerformanceSample
from mqtt_connector import MqttClientConnector
from system_performance import SystemPerformanceManager
from topics import ResourceName, device_class_for, quantity_key

logger = logging.getLogger(__name__)


def _key_for(data) -> str:
    device_class = device_class_for(data.type_id) or str(data.type_id)
    return quantity_key(device_class, data.location_id)


class DeviceDataManager:
    """Owns the connector, the engine and the performance sampler."""

    def __init__(
        self,
        config: GatewayConfig,
        mqtt_client: Optional[MqttClientConnector] = None,
        engine: Optional[ActuationEngine] = None,
        sys_perf_manager: Optional[SystemPerformanceManager] = None,
    ):
        self.config = config
        self.qos = config.mqtt.default_qos
        self.engine = engine or ActuationEngine.from_config(config.thresholds)

        self.mqtt_client = mqtt_client
        if self.mqtt_client is None and config.gateway.enable_mqtt_client:
            self.mqtt_client = MqttClientConnector(config.mqtt)
        if self.mqtt_client is not None:
            self.mqtt_client.set_data_message_listener(self)

        self.sys_perf_manager = sys_perf_manager
        if self.sys_perf_manager is None and config.gateway.enable_system_perf:
            self.sys_perf_manager = SystemPerformanceManager(
                config.gateway.location_id, config.gateway.poll_seconds
            )
        if self.sys_perf_manager is not None:
            self.sys_perf_manager.set_data_message_listener(self)

        self.actuator_listener: Optional[Callable[[ActuatorCommand], Any]] = None

        # Track latest records per monitored quantity
        self._lock = threading.Lock()
        self.last_readings: Dict[str, SensorReading] = {}
        self.last_responses: Dict[str, ActuatorCommand] = {}
        self.last_sys_perf: Dict[str, SystemPerformanceSample] = {}

        self.running = False

    async def start(self):
        """Start every enabled component; one failing does not stop the others."""
        logger.info("Starting DeviceDataManager...")
        self.running = True

        if self.sys_perf_manager is not None:
            try:
                await self.sys_perf_manager.start()
            except Exception as e:
                logger.error(f"SystemPerformanceManager failed to start: {e}", exc_info=True)

        if self.mqtt_client is not None:
            try:
                loop = asyncio.get_running_loop()
                connected = await loop.run_in_executor(None, self.mqtt_client.connect)
                logger.info(f"MQTT client connected: {connected}")
            except Exception as e:
                logger.error(f"MQTT client failed to connect: {e}", exc_info=True)

        logger.info("DeviceDataManager started")

    async def stop(self):
        """Stop all components. Safe to call at any time."""
        logger.info("Stopping DeviceDataManager...")
        self.running = False

        if self.sys_perf_manager is not None:
            try:
                await self.sys_perf_manager.stop()
            except Exception as e:
                logger.warning(f"Error stopping SystemPerformanceManager: {e}")

        if self.mqtt_client is not None:
            try:
                self.mqtt_client.disconnect()
            except Exception as e:
                logger.warning(f"Error disconnecting MQTT client: {e}")

        logger.info("DeviceDataManager stopped")

    def set_actuator_data_listener(self, name: str, listener) -> bool:
        """Register a local delivery path for issued actuator commands.

        The listener is either a callable taking an ActuatorCommand or an
        object with an on_actuator_data_update(command) method.
        """
        if listener is None:
            return False
        self.actuator_listener = getattr(listener, "on_actuator_data_update", listener)
        logger.info(f"Actuator data listener set: {name}")
        return True

    def latest_sensor_reading(self, key: str) -> Optional[SensorReading]:
        with self._lock:
            return self.last_readings.get(key)

    def latest_actuator_response(self, key: str) -> Optional[ActuatorCommand]:
        with self._lock:
            return self.last_responses.get(key)

    def is_actuator_on(self, key: str) -> bool:
        """Actuator state as last acknowledged by the device."""
        response = self.latest_actuator_response(key)
        return response is not None and response.is_on

    def handle_sensor_message(self, resource: ResourceName, data: Optional[SensorReading]) -> bool:
        if data is None:
            logger.warning("Received null SensorReading")
            return False

        logger.info(f"Handling sensor message: {data.name} @ {data.location_id}, value: {data.value}")
        if data.has_error:
            logger.warning(f"Error flag set for SensorReading instance: {data.name}")

        with self._lock:
            self.last_readings[_key_for(data)] = data

        try:
            command = self.engine.analyze(data)
        except Exception as e:
            logger.error(f"Actuation analysis failed for {data.name}: {e}", exc_info=True)
            return False

        if command is not None:
            self.handle_actuator_command_request(ResourceName.CDA_ACTUATOR_CMD_RESOURCE, command)
        return True

    def handle_actuator_command_request(self, resource: ResourceName, data: Optional[ActuatorCommand]) -> bool:
        """Send an actuator command over MQTT and to the local listener."""
        if data is None:
            logger.warning("Received null ActuatorCommand request")
            return False

        logger.info(
            f"Sending actuator command {data.name} @ {data.location_id}: "
            f"command={data.command} value={data.value}"
        )
        delivered = False

        if self.mqtt_client is not None:
            delivered = self.mqtt_client.publish(resource, actuator_command_to_json(data), self.qos)
            if not delivered:
                logger.warning(f"Actuator command for {data.location_id} not published to broker")

        if self.actuator_listener is not None:
            try:
                self.actuator_listener(data)
                delivered = True
            except Exception as e:
                logger.error(f"Actuator data listener failed: {e}", exc_info=True)

        return delivered

    def handle_actuator_command_response(self, resource: ResourceName, data: Optional[ActuatorCommand]) -> bool:
        # Responses are recorded only; engine state follows readings, not acknowledgements
        if data is None:
            logger.warning("Received null ActuatorCommand response")
            return False

        state = "ON" if data.is_on else "OFF"
        logger.info(f"Handling actuator response: {data.name} @ {data.location_id}, actuator {state}")
        if data.has_error:
            logger.warning(f"Error flag set for ActuatorCommand response: {data.name}")

        with self._lock:
            self.last_responses[_key_for(data)] = data
        return True

    def handle_system_performance_message(self, resource: ResourceName, data: Optional[SystemPerformanceSample]) -> bool:
        if data is None:
            logger.warning("Received null SystemPerformanceSample")
            return False

        logger.info(
            f"System Performance @ {data.location_id} - CPU: {data.cpu_util:.2f}%, "
            f"Memory: {data.mem_util:.2f}%, Disk: {data.disk_util:.2f}%"
        )
        if data.has_error:
            logger.warning(f"Error flag set for SystemPerformanceSample from {data.location_id}")

        with self._lock:
            self.last_sys_perf[data.location_id] = data

        # Local samples go upstream; device samples arrive from the broker already
        if resource == ResourceName.GDA_SYSTEM_PERF_MSG_RESOURCE and self.mqtt_client is not None:
            if self.mqtt_client.is_connected():
                self.mqtt_client.publish(resource, system_performance_to_json(data), self.qos)
        return True

    def handle_incoming_message(self, resource: ResourceName, message: Optional[str]) -> bool:
        if message is None:
            logger.warning("Received null message")
            return False
        logger.info(f"Handling incoming generic message for resource: {resource}")
        logger.debug(f"Message content: {message}")
        return True
