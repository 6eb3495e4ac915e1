"""Resource names and MQTT topic utilities."""

from enum import Enum
from typing import Dict, Optional

from constants import HUMIDIFIER_ACTUATOR_TYPE, HUMIDITY_SENSOR_TYPE


class ResourceName(Enum):
    """Logical resource names; each value is the wire topic."""

    CDA_ACTUATOR_CMD_RESOURCE = "PIOT/ConstrainedDevice/ActuatorCmd"
    CDA_ACTUATOR_RESPONSE_RESOURCE = "PIOT/ConstrainedDevice/ActuatorResponse"
    CDA_SENSOR_MSG_RESOURCE = "PIOT/ConstrainedDevice/SensorMsg"
    CDA_SYSTEM_PERF_MSG_RESOURCE = "PIOT/ConstrainedDevice/SystemPerfMsg"
    GDA_SYSTEM_PERF_MSG_RESOURCE = "PIOT/GatewayDevice/SystemPerfMsg"
    GDA_MGMT_STATUS_MSG_RESOURCE = "PIOT/GatewayDevice/MgmtStatusMsg"

    @property
    def topic(self) -> str:
        return self.value

    @classmethod
    def from_topic(cls, topic: str) -> Optional["ResourceName"]:
        """Map a wire topic back to its resource, or None if unknown."""
        return _TOPIC_TO_RESOURCE.get(topic)


_TOPIC_TO_RESOURCE: Dict[str, ResourceName] = {r.value: r for r in ResourceName}

# Subscriptions the gateway needs on every (re)connect
INBOUND_RESOURCES = (
    ResourceName.CDA_ACTUATOR_RESPONSE_RESOURCE,
    ResourceName.CDA_SENSOR_MSG_RESOURCE,
    ResourceName.CDA_SYSTEM_PERF_MSG_RESOURCE,
)

# Device class names used to key per-quantity state
DEVICE_CLASS_BY_TYPE_ID = {
    HUMIDITY_SENSOR_TYPE: "humidity",
    HUMIDIFIER_ACTUATOR_TYPE: "humidity",
}


def device_class_for(type_id: int) -> Optional[str]:
    """Get the device class for a sensor or actuator type id."""
    return DEVICE_CLASS_BY_TYPE_ID.get(type_id)


def quantity_key(device_class: str, location_id: str) -> str:
    """Get the monitored-quantity key, e.g. humidity@constraineddevice001."""
    return f"{device_class}@{location_id}"


def resolve_topic(resource_or_topic) -> Optional[str]:
    """Accept a ResourceName or a raw topic string."""
    if isinstance(resource_or_topic, ResourceName):
        return resource_or_topic.topic
    if isinstance(resource_or_topic, str) and resource_or_topic:
        return resource_or_topic
    return None
