"""Gateway configuration loading and validation."""

import logging
import math
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml

from constants import (
    DEFAULT_CONFIG_EXAMPLE_FILE,
    DEFAULT_CONFIG_FILE,
    DEFAULT_HUMIDITY_CEILING,
    DEFAULT_HUMIDITY_FLOOR,
    DEFAULT_HUMIDITY_NOMINAL,
    DEFAULT_LOCATION_ID,
    DEFAULT_MAX_TIME_PAST_THRESHOLD,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_SECURE_PORT,
    DEFAULT_POLL_SECONDS,
    MAX_TIME_PAST_THRESHOLD,
    MIN_TIME_PAST_THRESHOLD,
    MQTT_CONNECT_TIMEOUT,
    MQTT_KEEPALIVE,
    MQTT_QOS,
    VALID_QOS_LEVELS,
)

logger = logging.getLogger(__name__)


def parse_number(name: str, value: Any, default, cast=float):
    """Convert a numeric setting, falling back to the default when unparseable."""
    try:
        if isinstance(value, bool):
            raise TypeError(f"boolean {value!r}")
        number = cast(value)
        if isinstance(number, float) and not math.isfinite(number):
            raise ValueError(f"non-finite {value!r}")
        return number
    except (TypeError, ValueError):
        logger.warning(f"Invalid {name} {value!r}, using default {default}")
        return default


def clamp_dwell_seconds(value: Any) -> int:
    """Return the dwell time if within bounds, otherwise the default."""
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        logger.warning(
            f"Invalid dwell time {value!r}, using default {DEFAULT_MAX_TIME_PAST_THRESHOLD}s"
        )
        return DEFAULT_MAX_TIME_PAST_THRESHOLD

    if not MIN_TIME_PAST_THRESHOLD <= seconds <= MAX_TIME_PAST_THRESHOLD:
        logger.warning(
            f"Dwell time {seconds}s outside [{MIN_TIME_PAST_THRESHOLD}, {MAX_TIME_PAST_THRESHOLD}], "
            f"using default {DEFAULT_MAX_TIME_PAST_THRESHOLD}s"
        )
        return DEFAULT_MAX_TIME_PAST_THRESHOLD
    return seconds


@dataclass
class MqttSettings:
    """Broker connection settings."""
    host: str
    port: int = DEFAULT_MQTT_PORT
    secure_port: int = DEFAULT_MQTT_SECURE_PORT
    enable_crypt: bool = False
    cert_file: Optional[str] = None
    keep_alive: int = MQTT_KEEPALIVE
    client_id: Optional[str] = None
    default_qos: int = MQTT_QOS
    connect_timeout: float = MQTT_CONNECT_TIMEOUT
    username: Optional[str] = None
    password: Optional[str] = None

    def __post_init__(self):
        if self.default_qos not in VALID_QOS_LEVELS:
            logger.warning(f"Invalid default QoS {self.default_qos!r}, using {MQTT_QOS}")
            self.default_qos = MQTT_QOS
        self.keep_alive = parse_number("keep-alive", self.keep_alive, MQTT_KEEPALIVE, int)
        if self.keep_alive <= 0:
            logger.warning(f"Invalid keep-alive {self.keep_alive!r}, using {MQTT_KEEPALIVE}s")
            self.keep_alive = MQTT_KEEPALIVE
        self.connect_timeout = parse_number("connect timeout", self.connect_timeout, MQTT_CONNECT_TIMEOUT)
        if self.connect_timeout <= 0:
            logger.warning(f"Invalid connect timeout {self.connect_timeout!r}, using {MQTT_CONNECT_TIMEOUT}s")
            self.connect_timeout = MQTT_CONNECT_TIMEOUT

    @property
    def effective_port(self) -> int:
        return self.secure_port if self.enable_crypt else self.port


@dataclass
class GatewaySettings:
    """Which sub-components run and where this gateway lives."""
    location_id: str = DEFAULT_LOCATION_ID
    enable_mqtt_client: bool = True
    enable_system_perf: bool = True
    poll_seconds: int = DEFAULT_POLL_SECONDS

    def __post_init__(self):
        self.poll_seconds = parse_number("poll interval", self.poll_seconds, DEFAULT_POLL_SECONDS, int)
        if self.poll_seconds <= 0:
            logger.warning(f"Invalid poll interval {self.poll_seconds!r}, using {DEFAULT_POLL_SECONDS}s")
            self.poll_seconds = DEFAULT_POLL_SECONDS


@dataclass
class ThresholdSettings:
    """Floor / ceiling / nominal band and dwell time for one device class."""
    floor: float = DEFAULT_HUMIDITY_FLOOR
    ceiling: float = DEFAULT_HUMIDITY_CEILING
    nominal: float = DEFAULT_HUMIDITY_NOMINAL
    max_time_past_threshold: int = DEFAULT_MAX_TIME_PAST_THRESHOLD

    def __post_init__(self):
        self.max_time_past_threshold = clamp_dwell_seconds(self.max_time_past_threshold)
        self.floor = parse_number("floor", self.floor, DEFAULT_HUMIDITY_FLOOR)
        self.ceiling = parse_number("ceiling", self.ceiling, DEFAULT_HUMIDITY_CEILING)
        self.nominal = parse_number("nominal", self.nominal, DEFAULT_HUMIDITY_NOMINAL)

        if self.floor >= self.ceiling:
            logger.warning(
                f"Floor {self.floor} is not below ceiling {self.ceiling}, "
                f"using defaults {DEFAULT_HUMIDITY_FLOOR}/{DEFAULT_HUMIDITY_CEILING}"
            )
            self.floor = DEFAULT_HUMIDITY_FLOOR
            self.ceiling = DEFAULT_HUMIDITY_CEILING

        if not self.floor <= self.nominal <= self.ceiling:
            midpoint = (self.floor + self.ceiling) / 2
            logger.warning(
                f"Nominal {self.nominal} outside [{self.floor}, {self.ceiling}], using {midpoint}"
            )
            self.nominal = midpoint


@dataclass
class GatewayConfig:
    """Complete gateway configuration."""
    mqtt: MqttSettings
    gateway: GatewaySettings = field(default_factory=GatewaySettings)
    thresholds: Dict[str, ThresholdSettings] = field(
        default_factory=lambda: {"humidity": ThresholdSettings()}
    )

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "GatewayConfig":
        """Build and validate configuration from a parsed mapping."""
        if not config:
            raise ValueError("Configuration is empty")
        if "mqtt" not in config:
            raise ValueError("Missing 'mqtt' section in configuration")

        mqtt_config = config.get("mqtt") or {}
        if "host" not in mqtt_config:
            raise ValueError("Missing 'mqtt.host' in configuration")

        thresholds_config = config.get("thresholds") or {"humidity": {}}
        thresholds = {
            device_class: ThresholdSettings(**(values or {}))
            for device_class, values in thresholds_config.items()
        }

        return cls(
            mqtt=MqttSettings(**mqtt_config),
            gateway=GatewaySettings(**(config.get("gateway") or {})),
            thresholds=thresholds,
        )


def load_config(path: str = DEFAULT_CONFIG_FILE) -> GatewayConfig:
    """Load and validate configuration file."""
    if not os.path.exists(path):
        raise FileNotFoundError(
            f"Configuration file '{path}' not found. "
            f"Please copy '{DEFAULT_CONFIG_EXAMPLE_FILE}' to '{path}' "
            f"and update with your settings."
        )

    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in '{path}': {e}")

    if not config:
        raise ValueError(f"'{path}' is empty")

    try:
        return GatewayConfig.from_dict(config)
    except TypeError as e:
        # unknown keys in a section
        raise ValueError(f"Invalid configuration in '{path}': {e}")
