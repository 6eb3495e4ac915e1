"""Constants for the telemetry gateway."""

# Device type IDs
DEFAULT_TYPE_ID = 0
HUMIDIFIER_ACTUATOR_TYPE = 1002
HUMIDITY_SENSOR_TYPE = 1010
SYSTEM_PERF_TYPE = 9001

# Device names
HUMIDITY_SENSOR_NAME = "HumiditySensor"
HUMIDIFIER_ACTUATOR_NAME = "HumidifierActuator"
SYSTEM_PERF_NAME = "SystemPerfMsg"

# Actuator commands
COMMAND_OFF = 0
COMMAND_ON = 1
DEFAULT_COMMAND = COMMAND_OFF

DEFAULT_VAL = 0.0
DEFAULT_STATUS = 0
NOT_SET = "Not Set"

# Default configuration paths
DEFAULT_CONFIG_FILE = "gateway.yaml"
DEFAULT_CONFIG_EXAMPLE_FILE = "gateway.yaml.example"
DEFAULT_LOCATION_ID = "gatewaydevice001"

# MQTT settings
DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTT_SECURE_PORT = 8883
MQTT_QOS = 1
MQTT_KEEPALIVE = 60
VALID_QOS_LEVELS = (0, 1, 2)

# Timeouts (seconds)
MQTT_CONNECT_TIMEOUT = 5.0
MQTT_RECONNECT_MIN_DELAY = 1
MQTT_RECONNECT_MAX_DELAY = 120

# Humidity threshold defaults
DEFAULT_HUMIDITY_FLOOR = 30.0
DEFAULT_HUMIDITY_CEILING = 50.0
DEFAULT_HUMIDITY_NOMINAL = 40.0

# Dwell time bounds (seconds)
DEFAULT_MAX_TIME_PAST_THRESHOLD = 300
MIN_TIME_PAST_THRESHOLD = 10
MAX_TIME_PAST_THRESHOLD = 7200

# System performance poll interval (seconds)
DEFAULT_POLL_SECONDS = 60
