"""Shared fixtures."""

from datetime import datetime, timedelta, timezone

import pytest

from actuation_engine import ActuationEngine, ThresholdPolicy
from config import GatewayConfig
from constants import HUMIDITY_SENSOR_NAME, HUMIDITY_SENSOR_TYPE
from models import SensorReading

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
LOCATION = "constraineddevice001"


def humidity(seconds: float, value: float, location: str = LOCATION) -> SensorReading:
    """Humidity reading taken `seconds` after BASE_TIME."""
    return SensorReading(
        name=HUMIDITY_SENSOR_NAME,
        type_id=HUMIDITY_SENSOR_TYPE,
        location_id=location,
        value=value,
        time_stamp=(BASE_TIME + timedelta(seconds=seconds)).isoformat(),
    )


@pytest.fixture
def policy() -> ThresholdPolicy:
    """F=30, C=50, N=40, D=10s."""
    return ThresholdPolicy(device_class="humidity", floor=30.0, ceiling=50.0, nominal=40.0, dwell_seconds=10)


@pytest.fixture
def engine(policy) -> ActuationEngine:
    return ActuationEngine({policy.sensor_type_id: policy})


@pytest.fixture
def gateway_config() -> GatewayConfig:
    return GatewayConfig.from_dict({
        "mqtt": {"host": "localhost", "client_id": "test-gateway", "connect_timeout": 0.5},
        "gateway": {"location_id": "gatewaydevice001", "enable_mqtt_client": False, "enable_system_perf": False},
        "thresholds": {
            "humidity": {"floor": 30, "ceiling": 50, "nominal": 40, "max_time_past_threshold": 10},
        },
    })
