"""Data models and dataclasses."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional

from constants import (
    COMMAND_ON,
    DEFAULT_COMMAND,
    DEFAULT_STATUS,
    DEFAULT_TYPE_ID,
    DEFAULT_VAL,
    NOT_SET,
    SYSTEM_PERF_NAME,
    SYSTEM_PERF_TYPE,
)


def utc_timestamp() -> str:
    """Current time as a timezone-aware ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class SensorReading:
    """A single sensor reading reported by a device."""
    name: str = NOT_SET
    type_id: int = DEFAULT_TYPE_ID
    location_id: str = NOT_SET
    value: float = DEFAULT_VAL
    status_code: int = DEFAULT_STATUS
    has_error: bool = False
    time_stamp: str = field(default_factory=utc_timestamp)
    latitude: float = 0.0
    longitude: float = 0.0
    elevation: float = 0.0

    def with_value(self, value: float) -> "SensorReading":
        """Copy with a new value and a refreshed timestamp."""
        return replace(self, value=value, time_stamp=utc_timestamp())


@dataclass(frozen=True)
class ActuatorCommand:
    """Actuator command issued by the gateway, or a device's response to one."""
    name: str = NOT_SET
    type_id: int = DEFAULT_TYPE_ID
    location_id: str = NOT_SET
    command: int = DEFAULT_COMMAND
    value: float = DEFAULT_VAL
    state_data: str = ""
    is_response: bool = False
    status_code: int = DEFAULT_STATUS
    has_error: bool = False
    time_stamp: str = field(default_factory=utc_timestamp)
    latitude: float = 0.0
    longitude: float = 0.0
    elevation: float = 0.0

    @property
    def is_on(self) -> bool:
        return self.command == COMMAND_ON

    def as_response(self, state_data: Optional[str] = None) -> "ActuatorCommand":
        """Copy flagged as an execution response."""
        return replace(
            self,
            is_response=True,
            state_data=self.state_data if state_data is None else state_data,
            time_stamp=utc_timestamp(),
        )


@dataclass(frozen=True)
class SystemPerformanceSample:
    """CPU, memory and disk utilization (percent) for one host."""
    name: str = SYSTEM_PERF_NAME
    type_id: int = SYSTEM_PERF_TYPE
    location_id: str = NOT_SET
    cpu_util: float = DEFAULT_VAL
    mem_util: float = DEFAULT_VAL
    disk_util: float = DEFAULT_VAL
    status_code: int = DEFAULT_STATUS
    has_error: bool = False
    time_stamp: str = field(default_factory=utc_timestamp)
    latitude: float = 0.0
    longitude: float = 0.0
    elevation: float = 0.0
