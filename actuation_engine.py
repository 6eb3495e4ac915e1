"""Threshold-crossing actuation engine.

Watches sensor readings per monitored quantity (device class + location),
arms a dwell timer when a reading leaves the [floor, ceiling] band and
issues an actuator command once the excursion has lasted long enough.

Low side:  ON at nominal after the dwell time, latched until a reading
           at or above nominal, which issues OFF and clears the state.
High side: OFF at nominal after the dwell time, no latch.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from config import ThresholdSettings, clamp_dwell_seconds
from constants import (
    COMMAND_OFF,
    COMMAND_ON,
    HUMIDIFIER_ACTUATOR_NAME,
    HUMIDIFIER_ACTUATOR_TYPE,
    HUMIDITY_SENSOR_TYPE,
)
from models import ActuatorCommand, SensorReading
from topics import quantity_key

logger = logging.getLogger(__name__)


class Phase(Enum):
    NOMINAL = "NOMINAL"
    ARMED_LOW = "ARMED_LOW"
    ARMED_HIGH = "ARMED_HIGH"
    ACTUATED_ON = "ACTUATED_ON"


@dataclass(frozen=True)
class ParsedTimestamp:
    """Result of parsing a record timestamp.

    approximate is True when the record timestamp could not be parsed and
    the local clock was used instead.
    """
    moment: datetime
    approximate: bool = False


def parse_timestamp(value: Optional[str]) -> ParsedTimestamp:
    """Parse an ISO-8601 timestamp, falling back to the current UTC time."""
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
            if moment.tzinfo is None:
                moment = moment.replace(tzinfo=timezone.utc)
            return ParsedTimestamp(moment)
        except ValueError:
            pass

    logger.warning(f"Unparseable timestamp {value!r}, using local time (timing is approximate)")
    return ParsedTimestamp(datetime.now(timezone.utc), approximate=True)


@dataclass(frozen=True)
class ThresholdPolicy:
    """Band, nominal setpoint and dwell time for one device class."""
    device_class: str
    floor: float
    ceiling: float
    nominal: float
    dwell_seconds: int
    sensor_type_id: int = HUMIDITY_SENSOR_TYPE
    actuator_type_id: int = HUMIDIFIER_ACTUATOR_TYPE
    actuator_name: str = HUMIDIFIER_ACTUATOR_NAME

    @classmethod
    def from_settings(cls, device_class: str, settings: ThresholdSettings, **kwargs) -> "ThresholdPolicy":
        return cls(
            device_class=device_class,
            floor=settings.floor,
            ceiling=settings.ceiling,
            nominal=settings.nominal,
            dwell_seconds=clamp_dwell_seconds(settings.max_time_past_threshold),
            **kwargs,
        )


@dataclass
class ExcursionState:
    """Excursion tracking for one monitored quantity."""
    key: str
    phase: Phase = Phase.NOMINAL
    anchor: Optional[SensorReading] = None
    anchor_time: Optional[datetime] = None
    anchor_approximate: bool = False
    last_command: Optional[int] = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def is_armed(self) -> bool:
        return self.phase in (Phase.ARMED_LOW, Phase.ARMED_HIGH)

    def arm(self, phase: Phase, reading: SensorReading, parsed: ParsedTimestamp):
        self.phase = phase
        self.anchor = reading
        self.anchor_time = parsed.moment
        self.anchor_approximate = parsed.approximate

    def clear(self):
        self.phase = Phase.NOMINAL
        self.anchor = None
        self.anchor_time = None
        self.anchor_approximate = False
        self.last_command = None


class ExcursionStateStore:
    """Keyed excursion states, each independently lockable."""

    def __init__(self):
        self._states: Dict[str, ExcursionState] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> ExcursionState:
        """Get the state for a key, creating it on first use."""
        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = ExcursionState(key=key)
                self._states[key] = state
            return state

    def peek(self, key: str) -> Optional[ExcursionState]:
        with self._lock:
            return self._states.get(key)

    def keys(self):
        with self._lock:
            return list(self._states)

    def reset(self, key: Optional[str] = None):
        with self._lock:
            states = list(self._states.values()) if key is None else [self._states.get(key)]
        for state in states:
            if state is not None:
                with state.lock:
                    state.clear()


class ActuationEngine:
    """Decides when sensor excursions turn into actuator commands."""

    def __init__(self, policies: Dict[int, ThresholdPolicy], store: Optional[ExcursionStateStore] = None):
        # keyed by sensor type id
        self.policies = dict(policies)
        self.store = store or ExcursionStateStore()

    @classmethod
    def from_config(cls, thresholds: Dict[str, ThresholdSettings]) -> "ActuationEngine":
        """Build an engine from configured threshold sections.

        Only device classes with a known sensor/actuator pairing are used.
        """
        policies: Dict[int, ThresholdPolicy] = {}
        for device_class, settings in thresholds.items():
            if device_class != "humidity":
                logger.warning(f"No actuator mapping for device class '{device_class}', ignoring")
                continue
            policy = ThresholdPolicy.from_settings(device_class, settings)
            policies[policy.sensor_type_id] = policy
            logger.info(
                f"Threshold policy for {device_class}: floor={policy.floor} ceiling={policy.ceiling} "
                f"nominal={policy.nominal} dwell={policy.dwell_seconds}s"
            )
        return cls(policies)

    def state_for(self, key: str) -> Optional[ExcursionState]:
        return self.store.peek(key)

    def reset(self, key: Optional[str] = None):
        self.store.reset(key)

    def analyze(self, reading: SensorReading) -> Optional[ActuatorCommand]:
        """Evaluate one reading; return the command to issue, if any."""
        if reading is None:
            return None

        policy = self.policies.get(reading.type_id)
        if policy is None:
            logger.debug(f"No threshold policy for sensor type {reading.type_id}, skipping analysis")
            return None

        state = self.store.get(quantity_key(policy.device_class, reading.location_id))
        with state.lock:
            return self._evaluate(state, policy, reading)

    def _evaluate(self, state: ExcursionState, policy: ThresholdPolicy, reading: SensorReading) -> Optional[ActuatorCommand]:
        value = reading.value

        if state.phase == Phase.ACTUATED_ON:
            if value >= policy.nominal:
                logger.info(f"{state.key}: {value} reached nominal {policy.nominal}, releasing")
                state.clear()
                return self._command(policy, reading, COMMAND_OFF, "nominal reached")
            logger.debug(f"{state.key}: {value} below nominal {policy.nominal}, staying ON")
            return None

        if value < policy.floor:
            side = Phase.ARMED_LOW
        elif value > policy.ceiling:
            side = Phase.ARMED_HIGH
        else:
            if state.is_armed:
                logger.info(f"{state.key}: {value} back in band before dwell time, no actuation")
                state.clear()
            return None

        parsed = parse_timestamp(reading.time_stamp)

        if state.phase != side:
            # fresh excursion, or a jump to the opposite side
            if state.is_armed:
                logger.info(f"{state.key}: crossed to {side.value}, restarting timer")
            else:
                logger.info(f"{state.key}: {value} outside [{policy.floor}, {policy.ceiling}], starting timer")
            state.arm(side, reading, parsed)
            return None

        elapsed = (parsed.moment - state.anchor_time).total_seconds()
        if parsed.approximate or state.anchor_approximate:
            logger.warning(f"{state.key}: elapsed time {elapsed:.1f}s is approximate")

        if elapsed < policy.dwell_seconds:
            logger.debug(f"{state.key}: {elapsed:.1f}s of {policy.dwell_seconds}s elapsed")
            return None

        if side == Phase.ARMED_LOW:
            logger.info(f"{state.key}: below floor for {elapsed:.1f}s, issuing ON")
            state.phase = Phase.ACTUATED_ON
            state.last_command = COMMAND_ON
            return self._command(policy, reading, COMMAND_ON, "below floor")

        logger.info(f"{state.key}: above ceiling for {elapsed:.1f}s, issuing OFF")
        state.clear()
        return self._command(policy, reading, COMMAND_OFF, "above ceiling")

    @staticmethod
    def _command(policy: ThresholdPolicy, reading: SensorReading, command: int, reason: str) -> ActuatorCommand:
        return ActuatorCommand(
            name=policy.actuator_name,
            type_id=policy.actuator_type_id,
            location_id=reading.location_id,
            command=command,
            value=policy.nominal,
            state_data=f"{policy.device_class} {reading.value} {reason}",
        )
