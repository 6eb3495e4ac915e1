"""JSON wire codec for telemetry records."""

import json
import math
from dataclasses import asdict
from typing import Any, Callable, Dict, Union

from models import ActuatorCommand, SensorReading, SystemPerformanceSample
from topics import ResourceName

Payload = Union[bytes, bytearray, str]

# record attribute -> wire key
_BASE_KEYS = {
    "name": "name",
    "type_id": "typeID",
    "location_id": "locationID",
    "status_code": "statusCode",
    "has_error": "hasError",
    "time_stamp": "timeStamp",
    "latitude": "latitude",
    "longitude": "longitude",
    "elevation": "elevation",
}

_SENSOR_KEYS = {**_BASE_KEYS, "value": "value"}

_ACTUATOR_KEYS = {
    **_BASE_KEYS,
    "command": "command",
    "value": "value",
    "state_data": "stateData",
    "is_response": "isResponse",
}

_PERF_KEYS = {
    **_BASE_KEYS,
    "cpu_util": "cpuUtil",
    "mem_util": "memUtil",
    "disk_util": "diskUtil",
}

_FLOAT_FIELDS = {"value", "latitude", "longitude", "elevation", "cpu_util", "mem_util", "disk_util"}
_INT_FIELDS = {"type_id", "status_code", "command"}
_BOOL_FIELDS = {"has_error", "is_response"}
_STR_FIELDS = {"name", "location_id", "time_stamp", "state_data"}


class DecodeError(ValueError):
    """Payload could not be decoded into a record."""


def _encode(record, keys: Dict[str, str]) -> str:
    data = asdict(record)
    return json.dumps({wire: data[attr] for attr, wire in keys.items()})


def _coerce(attr: str, raw: Any) -> Any:
    if attr in _BOOL_FIELDS:
        if isinstance(raw, bool):
            return raw
        raise DecodeError(f"'{attr}' must be a boolean, got {raw!r}")
    if attr in _INT_FIELDS:
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise DecodeError(f"'{attr}' must be an integer, got {raw!r}")
        return int(raw)
    if attr in _FLOAT_FIELDS:
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise DecodeError(f"'{attr}' must be a number, got {raw!r}")
        value = float(raw)
        if math.isnan(value) or math.isinf(value):
            raise DecodeError(f"'{attr}' must be finite, got {raw!r}")
        return value
    if attr in _STR_FIELDS:
        if not isinstance(raw, str):
            raise DecodeError(f"'{attr}' must be a string, got {raw!r}")
        return raw
    return raw


def _decode(payload: Payload, keys: Dict[str, str], record_cls):
    if payload is None:
        raise DecodeError("Payload is empty")
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Payload is not valid UTF-8: {e}") from e
    if not payload.strip():
        raise DecodeError("Payload is empty")

    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise DecodeError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise DecodeError(f"Expected a JSON object, got {type(data).__name__}")

    kwargs = {}
    for attr, wire in keys.items():
        # absent or null keys keep the record default
        if data.get(wire) is not None:
            kwargs[attr] = _coerce(attr, data[wire])
    return record_cls(**kwargs)


def sensor_reading_to_json(reading: SensorReading) -> str:
    return _encode(reading, _SENSOR_KEYS)


def json_to_sensor_reading(payload: Payload) -> SensorReading:
    return _decode(payload, _SENSOR_KEYS, SensorReading)


def actuator_command_to_json(command: ActuatorCommand) -> str:
    return _encode(command, _ACTUATOR_KEYS)


def json_to_actuator_command(payload: Payload) -> ActuatorCommand:
    return _decode(payload, _ACTUATOR_KEYS, ActuatorCommand)


def system_performance_to_json(sample: SystemPerformanceSample) -> str:
    return _encode(sample, _PERF_KEYS)


def json_to_system_performance(payload: Payload) -> SystemPerformanceSample:
    return _decode(payload, _PERF_KEYS, SystemPerformanceSample)


_DECODERS: Dict[ResourceName, Callable[[Payload], Any]] = {
    ResourceName.CDA_SENSOR_MSG_RESOURCE: json_to_sensor_reading,
    ResourceName.CDA_ACTUATOR_CMD_RESOURCE: json_to_actuator_command,
    ResourceName.CDA_ACTUATOR_RESPONSE_RESOURCE: json_to_actuator_command,
    ResourceName.CDA_SYSTEM_PERF_MSG_RESOURCE: json_to_system_performance,
    ResourceName.GDA_SYSTEM_PERF_MSG_RESOURCE: json_to_system_performance,
}


def decode_for_resource(resource: ResourceName, payload: Payload):
    """
    Decode a payload into the record type carried by a resource.
    Resources without a record type return the payload as text.
    """
    decoder = _DECODERS.get(resource)
    if decoder is None:
        if isinstance(payload, (bytes, bytearray)):
            return payload.decode("utf-8", errors="replace")
        return payload
    return decoder(payload)
