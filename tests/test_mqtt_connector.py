"""MQTT connector tests.

The paho client is replaced by a MagicMock whose connect() fires the
on_connect callback, so no broker is needed.

Run:
    pytest tests/test_mqtt_connector.py -v
"""

from unittest.mock import MagicMock, patch

import paho.mqtt.client as mqtt
import pytest

from config import MqttSettings
from data_codec import sensor_reading_to_json
from models import ActuatorCommand, SystemPerformanceSample
from mqtt_connector import MqttClientConnector, generate_client_id, payload_text
from topics import INBOUND_RESOURCES, ResourceName

from conftest import humidity


def _reason(failure: bool = False):
    reason = MagicMock()
    reason.is_failure = failure
    return reason


@pytest.fixture
def settings():
    return MqttSettings(host="localhost", client_id="test-gateway", connect_timeout=0.2)


@pytest.fixture
def fake_client():
    """Paho client mock that accepts every operation."""
    client = MagicMock()
    client.subscribe.return_value = (mqtt.MQTT_ERR_SUCCESS, 1)
    client.unsubscribe.return_value = (mqtt.MQTT_ERR_SUCCESS, 2)
    client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_SUCCESS, mid=3)
    return client


@pytest.fixture
def connector(settings, fake_client):
    """Connector wired to the fake client; connect() completes the handshake."""
    conn = MqttClientConnector(settings)

    def _connect(host, port, keepalive=60):
        conn._on_connect(fake_client, None, {}, _reason(), None)
        return mqtt.MQTT_ERR_SUCCESS

    fake_client.connect.side_effect = _connect
    with patch("mqtt_connector.mqtt.Client", return_value=fake_client):
        yield conn


@pytest.fixture
def listener():
    return MagicMock()


class TestConnectorSetup:

    def test_generated_client_id(self):
        client_id = generate_client_id()
        assert client_id.startswith("gateway-")
        assert generate_client_id() != client_id

    def test_client_id_from_settings(self, connector):
        assert connector.client_id == "test-gateway"

    def test_port_follows_tls_flag(self):
        plain = MqttClientConnector(MqttSettings(host="broker"))
        secure = MqttClientConnector(MqttSettings(host="broker", enable_crypt=True))
        assert plain.port == 1883
        assert secure.port == 8883
        assert secure.broker_addr == "ssl://broker:8883"

    def test_required_subscriptions_seeded(self, connector):
        assert set(connector.required_subscriptions) == {r.topic for r in INBOUND_RESOURCES}
        assert all(qos == 1 for qos in connector.required_subscriptions.values())

    def test_null_listener_rejected(self, connector):
        assert connector.set_data_message_listener(None) is False
        assert connector.listener is None


class TestConnectLifecycle:

    def test_connect_success(self, connector, fake_client):
        assert connector.connect() is True
        assert connector.is_connected()
        fake_client.loop_start.assert_called_once()
        assert connector.connect_count == 1

    def test_connect_subscribes_required_topics(self, connector, fake_client):
        connector.connect()
        subscribed = {c.args[0] for c in fake_client.subscribe.call_args_list}
        assert subscribed == {r.topic for r in INBOUND_RESOURCES}

    def test_connect_twice_returns_false(self, connector):
        connector.connect()
        assert connector.connect() is False

    def test_connect_timeout(self, settings, fake_client):
        conn = MqttClientConnector(settings)
        fake_client.connect.side_effect = None
        with patch("mqtt_connector.mqtt.Client", return_value=fake_client):
            assert conn.connect() is False
        assert not conn.is_connected()
        fake_client.loop_stop.assert_called_once()

    def test_connect_exception(self, settings, fake_client):
        conn = MqttClientConnector(settings)
        fake_client.connect.side_effect = ConnectionRefusedError("refused")
        with patch("mqtt_connector.mqtt.Client", return_value=fake_client):
            assert conn.connect() is False

    def test_refused_handshake_does_not_connect(self, connector, fake_client):
        connector._on_connect(fake_client, None, {}, _reason(failure=True), None)
        assert not connector._connected.is_set()

    def test_disconnect(self, connector, fake_client):
        connector.connect()
        assert connector.disconnect() is True
        assert not connector.is_connected()
        fake_client.disconnect.assert_called_once()

    def test_disconnect_when_not_connected(self, connector):
        assert connector.disconnect() is False

    def test_disconnect_after_connection_lost_stops_loop(self, connector, fake_client):
        connector.connect()
        connector._on_disconnect(fake_client, None, {}, _reason(failure=True), None)
        assert not connector.is_connected()

        assert connector.disconnect() is False

        fake_client.disconnect.assert_called_once()
        fake_client.loop_stop.assert_called_once()
        assert not connector._connected.is_set()

    def test_disconnect_stops_loop_when_disconnect_raises(self, connector, fake_client):
        connector.connect()
        fake_client.disconnect.side_effect = OSError("socket closed")

        assert connector.disconnect() is False

        fake_client.loop_stop.assert_called_once()
        assert not connector.is_connected()

    def test_subscriptions_sent_before_connected(self, connector, fake_client):
        connected_during_subscribe = []
        fake_client.subscribe.side_effect = lambda topic, qos=0: (
            connected_during_subscribe.append(connector._connected.is_set()) or (mqtt.MQTT_ERR_SUCCESS, 1)
        )

        assert connector.connect() is True

        assert len(connected_during_subscribe) == len(INBOUND_RESOURCES)
        assert not any(connected_during_subscribe)

    def test_reconnect_resubscribes_including_added_topics(self, connector, fake_client):
        connector.connect()
        assert connector.subscribe("PIOT/Extra/Topic", 2) is True

        connector._on_disconnect(fake_client, None, {}, _reason(failure=True), None)
        assert not connector.is_connected()
        fake_client.subscribe.reset_mock()

        connector._on_connect(fake_client, None, {}, _reason(), None)

        subscribed = {c.args[0]: c.kwargs["qos"] for c in fake_client.subscribe.call_args_list}
        assert subscribed["PIOT/Extra/Topic"] == 2
        for resource in INBOUND_RESOURCES:
            assert resource.topic in subscribed
        assert connector.connect_count == 2

    def test_unsubscribed_topic_not_restored(self, connector, fake_client):
        connector.connect()
        assert connector.unsubscribe(ResourceName.CDA_SYSTEM_PERF_MSG_RESOURCE) is True
        fake_client.subscribe.reset_mock()

        connector._on_connect(fake_client, None, {}, _reason(), None)
        subscribed = {c.args[0] for c in fake_client.subscribe.call_args_list}
        assert ResourceName.CDA_SYSTEM_PERF_MSG_RESOURCE.topic not in subscribed


class TestPublishSubscribe:

    def test_publish_requires_connection(self, connector, fake_client):
        assert connector.publish(ResourceName.CDA_ACTUATOR_CMD_RESOURCE, "{}", 1) is False
        fake_client.publish.assert_not_called()

    def test_publish_resource(self, connector, fake_client):
        connector.connect()
        assert connector.publish(ResourceName.CDA_ACTUATOR_CMD_RESOURCE, '{"command": 1}', 1) is True
        fake_client.publish.assert_called_once_with(
            "PIOT/ConstrainedDevice/ActuatorCmd", payload='{"command": 1}', qos=1
        )

    @pytest.mark.parametrize("qos", [-1, 3, None])
    def test_publish_invalid_qos(self, connector, fake_client, qos):
        connector.connect()
        assert connector.publish("some/topic", "x", qos) is False
        fake_client.publish.assert_not_called()

    def test_publish_missing_payload(self, connector):
        connector.connect()
        assert connector.publish("some/topic", None, 1) is False

    def test_publish_broker_error(self, connector, fake_client):
        connector.connect()
        fake_client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_NO_CONN, mid=0)
        assert connector.publish("some/topic", "x", 1) is False

    def test_subscribe_requires_connection(self, connector):
        assert connector.subscribe("some/topic", 1) is False
        assert "some/topic" not in connector.required_subscriptions

    def test_subscribe_invalid_qos(self, connector):
        connector.connect()
        assert connector.subscribe("some/topic", 5) is False


class TestMessageDispatch:

    def test_sensor_message_dispatched(self, connector, listener):
        connector.set_data_message_listener(listener)
        payload = sensor_reading_to_json(humidity(0, 25)).encode()

        connector.on_message(ResourceName.CDA_SENSOR_MSG_RESOURCE.topic, payload)

        listener.handle_sensor_message.assert_called_once()
        resource, reading = listener.handle_sensor_message.call_args.args
        assert resource == ResourceName.CDA_SENSOR_MSG_RESOURCE
        assert reading.value == 25.0

    def test_actuator_response_dispatched(self, connector, listener):
        connector.set_data_message_listener(listener)
        payload = b'{"typeID": 1002, "locationID": "dev", "command": 1, "isResponse": true}'

        connector.on_message(ResourceName.CDA_ACTUATOR_RESPONSE_RESOURCE.topic, payload)

        _, response = listener.handle_actuator_command_response.call_args.args
        assert isinstance(response, ActuatorCommand)
        assert response.is_response is True

    def test_system_perf_dispatched(self, connector, listener):
        connector.set_data_message_listener(listener)
        payload = b'{"locationID": "dev", "cpuUtil": 12.5, "memUtil": 40.0, "diskUtil": 70.0}'

        connector.on_message(ResourceName.CDA_SYSTEM_PERF_MSG_RESOURCE.topic, payload)

        _, sample = listener.handle_system_performance_message.call_args.args
        assert isinstance(sample, SystemPerformanceSample)
        assert sample.cpu_util == 12.5

    def test_untyped_resource_goes_to_generic_handler(self, connector, listener):
        connector.set_data_message_listener(listener)
        connector.on_message(ResourceName.GDA_MGMT_STATUS_MSG_RESOURCE.topic, b"status ok")
        listener.handle_incoming_message.assert_called_once_with(
            ResourceName.GDA_MGMT_STATUS_MSG_RESOURCE, "status ok"
        )

    @pytest.mark.parametrize("payload", [b"", b"not json", b"[1, 2]", b'{"value": "high"}', b"\xff\xfe"])
    def test_malformed_payload_dropped(self, connector, listener, payload):
        connector.set_data_message_listener(listener)
        connector.on_message(ResourceName.CDA_SENSOR_MSG_RESOURCE.topic, payload)
        listener.handle_sensor_message.assert_not_called()

    def test_unknown_topic_ignored(self, connector, listener):
        connector.set_data_message_listener(listener)
        connector.on_message("some/other/topic", b"{}")
        assert listener.method_calls == []

    def test_no_listener_does_not_raise(self, connector):
        connector.on_message(ResourceName.CDA_SENSOR_MSG_RESOURCE.topic, b"{}")

    def test_listener_exception_contained(self, connector, listener):
        listener.handle_sensor_message.side_effect = RuntimeError("boom")
        connector.set_data_message_listener(listener)
        connector.on_message(ResourceName.CDA_SENSOR_MSG_RESOURCE.topic, b'{"value": 1}')

    def test_paho_callback_routes_to_on_message(self, connector, listener):
        connector.set_data_message_listener(listener)
        msg = MagicMock(topic=ResourceName.CDA_SENSOR_MSG_RESOURCE.topic, payload=b'{"value": 33}')
        connector._on_message(None, None, msg)
        _, reading = listener.handle_sensor_message.call_args.args
        assert reading.value == 33.0

    def test_payload_text(self):
        assert payload_text(b"abc") == "abc"
        assert payload_text("abc") == "abc"
