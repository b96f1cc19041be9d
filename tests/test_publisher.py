"""
MQTT publisher tests (paho client mocked).
"""
import json
import logging
from unittest.mock import MagicMock

import paho.mqtt.client as mqtt
import pytest

from bms_sim.publisher import (
    MAX_CLIENT_ID_LEN,
    PublishError,
    TelemetryPublisher,
    parse_broker_url,
    unique_client_id,
)


def make_publisher(client, **kwargs):
    params = dict(
        broker="tcp://mqtt:1883",
        topic="ems/bms/telemetry",
        client_id="modbus-simulator",
        device_id="BMS-001",
        qos=1,
        connect_timeout_s=0.2,
        client_factory=lambda client_id: client,
    )
    params.update(kwargs)
    return TelemetryPublisher(**params)


class TestBrokerUrl:
    """Broker address parsing."""

    @pytest.mark.parametrize("raw, expected", [
        ("tcp://mqtt:1883", ("mqtt", 1883)),
        ("mqtt://broker.local:8883", ("broker.local", 8883)),
        ("TCP://10.0.0.5:1884/", ("10.0.0.5", 1884)),
        ("localhost", ("localhost", 1883)),
        ("tcp://mqtt", ("mqtt", 1883)),
    ])
    def test_parse(self, raw, expected):
        assert parse_broker_url(raw) == expected

    @pytest.mark.parametrize("raw", ["", "tcp://", "mqtt:abc", ":1883"])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            parse_broker_url(raw)

    def test_client_id_is_unique_and_bounded(self):
        a = unique_client_id("modbus-simulator-with-a-very-long-name")
        b = unique_client_id("modbus-simulator-with-a-very-long-name")

        assert a != b
        assert len(a) <= MAX_CLIENT_ID_LEN
        assert a.startswith("modbus-simulator")


class TestConnect:
    """Connection lifecycle."""

    def test_connect(self, fake_mqtt_client):
        pub = make_publisher(fake_mqtt_client)
        pub.connect()

        fake_mqtt_client.connect.assert_called_once_with("mqtt", 1883, keepalive=30)
        fake_mqtt_client.loop_start.assert_called_once()
        assert pub.connected

    def test_credentials(self, fake_mqtt_client):
        pub = make_publisher(fake_mqtt_client, username="bms", password="secret")
        pub.connect()
        fake_mqtt_client.username_pw_set.assert_called_once_with(username="bms", password="secret")

    def test_connect_error_is_fatal(self):
        client = MagicMock()
        client.connect.side_effect = OSError("connection refused")

        with pytest.raises(PublishError):
            make_publisher(client).connect()

    def test_refused_connack_is_fatal(self):
        client = MagicMock()

        def _connect(host, port, keepalive=60):
            client.on_connect(client, None, {}, MagicMock(is_failure=True), None)

        client.connect.side_effect = _connect

        with pytest.raises(PublishError):
            make_publisher(client).connect()
        client.disconnect.assert_called_once()
        client.loop_stop.assert_called_once()

    def test_connack_timeout_closes_client(self):
        client = MagicMock()
        pub = make_publisher(client, connect_timeout_s=0.05)

        with pytest.raises(PublishError):
            pub.connect()
        client.disconnect.assert_called_once()
        client.loop_stop.assert_called_once()
        assert not pub.connected

    def test_disconnect_is_idempotent(self, fake_mqtt_client):
        pub = make_publisher(fake_mqtt_client)
        pub.connect()
        pub.disconnect()
        pub.disconnect()

        fake_mqtt_client.disconnect.assert_called_once()
        fake_mqtt_client.loop_stop.assert_called_once()
        assert not pub.connected

    def test_disconnect_errors_are_swallowed(self, fake_mqtt_client, caplog):
        fake_mqtt_client.disconnect.side_effect = OSError("broken pipe")
        pub = make_publisher(fake_mqtt_client)
        pub.connect()

        with caplog.at_level(logging.WARNING):
            pub.disconnect()
        assert "disconnecting" in caplog.text

    def test_disconnect_without_connect(self):
        make_publisher(MagicMock()).disconnect()


class TestPublish:
    """publish() contract."""

    def test_publish_envelope(self, fake_mqtt_client):
        pub = make_publisher(fake_mqtt_client)
        pub.connect()

        assert pub.publish(85.0, 52.5, 15.0, 25.0) is True

        args, kwargs = fake_mqtt_client.publish.call_args
        assert args[0] == "ems/bms/telemetry"
        assert kwargs == {"qos": 1, "retain": False}
        payload = json.loads(args[1])
        assert payload["deviceId"] == "BMS-001"
        assert payload["soc"] == 85.0
        assert payload["power"] == 787.5
        assert len(payload["cellVoltages"]) == 16

    def test_configured_qos(self, fake_mqtt_client):
        pub = make_publisher(fake_mqtt_client, qos=2)
        pub.connect()
        pub.publish(85.0, 52.5, 15.0, 25.0)
        assert fake_mqtt_client.publish.call_args.kwargs["qos"] == 2

    def test_publish_argument_order(self, fake_mqtt_client):
        pub = make_publisher(fake_mqtt_client)
        pub.connect()
        pub.publish(20.0, 50.0, -5.0, 25.0)

        payload = json.loads(fake_mqtt_client.publish.call_args.args[1])
        assert payload["soc"] == 20.0
        assert payload["voltage"] == 50.0
        assert payload["current"] == -5.0
        assert payload["temperature"] == 25.0
        assert payload["status"] == "LOW_SOC"
        assert payload["chargingStatus"] == "CHARGING"

    def test_publish_exception_is_swallowed(self, fake_mqtt_client):
        pub = make_publisher(fake_mqtt_client)
        pub.connect()
        fake_mqtt_client.publish.side_effect = RuntimeError("socket gone")

        assert pub.publish(85.0, 52.5, 15.0, 25.0) is False
        # next tick still works
        fake_mqtt_client.publish.side_effect = None
        assert pub.publish(85.0, 52.5, 15.0, 25.0) is True

    def test_publish_error_rc(self, fake_mqtt_client):
        pub = make_publisher(fake_mqtt_client)
        pub.connect()
        fake_mqtt_client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_NO_CONN)

        assert pub.publish(85.0, 52.5, 15.0, 25.0) is False

    def test_publish_before_connect(self):
        assert make_publisher(MagicMock()).publish(85.0, 52.5, 15.0, 25.0) is False
