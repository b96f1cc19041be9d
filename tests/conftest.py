"""
Pytest configuration and fixtures.

Shared fixtures for the BMS simulator tests.
"""
import random
import socket
from typing import Iterable
from unittest.mock import MagicMock

import paho.mqtt.client as mqtt
import pytest

from bms_sim.battery import BatteryState


class SequenceRandom(random.Random):
    """random.Random whose random() replays a fixed sequence (cycled)."""

    def __init__(self, values: Iterable[float]):
        super().__init__(0)
        self._values = list(values)
        self._i = 0

    def random(self):
        value = self._values[self._i % len(self._values)]
        self._i += 1
        return value


@pytest.fixture
def sequence_rng():
    return SequenceRandom


@pytest.fixture
def initial_state():
    """Default initial battery state (soc=85, 52.5 V, 15 A, 25 C)."""
    return BatteryState(soc=85.0, voltage=52.5, current=15.0, temperature=25.0)


@pytest.fixture
def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def fake_mqtt_client():
    """
    MagicMock standing in for paho's Client.

    connect() fires on_connect with a successful reason code, publish()
    returns an info object with rc=MQTT_ERR_SUCCESS.
    """
    client = MagicMock()

    def _connect(host, port, keepalive=60):
        rc = MagicMock(is_failure=False)
        client.on_connect(client, None, {}, rc, None)
        return mqtt.MQTT_ERR_SUCCESS

    client.connect.side_effect = _connect
    client.publish.return_value = MagicMock(rc=mqtt.MQTT_ERR_SUCCESS)
    return client
