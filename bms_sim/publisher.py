"""MQTT telemetry publisher (paho-mqtt, callback API v2)."""

from __future__ import annotations

import logging
import random
import threading
from typing import Callable, Optional, Tuple
from uuid import uuid4

import paho.mqtt.client as mqtt

from bms_sim.telemetry import build_envelope

log = logging.getLogger(__name__)

DEFAULT_MQTT_PORT = 1883
MAX_CLIENT_ID_LEN = 23  # MQTT 3.1 client id limit


class PublishError(RuntimeError):
    """Raised when the broker connection cannot be established."""


def parse_broker_url(raw: str) -> Tuple[str, int]:
    """'tcp://host:1883' / 'mqtt://host' / 'host:port' -> (host, port)."""
    url = raw.strip()
    for prefix in ("mqtt://", "tcp://"):
        if url.lower().startswith(prefix):
            url = url[len(prefix):]
            break
    url = url.rstrip("/")
    if not url:
        raise ValueError(f"invalid broker url: {raw!r}")

    host, sep, port = url.rpartition(":")
    if not sep:
        return url, DEFAULT_MQTT_PORT
    if not host or not port.isdigit():
        raise ValueError(f"invalid broker url: {raw!r}")
    return host, int(port)


def unique_client_id(base: str) -> str:
    suffix = uuid4().hex[:6]
    trimmed = (base or "bms-sim")[: MAX_CLIENT_ID_LEN - len(suffix) - 1]
    return f"{trimmed}-{suffix}"


def _default_client_factory(client_id: str) -> mqtt.Client:
    return mqtt.Client(
        mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        clean_session=True,
    )


class TelemetryPublisher:
    """Owns the broker connection; publish() never raises."""

    def __init__(
        self,
        broker: str,
        topic: str,
        client_id: str,
        device_id: str,
        qos: int = 1,
        keepalive_s: int = 30,
        connect_timeout_s: float = 10.0,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_factory: Callable[[str], mqtt.Client] = _default_client_factory,
        rng: Optional[random.Random] = None,
    ):
        self.broker = broker
        self.topic = topic
        self.client_id = client_id
        self.device_id = device_id
        self.qos = qos
        self.keepalive_s = keepalive_s
        self.connect_timeout_s = connect_timeout_s
        self.username = username
        self.password = password
        self._client_factory = client_factory
        self._rng = rng
        self._client: Optional[mqtt.Client] = None
        self._connected = threading.Event()
        self._connect_rc = None

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    # -- paho callbacks --

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        self._connect_rc = reason_code
        if getattr(reason_code, "is_failure", False):
            log.error(f"MQTT connection refused: {reason_code}")
            return
        log.info(f"Connected to MQTT broker {self.broker}")
        self._connected.set()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self._connected.clear()
        log.warning(f"MQTT disconnected: rc={reason_code}")

    # -- lifecycle --

    def connect(self) -> None:
        """Connect and wait for CONNACK; raises PublishError on failure."""
        host, port = parse_broker_url(self.broker)
        client = self._client_factory(unique_client_id(self.client_id))
        if self.username:
            client.username_pw_set(username=self.username, password=self.password)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.reconnect_delay_set(min_delay=1, max_delay=120)
        client.connect_timeout = self.connect_timeout_s

        self._connected.clear()
        self._connect_rc = None
        try:
            log.info(f"Connecting to MQTT broker {host}:{port}")
            client.connect(host, port, keepalive=self.keepalive_s)
            client.loop_start()
        except Exception as exc:
            raise PublishError(f"cannot connect to MQTT broker {self.broker}") from exc

        if not self._connected.wait(self.connect_timeout_s):
            try:
                client.disconnect()
                client.loop_stop()
            except Exception:
                log.debug("MQTT cleanup failed after connect timeout", exc_info=True)
            raise PublishError(
                f"MQTT broker {self.broker} did not accept the connection "
                f"(rc={self._connect_rc})"
            )
        self._client = client

    def disconnect(self) -> None:
        """Idempotent; errors are logged, never raised."""
        client, self._client = self._client, None
        if client is None:
            return
        try:
            client.disconnect()
            client.loop_stop()
            log.info("Disconnected from MQTT broker")
        except Exception as exc:
            log.warning(f"Error while disconnecting from MQTT broker: {exc}")
        finally:
            self._connected.clear()

    # -- publish --

    def publish(self, charge: float, voltage: float,
                current: float, temperature: float) -> bool:
        try:
            if self._client is None:
                raise PublishError("MQTT client is not connected")

            envelope = build_envelope(
                self.device_id, charge, voltage, current, temperature, rng=self._rng,
            )
            info = self._client.publish(
                self.topic, envelope.to_json(), qos=self.qos, retain=False,
            )
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                log.error(f"Publish to {self.topic} failed: {mqtt.error_string(info.rc)}")
                return False

            log.info(
                f"Published battery telemetry - SOC: {charge:.2f}%, voltage: {voltage:.2f}V, "
                f"current: {current:.2f}A, temperature: {temperature:.2f}C"
            )
            return True
        except Exception:
            log.exception("Failed to publish battery telemetry")
            return False
