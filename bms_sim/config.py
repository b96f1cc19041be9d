"""
YAML configuration for the simulator.

Every key is optional; missing keys take the defaults below.  See
config/simulator.yaml for the full layout.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional

import yaml

from bms_sim.battery import SOC_MAX, SOC_MIN, BatteryState
from bms_sim.publisher import parse_broker_url
from bms_sim.tick import MIN_WORKERS

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join("config", "simulator.yaml")


class ConfigError(ValueError):
    """Invalid or unreadable configuration."""


@dataclass
class ModbusConfig:
    host: str = "0.0.0.0"
    port: int = 1502
    slave_id: int = 1


@dataclass
class MqttConfig:
    broker: str = "tcp://mqtt:1883"
    topic: str = "ems/bms/telemetry"
    client_id: str = "modbus-simulator"
    device_id: str = "BMS-001"
    qos: int = 1
    keepalive_s: int = 30
    connect_timeout_s: float = 10.0
    username: Optional[str] = None
    password: Optional[str] = None


@dataclass
class BatteryConfig:
    publish_interval_ms: int = 5000
    simulation_interval_ms: int = 5000
    initial_soc: float = 85.0
    initial_voltage: float = 52.5
    initial_current: float = 15.0
    initial_temperature: float = 25.0
    signed_charge_current: bool = False

    def initial_state(self) -> BatteryState:
        return BatteryState(
            soc=self.initial_soc,
            voltage=self.initial_voltage,
            current=self.initial_current,
            temperature=self.initial_temperature,
        )


@dataclass
class SchedulerConfig:
    workers: int = MIN_WORKERS
    shutdown_grace_s: float = 5.0


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class SimulatorConfig:
    modbus: ModbusConfig = field(default_factory=ModbusConfig)
    mqtt: MqttConfig = field(default_factory=MqttConfig)
    battery: BatteryConfig = field(default_factory=BatteryConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> "SimulatorConfig":
        m = self.modbus
        if not 1 <= m.port <= 65535:
            raise ConfigError(f"modbus.port out of range: {m.port}")
        if not 0 <= m.slave_id <= 247:
            raise ConfigError(f"modbus.slave_id out of range: {m.slave_id}")

        q = self.mqtt
        if q.qos not in (0, 1, 2):
            raise ConfigError(f"mqtt.qos must be 0, 1 or 2: {q.qos}")
        if not q.topic:
            raise ConfigError("mqtt.topic must not be empty")
        try:
            parse_broker_url(q.broker)
        except ValueError as exc:
            raise ConfigError(str(exc)) from exc

        b = self.battery
        if b.publish_interval_ms <= 0 or b.simulation_interval_ms <= 0:
            raise ConfigError("battery intervals must be positive")
        if not SOC_MIN <= b.initial_soc <= SOC_MAX:
            raise ConfigError(
                f"battery.initial_soc must be within [{SOC_MIN}, {SOC_MAX}]: {b.initial_soc}"
            )

        if self.scheduler.workers < MIN_WORKERS:
            raise ConfigError(f"scheduler.workers must be >= {MIN_WORKERS}")
        if self.scheduler.shutdown_grace_s < 0:
            raise ConfigError("scheduler.shutdown_grace_s must not be negative")

        if not isinstance(logging.getLevelName(self.logging.level.upper()), int):
            raise ConfigError(f"unknown logging.level: {self.logging.level}")
        return self


def _coerce(default: Any, value: Any) -> Any:
    """Convert a YAML value to the type of the field default."""
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise TypeError("expected true/false")
        return value
    if isinstance(value, bool):
        raise TypeError(f"expected a number, got {value!r}")
    if isinstance(default, int):
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"expected an integer, got {value!r}")
        return int(value)
    if isinstance(default, float):
        return float(value)
    # str fields, and optional str fields defaulting to None
    if value is not None and not isinstance(value, str):
        raise TypeError(f"expected a string, got {value!r}")
    return value


def _build_section(cls, raw: Any, section: str):
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ConfigError(f"section '{section}' must be a mapping")

    kwargs = {}
    for f in fields(cls):
        if f.name not in raw:
            continue
        default = getattr(cls(), f.name)
        value = raw[f.name]
        try:
            value = _coerce(default, value)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"{section}.{f.name}: {exc}") from exc
        kwargs[f.name] = value

    unknown = set(raw) - {f.name for f in fields(cls)}
    if unknown:
        log.warning(f"Ignoring unknown keys in '{section}': {', '.join(sorted(unknown))}")
    return cls(**kwargs)


def config_from_dict(data: Optional[Dict[str, Any]]) -> SimulatorConfig:
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError("configuration root must be a mapping")
    cfg = SimulatorConfig(
        modbus=_build_section(ModbusConfig, data.get("modbus"), "modbus"),
        mqtt=_build_section(MqttConfig, data.get("mqtt"), "mqtt"),
        battery=_build_section(BatteryConfig, data.get("battery"), "battery"),
        scheduler=_build_section(SchedulerConfig, data.get("scheduler"), "scheduler"),
        logging=_build_section(LoggingConfig, data.get("logging"), "logging"),
    )
    return cfg.validate()


def load_config(path: Optional[str]) -> SimulatorConfig:
    """Read YAML at ``path``; a missing file yields the defaults."""
    if not path or not os.path.exists(path):
        log.warning(f"Config file {path!r} not found, using defaults")
        return config_from_dict({})
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    return config_from_dict(data)
