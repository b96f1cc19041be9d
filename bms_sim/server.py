"""
BMS simulator process: Modbus TCP register map + MQTT telemetry.

Two fixed-rate triggers share the battery simulator:
  simulate : tick() the battery, then write the snapshot into the registers
  publish  : snapshot the battery and publish it as JSON over MQTT

Usage:
    bms-sim --config config/simulator.yaml
"""

from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import Optional

from bms_sim.battery import BatterySimulator
from bms_sim.config import DEFAULT_CONFIG_PATH, ConfigError, SimulatorConfig, load_config
from bms_sim.publisher import PublishError, TelemetryPublisher
from bms_sim.register_map import RegisterMap, RegisterMapError
from bms_sim.tick import FixedRateScheduler

log = logging.getLogger("bms_sim")


class Simulator:
    """Owns the battery, the register map, the publisher and the scheduler."""

    def __init__(
        self,
        config: SimulatorConfig,
        battery: Optional[BatterySimulator] = None,
        register_map: Optional[RegisterMap] = None,
        publisher: Optional[TelemetryPublisher] = None,
    ):
        self.config = config
        self.battery = battery or BatterySimulator(
            config.battery.initial_state(),
            signed_charge_current=config.battery.signed_charge_current,
        )
        self.register_map = register_map or RegisterMap(host=config.modbus.host)
        self.publisher = publisher or TelemetryPublisher(
            broker=config.mqtt.broker,
            topic=config.mqtt.topic,
            client_id=config.mqtt.client_id,
            device_id=config.mqtt.device_id,
            qos=config.mqtt.qos,
            keepalive_s=config.mqtt.keepalive_s,
            connect_timeout_s=config.mqtt.connect_timeout_s,
            username=config.mqtt.username,
            password=config.mqtt.password,
        )
        self.scheduler: Optional[FixedRateScheduler] = None
        self._stopped = threading.Event()

    # -- trigger bodies --

    def simulate_once(self) -> None:
        self.battery.tick()
        state = self.battery.snapshot()
        self.register_map.update(state.voltage, state.temperature, state.current, state.soc)

    def publish_once(self) -> None:
        state = self.battery.snapshot()
        self.publisher.publish(state.soc, state.voltage, state.current, state.temperature)

    # -- lifecycle --

    def start(self) -> None:
        """Bring up listener, broker connection and triggers; fatal errors propagate."""
        modbus = self.config.modbus
        self.register_map.initialize(modbus.slave_id, modbus.port)

        # expose the initial state before the first tick
        state = self.battery.snapshot()
        self.register_map.update(state.voltage, state.temperature, state.current, state.soc)

        try:
            self.publisher.connect()
        except Exception:
            self.register_map.shutdown()
            raise

        battery_cfg = self.config.battery
        scheduler = FixedRateScheduler(workers=self.config.scheduler.workers)
        scheduler.schedule_at_fixed_rate(
            "publish", self.publish_once, battery_cfg.publish_interval_ms / 1000.0,
        )
        scheduler.schedule_at_fixed_rate(
            "simulate", self.simulate_once, battery_cfg.simulation_interval_ms / 1000.0,
        )
        scheduler.start()
        self.scheduler = scheduler

        log.info(
            f"Simulator started (publish={battery_cfg.publish_interval_ms}ms, "
            f"simulate={battery_cfg.simulation_interval_ms}ms)"
        )

    def stop(self) -> None:
        """Idempotent; every step runs even if an earlier one fails."""
        if self._stopped.is_set():
            return
        self._stopped.set()
        log.info("Shutting down simulator...")

        if self.scheduler is not None:
            try:
                self.scheduler.shutdown(self.config.scheduler.shutdown_grace_s)
            except Exception as exc:
                log.warning(f"Error while stopping scheduler: {exc}")

        try:
            self.register_map.shutdown()
        except Exception as exc:
            log.warning(f"Error while closing Modbus server: {exc}")

        try:
            self.publisher.disconnect()
        except Exception as exc:
            log.warning(f"Error while disconnecting publisher: {exc}")

        log.info("Simulator stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._stopped.wait(timeout)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | BMS | %(levelname)s | %(message)s",
    )


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="BMS Modbus TCP / MQTT simulator")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH,
                        help="Path to simulator.yaml config file")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as exc:
        configure_logging()
        log.error(f"Invalid configuration: {exc}")
        return 2

    configure_logging(config.logging.level)
    log.info(f"Loaded config from {args.config}")

    simulator = Simulator(config)
    try:
        simulator.start()
    except (RegisterMapError, PublishError) as exc:
        log.error(f"Startup failed: {exc}")
        return 1

    def _handle_signal(signum, frame):
        log.info(f"Signal {signum} received")
        simulator.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    try:
        while not simulator.wait(1.0):
            pass
    except KeyboardInterrupt:
        simulator.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
