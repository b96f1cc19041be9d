"""
Telemetry envelope published on every publish tick.

JSON shape (keys and order fixed):
  deviceId, timestamp (ms), soc, voltage, current, temperature, power,
  cellVoltages[16], status, chargingStatus
"""

from __future__ import annotations

import json
import random
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

CELL_COUNT = 16
CELL_NOISE_V = 0.1
LOW_SOC_THRESHOLD = 20.0

STATUS_NORMAL = "NORMAL"
STATUS_LOW_SOC = "LOW_SOC"
CHARGING = "CHARGING"
DISCHARGING = "DISCHARGING"


@dataclass(frozen=True)
class TelemetryEnvelope:
    device_id: str
    timestamp: int
    soc: float
    voltage: float
    current: float
    temperature: float
    power: float
    cell_voltages: Tuple[float, ...]
    status: str
    charging_status: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deviceId": self.device_id,
            "timestamp": self.timestamp,
            "soc": self.soc,
            "voltage": self.voltage,
            "current": self.current,
            "temperature": self.temperature,
            "power": self.power,
            "cellVoltages": list(self.cell_voltages),
            "status": self.status,
            "chargingStatus": self.charging_status,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


def soc_status(soc: float) -> str:
    return STATUS_NORMAL if soc > LOW_SOC_THRESHOLD else STATUS_LOW_SOC


def charging_status(current: float) -> str:
    # positive current = discharge, zero counts as charging
    return DISCHARGING if current > 0 else CHARGING


def build_envelope(
    device_id: str,
    soc: float,
    voltage: float,
    current: float,
    temperature: float,
    rng: Optional[random.Random] = None,
    timestamp_ms: Optional[int] = None,
) -> TelemetryEnvelope:
    rng = rng or random
    base_cell = voltage / CELL_COUNT
    cells = tuple(
        round(base_cell + rng.uniform(-CELL_NOISE_V, CELL_NOISE_V), 3)
        for _ in range(CELL_COUNT)
    )
    return TelemetryEnvelope(
        device_id=device_id,
        timestamp=timestamp_ms if timestamp_ms is not None else int(time.time() * 1000),
        soc=round(soc, 2),
        voltage=round(voltage, 2),
        current=round(current, 2),
        temperature=round(temperature, 2),
        power=round(voltage * current, 2),
        cell_voltages=cells,
        status=soc_status(soc),
        charging_status=charging_status(current),
    )
