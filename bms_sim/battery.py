"""
Battery state generator: bounded random walk over soc, voltage, current
and temperature.

Every tick draws one r in [0, 1) and picks the mode from it:

  r <  0.4  discharge : soc -= 0.5 (floor 10), current = 10 + 40r
  r <  0.7  charge    : soc += 0.3 (cap 100),  current = 5 + 20r
  otherwise idle      : soc -= 0.1 (floor 10), current = 5r

  voltage     = 48 + soc/100 * 10 + (r - 0.5) * k   (k = 2, idle k = 1)
  temperature = 20 + 15r

Sign convention: current > 0 is reported as discharging.  The charge mode
keeps a positive current unless ``signed_charge_current`` is set, in which
case it is negated (see DESIGN.md).

With soc starting in [10, 100], voltage stays in [48.0, 58.5] and
|current| < 50 A.
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Optional

log = logging.getLogger(__name__)

SOC_MIN = 10.0
SOC_MAX = 100.0

DISCHARGE_THRESHOLD = 0.4
CHARGE_THRESHOLD = 0.7


@dataclass(frozen=True)
class BatteryState:
    soc: float
    voltage: float
    current: float
    temperature: float


class BatterySimulator:
    """Owns the battery state; tick() mutates it, snapshot() copies it."""

    def __init__(
        self,
        initial: BatteryState,
        rng: Optional[random.Random] = None,
        signed_charge_current: bool = False,
    ):
        self._lock = threading.Lock()
        self._soc = initial.soc
        self._voltage = initial.voltage
        self._current = initial.current
        self._temperature = initial.temperature
        self._rng = rng or random.Random()
        self.signed_charge_current = signed_charge_current
        log.info(
            f"Battery simulator initialized - SOC: {self._soc}, voltage: {self._voltage}V, "
            f"current: {self._current}A, temperature: {self._temperature}C"
        )

    def tick(self) -> None:
        with self._lock:
            r = self._rng.random()
            soc = self._soc

            if r < DISCHARGE_THRESHOLD:
                soc = max(SOC_MIN, soc - 0.5)
                current = 10.0 + r * 40.0
                wobble = 2.0
            elif r < CHARGE_THRESHOLD:
                soc = min(SOC_MAX, soc + 0.3)
                current = 5.0 + r * 20.0
                if self.signed_charge_current:
                    current = -current
                wobble = 2.0
            else:
                soc = max(SOC_MIN, soc - 0.1)
                current = r * 5.0
                wobble = 1.0

            self._soc = soc
            self._current = current
            self._voltage = 48.0 + (soc / 100.0) * 10.0 + (r - 0.5) * wobble
            self._temperature = 20.0 + r * 15.0

    def snapshot(self) -> BatteryState:
        with self._lock:
            return BatteryState(
                soc=self._soc,
                voltage=self._voltage,
                current=self._current,
                temperature=self._temperature,
            )
