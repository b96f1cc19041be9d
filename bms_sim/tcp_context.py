"""
pymodbus datastore pieces for the single-unit BMS register map.

Addressing: 0-based everywhere.
    pymodbus 3.x ModbusDeviceContext.getValues/setValues add 1 to the
    address before forwarding to the DataBlock.  ZeroBasedDeviceContext
    skips that so protocol address 0 is DataBlock index 0.

Threading: one threading.RLock per register map.
    LockedDataBlock.getValues takes the lock, so a served read copies the
    slots while no update is in progress.  LockedDataBlock.load() replaces
    the whole image under the same lock, so a reader sees either the
    previous image or the next one, never a mix.
"""

from __future__ import annotations

import threading
from typing import List, Sequence

from pymodbus import ModbusDeviceIdentification
from pymodbus.datastore import (
    ModbusDeviceContext,
    ModbusSequentialDataBlock,
    ModbusServerContext,
)
from pymodbus.datastore.store import ExcCodes

from bms_sim import __version__


class LockedDataBlock(ModbusSequentialDataBlock):
    """
    Thread-safe 0-based holding block.

    values[i] is register address i.  Modbus write requests are refused;
    the owner writes through load().
    """

    def __init__(self, lock: threading.RLock, size: int):
        super().__init__(0, [0] * size)
        self._lock = lock
        self._size = size

    def getValues(self, address: int, count: int = 1):
        if address < 0 or count <= 0 or address + count > self._size:
            return ExcCodes.ILLEGAL_ADDRESS
        with self._lock:
            return list(super().getValues(address, count))

    def setValues(self, address: int, values: List[int]):
        return ExcCodes.ILLEGAL_ADDRESS

    def load(self, words: Sequence[int]) -> None:
        """Replace the full image in one locked step."""
        if len(words) != self._size:
            raise ValueError(f"image must be {self._size} words, got {len(words)}")
        with self._lock:
            super().setValues(0, list(words))

    def snapshot(self) -> List[int]:
        with self._lock:
            return list(self.values)


class RejectAllDataBlock(ModbusSequentialDataBlock):
    """DataBlock that rejects every read/write with ILLEGAL_ADDRESS."""

    def __init__(self):
        super().__init__(0, [0])

    def getValues(self, address: int, count: int = 1):
        return ExcCodes.ILLEGAL_ADDRESS

    def setValues(self, address: int, values: List[int]):
        return ExcCodes.ILLEGAL_ADDRESS


class ZeroBasedDeviceContext(ModbusDeviceContext):
    """Device context that forwards protocol addresses unchanged."""

    def getValues(self, func_code: int, address: int, count: int = 1):
        return self.store[self.decode(func_code)].getValues(address, count)

    def setValues(self, func_code: int, address: int, values: List[int]):
        return self.store[self.decode(func_code)].setValues(address, values)


def build_server_context(hr: LockedDataBlock, slave_id: int = 1) -> ModbusServerContext:
    """Build a server context exposing one unit with holding registers only."""
    device_ctx = ZeroBasedDeviceContext(
        di=RejectAllDataBlock(),
        co=RejectAllDataBlock(),
        hr=hr,
        ir=RejectAllDataBlock(),
    )
    return ModbusServerContext(devices={slave_id: device_ctx}, single=False)


def create_device_identity() -> ModbusDeviceIdentification:
    identity = ModbusDeviceIdentification()
    identity.VendorName = "BMS Simulator"
    identity.ProductCode = "BMS-SIM"
    identity.ProductName = "Battery Management Unit Simulator"
    identity.ModelName = "BMS-16S"
    identity.MajorMinorRevision = __version__
    return identity
