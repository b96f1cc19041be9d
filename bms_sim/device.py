"""
Register layout and codec for the simulated battery management unit.

Holding registers (0-based, int16 two's complement on the wire):
  HR0..HR9   : voltage      (V,  x100)
  HR10..HR19 : temperature  (C,  x10)
  HR20..HR29 : current      (A,  x1000)
  HR30       : soc / charge (%,  x100)

Every slot inside a channel block carries the same word, so a read of any
sub-range of a block is self-consistent.

Encoding truncates toward zero (``int(value * scale)``) and is NOT clamped:
a value outside int16 after scaling wraps when masked to 16 bits.
Discharge current above 32.767 A is such a case (see DESIGN.md).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence


@dataclass(frozen=True)
class RegisterBlock:
    name: str
    start: int
    size: int
    scale: int
    unit: str

    @property
    def stop(self) -> int:
        return self.start + self.size


class DeviceModel:
    VOLTAGE = RegisterBlock("voltage", 0, 10, 100, "V")
    TEMPERATURE = RegisterBlock("temperature", 10, 10, 10, "C")
    CURRENT = RegisterBlock("current", 20, 10, 1000, "A")
    SOC = RegisterBlock("soc", 30, 1, 100, "%")

    BLOCKS = (VOLTAGE, TEMPERATURE, CURRENT, SOC)
    REGISTER_COUNT = 31

    # two's complement conversion
    @staticmethod
    def _int16_to_u16(x: int) -> int:
        return x & 0xFFFF

    @staticmethod
    def _u16_to_int16(x: int) -> int:
        return x - 0x10000 if x >= 0x8000 else x

    @staticmethod
    def encode_scaled(value: float, scale: int) -> int:
        """float -> truncated scaled integer (no masking, may exceed int16)."""
        return int(value * scale)

    @staticmethod
    def decode_scaled(raw: int, scale: int) -> float:
        return raw / scale

    @classmethod
    def encode_word(cls, value: float, scale: int) -> int:
        """float -> uint16 register word (two's complement)."""
        return cls._int16_to_u16(cls.encode_scaled(value, scale))

    @classmethod
    def decode_word(cls, reg_u16: int, scale: int) -> float:
        """uint16 register word -> float, read as signed int16."""
        return cls.decode_scaled(cls._u16_to_int16(reg_u16 & 0xFFFF), scale)

    @classmethod
    def encode_registers(cls, voltage: float, temperature: float,
                         current: float, soc: float) -> List[int]:
        """Build the full 31-word image for one update."""
        values = {
            cls.VOLTAGE.name: voltage,
            cls.TEMPERATURE.name: temperature,
            cls.CURRENT.name: current,
            cls.SOC.name: soc,
        }
        words = [0] * cls.REGISTER_COUNT
        for block in cls.BLOCKS:
            word = cls.encode_word(values[block.name], block.scale)
            words[block.start:block.stop] = [word] * block.size
        return words

    @classmethod
    def decode_registers(cls, words: Sequence[int]) -> Dict[str, float]:
        """Decode a 31-word image, taking the first slot of each block."""
        if len(words) < cls.REGISTER_COUNT:
            raise ValueError(f"expected {cls.REGISTER_COUNT} registers, got {len(words)}")
        return {
            block.name: cls.decode_word(words[block.start], block.scale)
            for block in cls.BLOCKS
        }
