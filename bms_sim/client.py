"""
Polling client for the BMS register map.

Usage:
  bms-sim-client --host 127.0.0.1 --port 1502
  bms-sim-client --host 127.0.0.1 --port 1502 --loop 5
"""

from __future__ import annotations

import argparse
import time
from typing import Dict, List, Optional

from pymodbus.client import ModbusTcpClient

from bms_sim.device import DeviceModel


def read_register_map(client: ModbusTcpClient, slave_id: int = 1) -> Optional[List[int]]:
    """FC03 read of HR0..HR30; None on a Modbus error response."""
    rr = client.read_holding_registers(0, count=DeviceModel.REGISTER_COUNT, device_id=slave_id)
    if rr.isError():
        print(f"ERROR reading registers: {rr}")
        return None
    return list(rr.registers)


def format_register_map(words: List[int]) -> str:
    values: Dict[str, float] = DeviceModel.decode_registers(words)
    lines = ["=== BMS Registers ==="]
    for block in DeviceModel.BLOCKS:
        raw = words[block.start]
        lines.append(
            f"  HR{block.start:<2}..HR{block.stop - 1:<2} {block.name:<12}: "
            f"{values[block.name]:10.3f} {block.unit:<2} (raw 0x{raw:04X})"
        )
    return "\n".join(lines)


def read_once(host: str, port: int, slave_id: int) -> bool:
    client = ModbusTcpClient(host, port=port)
    try:
        if not client.connect():
            print(f"ERROR: cannot connect to {host}:{port}")
            return False
        words = read_register_map(client, slave_id)
        if words is None:
            return False
        print(format_register_map(words))
        return True
    finally:
        client.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Read the BMS simulator register map")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=1502)
    parser.add_argument("--slave-id", type=int, default=1)
    parser.add_argument("--loop", type=float, default=0,
                        help="If >0, repeat read every N seconds")
    args = parser.parse_args(argv)

    if args.loop <= 0:
        return 0 if read_once(args.host, args.port, args.slave_id) else 1

    try:
        while True:
            read_once(args.host, args.port, args.slave_id)
            print()
            time.sleep(args.loop)
    except KeyboardInterrupt:
        print("\nStopped.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
