"""
BMS register map: 31 holding registers served over Modbus TCP.

The pymodbus server runs on a private asyncio loop in a daemon thread so the
scheduler threads can call update() synchronously.  Served reads and
update() share one RLock through LockedDataBlock (see tcp_context.py).
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import List, Optional

from pymodbus.server import ModbusTcpServer

from bms_sim.device import DeviceModel
from bms_sim.tcp_context import (
    LockedDataBlock,
    build_server_context,
    create_device_identity,
)

log = logging.getLogger(__name__)


class RegisterMapError(RuntimeError):
    """Raised when the Modbus listener cannot be started."""


class RegisterMap:
    """Owns the slot array and the Modbus TCP listener that serves it."""

    def __init__(self, host: str = "0.0.0.0"):
        self.host = host
        self.slave_id: Optional[int] = None
        self.port: Optional[int] = None

        self._lock = threading.RLock()
        self._hr = LockedDataBlock(self._lock, DeviceModel.REGISTER_COUNT)

        self._state_lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._server: Optional[ModbusTcpServer] = None
        self._thread: Optional[threading.Thread] = None
        self._start_error: Optional[BaseException] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, slave_id: int, port: int, timeout_s: float = 5.0) -> None:
        """Bind the listener; raises RegisterMapError if it cannot listen."""
        with self._state_lock:
            if self._thread is not None:
                raise RegisterMapError("register map already initialized")

            self._hr.load([0] * DeviceModel.REGISTER_COUNT)
            context = build_server_context(self._hr, slave_id=slave_id)
            identity = create_device_identity()

            self._start_error = None
            self._loop = asyncio.new_event_loop()
            started = threading.Event()
            self._thread = threading.Thread(
                target=self._serve,
                args=(context, identity, port, started),
                name="modbus-server",
                daemon=True,
            )
            self._thread.start()

        if not started.wait(timeout_s) or self._server is None:
            error = self._start_error
            self._teardown(timeout_s)
            raise RegisterMapError(f"cannot listen on {self.host}:{port}") from error

        self.slave_id = slave_id
        self.port = port
        log.info(f"Modbus TCP server listening on {self.host}:{port} (slave_id={slave_id})")

    def _serve(self, context, identity, port: int, started: threading.Event) -> None:
        loop = self._loop
        asyncio.set_event_loop(loop)
        try:
            self._server = loop.run_until_complete(self._listen(context, identity, port))
        except Exception as exc:
            self._start_error = exc
            self._server = None

        if self._server is None:
            loop.close()
            started.set()
            return

        # signal only once the loop is actually running
        loop.call_soon(started.set)
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    async def _listen(self, context, identity, port: int) -> Optional[ModbusTcpServer]:
        server = ModbusTcpServer(context, identity=identity, address=(self.host, port))
        if not await server.listen():
            return None
        return server

    def shutdown(self, timeout_s: float = 5.0) -> None:
        """Close the listener.  Idempotent; no-op if never initialized."""
        if self._thread is None:
            return
        self._teardown(timeout_s)
        log.info("Modbus TCP server closed")

    def _teardown(self, timeout_s: float) -> None:
        with self._state_lock:
            server, loop, thread = self._server, self._loop, self._thread
            self._server = self._loop = self._thread = None

        if thread is None:
            return

        if server is not None and loop is not None and loop.is_running():
            try:
                future = asyncio.run_coroutine_threadsafe(server.shutdown(), loop)
                future.result(timeout_s)
            except Exception as exc:
                log.warning(f"Error while closing Modbus server: {exc}")
            try:
                loop.call_soon_threadsafe(loop.stop)
            except RuntimeError:
                pass  # loop already closed

        thread.join(timeout_s)
        self.slave_id = None
        self.port = None

    @property
    def serving(self) -> bool:
        return self._server is not None

    # ------------------------------------------------------------------
    # Register access
    # ------------------------------------------------------------------

    def update(self, voltage: float, temperature: float,
               current: float, charge: float) -> bool:
        """
        Encode the four channels and replace the whole slot image.

        The image is built off-lock and swapped in with one locked write,
        so a concurrent Modbus read sees a single update.  Failures are
        logged and leave the previous image visible.
        """
        try:
            words = DeviceModel.encode_registers(voltage, temperature, current, charge)
            self._hr.load(words)
        except Exception:
            log.exception("Failed to update Modbus registers")
            return False

        log.debug(
            f"Registers updated: V={words[DeviceModel.VOLTAGE.start]} "
            f"T={words[DeviceModel.TEMPERATURE.start]} "
            f"I={words[DeviceModel.CURRENT.start]} "
            f"SOC={words[DeviceModel.SOC.start]}"
        )
        return True

    def read(self, address: int, count: int = 1) -> List[int]:
        """Raw uint16 words, same view a Modbus FC03 request gets."""
        if address < 0 or count <= 0:
            raise ValueError("invalid address/count")
        if address + count > DeviceModel.REGISTER_COUNT:
            raise ValueError("illegal address")
        return self._hr.getValues(address, count)

    def snapshot(self) -> List[int]:
        return self._hr.snapshot()
