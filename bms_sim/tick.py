"""
Fixed-rate periodic triggers on a shared worker pool.

Each trigger has a dispatcher thread that wakes at
``first_run + k * interval`` and hands the job to a ThreadPoolExecutor
without waiting for it.  A slow job therefore never delays the next start,
and two runs of the same trigger may overlap; the jobs guard their own
state (BatterySimulator and RegisterMap both lock internally).

If the dispatcher itself falls more than one interval behind (e.g. the
process was suspended) the missed starts are skipped, not replayed.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, List, Set, Tuple

log = logging.getLogger(__name__)

MIN_WORKERS = 2


class FixedRateScheduler:
    def __init__(self, workers: int = MIN_WORKERS, name: str = "bms-sim"):
        if workers < MIN_WORKERS:
            raise ValueError(f"scheduler needs at least {MIN_WORKERS} workers")
        self.name = name
        self._executor = ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix=f"{name}-worker",
        )
        self._triggers: List[Tuple[str, Callable[[], None], float, float]] = []
        self._threads: List[threading.Thread] = []
        self._stop = threading.Event()
        self._inflight: Set[Future] = set()
        self._inflight_lock = threading.Lock()
        self._started = False
        self._closed = False

    def schedule_at_fixed_rate(
        self,
        name: str,
        fn: Callable[[], None],
        interval_s: float,
        initial_delay_s: float = 0.0,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval must be positive")
        if self._started:
            raise RuntimeError("cannot add triggers after start()")
        self._triggers.append((name, fn, interval_s, initial_delay_s))

    def start(self) -> None:
        if self._started:
            raise RuntimeError("scheduler already started")
        self._started = True
        for name, fn, interval_s, initial_delay_s in self._triggers:
            t = threading.Thread(
                target=self._dispatch,
                args=(name, fn, interval_s, initial_delay_s),
                name=f"{self.name}-{name}",
                daemon=True,
            )
            t.start()
            self._threads.append(t)
            log.info(f"Trigger '{name}' started (interval={interval_s}s)")

    def _dispatch(self, name: str, fn: Callable[[], None],
                  interval_s: float, initial_delay_s: float) -> None:
        next_run = time.monotonic() + initial_delay_s

        while not self._stop.is_set():
            delay = next_run - time.monotonic()
            if delay > 0 and self._stop.wait(delay):
                break

            self._submit(name, fn)
            next_run += interval_s

            behind = time.monotonic() - next_run
            if behind > interval_s:
                skipped = int(behind // interval_s)
                next_run += skipped * interval_s
                log.warning(f"Trigger '{name}' fell behind, skipped {skipped} run(s)")

    def _submit(self, name: str, fn: Callable[[], None]) -> None:
        try:
            future = self._executor.submit(self._run, name, fn)
        except RuntimeError:
            # executor already shut down
            return
        with self._inflight_lock:
            self._inflight.add(future)
        future.add_done_callback(self._forget)

    def _forget(self, future: Future) -> None:
        with self._inflight_lock:
            self._inflight.discard(future)

    @staticmethod
    def _run(name: str, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception:
            log.exception(f"Scheduled task '{name}' failed")

    def shutdown(self, grace_s: float = 5.0) -> bool:
        """
        Stop dispatching, give in-flight jobs ``grace_s`` to finish, then
        cancel whatever is still queued.

        Returns True if every job finished inside the grace period.  Running
        Python threads cannot be killed; stragglers are left to finish on
        their own.
        """
        if self._closed:
            return True
        self._closed = True
        self._stop.set()

        deadline = time.monotonic() + grace_s
        for t in self._threads:
            t.join(max(0.0, deadline - time.monotonic()))

        with self._inflight_lock:
            pending = set(self._inflight)
        _, not_done = wait(pending, timeout=max(0.0, deadline - time.monotonic()))

        self._executor.shutdown(wait=False, cancel_futures=True)
        if not_done:
            log.warning(f"Scheduler stopped with {len(not_done)} job(s) still running")
            return False
        log.info("Scheduler stopped")
        return True
