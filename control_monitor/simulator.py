# file: control_monitor/simulator.py
"""
Background sensor simulation.

Emulates live instrumentation by perturbing the shared ``SensorState`` once per
tick. Every tick is a single update made while holding the engine's state lock,
so readers never see a half-applied tick.
"""

import time
import random
import threading
import logging

from control_monitor.exceptions import TransientLockContention
from control_monitor.metrics import SIMULATOR_TICKS_TOTAL, SIMULATOR_TICKS_SKIPPED_TOTAL
from control_monitor.sensors import SensorState, base_motor_rpm, clamp

simulator_logger = logging.getLogger("forlenza.simulator")


class SensorSimulator:
    """
    Perturbs temperatures, pressures and running motor speeds on a fixed cadence.
    """

    def __init__(
        self,
        state: SensorState,
        lock: threading.Lock,
        rng: random.Random | None = None,
        interval: float = 1.0,
        lock_timeout: float = 0.5,
    ):
        """
        Args:
            state (SensorState): The shared record to mutate.
            lock (threading.Lock): The engine lock guarding ``state``.
            rng (random.Random, optional): Source of noise. A fresh unseeded generator by default.
            interval (float): Seconds between ticks.
            lock_timeout (float): Seconds a tick waits for ``lock`` before it is skipped.
        """
        self.state = state
        self.lock = lock
        self.rng = rng or random.Random()  # nosec B311 - simulation noise only
        self.interval = interval
        self.lock_timeout = lock_timeout

        self.ticks = 0
        self.skipped = 0

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the background tick thread if it's not already running."""
        if self.is_running():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="sensor-simulator", daemon=True)
        self._thread.start()
        simulator_logger.info(f"simulator_started: interval={self.interval}s")

    def stop(self, timeout: float = 2.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        self._thread = None

    def _loop(self):
        while not self._stop.wait(self.interval):
            try:
                self.tick()
            except TransientLockContention:
                # Picked up again on the next cadence.
                simulator_logger.debug("simulator_tick_skipped: state lock busy")

    def tick(self, now: float | None = None):
        """
        Run one simulation step.

        Raises:
            TransientLockContention: If the state lock could not be acquired
                within ``lock_timeout``. The state is left untouched.
        """
        if not self.lock.acquire(timeout=self.lock_timeout):
            self.skipped += 1
            SIMULATOR_TICKS_SKIPPED_TOTAL.inc()
            raise TransientLockContention("state lock busy")
        try:
            self._apply(time.time() if now is None else now)
        finally:
            self.lock.release()
        self.ticks += 1
        SIMULATOR_TICKS_TOTAL.inc()

    def _apply(self, now: float):
        """Perturb every reading. Caller holds the state lock."""
        state = self.state
        limits = state.limits

        temp_jitter = limits["temp_jitter"]
        for i, temp in enumerate(state.temperatures):
            temp += self.rng.uniform(-temp_jitter, temp_jitter)
            state.temperatures[i] = clamp(temp, limits["temp_min"], limits["temp_max"])

        pressure_jitter = limits["pressure_jitter"]
        for i, pressure in enumerate(state.pressures):
            pressure += self.rng.uniform(-pressure_jitter, pressure_jitter)
            state.pressures[i] = clamp(pressure, limits["pressure_min"], limits["pressure_max"])

        # Stopped motors are only zeroed by shutdown/reset, never written here.
        for i, running in enumerate(state.motor_states):
            if running:
                jitter = self.rng.randint(0, limits["motor_jitter_rpm"])
                state.motor_speeds[i] = base_motor_rpm(i, limits) + jitter

        state.last_update = now
