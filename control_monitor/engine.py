# file: control_monitor/engine.py
"""
ControlEngine ties the shared sensor record, the background simulator and the
operational state machine together behind one lock.

The presentation layer only ever talks to the engine:

- ``snapshot()`` for a consistent copy of readings and control state
- ``run_diagnostic()``, ``emergency_shutdown()``, ``reset()`` for commands,
  each returning True when applied and False when ignored

If the capability gate rejected the environment the engine is built in a
terminal incompatible state: the simulator never starts, ``start()`` raises
``EnvironmentIncompatible`` and every command is a no-op.
"""

import copy
import random
import threading
import logging
from typing import Any, Dict

from control_monitor.config import SYSTEM_DEFAULTS
from control_monitor.control import Command, ControlStateMachine, STATUS_INCOMPATIBLE
from control_monitor.diagnostics import DiagnosticRunner
from control_monitor.exceptions import EnvironmentIncompatible, InvalidStateTransition
from control_monitor.metrics import COMMANDS_IGNORED_TOTAL, COMMANDS_TOTAL, SYSTEM_MODE
from control_monitor.sensors import SensorState
from control_monitor.simulator import SensorSimulator

engine_logger = logging.getLogger("forlenza.engine")


class ControlEngine:
    """
    Owner of the shared ``SensorState`` and its lock.
    """

    def __init__(
        self,
        compatible: bool,
        reason: str = "",
        config: Dict[str, Any] | None = None,
        rng: random.Random | None = None,
    ):
        """
        Initialize the engine.

        Args:
            compatible (bool): Verdict of the environment capability gate.
            reason (str, optional): Human readable explanation when not compatible.
            config (dict, optional): A validated configuration (see ``config.validate_config``).
            rng (random.Random, optional): Noise source for the simulator. When
                omitted one is created from ``engine.seed``.
        """
        self.config = copy.deepcopy(config) if config is not None else copy.deepcopy(SYSTEM_DEFAULTS)
        engine_cfg = self.config["engine"]

        self.compatible = bool(compatible)
        self.error_message = "" if self.compatible else (reason or "")

        self._lock = threading.Lock()
        self.state = SensorState.from_config(self.config)
        self.rng = rng or random.Random(engine_cfg.get("seed"))  # nosec B311 - simulation noise only

        self.machine = ControlStateMachine(
            self.state,
            self._lock,
            runner=DiagnosticRunner(settle_delay=engine_cfg["settle_delay"]),
            reset_motor_states=self.config["reset"]["motor_states"],
        )
        self.simulator = SensorSimulator(
            self.state,
            self._lock,
            rng=self.rng,
            interval=engine_cfg["tick_interval"],
            lock_timeout=engine_cfg["lock_timeout"],
        )

        if not self.compatible:
            engine_logger.error(f"environment_incompatible: {self.error_message or 'no reason given'}")

    # --- Lifecycle -------------------------------------------------------

    def start(self):
        """
        Start the sensor simulator.

        Raises:
            EnvironmentIncompatible: If the capability gate rejected the environment.
        """
        if not self.compatible:
            SYSTEM_MODE.state("INCOMPATIBLE")
            raise EnvironmentIncompatible(self.error_message)
        self.machine.publish_metrics()
        self.simulator.start()

    def stop(self):
        """Stop the simulator and drop any pending diagnostic completion."""
        self.simulator.stop()
        self.machine.stop()

    # --- Commands --------------------------------------------------------

    def _dispatch(self, command: Command) -> bool:
        if not self.compatible:
            engine_logger.debug(f"command_ignored: {command.value} (system incompatible)")
            COMMANDS_IGNORED_TOTAL.labels(command=command.value).inc()
            return False
        try:
            applied = self.machine.apply(command)
        except InvalidStateTransition as exc:
            engine_logger.debug(f"command_ignored: {exc}")
            COMMANDS_IGNORED_TOTAL.labels(command=command.value).inc()
            return False
        if applied:
            COMMANDS_TOTAL.labels(command=command.value).inc()
        else:
            COMMANDS_IGNORED_TOTAL.labels(command=command.value).inc()
        return applied

    def run_diagnostic(self) -> bool:
        return self._dispatch(Command.RUN_DIAGNOSTIC)

    def emergency_shutdown(self) -> bool:
        return self._dispatch(Command.EMERGENCY_SHUTDOWN)

    def reset(self) -> bool:
        return self._dispatch(Command.RESET)

    def execute(self, command: str) -> bool:
        """
        Run a command by name.

        Raises:
            ValueError: If ``command`` is not a known command name.
        """
        return self._dispatch(Command(command))

    # --- Reads -----------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Return a consistent copy of readings and control state."""
        with self._lock:
            snap = self.machine.snapshot_locked()
        snap["compatible"] = self.compatible
        snap["error_message"] = self.error_message
        if not self.compatible:
            snap["connection_status"] = STATUS_INCOMPATIBLE
        return snap

    def wait_for_diagnostic(self, timeout: float | None = None) -> bool:
        """Block until the current diagnostic run has settled."""
        return self.machine.diagnostic_settled.wait(timeout)
