# file: control_monitor/control.py
"""
Operational state machine for the control monitor.

Modes::

    NORMAL --EMERGENCY_SHUTDOWN--> EMERGENCY_SHUTDOWN --RESET--> NORMAL

RUN_DIAGNOSTIC is accepted in NORMAL only, and only while no earlier run is
still settling. EMERGENCY_SHUTDOWN is accepted in every mode. Commands that
arrive in the wrong mode raise ``InvalidStateTransition`` and change nothing.
"""

import time
import threading
import logging
from enum import Enum
from typing import Any, Dict, List

from control_monitor.diagnostics import DiagnosticRunner
from control_monitor.exceptions import InvalidStateTransition
from control_monitor.metrics import DIAGNOSTIC_IN_PROGRESS, SYSTEM_MODE
from control_monitor.sensors import SensorState, base_motor_rpm

control_logger = logging.getLogger("forlenza.control")

STATUS_CONNECTED = "Connected to Legacy PLCs"
STATUS_EMERGENCY = "EMERGENCY SHUTDOWN ACTIVE"
STATUS_INCOMPATIBLE = "System Incompatible"


class Mode(str, Enum):
    NORMAL = "NORMAL"
    EMERGENCY_SHUTDOWN = "EMERGENCY_SHUTDOWN"


class Command(str, Enum):
    RUN_DIAGNOSTIC = "RUN_DIAGNOSTIC"
    EMERGENCY_SHUTDOWN = "EMERGENCY_SHUTDOWN"
    RESET = "RESET"


class ControlStateMachine:
    """
    Applies operator commands to the shared ``SensorState``.

    All reads and writes happen under ``lock``, the same lock the simulator
    takes for a tick, so a command is never interleaved with a tick.
    """

    def __init__(
        self,
        state: SensorState,
        lock: threading.Lock,
        runner: DiagnosticRunner | None = None,
        reset_motor_states: List[bool] | None = None,
    ):
        """
        Args:
            state (SensorState): The shared record.
            lock (threading.Lock): The engine lock guarding ``state`` and this machine.
            runner (DiagnosticRunner, optional): Produces diagnostic logs.
            reset_motor_states (list, optional): Run configuration restored by RESET.
                Defaults to the motor states ``state`` was created with.
        """
        self.state = state
        self.lock = lock
        self.runner = runner or DiagnosticRunner()

        reset_states = list(state.motor_states if reset_motor_states is None else reset_motor_states)
        if len(reset_states) != state.motor_count:
            raise ValueError(
                f"reset configuration has {len(reset_states)} motors, state has {state.motor_count}"
            )
        self.reset_motor_states = [bool(on) for on in reset_states]

        self.mode = Mode.NORMAL
        self.diagnostic_in_progress = False
        self.diagnostic_log: List[str] = []
        self.diagnostic_settled = threading.Event()
        self.diagnostic_settled.set()
        self._diagnostic_run = 0

    @property
    def connection_status(self) -> str:
        if self.mode == Mode.EMERGENCY_SHUTDOWN:
            return STATUS_EMERGENCY
        return STATUS_CONNECTED

    def _set_mode(self, new_mode: Mode):
        """Switch mode. Caller holds the lock."""
        if new_mode == self.mode:
            return
        control_logger.info(f"state_transition: {self.mode.value} -> {new_mode.value}")
        self.mode = new_mode
        SYSTEM_MODE.state(new_mode.value)

    # --- Commands --------------------------------------------------------

    def run_diagnostic(self) -> List[str]:
        """
        Start a diagnostic run.

        Returns:
            list: The new diagnostic log.

        Raises:
            InvalidStateTransition: Outside NORMAL, or while a run is still settling.
        """
        with self.lock:
            if self.mode != Mode.NORMAL or self.diagnostic_in_progress:
                raise InvalidStateTransition(Command.RUN_DIAGNOSTIC.value, self.mode.value)
            self.diagnostic_in_progress = True
            self.diagnostic_settled.clear()
            DIAGNOSTIC_IN_PROGRESS.set(1)
            self._diagnostic_run += 1
            run_id = self._diagnostic_run
            self.diagnostic_log.clear()
            self.diagnostic_log.extend(self.runner.run(self.state.snapshot()))
            log = list(self.diagnostic_log)

        self.runner.schedule_settle(lambda: self._diagnostic_complete(run_id))
        control_logger.info(f"diagnostic_started: run={run_id}")
        return log

    def _diagnostic_complete(self, run_id: int):
        """Settle notification from the diagnostic timer."""
        with self.lock:
            if run_id != self._diagnostic_run or not self.diagnostic_in_progress:
                return
            self._settle_locked()
        control_logger.info(f"diagnostic_settled: run={run_id}")

    def _settle_locked(self):
        """Clear the in-progress flag and notify waiters. Caller holds the lock."""
        self.diagnostic_in_progress = False
        DIAGNOSTIC_IN_PROGRESS.set(0)
        self.diagnostic_settled.set()

    def emergency_shutdown(self) -> bool:
        """
        Stop every motor, arm the interlocks and enter EMERGENCY_SHUTDOWN.

        Returns:
            bool: False if the system was already shut down (nothing changed).
        """
        with self.lock:
            if self.mode == Mode.EMERGENCY_SHUTDOWN and self.state.all_stopped() and self.state.safety_interlocks:
                return False
            self.state.stop_all_motors()
            self.state.last_update = time.time()
            self._set_mode(Mode.EMERGENCY_SHUTDOWN)
        control_logger.warning("emergency_shutdown: all motors stopped, interlocks active")
        return True

    def reset(self):
        """
        Restore the default run configuration and return to NORMAL.

        Raises:
            InvalidStateTransition: If not in EMERGENCY_SHUTDOWN.
        """
        with self.lock:
            if self.mode != Mode.EMERGENCY_SHUTDOWN:
                raise InvalidStateTransition(Command.RESET.value, self.mode.value)
            limits = self.state.limits
            for i, running in enumerate(self.reset_motor_states):
                self.state.motor_states[i] = running
                self.state.motor_speeds[i] = base_motor_rpm(i, limits) if running else 0
            self.state.last_update = time.time()
            self._set_mode(Mode.NORMAL)

    def apply(self, command) -> bool:
        """
        Dispatch a command by name.

        Returns:
            bool: True if the command changed the system.

        Raises:
            InvalidStateTransition: If the current mode does not accept ``command``.
            ValueError: If ``command`` is not a known command.
        """
        command = Command(command)
        if command == Command.RUN_DIAGNOSTIC:
            self.run_diagnostic()
            return True
        if command == Command.EMERGENCY_SHUTDOWN:
            return self.emergency_shutdown()
        self.reset()
        return True

    # --- Reads -----------------------------------------------------------

    def snapshot_locked(self) -> Dict[str, Any]:
        """Readings plus control state. Caller holds the lock."""
        snap = self.state.snapshot()
        snap.update({
            "mode": self.mode.value,
            "diagnostic_in_progress": self.diagnostic_in_progress,
            "diagnostic_log": list(self.diagnostic_log),
            "connection_status": self.connection_status,
        })
        return snap

    def publish_metrics(self):
        """Report this machine's mode and diagnostic flag to the process metrics."""
        with self.lock:
            SYSTEM_MODE.state(self.mode.value)
            DIAGNOSTIC_IN_PROGRESS.set(1 if self.diagnostic_in_progress else 0)

    def stop(self):
        """
        Cancel a pending diagnostic settle timer and settle the run it belonged to.
        """
        self.runner.cancel()
        with self.lock:
            # Outstanding timer callbacks for the cancelled run become stale.
            self._diagnostic_run += 1
            if self.diagnostic_in_progress:
                self._settle_locked()
                control_logger.info("diagnostic_settled: cancelled by stop")
