# file: control_monitor/sensors.py
"""
Shared sensor record for the control monitor.

``SensorState`` is plain data. It is owned by ``ControlEngine`` and must only be
read or written while holding the engine's state lock; the helpers here assume
the caller already holds it.
"""

import time
from typing import Any, Dict, List

from control_monitor.config import SYSTEM_DEFAULTS


def clamp(value: float, min_value: float, max_value: float) -> float:
    """Clamp a float between min and max."""
    return max(min_value, min(max_value, value))


def base_motor_rpm(index: int, limits: Dict[str, Any]) -> int:
    """Nominal speed of motor ``index`` (0-based) before any jitter."""
    return int(limits["motor_base_rpm"] + limits["motor_step_rpm"] * index)


class SensorState:
    """
    Current temperatures, pressures, motor speeds/run states and the safety
    interlock flag.
    """

    def __init__(
        self,
        temperatures: List[float] | None = None,
        pressures: List[float] | None = None,
        motor_speeds: List[int] | None = None,
        motor_states: List[bool] | None = None,
        safety_interlocks: bool = True,
        limits: Dict[str, Any] | None = None,
        now: float | None = None,
    ):
        defaults = SYSTEM_DEFAULTS["sensors"]
        self.limits = dict(limits or SYSTEM_DEFAULTS["limits"])

        speeds = list(defaults["motor_speeds"] if motor_speeds is None else motor_speeds)
        states = list(defaults["motor_states"] if motor_states is None else motor_states)
        if len(speeds) != len(states):
            raise ValueError(
                f"motor_speeds has {len(speeds)} entries but motor_states has {len(states)}"
            )
        if any(int(s) < 0 for s in speeds):
            raise ValueError("motor_speeds must be non-negative")

        self.temperatures = [
            clamp(float(t), self.limits["temp_min"], self.limits["temp_max"])
            for t in (defaults["temperatures"] if temperatures is None else temperatures)
        ]
        self.pressures = [
            clamp(float(p), self.limits["pressure_min"], self.limits["pressure_max"])
            for p in (defaults["pressures"] if pressures is None else pressures)
        ]
        # A stopped motor never reports a speed.
        self.motor_speeds = [int(s) if on else 0 for s, on in zip(speeds, states)]
        self.motor_states = [bool(on) for on in states]
        self.safety_interlocks = bool(safety_interlocks)
        self.last_update = time.time() if now is None else now

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], now: float | None = None) -> "SensorState":
        """Build the initial record from a validated configuration."""
        sensors = cfg["sensors"]
        return cls(
            temperatures=sensors["temperatures"],
            pressures=sensors["pressures"],
            motor_speeds=sensors["motor_speeds"],
            motor_states=sensors["motor_states"],
            limits=cfg["limits"],
            now=now,
        )

    @property
    def motor_count(self) -> int:
        return len(self.motor_states)

    def stop_all_motors(self):
        """Force every motor to stopped with zero speed and arm the interlocks."""
        for i in range(self.motor_count):
            self.motor_speeds[i] = 0
            self.motor_states[i] = False
        self.safety_interlocks = True

    def all_stopped(self) -> bool:
        return not any(self.motor_states) and not any(self.motor_speeds)

    def snapshot(self) -> Dict[str, Any]:
        """Return an independent copy of the readings."""
        return {
            "temperatures": list(self.temperatures),
            "pressures": list(self.pressures),
            "motor_speeds": list(self.motor_speeds),
            "motor_states": list(self.motor_states),
            "safety_interlocks": self.safety_interlocks,
            "last_update": self.last_update,
        }
