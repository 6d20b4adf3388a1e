# file: control_monitor/diagnostics.py
"""
Synthetic self-test for the control monitor.

``DiagnosticRunner.run`` builds the status lines shown to the operator from a
snapshot of the sensor readings. It never touches the live ``SensorState``.
The settle delay that follows a run is a ``threading.Timer`` that reports back
through a callback, so nothing waits on the state lock while it elapses.
"""

import threading
import logging
from typing import Any, Callable, Dict, List

diagnostics_logger = logging.getLogger("forlenza.diagnostics")

DIAGNOSTIC_HEADER = "=== FORLENZA INDUSTRIAL DIAGNOSTIC ==="
SYSTEM_ID = "FIS-CTRL-7001"
CHECK_OK = "✓"
CHECK_FAILED = "✗ BYPASSED"


class DiagnosticRunner:
    """Produces the diagnostic log and schedules its settle completion."""

    def __init__(self, settle_delay: float = 3.0):
        self.settle_delay = settle_delay
        self._timer: threading.Timer | None = None
        self._timer_lock = threading.Lock()

    def run(self, readings: Dict[str, Any] | None = None) -> List[str]:
        """
        Build the ordered diagnostic log.

        Args:
            readings (dict, optional): A sensor snapshot. Only the safety
                interlock flag is inspected.

        Returns:
            list: The status lines in display order.
        """
        interlocks_ok = True if readings is None else bool(readings.get("safety_interlocks", True))
        return [
            DIAGNOSTIC_HEADER,
            f"System ID: {SYSTEM_ID}",
            "Initializing legacy hardware interfaces...",
            f"Checking platform compatibility... {CHECK_OK}",
            f"Loading legacy PLC drivers... {CHECK_OK}",
            f"Connecting to industrial network... {CHECK_OK}",
            f"Verifying safety interlocks... {CHECK_OK if interlocks_ok else CHECK_FAILED}",
            "Diagnostic Complete - All Systems Operational",
        ]

    def schedule_settle(self, callback: Callable[[], None], delay: float | None = None):
        """
        Call ``callback`` once the settle delay has elapsed.

        Any previously scheduled completion is cancelled first.
        """
        delay = self.settle_delay if delay is None else delay
        timer = threading.Timer(delay, callback)
        timer.daemon = True
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = timer
        timer.start()
        diagnostics_logger.debug(f"diagnostic_settle_scheduled: {delay}s")

    def cancel(self):
        """Cancel a pending settle completion, if any."""
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
