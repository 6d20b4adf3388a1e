"""Exception hierarchy for the control monitor."""


class ControlMonitorError(Exception):
    """Base exception for all control monitor errors."""


class EnvironmentIncompatible(ControlMonitorError):
    """The capability gate rejected this environment. Terminal, never retried."""

    def __init__(self, reason=""):
        self.reason = reason
        super().__init__(reason or "SYSTEM_INCOMPATIBLE")


class InvalidStateTransition(ControlMonitorError):
    """A command was issued in a mode that does not accept it."""

    def __init__(self, command, mode):
        self.command = command
        self.mode = mode
        super().__init__(f"{command} not accepted in {mode}")


class TransientLockContention(ControlMonitorError):
    """A simulator tick could not acquire the state lock in time."""
