"""Forlenza industrial control monitor: sensor-state engine and operator state machine."""
