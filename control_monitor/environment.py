# file: control_monitor/environment.py
"""
Environment capability gate.

Supplies the single compatible/incompatible verdict the engine consumes at
startup. The verdict comes from configuration, optionally overridden by the
``FORLENZA_COMPATIBLE`` environment variable; no platform probing happens here.
"""

import os
import logging

environment_logger = logging.getLogger("forlenza.environment")

DEFAULT_INCOMPATIBLE_REASON = (
    "PLATFORM ERROR:\n\n"
    "Forlenza Industrial Control System is designed exclusively for its legacy "
    "control platform.\n\n"
    "This software requires:\n"
    "• Legacy platform APIs\n"
    "• Industrial hardware drivers\n\n"
    "Please run on a supported system or virtual machine."
)

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def check_compatibility(env_config: dict | None = None, environ=None) -> tuple[bool, str]:
    """
    Decide whether the monitor may become operable.

    Args:
        env_config (dict, optional): The validated ``environment`` config section.
        environ (mapping, optional): Environment variables. Defaults to ``os.environ``.

    Returns:
        tuple: (compatible (bool), reason (str)). The reason is empty when compatible.
    """
    env_config = env_config or {}
    environ = os.environ if environ is None else environ

    compatible = bool(env_config.get("compatible", True))
    override = environ.get("FORLENZA_COMPATIBLE")
    if override is not None:
        value = override.strip().lower()
        if value in _TRUE_VALUES:
            compatible = True
        elif value in _FALSE_VALUES:
            compatible = False
        else:
            environment_logger.warning(f"Ignoring invalid FORLENZA_COMPATIBLE value {override!r}")

    if compatible:
        return True, ""
    return False, env_config.get("reason") or DEFAULT_INCOMPATIBLE_REASON
