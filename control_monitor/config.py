# file: control_monitor/config.py
"""
Configuration defaults and validation for the control monitor.

The configuration lives in ``config.json`` next to this package (or wherever
``FORLENZA_CONFIG`` points). Every section is validated against
``SYSTEM_DEFAULTS``; anything invalid is replaced by its default and reported
as a ``CONFIG_WARNING`` so a bad file never stops the monitor from starting.
"""

import os
import copy
import json
import math
import shutil
import logging
from datetime import datetime
from json import JSONDecodeError

CURRENT_DIR = os.path.dirname(__file__)
CONFIG_FILE = os.environ.get("FORLENZA_CONFIG", os.path.join(CURRENT_DIR, "config.json"))

config_logger = logging.getLogger("forlenza.config")

SYSTEM_DEFAULTS = {
    "engine": {
        "tick_interval": 1.0,   # s between simulator ticks
        "settle_delay": 3.0,    # s before a diagnostic may run again
        "lock_timeout": 0.5,    # s a tick waits for the state lock before skipping
        "seed": None,
    },
    "sensors": {
        "temperatures": [23.5, 24.1, 22.8, 25.0],
        "pressures": [101.3, 98.7, 102.1],
        "motor_speeds": [1750, 1800, 0, 2200],
        "motor_states": [True, True, False, True],
    },
    "limits": {
        "temp_min": 20.0,
        "temp_max": 30.0,
        "temp_jitter": 0.1,
        "pressure_min": 95.0,
        "pressure_max": 105.0,
        "pressure_jitter": 0.25,
        "motor_base_rpm": 1750,
        "motor_step_rpm": 50,
        "motor_jitter_rpm": 99,
    },
    "reset": {
        "motor_states": [True, True, False, True],
    },
    "environment": {
        "compatible": True,
        "reason": "",
    },
    "display": {
        "temp_high": 26.0,
        "pressure_low": 98.0,
        "pressure_high": 103.0,
    },
}


def _coerce_finite(value: object) -> float | None:
    """Safely convert object to finite float or None."""
    if isinstance(value, bool):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(num):
        return None
    return num


def _coerce_int(value: object) -> int | None:
    """Convert object to int or None. Booleans and fractional numbers are rejected."""
    num = _coerce_finite(value)
    if num is None or not num.is_integer():
        return None
    return int(num)


def _validate_engine(section: dict, errors: list[str]):
    """
    Validate the engine timing section.
    """
    result = copy.deepcopy(SYSTEM_DEFAULTS["engine"])
    for key, low, high in (
        ("tick_interval", 0.01, 60.0),
        ("settle_delay", 0.0, 600.0),
        ("lock_timeout", 0.0, 60.0),
    ):
        if key not in section:
            continue
        value = _coerce_finite(section[key])
        if value is None or not (low <= value <= high):
            errors.append(f"Invalid engine.{key}, using default")
            continue
        result[key] = value

    if "seed" in section:
        seed = section["seed"]
        if seed is None:
            result["seed"] = None
        else:
            try:
                if isinstance(seed, bool):
                    raise ValueError
                result["seed"] = int(seed)
            except (TypeError, ValueError):
                errors.append("Invalid engine.seed, using default")
    return result


def _validate_float_list(values, name: str, low: float, high: float, errors: list[str]):
    if not isinstance(values, list) or not values:
        errors.append(f"Invalid sensors.{name}, using default")
        return None
    cleaned = []
    for val in values:
        num = _coerce_finite(val)
        if num is None:
            errors.append(f"Invalid sensors.{name} entry {val!r}, using default")
            return None
        cleaned.append(max(low, min(high, num)))
    return cleaned


def _validate_bool_list(values, errors: list[str], label: str):
    if not isinstance(values, list) or not values:
        errors.append(f"Invalid {label}, using default")
        return None
    if not all(isinstance(v, bool) for v in values):
        errors.append(f"Invalid {label}, entries must be booleans")
        return None
    return list(values)


def _validate_sensors(section: dict, limits: dict, errors: list[str]):
    """
    Validate the initial sensor readings.

    Temperatures and pressures are clamped into their limits. Motor speeds and
    states must line up one to one; a stopped motor always starts at 0 RPM.
    """
    result = copy.deepcopy(SYSTEM_DEFAULTS["sensors"])

    if "temperatures" in section:
        temps = _validate_float_list(
            section["temperatures"], "temperatures", limits["temp_min"], limits["temp_max"], errors
        )
        if temps is not None:
            result["temperatures"] = temps
    else:
        result["temperatures"] = [
            max(limits["temp_min"], min(limits["temp_max"], t)) for t in result["temperatures"]
        ]

    if "pressures" in section:
        pressures = _validate_float_list(
            section["pressures"], "pressures", limits["pressure_min"], limits["pressure_max"], errors
        )
        if pressures is not None:
            result["pressures"] = pressures
    else:
        result["pressures"] = [
            max(limits["pressure_min"], min(limits["pressure_max"], p)) for p in result["pressures"]
        ]

    if "motor_speeds" in section or "motor_states" in section:
        speeds = section.get("motor_speeds", result["motor_speeds"])
        states = _validate_bool_list(
            section.get("motor_states", result["motor_states"]), errors, "sensors.motor_states"
        )
        valid = states is not None and isinstance(speeds, list) and len(speeds) == len(states)
        if valid:
            speeds = [_coerce_int(s) for s in speeds]
            valid = None not in speeds
        if valid and any(s < 0 for s in speeds):
            valid = False
        if valid:
            result["motor_speeds"] = [s if on else 0 for s, on in zip(speeds, states)]
            result["motor_states"] = states
        else:
            errors.append("Invalid sensors.motor_speeds/motor_states, using defaults")

    return result


def _validate_limits(section: dict, errors: list[str]):
    """
    Validate clamp ranges and simulator jitter.
    """
    result = copy.deepcopy(SYSTEM_DEFAULTS["limits"])
    for key in ("temp_min", "temp_max", "pressure_min", "pressure_max", "temp_jitter", "pressure_jitter"):
        if key not in section:
            continue
        value = _coerce_finite(section[key])
        if value is None:
            errors.append(f"Invalid limits.{key}, using default")
            continue
        result[key] = value

    for key in ("motor_base_rpm", "motor_step_rpm", "motor_jitter_rpm"):
        if key not in section:
            continue
        value = _coerce_int(section[key])
        if value is None or value < 0:
            errors.append(f"Invalid limits.{key}, using default")
            continue
        result[key] = value

    defaults = SYSTEM_DEFAULTS["limits"]
    if result["temp_min"] >= result["temp_max"]:
        errors.append("limits.temp_min must be below limits.temp_max, using defaults")
        result["temp_min"], result["temp_max"] = defaults["temp_min"], defaults["temp_max"]
    if result["pressure_min"] >= result["pressure_max"]:
        errors.append("limits.pressure_min must be below limits.pressure_max, using defaults")
        result["pressure_min"], result["pressure_max"] = defaults["pressure_min"], defaults["pressure_max"]
    for key in ("temp_jitter", "pressure_jitter"):
        if result[key] < 0:
            errors.append(f"limits.{key} must be non-negative, using default")
            result[key] = defaults[key]
    return result


def _validate_reset(section: dict, motor_count: int, errors: list[str]):
    """
    Validate the run configuration restored by a reset.
    """
    result = copy.deepcopy(SYSTEM_DEFAULTS["reset"])
    if "motor_states" in section:
        states = _validate_bool_list(section["motor_states"], errors, "reset.motor_states")
        if states is not None:
            result["motor_states"] = states
    if len(result["motor_states"]) != motor_count:
        errors.append("reset.motor_states length does not match motor count, padding with stopped motors")
        padded = result["motor_states"][:motor_count]
        padded += [False] * (motor_count - len(padded))
        result["motor_states"] = padded
    return result


def _validate_environment(section: dict, errors: list[str]):
    result = copy.deepcopy(SYSTEM_DEFAULTS["environment"])
    if "compatible" in section:
        if isinstance(section["compatible"], bool):
            result["compatible"] = section["compatible"]
        else:
            errors.append("Invalid environment.compatible, using default")
    if "reason" in section:
        result["reason"] = str(section["reason"] or "")
    return result


def _validate_display(section: dict, errors: list[str]):
    result = copy.deepcopy(SYSTEM_DEFAULTS["display"])
    for key in result:
        if key not in section:
            continue
        value = _coerce_finite(section[key])
        if value is None:
            errors.append(f"Invalid display.{key}, using default")
            continue
        result[key] = value
    return result


def validate_config(raw_cfg: dict):
    """
    Validate the entire application configuration dictionary.

    Args:
        raw_cfg (dict): The raw configuration dictionary loaded from JSON.

    Returns:
        dict: A validated configuration dictionary with defaults applied where necessary.
    """
    errors: list[str] = []
    if not isinstance(raw_cfg, dict):
        errors.append("Configuration root must be an object, using defaults")
        raw_cfg = {}

    def section(name):
        value = raw_cfg.get(name, {})
        if not isinstance(value, dict):
            errors.append(f"Invalid {name} section, using defaults")
            return {}
        return value

    cfg = copy.deepcopy(SYSTEM_DEFAULTS)
    cfg["engine"] = _validate_engine(section("engine"), errors)
    cfg["limits"] = _validate_limits(section("limits"), errors)
    cfg["sensors"] = _validate_sensors(section("sensors"), cfg["limits"], errors)
    cfg["reset"] = _validate_reset(section("reset"), len(cfg["sensors"]["motor_states"]), errors)
    cfg["environment"] = _validate_environment(section("environment"), errors)
    cfg["display"] = _validate_display(section("display"), errors)

    for err in errors:
        config_logger.warning(f"CONFIG_WARNING: {err}")

    return cfg


def _backup_config(path: str):
    ts = datetime.now().strftime("%Y%m%d%H%M%S")
    backup_path = f"{path}.bak.{ts}"
    config_logger.warning(f"Backing up unreadable config to {backup_path}")
    try:
        shutil.copy(path, backup_path)
    except OSError as copy_err:
        config_logger.error(f"Failed to backup corrupt config: {copy_err}")


def load_config(path: str | None = None):
    """
    Load and validate configuration from config.json.

    Falls back to defaults if the file is missing or corrupt. Corrupt files are
    backed up next to the original before the defaults are used.
    """
    path = path or CONFIG_FILE
    if not os.path.exists(path):
        config_logger.info(f"Configuration file {path} not found, using defaults")
        return validate_config({})

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw_cfg = json.load(f)
        return validate_config(raw_cfg)
    except JSONDecodeError:
        config_logger.error(f"Malformed JSON in {path}")
        _backup_config(path)
        return validate_config({})
    except OSError as e:
        config_logger.error(f"Failed to load {path}: {e}")
        return validate_config({})
