import unittest
import json
import os
import tempfile
import logging

from control_monitor import config
from control_monitor.environment import DEFAULT_INCOMPATIBLE_REASON, check_compatibility

# Keep validation warnings out of the test output
logging.getLogger("forlenza.config").setLevel(logging.CRITICAL)
logging.getLogger("forlenza.environment").setLevel(logging.CRITICAL)


class TestConfigHardening(unittest.TestCase):
    def setUp(self):
        self.test_dir = tempfile.TemporaryDirectory()
        self.config_path = os.path.join(self.test_dir.name, "config.json")

    def tearDown(self):
        self.test_dir.cleanup()

    def test_load_valid_config(self):
        valid_config = {
            "engine": {"tick_interval": 0.5, "settle_delay": 1.0, "seed": 7},
            "reset": {"motor_states": [False, True, True, False]},
        }
        with open(self.config_path, 'w') as f:
            json.dump(valid_config, f)

        cfg = config.load_config(self.config_path)
        self.assertEqual(cfg["engine"]["tick_interval"], 0.5)
        self.assertEqual(cfg["engine"]["settle_delay"], 1.0)
        self.assertEqual(cfg["engine"]["seed"], 7)
        self.assertEqual(cfg["reset"]["motor_states"], [False, True, True, False])

    def test_load_malformed_json(self):
        with open(self.config_path, 'w') as f:
            f.write("{ invalid json")

        cfg = config.load_config(self.config_path)
        self.assertEqual(cfg["engine"]["tick_interval"], 1.0)
        backups = [n for n in os.listdir(self.test_dir.name) if n.startswith("config.json.bak.")]
        self.assertEqual(len(backups), 1)

    def test_missing_file_uses_defaults(self):
        cfg = config.load_config(os.path.join(self.test_dir.name, "absent.json"))
        self.assertEqual(cfg, config.validate_config({}))
        self.assertEqual(cfg["sensors"]["motor_speeds"], [1750, 1800, 0, 2200])

    def test_invalid_engine_values_fall_back(self):
        cfg = config.validate_config({
            "engine": {"tick_interval": "fast", "settle_delay": -1, "lock_timeout": float("nan"), "seed": "x"}
        })
        self.assertEqual(cfg["engine"], config.SYSTEM_DEFAULTS["engine"])

    def test_sensor_values_clamped(self):
        cfg = config.validate_config({"sensors": {"temperatures": [5, 50], "pressures": [200]}})
        self.assertEqual(cfg["sensors"]["temperatures"], [20.0, 30.0])
        self.assertEqual(cfg["sensors"]["pressures"], [105.0])

    def test_mismatched_motor_lists_fall_back(self):
        cfg = config.validate_config({"sensors": {"motor_speeds": [1, 2], "motor_states": [True]}})
        self.assertEqual(cfg["sensors"]["motor_speeds"], [1750, 1800, 0, 2200])
        self.assertEqual(cfg["sensors"]["motor_states"], [True, True, False, True])

    def test_stopped_motor_speed_zeroed(self):
        cfg = config.validate_config({"sensors": {"motor_speeds": [1500, 1600], "motor_states": [True, False]}})
        self.assertEqual(cfg["sensors"]["motor_speeds"], [1500, 0])
        # Reset configuration is resized to the motor count
        self.assertEqual(len(cfg["reset"]["motor_states"]), 2)

    def test_integer_limits_reject_bools_and_fractions(self):
        cfg = config.validate_config({
            "limits": {"motor_base_rpm": True, "motor_step_rpm": 99.7, "motor_jitter_rpm": 40.0}
        })
        self.assertEqual(cfg["limits"]["motor_base_rpm"], 1750)
        self.assertEqual(cfg["limits"]["motor_step_rpm"], 50)
        self.assertEqual(cfg["limits"]["motor_jitter_rpm"], 40)

    def test_integer_limits_warn(self):
        with self.assertLogs("forlenza.config", level="WARNING") as logs:
            config.validate_config({"limits": {"motor_step_rpm": 99.7}})
        self.assertTrue(any("limits.motor_step_rpm" in line for line in logs.output))

    def test_motor_speeds_reject_bools_and_fractions(self):
        cfg = config.validate_config({"sensors": {"motor_speeds": [True, 1500.5], "motor_states": [True, True]}})
        self.assertEqual(cfg["sensors"]["motor_speeds"], [1750, 1800, 0, 2200])

    def test_inverted_limits_fall_back(self):
        cfg = config.validate_config({"limits": {"temp_min": 40, "temp_max": 10}})
        self.assertEqual(cfg["limits"]["temp_min"], 20.0)
        self.assertEqual(cfg["limits"]["temp_max"], 30.0)

    def test_non_dict_sections_ignored(self):
        cfg = config.validate_config({"engine": [1, 2], "environment": "nope"})
        self.assertEqual(cfg["engine"], config.SYSTEM_DEFAULTS["engine"])
        self.assertTrue(cfg["environment"]["compatible"])


class TestCapabilityGate(unittest.TestCase):
    def test_compatible_by_default(self):
        self.assertEqual(check_compatibility({}, environ={}), (True, ""))

    def test_config_flag_and_reason(self):
        ok, reason = check_compatibility({"compatible": False, "reason": "no PLC bus"}, environ={})
        self.assertFalse(ok)
        self.assertEqual(reason, "no PLC bus")

    def test_default_reason(self):
        ok, reason = check_compatibility({"compatible": False}, environ={})
        self.assertFalse(ok)
        self.assertEqual(reason, DEFAULT_INCOMPATIBLE_REASON)

    def test_environment_variable_override(self):
        self.assertFalse(check_compatibility({"compatible": True}, environ={"FORLENZA_COMPATIBLE": "false"})[0])
        self.assertTrue(check_compatibility({"compatible": False}, environ={"FORLENZA_COMPATIBLE": "1"})[0])

    def test_invalid_override_ignored(self):
        self.assertTrue(check_compatibility({"compatible": True}, environ={"FORLENZA_COMPATIBLE": "maybe"})[0])


if __name__ == '__main__':
    unittest.main()
