import unittest
from unittest.mock import MagicMock, patch

import control_monitor.app as app_module
from control_monitor.app import app


class ApiTestBase(unittest.TestCase):
    compatible = True

    def setUp(self):
        app_module.shutdown()
        self.socketio_patcher = patch.object(app_module, "socketio", MagicMock())
        self.socketio_patcher.start()
        self.orig_engine_cfg = dict(app_module.sys_config["engine"])
        self.orig_env_cfg = dict(app_module.sys_config["environment"])
        app_module.sys_config["engine"].update({"tick_interval": 0.02, "settle_delay": 0.1, "seed": 1})
        app_module.sys_config["environment"]["compatible"] = self.compatible
        app_module.sys_config["environment"]["reason"] = "" if self.compatible else "test platform"
        self.env_patcher = patch.dict("os.environ", {}, clear=False)
        self.env_patcher.start()
        app_module.os.environ.pop("FORLENZA_COMPATIBLE", None)

        app.testing = True
        self.client = app.test_client()

    def tearDown(self):
        app_module.shutdown()
        app_module.sys_config["engine"] = self.orig_engine_cfg
        app_module.sys_config["environment"] = self.orig_env_cfg
        self.env_patcher.stop()
        self.socketio_patcher.stop()

    def command(self, name):
        return self.client.post('/api/control', json={"command": name})


class TestControlApi(ApiTestBase):
    def test_status_starts_engine_lazily(self):
        self.assertIsNone(app_module.engine)
        resp = self.client.get('/api/status')
        self.assertEqual(resp.status_code, 200)
        body = resp.get_json()
        self.assertIsNotNone(app_module.engine)
        self.assertEqual(body["state"]["mode"], "NORMAL")
        self.assertTrue(body["state"]["compatible"])
        self.assertIn("engine", body["config"])

    def test_shutdown_and_reset_via_api(self):
        resp = self.command("EMERGENCY_SHUTDOWN")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json(), {"success": True, "applied": True, "mode": "EMERGENCY_SHUTDOWN"})

        data = self.client.get('/api/data').get_json()
        self.assertEqual(data["motor_speeds"], [0, 0, 0, 0])
        self.assertEqual(data["levels"]["motors"], ["STOPPED"] * 4)
        self.assertEqual(data["levels"]["safety_interlocks"], "ACTIVE")

        resp = self.command("RESET")
        self.assertEqual(resp.get_json()["applied"], True)
        self.assertEqual(resp.get_json()["mode"], "NORMAL")

        # Second reset is a silent no-op
        resp = self.command("RESET")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["applied"], False)

    def test_diagnostic_endpoint(self):
        self.assertTrue(self.command("RUN_DIAGNOSTIC").get_json()["applied"])
        self.assertFalse(self.command("RUN_DIAGNOSTIC").get_json()["applied"])
        body = self.client.get('/api/diagnostic').get_json()
        self.assertTrue(body["running"])
        self.assertEqual(len(body["log"]), 8)

    def test_unknown_command(self):
        resp = self.command("SELF_DESTRUCT")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["msg"], "UNKNOWN_COMMAND")

    def test_missing_body(self):
        resp = self.client.post('/api/control', data="not json")
        self.assertEqual(resp.status_code, 400)


class TestIncompatibleApi(ApiTestBase):
    compatible = False

    def test_commands_rejected(self):
        resp = self.command("EMERGENCY_SHUTDOWN")
        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.get_json()["msg"], "SYSTEM_INCOMPATIBLE")

    def test_status_reports_reason(self):
        state = self.client.get('/api/status').get_json()["state"]
        self.assertFalse(state["compatible"])
        self.assertEqual(state["error_message"], "test platform")
        self.assertEqual(state["connection_status"], "System Incompatible")
        self.assertFalse(app_module.engine.simulator.is_running())


class TestClassifyReadings(unittest.TestCase):
    def test_levels(self):
        snap = {
            "temperatures": [25.0, 26.5],
            "pressures": [97.0, 100.0, 104.0],
            "motor_states": [True, False],
            "safety_interlocks": False,
        }
        levels = app_module.classify_readings(snap)
        self.assertEqual(levels["temperatures"], ["OK", "HIGH"])
        self.assertEqual(levels["pressures"], ["WARN", "OK", "WARN"])
        self.assertEqual(levels["motors"], ["RUNNING", "STOPPED"])
        self.assertEqual(levels["safety_interlocks"], "BYPASSED")


if __name__ == '__main__':
    unittest.main()
