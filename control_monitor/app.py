# file: control_monitor/app.py
"""
HTTP and WebSocket surface of the Forlenza control monitor.

This module loads the configuration, asks the environment capability gate for
its verdict, owns the single ``ControlEngine`` and exposes it through a small
REST API. Sensor changes are pushed to WebSocket clients as ``io_update``
events and Prometheus metrics are served at ``/metrics``.
"""

import os
import time
import atexit
import logging
import threading

from flask import Flask, request, jsonify
from flask_cors import CORS
from flask_socketio import SocketIO
from prometheus_client import make_wsgi_app
from werkzeug.middleware.dispatcher import DispatcherMiddleware

from control_monitor.config import load_config
from control_monitor.control import Command
from control_monitor.engine import ControlEngine
from control_monitor.environment import check_compatibility
from control_monitor.exceptions import EnvironmentIncompatible

logging.basicConfig(level=logging.INFO)
app_logger = logging.getLogger("forlenza.app")

sys_config = load_config()

engine: ControlEngine | None = None
startup_lock = threading.Lock()

_publisher_thread: threading.Thread | None = None
_publisher_stop = threading.Event()
published_state: dict = {}

app = Flask(__name__)
CORS(app)

# Threading mode so emits work from the publisher thread
socketio = SocketIO(app, cors_allowed_origins="*", async_mode='threading')

# Add prometheus wsgi middleware to export metrics at /metrics
app.wsgi_app = DispatcherMiddleware(app.wsgi_app, {
    '/metrics': make_wsgi_app()
})


def classify_readings(snapshot: dict, display_cfg: dict | None = None) -> dict:
    """
    Map raw readings to the levels the operator panel colours them by.

    Args:
        snapshot (dict): An engine snapshot.
        display_cfg (dict, optional): The ``display`` config section.

    Returns:
        dict: Per-reading levels for temperatures, pressures, motors and interlocks.
    """
    display_cfg = display_cfg or sys_config["display"]
    temp_high = display_cfg["temp_high"]
    p_low = display_cfg["pressure_low"]
    p_high = display_cfg["pressure_high"]
    return {
        "temperatures": ["HIGH" if t > temp_high else "OK" for t in snapshot["temperatures"]],
        "pressures": ["WARN" if p < p_low or p > p_high else "OK" for p in snapshot["pressures"]],
        "motors": ["RUNNING" if on else "STOPPED" for on in snapshot["motor_states"]],
        "safety_interlocks": "ACTIVE" if snapshot["safety_interlocks"] else "BYPASSED",
    }


def emit_change(category, key, value, state_obj):
    """
    Updates state_obj and emits a WebSocket event if the value changed.
    """
    if category not in state_obj:
        state_obj[category] = {}

    old_val = state_obj[category].get(key)
    state_obj[category][key] = value

    # Small epsilon for numbers so simulator noise below display precision stays quiet
    changed = False
    if old_val is None:
        changed = True
    elif (
        isinstance(value, (int, float)) and not isinstance(value, bool)
        and isinstance(old_val, (int, float)) and not isinstance(old_val, bool)
    ):
        if abs(value - old_val) > 0.001:
            changed = True
    elif value != old_val:
        changed = True

    if changed:
        socketio.emit('io_update', {
            "category": category,
            "key": key,
            "val": value
        })
    return changed


def publish_snapshot(snapshot: dict, state_obj: dict | None = None):
    """Push every reading of ``snapshot`` through ``emit_change``."""
    state_obj = published_state if state_obj is None else state_obj
    for i, temp in enumerate(snapshot["temperatures"]):
        emit_change("temperatures", i, temp, state_obj)
    for i, pressure in enumerate(snapshot["pressures"]):
        emit_change("pressures", i, pressure, state_obj)
    for i, (speed, running) in enumerate(zip(snapshot["motor_speeds"], snapshot["motor_states"])):
        emit_change("motor_speeds", i, speed, state_obj)
        emit_change("motor_states", i, running, state_obj)
    for key in ("mode", "safety_interlocks", "diagnostic_in_progress", "connection_status"):
        emit_change("system", key, snapshot[key], state_obj)


def publisher_loop():
    """Background loop sampling the engine and pushing changes to WebSocket clients."""
    interval = float(sys_config["engine"]["tick_interval"])
    while not _publisher_stop.wait(interval):
        current = engine
        if current is None:
            continue
        try:
            publish_snapshot(current.snapshot())
        except Exception:
            app_logger.exception("Failed to publish snapshot")


def start_background_threads():
    """Start the publisher thread if it's not already running."""
    global _publisher_thread
    if _publisher_thread and _publisher_thread.is_alive():
        return
    _publisher_stop.clear()
    _publisher_thread = threading.Thread(target=publisher_loop, daemon=True)
    _publisher_thread.start()


def startup():
    """Consult the capability gate, build the engine and start background threads."""
    global engine
    if engine is not None:
        return
    compatible, reason = check_compatibility(sys_config["environment"])
    new_engine = ControlEngine(compatible, reason, config=sys_config)
    try:
        new_engine.start()
    except EnvironmentIncompatible:
        app_logger.error("startup_blocked: environment incompatible, serving read-only status")
        engine = new_engine
        return
    engine = new_engine
    start_background_threads()


def shutdown():
    """Stop background threads and the engine."""
    global engine, _publisher_thread
    _publisher_stop.set()
    if _publisher_thread:
        _publisher_thread.join(timeout=2.0)
    if engine:
        try:
            engine.stop()
        except Exception:
            app_logger.exception("Failed to stop engine cleanly")
    engine = None
    _publisher_thread = None
    published_state.clear()

atexit.register(shutdown)


def _ensure_engine_started():
    """Lazy-initialize the engine if needed."""
    if engine is None:
        with startup_lock:
            if engine is None:
                try:
                    startup()
                except Exception:
                    app_logger.exception("Engine startup failed")
                    return False, (
                        jsonify({"success": False, "msg": "ENGINE_NOT_INITIALIZED"}),
                        503,
                    )
    return True, None


@app.route("/api/status", methods=["GET"])
def api_status():
    """Return the full engine snapshot and configuration."""
    ok, resp = _ensure_engine_started()
    if not ok:
        return resp
    return jsonify({"state": engine.snapshot(), "config": sys_config})


@app.route("/api/data", methods=["GET"])
def api_data():
    """Return real-time readings with their display levels."""
    ok, resp = _ensure_engine_started()
    if not ok:
        return resp
    snap = engine.snapshot()
    return jsonify({
        "timestamp": time.time(),
        "last_update": snap["last_update"],
        "temperatures": snap["temperatures"],
        "pressures": snap["pressures"],
        "motor_speeds": snap["motor_speeds"],
        "motor_states": snap["motor_states"],
        "safety_interlocks": snap["safety_interlocks"],
        "mode": snap["mode"],
        "connection_status": snap["connection_status"],
        "levels": classify_readings(snap),
    })


@app.route("/api/diagnostic", methods=["GET"])
def api_diagnostic():
    """Return the diagnostic log and whether a run is still settling."""
    ok, resp = _ensure_engine_started()
    if not ok:
        return resp
    snap = engine.snapshot()
    return jsonify({"running": snap["diagnostic_in_progress"], "log": snap["diagnostic_log"]})


@app.route("/api/control", methods=["POST"])
def control():
    """
    Operator command endpoint.

    Accepts ``{"command": "RUN_DIAGNOSTIC" | "EMERGENCY_SHUTDOWN" | "RESET"}``.
    A command that the current mode does not accept is not an error; the
    response reports ``applied: false``.
    """
    data = request.get_json(force=True, silent=True) or {}
    cmd = data.get("command")

    ok, resp = _ensure_engine_started()
    if not ok:
        return resp

    if cmd not in [c.value for c in Command]:
        app_logger.warning(f"api_validation_failed: UNKNOWN_COMMAND ({cmd!r})")
        return jsonify({"success": False, "msg": "UNKNOWN_COMMAND"}), 400

    if not engine.compatible:
        return jsonify({"success": False, "msg": "SYSTEM_INCOMPATIBLE"}), 503

    applied = engine.execute(cmd)
    return jsonify({"success": True, "applied": applied, "mode": engine.snapshot()["mode"]})


if __name__ == "__main__":
    debug = os.getenv("FLASK_DEBUG", "false").lower() == "true"
    host = os.getenv("FLASK_RUN_HOST", "127.0.0.1")
    port = int(os.getenv("FLASK_RUN_PORT", "5000"))

    eager_start = (
        os.getenv("FORLENZA_EAGER_STARTUP", "false").lower() == "true"
    )

    if eager_start and (not debug or os.environ.get("WERKZEUG_RUN_MAIN") == "true"):
        startup()
    app_logger.info(
        "Starting Flask app on %s:%s (engine init %s)",
        host,
        port,
        "eager" if eager_start else "lazy",
    )
    socketio.run(app, host=host, port=port, debug=debug, allow_unsafe_werkzeug=True)
