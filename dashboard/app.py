# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: small local status API for the running agent. read-only JSON endpoints over the guard
engine: liveness, counters, summaries from the audit log, the baseline, current IP blocks,
quarantined files, and the safety tables. binds to localhost by default and is served by
waitress when started from the console.
"""

from __future__ import annotations

from typing import Any

from flask import Flask, jsonify, request
from waitress import serve

from memory.learning import baseline_summary
from response.safety import safety_tables

MAX_SUMMARY_HOURS = 24 * 365


def build_app(engine: Any) -> Flask:
    app = Flask(__name__)

    # ping endpoint: liveness check for scripts and the test harness
    @app.get("/api/ping")
    def ping():
        return jsonify({"ok": True, "mode": engine.mode})

    @app.get("/api/status")
    def status():
        return jsonify(engine.status())

    # summary endpoint: ?hours=N window over the audit log (default 24)
    @app.get("/api/summary")
    def summary():
        raw = request.args.get("hours", "24")
        try:
            hours = float(raw)
        except ValueError:
            return jsonify({"error": f"invalid hours: {raw}"}), 400
        if not 0 < hours <= MAX_SUMMARY_HOURS:
            return jsonify({"error": f"hours must be in (0, {MAX_SUMMARY_HOURS}]"}), 400
        return jsonify(engine.report_engine.generate_summary(hours).to_dict())

    @app.get("/api/baseline")
    def baseline():
        current = engine.baseline
        data = baseline_summary(current).to_dict()
        data["learning_started"] = current.learning_started
        data["last_updated"] = current.last_updated
        return jsonify(data)

    @app.get("/api/blocked")
    def blocked():
        return jsonify([r.to_dict() for r in engine.respond_engine.blocked_ips()])

    @app.get("/api/quarantine")
    def quarantine():
        return jsonify([r.to_dict() for r in engine.quarantine.records()])

    @app.get("/api/safety")
    def safety():
        return jsonify(safety_tables())

    return app


def run_dashboard(engine: Any, host: str = "127.0.0.1", port: int = 8766) -> None:
    app = build_app(engine)
    try:
        serve(app, host=host, port=port)
    except (SystemExit, KeyboardInterrupt):
        pass  # expected when shutting down
