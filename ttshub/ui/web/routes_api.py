"""
API routes — JSON endpoints for every operator action.

All endpoints live under /api/.  Failures raise ``HubError`` and are
turned into ``{"error", "kind", "log_tail"}`` by the app's error
handler (see server.py).

Long operations (pipeline run, service start) return immediately; the
client follows progress on the SSE stream and polls the status routes.
"""

from __future__ import annotations

import logging
import threading

from flask import Blueprint, current_app, jsonify, request

from ttshub.core.errors import ConfigError, HubError, TransitionRejected
from ttshub.core.use_cases.hub import Hub

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)


def _hub() -> Hub:
    return current_app.extensions["ttshub"]


def _dump(model) -> dict:  # type: ignore[no-untyped-def]
    return model.model_dump(mode="json")


# ── Snapshot & settings ─────────────────────────────────────────


@api_bp.route("/snapshot")
def api_snapshot():  # type: ignore[no-untyped-def]
    return jsonify(_dump(_hub().snapshot()))


@api_bp.route("/settings", methods=["POST"])
def api_settings():  # type: ignore[no-untyped-def]
    """Update operator settings.  Body: ``{"port": 7861, ...}``."""
    changes = request.get_json(silent=True)
    if not isinstance(changes, dict) or not changes:
        raise ConfigError("Expected a JSON object of settings")
    snapshot = _hub().update_settings(**changes)
    return jsonify(_dump(snapshot))


@api_bp.route("/env")
def api_env():  # type: ignore[no-untyped-def]
    return jsonify(_dump(_hub().check_environment()))


# ── Pipeline ────────────────────────────────────────────────────


@api_bp.route("/pipeline/steps")
def api_pipeline_steps():  # type: ignore[no-untyped-def]
    hub = _hub()
    outcomes = hub.snapshot().steps
    return jsonify({
        "running": hub.pipeline_running,
        "steps": [
            {
                "id": step.id,
                "label": step.label,
                "outcome": _dump(outcomes[step.id]) if step.id in outcomes else None,
            }
            for step in hub.executor.steps
        ],
    })


@api_bp.route("/pipeline/status")
def api_pipeline_status():  # type: ignore[no-untyped-def]
    hub = _hub()
    snap = hub.snapshot()
    return jsonify({
        "running": hub.pipeline_running,
        "last_run": _dump(snap.last_run),
        "steps": {k: _dump(v) for k, v in snap.steps.items()},
    })


def _run_pipeline_in_background(hub: Hub) -> None:
    try:
        hub.run_pipeline()
    except HubError as e:
        logger.warning("Background pipeline run rejected: %s", e.message)
    except Exception:
        logger.exception("Background pipeline run crashed")


@api_bp.route("/pipeline/run", methods=["POST"])
def api_pipeline_run():  # type: ignore[no-untyped-def]
    """Start a run in the background.  409 if one is in progress."""
    hub = _hub()
    if hub.pipeline_running:
        raise TransitionRejected("A pipeline run is already in progress")

    if request.args.get("wait") in ("1", "true"):
        report = hub.run_pipeline()
        return jsonify(_dump(report)), 200 if report.ok else 500

    thread = threading.Thread(
        target=_run_pipeline_in_background,
        args=(hub,),
        name="pipeline-run",
        daemon=True,
    )
    thread.start()
    return jsonify({"started": True}), 202


@api_bp.route("/pipeline/abort", methods=["POST"])
def api_pipeline_abort():  # type: ignore[no-untyped-def]
    return jsonify({"aborting": _hub().abort_pipeline()})


# ── Service ─────────────────────────────────────────────────────


@api_bp.route("/service/status")
def api_service_status():  # type: ignore[no-untyped-def]
    return jsonify(_dump(_hub().service_status()))


@api_bp.route("/service/start", methods=["POST"])
def api_service_start():  # type: ignore[no-untyped-def]
    return jsonify(_dump(_hub().start_service())), 202


@api_bp.route("/service/stop", methods=["POST"])
def api_service_stop():  # type: ignore[no-untyped-def]
    return jsonify(_dump(_hub().stop_service()))


# ── Updates ─────────────────────────────────────────────────────


@api_bp.route("/update/check", methods=["POST"])
def api_update_check():  # type: ignore[no-untyped-def]
    return jsonify(_dump(_hub().check_update()))


@api_bp.route("/update/pull", methods=["POST"])
def api_update_pull():  # type: ignore[no-untyped-def]
    return jsonify(_dump(_hub().pull_update()))


# ── Logs ────────────────────────────────────────────────────────


@api_bp.route("/logs")
def api_logs():  # type: ignore[no-untyped-def]
    """Retained log lines.  Query: ``tag``, ``limit``."""
    lines = _hub().bus.history(
        source_tag=request.args.get("tag") or None,
        limit=request.args.get("limit", type=int),
    )
    return jsonify({"lines": [_dump(line) for line in lines]})


@api_bp.route("/logs/clear", methods=["POST"])
def api_logs_clear():  # type: ignore[no-untyped-def]
    return jsonify({"cleared": _hub().clear_logs()})


@api_bp.route("/history")
def api_history():  # type: ignore[no-untyped-def]
    entries = _hub().ledger.read_recent(
        request.args.get("n", 20, type=int),
        kind=request.args.get("kind") or None,
    )
    return jsonify({"entries": [_dump(e) for e in entries]})
