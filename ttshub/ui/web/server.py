"""
Web control server — Flask app factory.

Creates the Flask application that exposes the hub's operator actions
as a JSON API plus an SSE log stream.  The hub is built once per app
and stored on ``app.extensions["ttshub"]``.
"""

from __future__ import annotations

import logging

from flask import Flask, jsonify

from ttshub.core.errors import ErrorKind, HubError
from ttshub.core.use_cases.hub import Hub

logger = logging.getLogger(__name__)

# HTTP status per error kind; anything unlisted is a 400.
_STATUS_FOR_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_TARGET: 404,
    ErrorKind.TRANSITION_REJECTED: 409,
    ErrorKind.READINESS_TIMEOUT: 504,
    ErrorKind.NETWORK_ERROR: 504,
}


def status_for(error: HubError) -> int:
    return _STATUS_FOR_KIND.get(error.kind, 400)


def create_app(hub: Hub) -> Flask:
    """Create and configure the Flask application around ``hub``."""
    app = Flask(__name__)
    app.extensions["ttshub"] = hub
    app.config["MOCK_MODE"] = hub.runner.name == "mock"

    from ttshub.ui.web.routes_api import api_bp
    from ttshub.ui.web.routes_events import events_bp

    app.register_blueprint(api_bp, url_prefix="/api")
    app.register_blueprint(events_bp, url_prefix="/api")

    @app.errorhandler(HubError)
    def _hub_error(e: HubError):  # type: ignore[no-untyped-def]
        return jsonify(e.to_dict()), status_for(e)

    logger.info("Web control app created (runner=%s)", hub.runner.name)
    return app


def run_server(
    app: Flask,
    host: str = "127.0.0.1",
    port: int = 8000,
    debug: bool = False,
) -> None:
    """Run the Flask development server (threaded, for SSE)."""
    logger.info("Starting web control on %s:%d", host, port)
    app.run(host=host, port=port, debug=debug, use_reloader=False, threaded=True)
