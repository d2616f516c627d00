"""
HTTP transport for the notebook control protocol using Flask.
"""

import logging
import sys
from typing import Optional

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

from notebook_ctl.config import ServerSettings
from notebook_ctl.dispatcher import OPERATIONS, Dispatcher
from notebook_ctl.errors import BackendExecutionError, ControlError, ProtocolError

logger = logging.getLogger(__name__)

SESSION_HEADER = "Notebook-Session-Id"

EXPORT_TYPES = {
    "export_html": ("text/html", ".html"),
    "export_markdown": ("text/markdown", ".md"),
}


def create_app(dispatcher: Dispatcher) -> Flask:
    """
    Build the Flask application serving ``dispatcher``.

    Routes:
        POST /api/<name>            run an operation (session id in header)
        GET /api/results/<id>       poll (or wait with ?timeout=) for a result
        DELETE /api/results/<id>    stop tracking a result
    """
    app = Flask(__name__)
    app.extensions["notebook_ctl"] = dispatcher

    # ------------------------------------------------------------------ #
    # Errors
    # ------------------------------------------------------------------ #

    @app.errorhandler(ControlError)
    def handle_control_error(e: ControlError):
        if e.status >= 500:
            logger.error("%s: %s", e.code, e.message)
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        if isinstance(e, HTTPException):
            return e
        logger.exception("Unhandled error in %s", request.path)
        error = BackendExecutionError(f"{type(e).__name__}: {e}")
        return jsonify(error.to_dict()), error.status

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _export_response(name: str, body: str, payload: dict, session_id: str) -> Response:
        mimetype, suffix = EXPORT_TYPES[name]
        response = Response(body, mimetype=mimetype)
        if payload.get("download"):
            path = dispatcher.sessions.get(session_id).path
            filename = (path.stem if path else "notebook") + suffix
            response.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
        return response

    # ------------------------------------------------------------------ #
    # Routes
    # ------------------------------------------------------------------ #

    @app.route("/api/operations", methods=["GET"])
    def api_operations():
        return jsonify({
            "operations": [
                {"name": op.name, "session": op.session} for op in OPERATIONS.values()
            ]
        })

    @app.route("/api/results/<request_id>", methods=["GET"])
    def api_result(request_id: str):
        timeout = request.args.get("timeout", type=float)
        if timeout:
            result = dispatcher.results.wait(request_id, timeout=timeout)
        else:
            result = dispatcher.results.poll(request_id)
        if result is None:
            return jsonify({"pending": True}), 202
        return jsonify(result)

    @app.route("/api/results/<request_id>", methods=["DELETE"])
    def api_result_abandon(request_id: str):
        dispatcher.results.abandon(request_id)
        return "", 204

    @app.route("/api/<name>", methods=["POST"])
    def api_dispatch(name: str):
        payload = request.get_json(force=True, silent=True)
        if payload is None and request.get_data():
            raise ProtocolError("Request body must be JSON")
        session_id = request.headers.get(SESSION_HEADER)

        result = dispatcher.dispatch(name, payload, session_id=session_id)
        if name in EXPORT_TYPES:
            return _export_response(name, result, payload or {}, session_id)
        return jsonify(result)

    return app


def launch_web(settings: Optional[ServerSettings] = None):
    """
    Serve the control protocol over HTTP until interrupted.

    Args:
        settings: Server settings; read from the environment if omitted
    """
    settings = settings or ServerSettings.from_env()
    dispatcher = Dispatcher(settings)
    app = create_app(dispatcher)
    logger.info("Serving %s on http://%s:%d", settings.root, settings.host, settings.port)

    # Temporarily clear sys.ps1 so Flask doesn't think we're in an
    # interactive REPL (IPython's InteractiveShell sets sys.ps1).
    _ps1 = getattr(sys, "ps1", None)
    _had_ps1 = hasattr(sys, "ps1")
    if _had_ps1:
        del sys.ps1
    try:
        app.run(host=settings.host, port=settings.port, debug=False, threaded=True)
    finally:
        if _had_ps1:
            sys.ps1 = _ps1
        dispatcher.close()
