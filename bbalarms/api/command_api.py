from __future__ import annotations

import logging
import os
from functools import wraps
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, request

from bbalarms.services.commands import AlarmCommands

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "AlarmNotFoundError": 404,
    "InvalidAlarmArgumentError": 400,
    "UnknownCommandError": 400,
    "InvalidAlarmTransitionError": 409,
    "AlarmTestError": 409,
    "DuplicateAlarmError": 409,
}


def load_api_token(env_var: str = "ALARMS_API_TOKEN", env_file: Optional[Path] = None) -> Optional[str]:
    """
    Read the API bearer token, loading a ``.env`` file first if present.

    The ``.env`` next to the working directory (or `env_file`) stays editable
    in production; real environment variables take precedence.
    """
    load_dotenv(env_file or Path.cwd() / ".env")
    return os.getenv(env_var) or None


def create_app(commands: AlarmCommands, token: Optional[str] = None) -> Flask:
    """
    Build the HTTP command surface.

    Routes
    ------
    - ``POST /command``: body ``{"command": ..., "args": [...], "sender": ...}``
    - ``GET /alarms``: same as the ``list-alarms`` command
    - ``GET /status``: same as the ``alarm-status`` command
    - ``GET /status/<alarm_id>``: ``alarm-status <alarm_id>``, 404 for an unknown id
    - ``GET /health``: liveness, no auth

    Parameters
    ----------
    commands
        Command dispatcher.
    token
        Expected bearer token. ``None`` disables authentication (local use).
    """
    app = Flask(__name__)

    def require_bearer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if token is None:
                return fn(*args, **kwargs)

            auth = request.headers.get("Authorization", "")
            if auth.startswith("Bearer "):
                if auth.removeprefix("Bearer ").strip() == token:
                    return fn(*args, **kwargs)
                return jsonify({"error": "invalid token"}), 403

            return jsonify({"error": "unauthorized"}), 401
        return wrapper

    def _reply(resp):
        status = 200 if resp.ok else ERROR_STATUS.get(resp.error or "", 400)
        return jsonify(resp.to_dict()), status

    def _bad_request(message: str):
        return jsonify({"ok": False, "error": "InvalidAlarmArgumentError", "message": message}), 400

    @app.post("/command")
    @require_bearer
    def command():
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return _bad_request("Body must be a JSON object")
        name = data.get("command")
        if not name:
            return _bad_request("Missing command")
        args = data.get("args") or []
        if not isinstance(args, list):
            args = [args]
        sender = data.get("sender") or request.remote_addr
        return _reply(commands.handle(str(name), args, sender))

    @app.get("/alarms")
    @require_bearer
    def alarms():
        return _reply(commands.handle("list-alarms", [], request.remote_addr))

    @app.get("/status")
    @require_bearer
    def status():
        return _reply(commands.handle("alarm-status", [], request.remote_addr))

    @app.get("/status/<alarm_id>")
    @require_bearer
    def alarm_status(alarm_id: str):
        return _reply(commands.handle("alarm-status", [alarm_id], request.remote_addr))

    @app.get("/health")
    def health():
        return jsonify({"status": "ok"}), 200

    return app
