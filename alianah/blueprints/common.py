from __future__ import annotations

from typing import Any, Dict, Optional

from flask import jsonify, request
from werkzeug.exceptions import BadRequest


def json_response(payload: Dict[str, Any], status: int = 200):
    resp = jsonify(payload)
    resp.status_code = int(status)
    resp.headers.setdefault("Cache-Control", "no-store, no-cache, must-revalidate, max-age=0")
    resp.headers.setdefault("Pragma", "no-cache")
    resp.headers.setdefault("Expires", "0")
    return resp


def json_error(message: str, status: int, extra: Optional[Dict[str, Any]] = None):
    body: Dict[str, Any] = {"error": message}
    if extra:
        body.update(extra)
    return json_response(body, status)


def request_json() -> Dict[str, Any]:
    """JSON object body, or BadRequest (400) for anything else."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise BadRequest("Request body must be a JSON object")
    return data
