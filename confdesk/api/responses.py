"""JSON envelope helpers shared by the API blueprints."""
from typing import Any, Dict, Optional

from flask import jsonify, request

from confdesk.utils.exceptions import ValidationError


def ok(data: Any = None, message: str = "OK", status: int = 200):
    return jsonify({"success": True, "message": message, "data": data}), status


def fail(message: str, status: int):
    return jsonify({"success": False, "message": message}), status


def json_body() -> Dict[str, Any]:
    """Request JSON object; raises ValidationError if the body is not one."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def require_fields(data: Dict[str, Any], *names: str) -> None:
    missing = [name for name in names if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")


def page_args(default_limit: int = 50, max_limit: int = 200) -> Dict[str, int]:
    """skip/limit from the query string, clamped."""
    skip = max(request.args.get("skip", 0, type=int), 0)
    limit = min(max(request.args.get("limit", default_limit, type=int), 1), max_limit)
    return {"skip": skip, "limit": limit}


def arg(name: str) -> Optional[str]:
    value = request.args.get(name)
    return value.strip() if value and value.strip() else None
