"""
JSON response envelope: {success, message, data}
"""
from flask import current_app, jsonify


def json_response(data=None, message="", status=200, **extra):
    body = {"success": 200 <= status < 400, "message": message, "data": data}
    body.update(extra)
    return jsonify(body), status


def error_response(message, status=400, error=None, **extra):
    """Failure envelope; the exception text is only exposed when DEBUG is on"""
    body = {"success": False, "message": message}
    if error is not None and current_app.config.get("DEBUG"):
        body["error"] = f"{type(error).__name__}: {error}"
    body.update(extra)
    return jsonify(body), status


def paginate_args(request, default_limit=10, max_limit=100):
    try:
        page = max(int(request.args.get("page", 1)), 1)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = min(max(int(request.args.get("limit", default_limit)), 1), max_limit)
    except (TypeError, ValueError):
        limit = default_limit
    return page, limit


def pagination_meta(page, limit, total):
    return {
        "currentPage": page,
        "totalPages": (total + limit - 1) // limit if limit else 0,
        "totalItems": total,
        "itemsPerPage": limit,
        "hasNextPage": page * limit < total,
        "hasPrevPage": page > 1,
    }
