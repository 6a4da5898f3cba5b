# Overview: Shared JSON error translation for blueprints.

from flask import current_app, jsonify, request

from ..validation import PersistenceError, PosError


def error_response(exc: PosError):
    """Business errors keep their message; persistence errors never leak internals."""
    if isinstance(exc, PersistenceError):
        return jsonify({"error": "Internal server error"}), exc.status_code
    body = {"error": str(exc)}
    if exc.details:
        body["details"] = exc.details
    return jsonify(body), exc.status_code


def internal_error(message: str):
    current_app.logger.exception("%s (%s %s)", message, request.method, request.path)
    return jsonify({"error": "Internal server error"}), 500


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
