"""Shared Flask JSON response helpers."""

from flask import jsonify


def ok_response(payload=None):
    """Return ``{"ok": true, ...payload}``."""
    body = {"ok": True}
    if payload:
        body.update(payload)
    return jsonify(body)


def error_response(error, message, status_code):
    """Return the standard ``{"ok": false, "error", "message"}`` body."""
    return jsonify({"ok": False, "error": error, "message": message}), status_code


def unauthorized_response():
    return error_response("unauthorized", "Unauthorized", 401)


def access_denied_response():
    return error_response("access_denied", "Access Denied", 403)


def not_found_response(message="Not found."):
    return error_response("not_found", message, 404)


def internal_error_response():
    """Return generic internal-error response payload."""
    return error_response("internal_error", "Internal server error.", 500)
