# Overview: JSON envelope helpers shared by every blueprint.

"""
Every endpoint answers {"success": bool, "data"?: ..., "error"?: str}.
Error payloads may also carry "details" from the raised exception.
"""

from __future__ import annotations

from flask import jsonify, request

from .errors import CommerceError
from .validation import ConflictError, ValidationError


# Exceptions a route translates into a client-facing status code
HANDLED_ERRORS = (CommerceError, ValidationError, ConflictError)


def ok(data=None, status: int = 200):
    body = {"success": True}
    if data is not None:
        body["data"] = data
    return jsonify(body), status


def fail(message: str, status: int = 400, details: dict | None = None):
    body = {"success": False, "error": message}
    if details:
        body["details"] = details
    return jsonify(body), status


def error_response(exc: Exception):
    if isinstance(exc, CommerceError):
        return fail(str(exc), exc.status_code, exc.details)
    if isinstance(exc, ConflictError):
        return fail(str(exc), 409)
    return fail(str(exc), 400)


def json_body() -> dict:
    """Request JSON as a dict; anything else is a 400."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def int_field(payload: dict, name: str, *, required: bool = True, default=None):
    """Pull an integer from a JSON payload, rejecting bools and strings."""
    value = payload.get(name, default)
    if value is None:
        if required:
            raise ValidationError(f"{name} is required")
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    return value
