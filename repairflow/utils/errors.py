"""JSON error envelopes for the HTTP layer.

Every error body has the same shape::

    {"error": "<human message>", "code": "ERR_...", "details": {...}?}

Usage
-----
    from repairflow.utils.errors import E, api_error, error_for

    return api_error(E.UNAUTHENTICATED, "Unknown user")
    return error_for(exc)          # WorkflowError -> (response, status)
"""

from __future__ import annotations

from flask import jsonify

from repairflow.core.exceptions import WorkflowError


class E:
    """Error codes returned in the ``code`` field."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"
    INTERNAL = "ERR_INTERNAL"


HTTP_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHENTICATED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.INTERNAL: 500,
}

# WorkflowError.kind -> code
KIND_TO_CODE: dict[str, str] = {
    "validation": E.VALIDATION_INVALID,
    "forbidden": E.FORBIDDEN,
    "not_found": E.NOT_FOUND,
    "conflict": E.CONFLICT_STATE,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(jsonify(body), status)`` for ``code``.

    ``status`` overrides the code's default; unknown codes fall back to 400.
    ``details`` is included only when non-empty.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or HTTP_STATUS.get(code, 400)


def error_for(exc: WorkflowError):
    """Map a workflow error onto its envelope.

    Validation errors carry their field breakdown; conflicts carry the
    issue status that was observed when the check failed.
    """
    details = dict(getattr(exc, "details", None) or {})
    current_status = getattr(exc, "current_status", None)
    if current_status:
        details["current_status"] = current_status
    return api_error(KIND_TO_CODE.get(exc.kind, E.INTERNAL), exc.message, details=details)
