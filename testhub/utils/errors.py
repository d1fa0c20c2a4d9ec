"""JSON error envelope shared by every blueprint.

Every error the API returns has the same body::

    {"error": "<message>", "code": "ERR_...", "details": {...}}

``details`` is omitted when empty.  Views return ``api_error(...)``
directly; service exceptions are turned into the same shape by
``testhub.blueprints.register_error_handlers``.
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes, ERR_-prefixed, stable across releases."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"   # malformed request
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"     # business rule

    NOT_FOUND = "ERR_NOT_FOUND"
    ACCESS_DENIED = "ERR_ACCESS_DENIED"               # token did not resolve

    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    FORBIDDEN = "ERR_FORBIDDEN"

    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"

    # A refused token looks exactly like a missing page
    HTTP_STATUS: dict[str, int] = {
        VALIDATION_REQUIRED: 400,
        VALIDATION_INVALID: 422,
        NOT_FOUND: 404,
        ACCESS_DENIED: 404,
        CONFLICT_DUPLICATE: 409,
        CONFLICT_STATE: 409,
        FORBIDDEN: 403,
        DATABASE: 500,
        INTERNAL: 500,
    }


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for a Flask view.

    The status defaults to the one registered for ``code`` in
    ``E.HTTP_STATUS`` and to 400 for unregistered codes.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or E.HTTP_STATUS.get(code, 400)
