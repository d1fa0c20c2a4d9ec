"""
TestHub UAT Review Engine
Blueprint registry and shared request helpers.
"""

import logging

from flask import jsonify, request
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from testhub.core.exceptions import (
    AccessDeniedError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from testhub.models import db
from testhub.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def json_body() -> dict:
    """Request JSON body as a dict; anything else is a validation error."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def register_error_handlers(bp):
    """Map service-layer exceptions to JSON responses for every route of ``bp``.

    Each handler rolls back first: a request that failed half way never
    leaves flushed rows behind for the next request on the same session.
    """

    @bp.errorhandler(AccessDeniedError)
    def _handle_access_denied(error: AccessDeniedError):
        db.session.rollback()
        return api_error(E.ACCESS_DENIED, AccessDeniedError.public_message)

    @bp.errorhandler(PermissionDeniedError)
    def _handle_permission(error: PermissionDeniedError):
        db.session.rollback()
        return api_error(E.FORBIDDEN, str(error), details={"capability": error.capability})

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        db.session.rollback()
        logger.info("Not found: %s", error)
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        db.session.rollback()
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, f"{error.resource} with this {error.field} already exists",
                         details={"field": error.field})

    @bp.errorhandler(InvalidStateError)
    def _handle_invalid_state(error: InvalidStateError):
        db.session.rollback()
        details = {"current_state": error.current_state} if error.current_state else None
        return api_error(E.CONFLICT_STATE, str(error), details=details)

    @bp.errorhandler(IntegrityError)
    def _handle_integrity(error: IntegrityError):
        db.session.rollback()
        logger.warning("Integrity error in %s: %s", request.endpoint, error.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description}), error.code
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
