"""
CRM Field Automation Backend
Blueprint registry helpers.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from crm.core.exceptions import ConflictError, NotFoundError, ValidationError
from crm.models import db
from crm.utils.errors import E, api_error


def json_body() -> dict:
    """Return the request's JSON object; anything else is a validation error."""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def register_error_handlers(bp, logger: logging.Logger) -> None:
    """Map the service exception types to JSON responses for every route of ``bp``."""

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, error.message, details=error.details)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={error.field: error.value})

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return {"error": error.description}, error.code
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
