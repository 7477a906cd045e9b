"""JSON error bodies shared by every blueprint.

Body shape: ``{"error": <human message>, "code": <E.* constant>, "details": {...}?}``

    from crm.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Chain rule not found.")
    return api_error(E.TOKEN_EXPIRED, "Token expired")
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Machine-readable error codes."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    TOKEN_REQUIRED = "TOKEN_REQUIRED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_INVALID = "TOKEN_INVALID"
    USER_INACTIVE = "USER_INACTIVE"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    FORBIDDEN = "ERR_FORBIDDEN"

    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    INTERNAL = "ERR_INTERNAL"


# Missing or expired tokens are 401; a token that is present but unusable is 403.
_STATUS_GROUPS = {
    400: (E.VALIDATION_REQUIRED, E.VALIDATION_INVALID),
    401: (E.TOKEN_REQUIRED, E.TOKEN_EXPIRED, E.USER_INACTIVE, E.INVALID_CREDENTIALS),
    403: (E.TOKEN_INVALID, E.FORBIDDEN),
    404: (E.NOT_FOUND,),
    409: (E.CONFLICT_DUPLICATE,),
    500: (E.INTERNAL,),
}
STATUS_BY_CODE: dict[str, int] = {
    code: status for status, codes in _STATUS_GROUPS.items() for code in codes
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build a ``(response, status)`` pair for a Flask view.

    Args:
        code: One of the ``E`` constants.
        message: Text safe to show to the client.
        status: Overrides the status derived from ``code`` (400 for unknown codes).
        details: Optional structured payload, omitted when empty.
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or STATUS_BY_CODE.get(code, 400)
