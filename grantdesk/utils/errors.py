"""Standardised API error responses.

Usage
-----
    from grantdesk.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Payment not found")
    return api_error(E.VALIDATION_REQUIRED, "amount is required")

Blueprints call ``register_error_handlers(bp)`` once so every domain
exception leaves the API as the same ``{"error", "code"}`` envelope.
"""

from __future__ import annotations

import logging

from flask import jsonify, request

from grantdesk.core.exceptions import (
    AuthError,
    BackendError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    SignatureOrderError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_RULE = "ERR_VALIDATION_RULE"

    # Auth – HTTP 401
    AUTH = "ERR_AUTH"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_VERSION = "ERR_CONFLICT_VERSION"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"
    SIGNATURE_ORDER = "ERR_SIGNATURE_ORDER"

    # Server – HTTP 500 / 502
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.AUTH: 401,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_VERSION: 409,
    E.FORBIDDEN: 403,
    E.SIGNATURE_ORDER: 403,
    E.DATABASE: 502,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for the UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Field-level breakdown.

    Returns
    -------
    tuple[Response, int]
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(bp) -> None:
    """Attach the domain-exception → JSON handlers to a blueprint."""

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(SignatureOrderError)
    def _handle_signature_order(error: SignatureOrderError):
        return api_error(E.SIGNATURE_ORDER, str(error), details={"reason": error.reason})

    @bp.errorhandler(PermissionDeniedError)
    def _handle_forbidden(error: PermissionDeniedError):
        details = {"module": error.module, "action": error.action} if error.module else {}
        if error.reason:
            details["reason"] = error.reason
        return api_error(E.FORBIDDEN, str(error), details=details or None)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(
            E.CONFLICT_VERSION,
            str(error),
            details={"expected_version": error.expected_version, "actual_version": error.actual_version},
        )

    @bp.errorhandler(AuthError)
    def _handle_auth(error: AuthError):
        return api_error(E.AUTH, error.message, status=error.status_code)

    @bp.errorhandler(BackendError)
    def _handle_backend(error: BackendError):
        code = E.CONFLICT_DUPLICATE if error.constraint else E.DATABASE
        if error.status_code >= 500:
            logger.error("Backend error on %s: %s", request.endpoint, error)
        return api_error(code, str(error), status=error.status_code)
