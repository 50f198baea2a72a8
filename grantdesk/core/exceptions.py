"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
(see ``grantdesk.utils.errors.register_error_handlers``) and every operation
boundary returns the same JSON envelope and HTTP status for the same failure.

Usage:
    from grantdesk.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Payment", resource_id=42)
    raise ValidationError("Le montant est obligatoire", details={"amount": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Payment", "Grant").
        resource_id: The PK that was looked up. Included in logs and message.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Covers missing required fields, malformed numbers, amounts out of range
    and repayments exceeding the remaining balance. Nothing is persisted when
    this is raised.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class PermissionDeniedError(Exception):
    """Raised when an action is attempted without role or profession authority.

    Maps to HTTP 403. Never partially applied.

    Args:
        message: Explanation shown to the user.
        module: Permission module that was checked, when relevant.
        action: Permission action that was checked, when relevant.
        reason: Machine-readable refusal reason (signature decisions).
    """

    def __init__(
        self,
        message: str = "Vous n'êtes pas autorisé à effectuer cette action",
        module: str | None = None,
        action: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.module = module
        self.action = action
        self.reason = reason
        super().__init__(message)


class SignatureOrderError(PermissionDeniedError):
    """Raised when the final approval is attempted before the prior signatures.

    Kept distinct from a plain authorization failure so callers can tell the
    user that the Grant Coordinator and Accountant must sign first.
    """

    def __init__(
        self,
        message: str = "Les signatures précédentes sont manquantes",
        reason: str = "prior_signatures_missing",
    ) -> None:
        super().__init__(message, action="sign", reason=reason)


class ConflictError(Exception):
    """Raised when a record changed since the caller last read it.

    Used for signature writes guarded by the record ``version`` column.
    Maps to HTTP 409; the client must re-fetch before retrying.

    Args:
        resource: Model name.
        resource_id: PK of the record.
        expected_version: Version the caller read.
        actual_version: Version found in the store, if known.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"{resource} id={resource_id} was modified by someone else "
            f"(expected version {expected_version}, found {actual_version})"
        )


class BackendError(Exception):
    """Raised when the data-access layer fails.

    Known constraint violations carry a readable message (duplicate account
    number, duplicate email); unknown failures keep the raw driver message.

    Args:
        message: User-readable explanation.
        constraint: Name of the violated constraint, when known.
        status_code: HTTP status for the response (409 for constraints, 502 otherwise).
    """

    def __init__(self, message: str, constraint: str | None = None, status_code: int = 502) -> None:
        self.constraint = constraint
        self.status_code = status_code
        super().__init__(message)


class AuthError(Exception):
    """Raised for invalid credentials or an expired/invalid recovery token.

    Maps to HTTP 401 (or the explicit ``status_code``).
    """

    def __init__(self, message: str, status_code: int = 401) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(message)
