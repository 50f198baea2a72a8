"""
Permission Decorators — JWT-aware RBAC decorators for route protection.

Usage:
    @bp.route("/payments", methods=["POST"])
    @require_permission("payments", "create")
    def create_payment():
        ...

    @bp.route("/reports", methods=["GET"])
    @require_any_permission(("payments", "view"), ("prefinancing", "view"))
    def reports():
        ...

Every decorator answers 401 when the request carries no valid access token
and 403 when the user lacks the permission.  The checked user is exposed as
``g.current_user``.
"""

import functools
import logging

from flask import g

from grantdesk.services.permission_service import (
    get_user_permissions,
    has_all_permissions,
    has_any_permission,
    has_permission,
)
from grantdesk.utils.errors import E, api_error
from grantdesk.utils.helpers import current_user

logger = logging.getLogger(__name__)


def _authenticated_user():
    user = current_user()
    if user is None or not user.is_active:
        return None
    g.current_user = user
    return user


def login_required(f):
    """Decorator: require a valid access token for an active user."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if _authenticated_user() is None:
            return api_error(E.AUTH, "Authentification requise")
        return f(*args, **kwargs)

    return decorated


def require_permission(module: str, action: str):
    """Decorator: require ``module:action`` (the ``all`` wildcard counts)."""

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = _authenticated_user()
            if user is None:
                return api_error(E.AUTH, "Authentification requise")

            if not has_permission(get_user_permissions(user.id), module, action):
                logger.warning(
                    "User %d denied: missing permission '%s:%s' on %s",
                    user.id, module, action, f.__name__,
                    extra={"event_type": "permission_denied"},
                )
                return api_error(
                    E.FORBIDDEN,
                    "Vous n'êtes pas autorisé à effectuer cette action",
                    details={"module": module, "action": action},
                )
            return f(*args, **kwargs)
        return decorated
    return decorator


def require_any_permission(*checks: tuple[str, str]):
    """Decorator: require at least ONE of the listed (module, action) pairs."""

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = _authenticated_user()
            if user is None:
                return api_error(E.AUTH, "Authentification requise")

            if not has_any_permission(get_user_permissions(user.id), checks):
                logger.warning(
                    "User %d denied: missing any of %s on %s",
                    user.id, checks, f.__name__,
                    extra={"event_type": "permission_denied"},
                )
                return api_error(E.FORBIDDEN, "Vous n'êtes pas autorisé à effectuer cette action")
            return f(*args, **kwargs)
        return decorated
    return decorator


def require_all_permissions(*checks: tuple[str, str]):
    """Decorator: require ALL of the listed (module, action) pairs."""

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = _authenticated_user()
            if user is None:
                return api_error(E.AUTH, "Authentification requise")

            if not has_all_permissions(get_user_permissions(user.id), checks):
                logger.warning(
                    "User %d denied: missing all of %s on %s",
                    user.id, checks, f.__name__,
                    extra={"event_type": "permission_denied"},
                )
                return api_error(E.FORBIDDEN, "Vous n'êtes pas autorisé à effectuer cette action")
            return f(*args, **kwargs)
        return decorated
    return decorator
