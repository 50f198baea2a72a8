"""
Session bootstrap — load the signed-in user's profile and role with bounded waits.

Profile load is bounded by PROFILE_LOAD_TIMEOUT (default 10 s) and role load
by ROLE_LOAD_TIMEOUT (default 5 s).  A slow profile load leaves the session
without a profile; a slow or missing role falls back to the built-in role
with the same code, and to no permissions at all when even that is unknown.
Bootstrap never hangs and never grants more than the fallback role allows.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from grantdesk.models import db
from grantdesk.models.auth import Role, User
from grantdesk.services.permission_service import DEFAULT_ROLES_BY_CODE, normalize

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_TIMEOUT = 10.0
DEFAULT_ROLE_TIMEOUT = 5.0

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="session-bootstrap")


@dataclass
class BootstrapResult:
    user_id: int
    profile: Optional[dict] = None
    role: Optional[dict] = None
    permissions: dict = field(default_factory=dict)
    profile_timed_out: bool = False
    role_fallback: bool = False

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "profile": self.profile,
            "role": self.role,
            "permissions": {m: sorted(a) for m, a in self.permissions.items()},
            "profile_timed_out": self.profile_timed_out,
            "role_fallback": self.role_fallback,
        }


# ── default loaders ──────────────────────────────────────────────────────


def load_profile(user_id: int) -> Optional[dict]:
    user = db.session.get(User, user_id)
    return user.to_dict() if user else None


def load_role(role_id: int) -> Optional[dict]:
    role = db.session.get(Role, role_id)
    return role.to_dict() if role else None


def _in_app_context(app, fn, *args):
    with app.app_context():
        try:
            return fn(*args)
        finally:
            db.session.remove()


def _bounded(app, fn, arg, timeout: float, label: str):
    """Run ``fn(arg)`` in a worker; returns (value, timed_out)."""
    future = _executor.submit(_in_app_context, app, fn, arg)
    try:
        return future.result(timeout=timeout), False
    except FutureTimeout:
        future.cancel()
        logger.warning("%s load exceeded %.1fs, using fallback", label, timeout)
        return None, True
    except SQLAlchemyError:
        logger.exception("%s load failed, using fallback", label)
        return None, False


def fallback_role(role_code: Optional[str]) -> Optional[dict]:
    definition = DEFAULT_ROLES_BY_CODE.get((role_code or "").upper())
    if definition is None:
        return None
    return {**definition, "id": None, "is_active": True}


def bootstrap_session(
    user_id: int,
    role_code: Optional[str] = None,
    *,
    profile_loader: Callable[[int], Optional[dict]] = load_profile,
    role_loader: Callable[[int], Optional[dict]] = load_role,
) -> BootstrapResult:
    """Resolve profile, role and permission map for a freshly signed-in user.

    ``role_code`` (usually the access-token claim) picks the fallback role
    when the stored role can't be read in time.
    """
    app = current_app._get_current_object()
    profile_timeout = float(app.config.get("PROFILE_LOAD_TIMEOUT", DEFAULT_PROFILE_TIMEOUT))
    role_timeout = float(app.config.get("ROLE_LOAD_TIMEOUT", DEFAULT_ROLE_TIMEOUT))

    result = BootstrapResult(user_id=user_id)
    profile, result.profile_timed_out = _bounded(app, profile_loader, user_id, profile_timeout, "Profile")
    result.profile = profile

    role = None
    if profile and profile.get("role_id") is not None:
        role, _ = _bounded(app, role_loader, profile["role_id"], role_timeout, "Role")
    if role is None:
        role = fallback_role(role_code)
        result.role_fallback = True
        logger.info(
            "Using fallback role %s for user %s", role["code"] if role else None, user_id,
            extra={"event_type": "role_fallback"},
        )
    result.role = role

    if profile and not profile.get("is_active", True):
        result.permissions = {}
    elif role and role.get("is_active", True):
        result.permissions = normalize(role.get("permissions"))

    if profile is not None:
        _touch_last_login(user_id)
    return result


def _touch_last_login(user_id: int) -> None:
    """Best-effort last_login update; failure never blocks sign-in."""
    try:
        User.query.filter_by(id=user_id).update({"last_login": datetime.now(timezone.utc)})
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("Could not update last_login for user %s", user_id)
