"""
User Service — user and role administration.

Rules:
  - creating a user needs ``users:create``
  - a user may edit their own profile; editing someone else needs
    ``users:edit``, and so does changing anyone's role or active flag
  - deleting needs ``users:delete`` and a user can never delete themself
  - roles are managed with ``users:*`` too; a role still assigned to users
    can't be deleted
"""

import logging

from grantdesk.core.exceptions import NotFoundError, ValidationError
from grantdesk.models import db
from grantdesk.models.auth import Role, User
from grantdesk.services.auth_service import normalize_email, validate_password
from grantdesk.services.listing import filter_records, paginate, sort_records
from grantdesk.services.permission_service import (
    ensure_permission,
    invalidate_all_cache,
    invalidate_cache,
    validate_permissions,
)
from grantdesk.services.repository import Repository
from grantdesk.utils.crypto import generate_temporary_password, hash_password

logger = logging.getLogger(__name__)

users = Repository(User)
roles = Repository(Role)

PROFILE_FIELDS = ("first_name", "last_name", "profession", "employee_id")
ADMIN_FIELDS = ("role_id", "is_active")
USER_SEARCH_FIELDS = ("email", "first_name", "last_name", "profession", "employee_id")


def _require(actor: User, action: str) -> None:
    ensure_permission(actor, "users", action)


def _role_or_error(role_id) -> Role:
    try:
        return roles.get(int(role_id))
    except (TypeError, ValueError):
        raise ValidationError("role_id invalide", details={"role_id": "invalid"}) from None
    except NotFoundError:
        raise ValidationError("Rôle introuvable", details={"role_id": "unknown"}) from None


def _clean_optional(value):
    value = (value or "").strip() if isinstance(value, str) else value
    return value or None


# ═══════════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════════
def list_users(actor: User, *, search=None, role_id=None, is_active=None,
               sort="last_name", direction="asc", page=1, page_size=20) -> dict:
    _require(actor, "view")
    rows = users.get_all(role_id=role_id, is_active=is_active)
    rows = filter_records(rows, search_term=search, search_fields=USER_SEARCH_FIELDS)
    rows = sort_records(rows, sort, direction, date_fields=("created_at", "last_login"))
    return paginate(rows, page, page_size)


def get_user(actor: User, user_id: int) -> User:
    if actor.id != user_id:
        _require(actor, "view")
    return users.get(user_id)


def create_user(actor: User, data: dict) -> tuple[User, str | None]:
    """Create an account on behalf of an administrator.

    Returns (user, temporary_password); the temporary password is None when
    the caller supplied one.
    """
    _require(actor, "create")
    email = normalize_email(data.get("email"))
    if not data.get("role_id"):
        raise ValidationError("Le rôle est obligatoire", details={"role_id": "required"})
    role = _role_or_error(data["role_id"])

    password = data.get("password")
    temporary = None
    if password:
        validate_password(password)
    else:
        password = temporary = generate_temporary_password()

    values = {
        "email": email,
        "password_hash": hash_password(password),
        "first_name": (data.get("first_name") or "").strip(),
        "last_name": (data.get("last_name") or "").strip(),
        "profession": _clean_optional(data.get("profession")),
        "employee_id": _clean_optional(data.get("employee_id")),
        "role_id": role.id,
        "is_active": bool(data.get("is_active", True)),
        "created_by": actor.id,
    }
    user = users.create(values)
    db.session.commit()
    logger.info("User %s created by %s", user.id, actor.id, extra={"event_type": "user_created"})
    return user, temporary


def update_user(actor: User, user_id: int, data: dict) -> User:
    user = users.get(user_id)
    is_self = actor.id == user.id
    if not is_self:
        _require(actor, "edit")

    values = {}
    for key in PROFILE_FIELDS:
        if key in data:
            values[key] = _clean_optional(data[key]) if key in ("profession", "employee_id") \
                else (data[key] or "").strip()
    if "email" in data:
        values["email"] = normalize_email(data["email"])

    admin_changes = {k: data[k] for k in ADMIN_FIELDS if k in data}
    if admin_changes:
        _require(actor, "edit")
        if "role_id" in admin_changes:
            values["role_id"] = _role_or_error(admin_changes["role_id"]).id
        if "is_active" in admin_changes:
            if is_self and not admin_changes["is_active"]:
                raise ValidationError("Vous ne pouvez pas désactiver votre propre compte")
            values["is_active"] = bool(admin_changes["is_active"])

    users.update(user, values)
    db.session.commit()
    invalidate_cache(user.id)
    logger.info("User %s updated by %s", user.id, actor.id, extra={"event_type": "user_updated"})
    return user


def delete_user(actor: User, user_id: int) -> None:
    _require(actor, "delete")
    if actor.id == user_id:
        raise ValidationError("Vous ne pouvez pas supprimer votre propre compte")
    user = users.get(user_id)
    users.delete(user)
    db.session.commit()
    invalidate_cache(user_id)
    logger.info("User %s deleted by %s", user_id, actor.id, extra={"event_type": "user_deleted"})


# ═══════════════════════════════════════════════════════════════
# Roles
# ═══════════════════════════════════════════════════════════════
def list_roles(actor: User) -> list[Role]:
    _require(actor, "view")
    return Role.query.order_by(Role.name).all()


def create_role(actor: User, data: dict) -> Role:
    _require(actor, "create")
    code = (data.get("code") or "").strip().upper()
    name = (data.get("name") or "").strip()
    if not code or not name:
        raise ValidationError(
            "Le nom et le code du rôle sont obligatoires",
            details={k: "required" for k, v in (("code", code), ("name", name)) if not v},
        )
    role = roles.create({
        "code": code,
        "name": name,
        "description": data.get("description"),
        "color": data.get("color"),
        "permissions": validate_permissions(data.get("permissions") or []),
        "is_active": bool(data.get("is_active", True)),
    })
    db.session.commit()
    logger.info("Role %s created by %s", code, actor.id, extra={"event_type": "role_created"})
    return role


def update_role(actor: User, role_id: int, data: dict) -> Role:
    _require(actor, "edit")
    role = roles.get(role_id)
    values = {}
    for key in ("name", "description", "color"):
        if key in data:
            values[key] = data[key]
    if "code" in data:
        values["code"] = (data["code"] or "").strip().upper()
        if not values["code"]:
            raise ValidationError("Le code du rôle est obligatoire", details={"code": "required"})
    if "permissions" in data:
        values["permissions"] = validate_permissions(data["permissions"])
    if "is_active" in data:
        values["is_active"] = bool(data["is_active"])
    roles.update(role, values)
    db.session.commit()
    invalidate_all_cache()
    return role


def delete_role(actor: User, role_id: int) -> None:
    _require(actor, "delete")
    role = roles.get(role_id)
    assigned = role.users.count()
    if assigned:
        raise ValidationError(
            f"Ce rôle est attribué à {assigned} utilisateur(s) et ne peut pas être supprimé",
            details={"user_count": assigned},
        )
    code = role.code
    roles.delete(role)
    db.session.commit()
    invalidate_all_cache()
    logger.info("Role %s deleted by %s", code, actor.id, extra={"event_type": "role_deleted"})
