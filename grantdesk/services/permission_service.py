"""
Permission Service — role-driven module/action permissions with cache.

A role's permissions are a list of ``{"module": str, "actions": [str]}``
entries.  They are normalized into a map ``module -> frozenset(actions)``;
duplicate module entries merge.  Module ``"all"`` is a wildcard and is
honoured by every check in this module (there is one semantics for
"has permission", used by route guards and services alike).

Evaluation is deny-by-default:
  - no permission data (missing user, inactive user, inactive role) => False
  - a permission is granted only if the module or the wildcard lists it
"""

import logging
import threading
import time
from typing import Iterable, Optional

from grantdesk.core.exceptions import PermissionDeniedError, ValidationError
from grantdesk.models import db
from grantdesk.models.auth import User

logger = logging.getLogger(__name__)

WILDCARD_MODULE = "all"
CACHE_TTL = 300  # 5 minutes

PermissionMap = dict[str, frozenset]

_permission_cache: dict[int, tuple[float, PermissionMap]] = {}
_cache_lock = threading.Lock()


# ═══════════════════════════════════════════════════════════════
# Catalogue
# ═══════════════════════════════════════════════════════════════
_CRUD = ["view", "create", "edit", "delete"]

AVAILABLE_MODULES: dict[str, dict] = {
    "dashboard": {"name": "Tableau de bord", "actions": ["view", "export"]},
    "grants": {"name": "Subventions", "actions": _CRUD + ["approve"]},
    "budget_planning": {"name": "Planification budgétaire", "actions": _CRUD + ["approve", "export"]},
    "tracking": {"name": "Suivi budgétaire", "actions": _CRUD + ["approve", "export"]},
    "engagements": {"name": "Engagements", "actions": _CRUD + ["approve", "sign"]},
    "payments": {"name": "Paiements", "actions": _CRUD + ["approve", "reconcile", "sign"]},
    "treasury": {"name": "Trésorerie", "actions": _CRUD + ["reconcile"]},
    "prefinancing": {"name": "Préfinancements", "actions": _CRUD + ["approve", "sign"]},
    "employee_loans": {"name": "Prêts employés", "actions": _CRUD + ["approve", "sign"]},
    "reports": {"name": "Rapports", "actions": ["view", "create", "export"]},
    "users": {"name": "Utilisateurs", "actions": list(_CRUD)},
    "globalConfig": {"name": "Configuration globale", "actions": list(_CRUD)},
    "profile": {"name": "Profil", "actions": ["view", "edit"]},
    "bank_accounts": {"name": "Comptes bancaires", "actions": _CRUD + ["reconcile"]},
    "bank_transactions": {"name": "Transactions bancaires", "actions": _CRUD + ["reconcile", "export"]},
    "audit": {"name": "Audit", "actions": ["view", "export"]},
}

ALL_ACTIONS = frozenset(a for m in AVAILABLE_MODULES.values() for a in m["actions"])


def _full(module: str) -> dict:
    return {"module": module, "actions": list(AVAILABLE_MODULES[module]["actions"])}


def _only(module: str, *actions: str) -> dict:
    return {"module": module, "actions": list(actions)}


DEFAULT_ROLES: list[dict] = [
    {
        "code": "ADMIN",
        "name": "Administrateur",
        "description": "Accès complet à toutes les fonctionnalités",
        "color": "bg-red-100 text-red-700",
        "permissions": [{"module": WILDCARD_MODULE, "actions": sorted(ALL_ACTIONS)}],
    },
    {
        "code": "FINANCE_MANAGER",
        "name": "Responsable Financier",
        "description": "Gestion complète des budgets et validation des paiements",
        "color": "bg-blue-100 text-blue-700",
        "permissions": [
            _full(m) for m in (
                "dashboard", "grants", "budget_planning", "tracking", "engagements",
                "payments", "treasury", "prefinancing", "employee_loans", "reports",
                "bank_accounts", "bank_transactions",
            )
        ] + [_only("profile", "view", "edit")],
    },
    {
        "code": "PROJECT_MANAGER",
        "name": "Gestionnaire de Projet",
        "description": "Gestion des engagements et suivi budgétaire",
        "color": "bg-green-100 text-green-700",
        "permissions": [
            _only("dashboard", "view"),
            _only("tracking", "view", "export"),
            _only("engagements", "view", "create", "edit", "sign"),
            _only("payments", "view", "create", "edit", "sign"),
            _only("reports", "view", "export"),
            _only("profile", "view", "edit"),
        ],
    },
    {
        "code": "ADMIN_ASSISTANT",
        "name": "Assistant Administratif",
        "description": "Saisie des données et consultation",
        "color": "bg-yellow-100 text-yellow-700",
        "permissions": [
            _only("dashboard", "view"),
            _only("tracking", "view", "create"),
            _only("engagements", "view", "create"),
            _only("reports", "view", "create"),
            _only("profile", "view", "edit"),
        ],
    },
    {
        "code": "CONSULTANT",
        "name": "Consultant",
        "description": "Accès en lecture seule pour consultation",
        "color": "bg-purple-100 text-purple-700",
        "permissions": [
            _only("tracking", "view"),
            _only("reports", "view"),
            _only("profile", "view"),
        ],
    },
    {
        "code": "READ_ONLY",
        "name": "Lecture seule",
        "description": "Consultation de toutes les données",
        "color": "bg-gray-100 text-gray-700",
        "permissions": [{"module": WILDCARD_MODULE, "actions": ["view"]}],
    },
]

DEFAULT_ROLES_BY_CODE = {r["code"]: r for r in DEFAULT_ROLES}


# ═══════════════════════════════════════════════════════════════
# Pure checks
# ═══════════════════════════════════════════════════════════════
def normalize(permissions: Optional[Iterable[dict]]) -> PermissionMap:
    """Fold a permission list into ``{module: frozenset(actions)}``.

    Entries without a module are skipped; repeated modules merge their actions.
    """
    merged: dict[str, set] = {}
    for entry in permissions or []:
        if not isinstance(entry, dict):
            continue
        module = entry.get("module")
        if not module:
            continue
        merged.setdefault(module, set()).update(a for a in entry.get("actions") or [] if a)
    return {module: frozenset(actions) for module, actions in merged.items()}


def has_permission(pmap: Optional[PermissionMap], module: str, action: str) -> bool:
    if not pmap:
        return False
    return action in pmap.get(module, ()) or action in pmap.get(WILDCARD_MODULE, ())


def has_module_access(pmap: Optional[PermissionMap], module: str) -> bool:
    if not pmap:
        return False
    return bool(pmap.get(module)) or bool(pmap.get(WILDCARD_MODULE))


def has_any_permission(pmap: Optional[PermissionMap], checks: Iterable[tuple[str, str]]) -> bool:
    return any(has_permission(pmap, module, action) for module, action in checks)


def has_all_permissions(pmap: Optional[PermissionMap], checks: Iterable[tuple[str, str]]) -> bool:
    if not pmap:
        return False
    return all(has_permission(pmap, module, action) for module, action in checks)


def validate_permissions(permissions) -> list[dict]:
    """Validate a submitted permission list against the catalogue.

    Returns the cleaned list (module order kept, duplicates merged).
    Raises ValidationError on unknown modules or actions.
    """
    if not isinstance(permissions, list):
        raise ValidationError("permissions must be a list", details={"permissions": "invalid"})
    errors = {}
    for entry in permissions:
        if not isinstance(entry, dict) or not entry.get("module"):
            errors.setdefault("permissions", "each entry needs a module")
            continue
        module = entry["module"]
        actions = entry.get("actions") or []
        if module == WILDCARD_MODULE:
            allowed = ALL_ACTIONS
        elif module in AVAILABLE_MODULES:
            allowed = set(AVAILABLE_MODULES[module]["actions"])
        else:
            errors[module] = "unknown module"
            continue
        unknown = sorted(set(actions) - set(allowed))
        if unknown:
            errors[module] = f"unknown actions: {unknown}"
    if errors:
        raise ValidationError("Invalid permissions", details=errors)

    pmap = normalize(permissions)
    order = list(dict.fromkeys(e["module"] for e in permissions))
    return [{"module": m, "actions": sorted(pmap[m])} for m in order if pmap.get(m)]


# ═══════════════════════════════════════════════════════════════
# User-level lookups (cached)
# ═══════════════════════════════════════════════════════════════
def _get_cached(user_id: int) -> Optional[PermissionMap]:
    with _cache_lock:
        entry = _permission_cache.get(user_id)
        if entry is None:
            return None
        cached_at, pmap = entry
        if time.time() - cached_at > CACHE_TTL:
            del _permission_cache[user_id]
            return None
        return pmap


def _set_cached(user_id: int, pmap: PermissionMap) -> None:
    with _cache_lock:
        _permission_cache[user_id] = (time.time(), pmap)


def invalidate_cache(user_id: int) -> None:
    with _cache_lock:
        _permission_cache.pop(user_id, None)


def invalidate_all_cache() -> None:
    with _cache_lock:
        _permission_cache.clear()


def permission_map_for_user(user: Optional[User]) -> PermissionMap:
    """Permission map of a loaded user; empty when the user or role is inactive."""
    if user is None or not user.is_active:
        return {}
    role = user.role
    if role is None or not role.is_active:
        return {}
    return normalize(role.permissions)


def get_user_permissions(user_id) -> PermissionMap:
    if user_id is None:
        return {}
    user_id = int(user_id)
    cached = _get_cached(user_id)
    if cached is not None:
        return cached
    pmap = permission_map_for_user(db.session.get(User, user_id))
    _set_cached(user_id, pmap)
    return pmap


def user_has_permission(user_id, module: str, action: str) -> bool:
    allowed = has_permission(get_user_permissions(user_id), module, action)
    if not allowed:
        logger.debug("Permission denied user=%s %s:%s", user_id, module, action)
    return allowed


def ensure_permission(user: Optional[User], module: str, action: str) -> None:
    """Raise PermissionDeniedError unless ``user`` holds ``module:action``."""
    if user is None or not has_permission(get_user_permissions(user.id), module, action):
        logger.warning(
            "User %s denied %s:%s", getattr(user, "id", None), module, action,
            extra={"event_type": "permission_denied"},
        )
        raise PermissionDeniedError(module=module, action=action)
