"""
Admin Blueprint — user and role administration.

Endpoints:
    GET    /api/v1/admin/users              — list (search, role_id, is_active, sort, page)
    POST   /api/v1/admin/users              — create (returns a temporary password)
    GET    /api/v1/admin/users/<id>         — detail
    PUT    /api/v1/admin/users/<id>         — update
    DELETE /api/v1/admin/users/<id>         — delete (never oneself)
    GET    /api/v1/admin/roles              — list roles with user counts
    POST   /api/v1/admin/roles              — create role
    PUT    /api/v1/admin/roles/<id>         — update role
    DELETE /api/v1/admin/roles/<id>         — delete role (refused while assigned)
    GET    /api/v1/admin/modules            — permission catalogue
"""

from flask import Blueprint, g, jsonify, request

from grantdesk.middleware.permission_required import login_required, require_permission
from grantdesk.services import user_service
from grantdesk.services.permission_service import AVAILABLE_MODULES
from grantdesk.utils.errors import register_error_handlers
from grantdesk.utils.helpers import int_arg, page_to_dict

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")
register_error_handlers(admin_bp)


# ═══════════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════════
@admin_bp.route("/users", methods=["GET"])
@login_required
def list_users():
    args = request.args
    is_active = args.get("is_active")
    page = user_service.list_users(
        g.current_user,
        search=args.get("search") or None,
        role_id=int_arg(args.get("role_id")),
        is_active=None if is_active in (None, "") else is_active.lower() in ("1", "true"),
        sort=args.get("sort") or "last_name",
        direction=args.get("direction") or "asc",
        page=int_arg(args.get("page"), 1),
        page_size=int_arg(args.get("page_size"), 20),
    )
    return jsonify(page_to_dict(page, lambda u: u.to_dict(include_role=True))), 200


@admin_bp.route("/users", methods=["POST"])
@login_required
def create_user():
    data = request.get_json(silent=True) or {}
    user, temporary_password = user_service.create_user(g.current_user, data)
    body = {"user": user.to_dict(include_role=True)}
    if temporary_password:
        body["temporary_password"] = temporary_password
    return jsonify(body), 201


@admin_bp.route("/users/<int:user_id>", methods=["GET"])
@login_required
def get_user(user_id):
    user = user_service.get_user(g.current_user, user_id)
    return jsonify(user.to_dict(include_role=True)), 200


@admin_bp.route("/users/<int:user_id>", methods=["PUT"])
@login_required
def update_user(user_id):
    data = request.get_json(silent=True) or {}
    user = user_service.update_user(g.current_user, user_id, data)
    return jsonify(user.to_dict(include_role=True)), 200


@admin_bp.route("/users/<int:user_id>", methods=["DELETE"])
@login_required
def delete_user(user_id):
    user_service.delete_user(g.current_user, user_id)
    return jsonify({"message": "Utilisateur supprimé"}), 200


# ═══════════════════════════════════════════════════════════════
# Roles
# ═══════════════════════════════════════════════════════════════
@admin_bp.route("/roles", methods=["GET"])
@login_required
def list_roles():
    roles = user_service.list_roles(g.current_user)
    return jsonify([r.to_dict(include_user_count=True) for r in roles]), 200


@admin_bp.route("/roles", methods=["POST"])
@login_required
def create_role():
    data = request.get_json(silent=True) or {}
    role = user_service.create_role(g.current_user, data)
    return jsonify(role.to_dict()), 201


@admin_bp.route("/roles/<int:role_id>", methods=["PUT"])
@login_required
def update_role(role_id):
    data = request.get_json(silent=True) or {}
    role = user_service.update_role(g.current_user, role_id, data)
    return jsonify(role.to_dict()), 200


@admin_bp.route("/roles/<int:role_id>", methods=["DELETE"])
@login_required
def delete_role(role_id):
    user_service.delete_role(g.current_user, role_id)
    return jsonify({"message": "Rôle supprimé"}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/admin/modules
# ═══════════════════════════════════════════════════════════════
@admin_bp.route("/modules", methods=["GET"])
@require_permission("users", "view")
def list_modules():
    return jsonify([
        {"module": key, "name": meta["name"], "actions": meta["actions"]}
        for key, meta in AVAILABLE_MODULES.items()
    ]), 200
