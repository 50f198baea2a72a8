"""
Auth Blueprint — sign-in, sign-up, session and password recovery.

Endpoints:
    POST /api/v1/auth/sign-in                  — email + password → token pair
    POST /api/v1/auth/sign-up                  — create account (first account is Administrator)
    POST /api/v1/auth/sign-out                 — revoke a refresh token
    POST /api/v1/auth/refresh                  — rotate refresh token
    GET  /api/v1/auth/session                  — profile, role and permission map
    POST /api/v1/auth/password-reset/request   — mail a recovery link
    POST /api/v1/auth/password-reset/confirm   — recovery fragment + new password
    POST /api/v1/auth/change-password          — change own password
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request

from grantdesk.middleware.permission_required import login_required
from grantdesk.services import auth_service
from grantdesk.services.session_bootstrap import bootstrap_session
from grantdesk.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")
register_error_handlers(auth_bp)

RESET_REQUEST_MESSAGE = (
    "Si un compte existe pour cet email, un lien de réinitialisation a été envoyé"
)


def _client():
    return request.remote_addr, request.headers.get("User-Agent", "")[:500]


def _result_response(result, success_status=200):
    if not result.success:
        return api_error(E.AUTH, result.error or "Échec de l'authentification")
    return jsonify(result.to_dict()), success_status


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/sign-in
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/sign-in", methods=["POST"])
def sign_in():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip()
    password = data.get("password") or ""
    if not email or not password:
        return api_error(E.VALIDATION_REQUIRED, "Email et mot de passe requis")

    ip, agent = _client()
    return _result_response(auth_service.sign_in(email, password, ip, agent))


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/sign-up
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/sign-up", methods=["POST"])
def sign_up():
    data = request.get_json(silent=True) or {}
    ip, agent = _client()
    result = auth_service.sign_up(
        data.get("email") or "",
        data.get("password") or "",
        profile=data.get("profile") or {},
        ip_address=ip,
        user_agent=agent,
    )
    if not result.success:
        return api_error(E.VALIDATION_RULE, result.error)
    return jsonify(result.to_dict()), 201


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/sign-out
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/sign-out", methods=["POST"])
def sign_out():
    data = request.get_json(silent=True) or {}
    auth_service.sign_out(data.get("refresh_token"))
    return jsonify({"message": "Déconnecté"}), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/refresh
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    data = request.get_json(silent=True) or {}
    refresh_token = data.get("refresh_token")
    if not refresh_token:
        return api_error(E.VALIDATION_REQUIRED, "refresh_token requis")

    ip, agent = _client()
    tokens = auth_service.refresh(refresh_token, ip, agent)
    return jsonify({
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
    }), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/session
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/session", methods=["GET"])
@login_required
def session():
    result = bootstrap_session(g.current_user.id, g.get("jwt_role"))
    return jsonify(result.to_dict()), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/password-reset/request
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/password-reset/request", methods=["POST"])
def request_password_reset():
    data = request.get_json(silent=True) or {}
    redirect_url = data.get("redirect_url") or current_app.config["PASSWORD_RESET_URL"]
    auth_service.request_password_reset(data.get("email") or "", redirect_url)
    # Same answer whether or not the account exists
    return jsonify({"message": RESET_REQUEST_MESSAGE}), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/password-reset/confirm
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/password-reset/confirm", methods=["POST"])
def confirm_password_reset():
    data = request.get_json(silent=True) or {}
    fragment = data.get("fragment") or ""
    new_password = data.get("new_password") or ""
    if not fragment or not new_password:
        return api_error(E.VALIDATION_REQUIRED, "Lien et nouveau mot de passe requis")

    ip, agent = _client()
    return _result_response(auth_service.reset_password(fragment, new_password, ip, agent))


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/change-password
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/change-password", methods=["POST"])
@login_required
def change_password():
    data = request.get_json(silent=True) or {}
    auth_service.change_password(
        g.current_user, data.get("current_password") or "", data.get("new_password") or ""
    )
    return jsonify({"message": "Mot de passe modifié"}), 200
