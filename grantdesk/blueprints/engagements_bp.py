"""
Engagements Blueprint — committed spend and its signature workflow.

Endpoints:
    GET    /api/v1/engagements                      — list (search, status, date, grant_id, sort, page)
    POST   /api/v1/engagements                      — create (optional draft supervisor signature)
    GET    /api/v1/engagements/preview              — sub-line balance before/after an amount
    GET    /api/v1/engagements/<id>                 — detail
    PUT    /api/v1/engagements/<id>                 — update (pending and unsigned only)
    DELETE /api/v1/engagements/<id>                 — delete
    POST   /api/v1/engagements/<id>/sign            — { slot, version, observation }
    POST   /api/v1/engagements/<id>/status          — { status, version }
    GET    /api/v1/engagements/<id>/document        — printable approval sheet
"""

from flask import Blueprint, g, jsonify, request

from grantdesk.blueprints import download, record_dict, signature_request, status_request
from grantdesk.middleware.permission_required import login_required, require_permission
from grantdesk.services import document_service, engagement_service
from grantdesk.utils.errors import E, api_error, register_error_handlers
from grantdesk.utils.helpers import int_arg, listing_params, page_to_dict

engagements_bp = Blueprint("engagements", __name__, url_prefix="/api/v1/engagements")
register_error_handlers(engagements_bp)


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/engagements
# ═══════════════════════════════════════════════════════════════
@engagements_bp.route("", methods=["GET"])
@login_required
def list_engagements():
    page = engagement_service.list_engagements(g.current_user, **listing_params(request.args))
    return jsonify(page_to_dict(page)), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/engagements
# ═══════════════════════════════════════════════════════════════
@engagements_bp.route("", methods=["POST"])
@login_required
def create_engagement():
    data = request.get_json(silent=True) or {}
    engagement = engagement_service.create_engagement(g.current_user, data)
    return jsonify(record_dict(engagement)), 201


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/engagements/preview?sub_budget_line_id=&amount=
# ═══════════════════════════════════════════════════════════════
@engagements_bp.route("/preview", methods=["GET"])
@require_permission("engagements", "view")
def preview():
    sub_line_id = int_arg(request.args.get("sub_budget_line_id"))
    if sub_line_id is None:
        return api_error(E.VALIDATION_REQUIRED, "sub_budget_line_id requis")
    return jsonify(engagement_service.preview(sub_line_id, request.args.get("amount", 0))), 200


@engagements_bp.route("/<int:engagement_id>", methods=["GET"])
@login_required
def get_engagement(engagement_id):
    engagement = engagement_service.get_engagement(g.current_user, engagement_id)
    return jsonify(record_dict(engagement)), 200


@engagements_bp.route("/<int:engagement_id>", methods=["PUT"])
@login_required
def update_engagement(engagement_id):
    data = request.get_json(silent=True) or {}
    engagement = engagement_service.update_engagement(g.current_user, engagement_id, data)
    return jsonify(record_dict(engagement)), 200


@engagements_bp.route("/<int:engagement_id>", methods=["DELETE"])
@login_required
def delete_engagement(engagement_id):
    engagement_service.delete_engagement(g.current_user, engagement_id)
    return jsonify({"message": "Engagement supprimé"}), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/engagements/<id>/sign
# ═══════════════════════════════════════════════════════════════
@engagements_bp.route("/<int:engagement_id>/sign", methods=["POST"])
@login_required
def sign_engagement(engagement_id):
    body, err = signature_request()
    if err:
        return err
    engagement = engagement_service.sign_engagement(
        g.current_user, engagement_id, body["slot"],
        expected_version=body["version"], observation=body["observation"],
    )
    return jsonify(record_dict(engagement)), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/engagements/<id>/status
# ═══════════════════════════════════════════════════════════════
@engagements_bp.route("/<int:engagement_id>/status", methods=["POST"])
@login_required
def change_status(engagement_id):
    body, err = status_request()
    if err:
        return err
    engagement = engagement_service.change_engagement_status(
        g.current_user, engagement_id, body["status"], expected_version=body["version"]
    )
    return jsonify(record_dict(engagement)), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/engagements/<id>/document
# ═══════════════════════════════════════════════════════════════
@engagements_bp.route("/<int:engagement_id>/document", methods=["GET"])
@login_required
def export_document(engagement_id):
    content, filename, mimetype = document_service.export_approval_sheet(
        g.current_user, "engagements", engagement_id
    )
    return download(content, filename, mimetype)
