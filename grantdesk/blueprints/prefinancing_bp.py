"""
Prefinancing Blueprint — cash advances, their signatures and repayments.

Endpoints:
    GET    /api/v1/prefinancing                     — list (search, status, date, grant_id, sort, page)
    POST   /api/v1/prefinancing                     — create
    GET    /api/v1/prefinancing/<id>                — detail with repayment ledger
    PUT    /api/v1/prefinancing/<id>                — update (pending and unsigned only)
    DELETE /api/v1/prefinancing/<id>                — delete
    POST   /api/v1/prefinancing/<id>/sign           — { slot, version, observation }
    POST   /api/v1/prefinancing/<id>/status         — { status, version }
    POST   /api/v1/prefinancing/<id>/repayments     — { amount, reference, date }
    GET    /api/v1/prefinancing/<id>/document       — printable approval sheet
"""

from flask import Blueprint, g, jsonify, request

from grantdesk.blueprints import download, record_dict, signature_request, status_request
from grantdesk.middleware.permission_required import login_required
from grantdesk.services import document_service, prefinancing_service
from grantdesk.utils.errors import register_error_handlers
from grantdesk.utils.helpers import listing_params, page_to_dict

prefinancing_bp = Blueprint("prefinancing", __name__, url_prefix="/api/v1/prefinancing")
register_error_handlers(prefinancing_bp)


@prefinancing_bp.route("", methods=["GET"])
@login_required
def list_prefinancings():
    page = prefinancing_service.list_prefinancings(g.current_user, **listing_params(request.args))
    return jsonify(page_to_dict(page)), 200


@prefinancing_bp.route("", methods=["POST"])
@login_required
def create_prefinancing():
    data = request.get_json(silent=True) or {}
    prefinancing = prefinancing_service.create_prefinancing(g.current_user, data)
    return jsonify(record_dict(prefinancing)), 201


@prefinancing_bp.route("/<int:prefinancing_id>", methods=["GET"])
@login_required
def get_prefinancing(prefinancing_id):
    prefinancing = prefinancing_service.get_prefinancing(g.current_user, prefinancing_id)
    return jsonify(record_dict(prefinancing)), 200


@prefinancing_bp.route("/<int:prefinancing_id>", methods=["PUT"])
@login_required
def update_prefinancing(prefinancing_id):
    data = request.get_json(silent=True) or {}
    prefinancing = prefinancing_service.update_prefinancing(g.current_user, prefinancing_id, data)
    return jsonify(record_dict(prefinancing)), 200


@prefinancing_bp.route("/<int:prefinancing_id>", methods=["DELETE"])
@login_required
def delete_prefinancing(prefinancing_id):
    prefinancing_service.delete_prefinancing(g.current_user, prefinancing_id)
    return jsonify({"message": "Préfinancement supprimé"}), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/prefinancing/<id>/sign
# ═══════════════════════════════════════════════════════════════
@prefinancing_bp.route("/<int:prefinancing_id>/sign", methods=["POST"])
@login_required
def sign_prefinancing(prefinancing_id):
    body, err = signature_request()
    if err:
        return err
    prefinancing = prefinancing_service.sign_prefinancing(
        g.current_user, prefinancing_id, body["slot"],
        expected_version=body["version"], observation=body["observation"],
    )
    return jsonify(record_dict(prefinancing)), 200


@prefinancing_bp.route("/<int:prefinancing_id>/status", methods=["POST"])
@login_required
def change_status(prefinancing_id):
    body, err = status_request()
    if err:
        return err
    prefinancing = prefinancing_service.change_prefinancing_status(
        g.current_user, prefinancing_id, body["status"], expected_version=body["version"]
    )
    return jsonify(record_dict(prefinancing)), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/prefinancing/<id>/repayments
# ═══════════════════════════════════════════════════════════════
@prefinancing_bp.route("/<int:prefinancing_id>/repayments", methods=["POST"])
@login_required
def add_repayment(prefinancing_id):
    data = request.get_json(silent=True) or {}
    repayment = prefinancing_service.add_repayment(g.current_user, prefinancing_id, data)
    prefinancing = prefinancing_service.get_prefinancing(g.current_user, prefinancing_id)
    return jsonify({
        "repayment": repayment.to_dict(),
        "total_repaid": prefinancing.total_repaid,
        "remaining_amount": prefinancing.remaining_amount,
    }), 201


@prefinancing_bp.route("/<int:prefinancing_id>/document", methods=["GET"])
@login_required
def export_document(prefinancing_id):
    content, filename, mimetype = document_service.export_approval_sheet(
        g.current_user, "prefinancing", prefinancing_id
    )
    return download(content, filename, mimetype)
