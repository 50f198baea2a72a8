"""
Payments Blueprint — payments against approved engagements.

Endpoints:
    GET    /api/v1/payments                         — list (search, status, date, grant_id, sort, page)
    POST   /api/v1/payments                         — create (engagement must be approved)
    GET    /api/v1/payments/treasury?amount=        — bank balance, uncashed total, balance after amount
    GET    /api/v1/payments/export                  — Excel listing (same filters as list)
    GET    /api/v1/payments/<id>                    — detail
    PUT    /api/v1/payments/<id>                    — update (pending and unsigned only)
    DELETE /api/v1/payments/<id>                    — delete
    POST   /api/v1/payments/<id>/sign               — { slot, version, observation }
    POST   /api/v1/payments/<id>/status             — { status, version }
    GET    /api/v1/payments/<id>/document           — printable approval sheet
"""

from datetime import date

from flask import Blueprint, g, jsonify, request

from grantdesk.blueprints import download, record_dict, signature_request, status_request
from grantdesk.middleware.permission_required import login_required, require_all_permissions
from grantdesk.services import document_service, payment_service
from grantdesk.utils.errors import register_error_handlers
from grantdesk.utils.helpers import int_arg, listing_params, page_to_dict, parse_amount

payments_bp = Blueprint("payments", __name__, url_prefix="/api/v1/payments")
register_error_handlers(payments_bp)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@payments_bp.route("", methods=["GET"])
@login_required
def list_payments():
    page = payment_service.list_payments(g.current_user, **listing_params(request.args))
    return jsonify(page_to_dict(page)), 200


@payments_bp.route("", methods=["POST"])
@login_required
def create_payment():
    data = request.get_json(silent=True) or {}
    payment = payment_service.create_payment(g.current_user, data)
    return jsonify(record_dict(payment)), 201


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/payments/treasury
# ═══════════════════════════════════════════════════════════════
@payments_bp.route("/treasury", methods=["GET"])
@require_all_permissions(("payments", "view"), ("bank_accounts", "view"))
def treasury():
    raw = request.args.get("amount")
    amount = parse_amount(raw, "amount", allow_zero=True) if raw not in (None, "") else 0.0
    return jsonify(payment_service.treasury_summary(amount)), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/payments/export
# ═══════════════════════════════════════════════════════════════
@payments_bp.route("/export", methods=["GET"])
@login_required
def export_payments():
    args = request.args
    content = document_service.export_payments_xlsx(
        g.current_user,
        grant_id=int_arg(args.get("grant_id")),
        status=args.get("status") or None,
        search=args.get("search") or None,
        sort=args.get("sort") or "date",
        direction=args.get("direction") or "desc",
    )
    return download(content, f"Paiements_{date.today():%Y%m%d}.xlsx", XLSX_MIMETYPE)


@payments_bp.route("/<int:payment_id>", methods=["GET"])
@login_required
def get_payment(payment_id):
    payment = payment_service.get_payment(g.current_user, payment_id)
    return jsonify(record_dict(payment)), 200


@payments_bp.route("/<int:payment_id>", methods=["PUT"])
@login_required
def update_payment(payment_id):
    data = request.get_json(silent=True) or {}
    payment = payment_service.update_payment(g.current_user, payment_id, data)
    return jsonify(record_dict(payment)), 200


@payments_bp.route("/<int:payment_id>", methods=["DELETE"])
@login_required
def delete_payment(payment_id):
    payment_service.delete_payment(g.current_user, payment_id)
    return jsonify({"message": "Paiement supprimé"}), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/payments/<id>/sign
# ═══════════════════════════════════════════════════════════════
@payments_bp.route("/<int:payment_id>/sign", methods=["POST"])
@login_required
def sign_payment(payment_id):
    body, err = signature_request()
    if err:
        return err
    payment = payment_service.sign_payment(
        g.current_user, payment_id, body["slot"],
        expected_version=body["version"], observation=body["observation"],
    )
    return jsonify(record_dict(payment)), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/payments/<id>/status
# ═══════════════════════════════════════════════════════════════
@payments_bp.route("/<int:payment_id>/status", methods=["POST"])
@login_required
def change_status(payment_id):
    body, err = status_request()
    if err:
        return err
    payment = payment_service.change_payment_status(
        g.current_user, payment_id, body["status"], expected_version=body["version"]
    )
    return jsonify(record_dict(payment)), 200


@payments_bp.route("/<int:payment_id>/document", methods=["GET"])
@login_required
def export_document(payment_id):
    content, filename, mimetype = document_service.export_approval_sheet(
        g.current_user, "payments", payment_id
    )
    return download(content, filename, mimetype)
