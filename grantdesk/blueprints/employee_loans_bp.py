"""
Employee Loans Blueprint — staff advances repaid by installments.

Endpoints:
    GET    /api/v1/employee-loans                   — list (search, status, date, grant_id, sort, page)
    POST   /api/v1/employee-loans                   — create
    GET    /api/v1/employee-loans/<id>              — detail with repayments
    PUT    /api/v1/employee-loans/<id>              — update (pending and unsigned only)
    DELETE /api/v1/employee-loans/<id>              — delete
    GET    /api/v1/employee-loans/<id>/schedule     — installment due dates and progress
    POST   /api/v1/employee-loans/<id>/sign         — { slot, version, observation }
    POST   /api/v1/employee-loans/<id>/status       — { status, version }
    POST   /api/v1/employee-loans/<id>/repayments   — { amount, reference, date }
    GET    /api/v1/employee-loans/<id>/document     — printable approval sheet
"""

from flask import Blueprint, g, jsonify, request

from grantdesk.blueprints import download, record_dict, signature_request, status_request
from grantdesk.middleware.permission_required import login_required
from grantdesk.services import document_service, employee_loan_service
from grantdesk.utils.errors import register_error_handlers
from grantdesk.utils.helpers import listing_params, page_to_dict

employee_loans_bp = Blueprint("employee_loans", __name__, url_prefix="/api/v1/employee-loans")
register_error_handlers(employee_loans_bp)


@employee_loans_bp.route("", methods=["GET"])
@login_required
def list_loans():
    page = employee_loan_service.list_loans(g.current_user, **listing_params(request.args))
    return jsonify(page_to_dict(page)), 200


@employee_loans_bp.route("", methods=["POST"])
@login_required
def create_loan():
    data = request.get_json(silent=True) or {}
    loan = employee_loan_service.create_loan(g.current_user, data)
    return jsonify(record_dict(loan)), 201


@employee_loans_bp.route("/<int:loan_id>", methods=["GET"])
@login_required
def get_loan(loan_id):
    loan = employee_loan_service.get_loan(g.current_user, loan_id)
    return jsonify(record_dict(loan)), 200


@employee_loans_bp.route("/<int:loan_id>", methods=["PUT"])
@login_required
def update_loan(loan_id):
    data = request.get_json(silent=True) or {}
    loan = employee_loan_service.update_loan(g.current_user, loan_id, data)
    return jsonify(record_dict(loan)), 200


@employee_loans_bp.route("/<int:loan_id>", methods=["DELETE"])
@login_required
def delete_loan(loan_id):
    employee_loan_service.delete_loan(g.current_user, loan_id)
    return jsonify({"message": "Prêt supprimé"}), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/employee-loans/<id>/schedule
# ═══════════════════════════════════════════════════════════════
@employee_loans_bp.route("/<int:loan_id>/schedule", methods=["GET"])
@login_required
def loan_schedule(loan_id):
    loan = employee_loan_service.get_loan(g.current_user, loan_id)
    return jsonify({
        "installments": employee_loan_service.installment_schedule(loan),
        "total_repaid": loan.total_repaid,
        "remaining_amount": loan.remaining_amount,
        "progress": employee_loan_service.repayment_progress(loan),
    }), 200


@employee_loans_bp.route("/<int:loan_id>/sign", methods=["POST"])
@login_required
def sign_loan(loan_id):
    body, err = signature_request()
    if err:
        return err
    loan = employee_loan_service.sign_loan(
        g.current_user, loan_id, body["slot"],
        expected_version=body["version"], observation=body["observation"],
    )
    return jsonify(record_dict(loan)), 200


@employee_loans_bp.route("/<int:loan_id>/status", methods=["POST"])
@login_required
def change_status(loan_id):
    body, err = status_request()
    if err:
        return err
    loan = employee_loan_service.change_loan_status(
        g.current_user, loan_id, body["status"], expected_version=body["version"]
    )
    return jsonify(record_dict(loan)), 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/employee-loans/<id>/repayments
# ═══════════════════════════════════════════════════════════════
@employee_loans_bp.route("/<int:loan_id>/repayments", methods=["POST"])
@login_required
def add_repayment(loan_id):
    data = request.get_json(silent=True) or {}
    repayment = employee_loan_service.add_repayment(g.current_user, loan_id, data)
    loan = employee_loan_service.get_loan(g.current_user, loan_id)
    return jsonify({
        "repayment": repayment.to_dict(),
        "total_repaid": loan.total_repaid,
        "remaining_amount": loan.remaining_amount,
    }), 201


@employee_loans_bp.route("/<int:loan_id>/document", methods=["GET"])
@login_required
def export_document(loan_id):
    content, filename, mimetype = document_service.export_approval_sheet(
        g.current_user, "employee_loans", loan_id
    )
    return download(content, filename, mimetype)
