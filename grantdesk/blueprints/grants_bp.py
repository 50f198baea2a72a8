"""
Grants Blueprint — grants, budget planning, bank accounts and transactions.

Endpoints:
    GET    /api/v1/grants                                   — list (search, status, sort, page)
    POST   /api/v1/grants                                   — create
    GET    /api/v1/grants/<id>                              — detail
    PUT    /api/v1/grants/<id>                              — update
    DELETE /api/v1/grants/<id>                              — delete (refused with engagements)
    GET    /api/v1/grants/<id>/summary                      — planned / notified / engaged / paid totals
    GET    /api/v1/grants/disbursement                      — disbursement rate over all grants

    GET    /api/v1/grants/<id>/budget-lines                 — lines with their rates
    POST   /api/v1/grants/<id>/budget-lines                 — create line
    PUT    /api/v1/budget-lines/<id>                        — update line
    DELETE /api/v1/budget-lines/<id>                        — delete line
    GET    /api/v1/budget-lines/<id>/sub-lines              — sub-lines
    POST   /api/v1/budget-lines/<id>/sub-lines              — create sub-line
    PUT    /api/v1/sub-budget-lines/<id>                    — update sub-line
    DELETE /api/v1/sub-budget-lines/<id>                    — delete sub-line

    GET    /api/v1/bank-accounts                            — list
    POST   /api/v1/bank-accounts                            — create
    PUT    /api/v1/bank-accounts/<id>                       — update
    DELETE /api/v1/bank-accounts/<id>                       — delete

    GET    /api/v1/bank-transactions?account_id=            — credits and debits, newest first
    POST   /api/v1/bank-transactions                        — record one; moves the account balance

    GET    /api/v1/format/currency?amount=&currency=        — display formatting
"""

from flask import Blueprint, g, jsonify, request

from grantdesk.middleware.permission_required import login_required, require_permission
from grantdesk.services import grant_service
from grantdesk.utils.errors import E, api_error, register_error_handlers
from grantdesk.utils.helpers import int_arg, page_to_dict

grants_bp = Blueprint("grants", __name__, url_prefix="/api/v1")
register_error_handlers(grants_bp)


def _line_dict(line) -> dict:
    return {**line.to_dict(), **grant_service.budget_line_rates(line)}


# ═══════════════════════════════════════════════════════════════
# Grants
# ═══════════════════════════════════════════════════════════════
@grants_bp.route("/grants", methods=["GET"])
@login_required
def list_grants():
    args = request.args
    page = grant_service.list_grants(
        g.current_user,
        search=args.get("search") or None,
        status=args.get("status") or None,
        sort=args.get("sort") or "name",
        direction=args.get("direction") or "asc",
        page=int_arg(args.get("page"), 1),
        page_size=int_arg(args.get("page_size"), 20),
    )
    return jsonify(page_to_dict(page)), 200


@grants_bp.route("/grants", methods=["POST"])
@login_required
def create_grant():
    data = request.get_json(silent=True) or {}
    grant = grant_service.create_grant(g.current_user, data)
    return jsonify(grant.to_dict()), 201


@grants_bp.route("/grants/disbursement", methods=["GET"])
@require_permission("grants", "view")
def disbursement():
    return jsonify(grant_service.disbursement_rate(int_arg(request.args.get("grant_id")))), 200


@grants_bp.route("/grants/<int:grant_id>", methods=["GET"])
@login_required
def get_grant(grant_id):
    return jsonify(grant_service.get_grant(g.current_user, grant_id).to_dict()), 200


@grants_bp.route("/grants/<int:grant_id>", methods=["PUT"])
@login_required
def update_grant(grant_id):
    data = request.get_json(silent=True) or {}
    grant = grant_service.update_grant(g.current_user, grant_id, data)
    return jsonify(grant.to_dict()), 200


@grants_bp.route("/grants/<int:grant_id>", methods=["DELETE"])
@login_required
def delete_grant(grant_id):
    grant_service.delete_grant(g.current_user, grant_id)
    return jsonify({"message": "Subvention supprimée"}), 200


@grants_bp.route("/grants/<int:grant_id>/summary", methods=["GET"])
@login_required
def grant_summary(grant_id):
    return jsonify(grant_service.grant_summary(g.current_user, grant_id)), 200


# ═══════════════════════════════════════════════════════════════
# Budget lines
# ═══════════════════════════════════════════════════════════════
@grants_bp.route("/grants/<int:grant_id>/budget-lines", methods=["GET"])
@login_required
def list_budget_lines(grant_id):
    lines = grant_service.list_budget_lines(g.current_user, grant_id)
    return jsonify([_line_dict(line) for line in lines]), 200


@grants_bp.route("/grants/<int:grant_id>/budget-lines", methods=["POST"])
@login_required
def create_budget_line(grant_id):
    data = request.get_json(silent=True) or {}
    line = grant_service.create_budget_line(g.current_user, grant_id, data)
    return jsonify(_line_dict(line)), 201


@grants_bp.route("/budget-lines/<int:line_id>", methods=["PUT"])
@login_required
def update_budget_line(line_id):
    data = request.get_json(silent=True) or {}
    line = grant_service.update_budget_line(g.current_user, line_id, data)
    return jsonify(_line_dict(line)), 200


@grants_bp.route("/budget-lines/<int:line_id>", methods=["DELETE"])
@login_required
def delete_budget_line(line_id):
    grant_service.delete_budget_line(g.current_user, line_id)
    return jsonify({"message": "Ligne budgétaire supprimée"}), 200


@grants_bp.route("/budget-lines/<int:line_id>/sub-lines", methods=["GET"])
@login_required
def list_sub_budget_lines(line_id):
    lines = grant_service.list_sub_budget_lines(g.current_user, line_id)
    return jsonify([_line_dict(line) for line in lines]), 200


@grants_bp.route("/budget-lines/<int:line_id>/sub-lines", methods=["POST"])
@login_required
def create_sub_budget_line(line_id):
    data = request.get_json(silent=True) or {}
    line = grant_service.create_sub_budget_line(g.current_user, line_id, data)
    return jsonify(_line_dict(line)), 201


@grants_bp.route("/sub-budget-lines/<int:line_id>", methods=["PUT"])
@login_required
def update_sub_budget_line(line_id):
    data = request.get_json(silent=True) or {}
    line = grant_service.update_sub_budget_line(g.current_user, line_id, data)
    return jsonify(_line_dict(line)), 200


@grants_bp.route("/sub-budget-lines/<int:line_id>", methods=["DELETE"])
@login_required
def delete_sub_budget_line(line_id):
    grant_service.delete_sub_budget_line(g.current_user, line_id)
    return jsonify({"message": "Sous-ligne budgétaire supprimée"}), 200


# ═══════════════════════════════════════════════════════════════
# Bank accounts
# ═══════════════════════════════════════════════════════════════
@grants_bp.route("/bank-accounts", methods=["GET"])
@login_required
def list_bank_accounts():
    accounts = grant_service.list_bank_accounts(g.current_user)
    return jsonify([a.to_dict() for a in accounts]), 200


@grants_bp.route("/bank-accounts", methods=["POST"])
@login_required
def create_bank_account():
    data = request.get_json(silent=True) or {}
    account = grant_service.create_bank_account(g.current_user, data)
    return jsonify(account.to_dict()), 201


@grants_bp.route("/bank-accounts/<int:account_id>", methods=["PUT"])
@login_required
def update_bank_account(account_id):
    data = request.get_json(silent=True) or {}
    account = grant_service.update_bank_account(g.current_user, account_id, data)
    return jsonify(account.to_dict()), 200


@grants_bp.route("/bank-accounts/<int:account_id>", methods=["DELETE"])
@login_required
def delete_bank_account(account_id):
    grant_service.delete_bank_account(g.current_user, account_id)
    return jsonify({"message": "Compte bancaire supprimé"}), 200


@grants_bp.route("/bank-transactions", methods=["GET"])
@login_required
def list_bank_transactions():
    transactions = grant_service.list_bank_transactions(
        g.current_user, account_id=int_arg(request.args.get("account_id"))
    )
    return jsonify([t.to_dict() for t in transactions]), 200


@grants_bp.route("/bank-transactions", methods=["POST"])
@login_required
def create_bank_transaction():
    data = request.get_json(silent=True) or {}
    transaction = grant_service.record_bank_transaction(g.current_user, data)
    return jsonify({**transaction.to_dict(), "balance": transaction.account.balance}), 201


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/format/currency
# ═══════════════════════════════════════════════════════════════
@grants_bp.route("/format/currency", methods=["GET"])
@login_required
def format_currency():
    raw = request.args.get("amount")
    try:
        amount = float(raw)
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "amount doit être un nombre")
    currency = request.args.get("currency") or None
    return jsonify({"formatted": grant_service.format_currency(amount, currency)}), 200
