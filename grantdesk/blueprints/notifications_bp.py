"""
Notifications Blueprint — records awaiting the current user's signature.

Endpoints:
    GET /api/v1/notifications/pending?grant_id=   — pending work grouped by record type
"""

from flask import Blueprint, g, jsonify, request

from grantdesk.middleware.permission_required import require_any_permission
from grantdesk.services.notification_service import pending_summary
from grantdesk.utils.errors import register_error_handlers
from grantdesk.utils.helpers import int_arg

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")
register_error_handlers(notifications_bp)


@notifications_bp.route("/pending", methods=["GET"])
@require_any_permission(
    ("engagements", "sign"),
    ("payments", "sign"),
    ("prefinancing", "sign"),
    ("employee_loans", "sign"),
)
def pending():
    summary = pending_summary(g.current_user, int_arg(request.args.get("grant_id")))
    return jsonify(summary), 200
