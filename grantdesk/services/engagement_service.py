"""
Engagement Service — committed spend against a sub-budget line.

Creating, editing or deleting an engagement moves ``engaged_amount`` and
``available_amount`` on both the sub-budget line and its budget line in the
same transaction.  Available amounts may go negative; that is how an
overspent line shows up in tracking.
"""

import logging

from grantdesk.core.exceptions import ValidationError
from grantdesk.models import db
from grantdesk.models.finance import BudgetLine, Engagement, Grant, SubBudgetLine
from grantdesk.services import signable_records
from grantdesk.services.grant_service import rate
from grantdesk.services.permission_service import ensure_permission
from grantdesk.services.repository import Repository
from grantdesk.utils.helpers import parse_amount, parse_int, require_date, require_fields

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("engagement_number", "description", "supplier", "quote_reference", "invoice_number")
TEXT_FIELDS = ("description", "supplier", "quote_reference", "invoice_number")


def _resolve_lines(data: dict) -> tuple[Grant, BudgetLine, SubBudgetLine]:
    grant = Repository(Grant).get(parse_int(data["grant_id"], "grant_id"))
    line = Repository(BudgetLine).get(parse_int(data["budget_line_id"], "budget_line_id"))
    sub_line = Repository(SubBudgetLine).get(
        parse_int(data["sub_budget_line_id"], "sub_budget_line_id")
    )
    if line.grant_id != grant.id or sub_line.budget_line_id != line.id:
        raise ValidationError(
            "La ligne budgétaire ne correspond pas à la subvention",
            details={"sub_budget_line_id": "mismatch"},
        )
    return grant, line, sub_line


def _shift_engaged(line, delta: float) -> None:
    line.engaged_amount = round(float(line.engaged_amount or 0) + delta, 2)
    line.available_amount = round(float(line.notified_amount or 0) - line.engaged_amount, 2)


def _apply_to_lines(engagement: Engagement, delta: float) -> None:
    if not delta:
        return
    _shift_engaged(db.session.get(SubBudgetLine, engagement.sub_budget_line_id), delta)
    _shift_engaged(db.session.get(BudgetLine, engagement.budget_line_id), delta)


def preview(sub_budget_line_id: int, amount) -> dict:
    """Balance and engagement rate of a sub-budget line before and after ``amount``."""
    sub_line = Repository(SubBudgetLine).get(sub_budget_line_id)
    amount = parse_amount(amount, "amount", allow_zero=True)
    engaged = float(sub_line.engaged_amount or 0)
    return {
        "available_amount": sub_line.available_amount,
        "new_available_amount": round(float(sub_line.available_amount or 0) - amount, 2),
        "engagement_rate": rate(engaged, sub_line.notified_amount),
        "new_engagement_rate": rate(engaged + amount, sub_line.notified_amount),
    }


# ═══════════════════════════════════════════════════════════════
# Operations
# ═══════════════════════════════════════════════════════════════
def list_engagements(actor, **params) -> dict:
    return signable_records.list_records(actor, Engagement, search_fields=SEARCH_FIELDS, **params)


def get_engagement(actor, engagement_id: int) -> Engagement:
    return signable_records.get_record(actor, Engagement, engagement_id)


def create_engagement(actor, data: dict) -> Engagement:
    require_fields(data, "grant_id", "budget_line_id", "sub_budget_line_id", "amount", "date", "description")
    grant, line, sub_line = _resolve_lines(data)
    values = {
        "grant_id": grant.id,
        "budget_line_id": line.id,
        "sub_budget_line_id": sub_line.id,
        "amount": parse_amount(data["amount"]),
        "date": require_date(data["date"], "date"),
        "engagement_number": (data.get("engagement_number") or "").strip() or None,
    }
    values.update({k: data.get(k) for k in TEXT_FIELDS if k in data})
    engagement = signable_records.create_record(actor, Engagement, values, data.get("approvals"))
    _apply_to_lines(engagement, engagement.amount)
    db.session.commit()
    return engagement


def update_engagement(actor, engagement_id: int, data: dict) -> Engagement:
    engagement = Repository(Engagement).get(engagement_id)
    values = {k: data[k] for k in TEXT_FIELDS if k in data}
    if "date" in data:
        values["date"] = require_date(data["date"], "date")
    previous_amount = float(engagement.amount)
    if "amount" in data:
        values["amount"] = parse_amount(data["amount"])
    signable_records.update_record(actor, engagement, values, data.get("version"))
    _apply_to_lines(engagement, round(float(engagement.amount) - previous_amount, 2))
    db.session.commit()
    return engagement


def delete_engagement(actor, engagement_id: int) -> None:
    engagement = Repository(Engagement).get(engagement_id)
    ensure_permission(actor, "engagements", "delete")
    if engagement.payments.count():
        raise ValidationError(
            f"L'engagement {engagement.number} a des paiements et ne peut pas être supprimé",
            details={"payments": engagement.payments.count()},
        )
    _apply_to_lines(engagement, -float(engagement.amount))
    signable_records.delete_record(actor, engagement)


def sign_engagement(actor, engagement_id: int, slot, *, expected_version=None, observation=None):
    engagement = Repository(Engagement).get(engagement_id)
    return signable_records.sign_record(
        actor, engagement, slot, expected_version=expected_version, observation=observation
    )


def change_engagement_status(actor, engagement_id: int, new_status: str, *, expected_version=None):
    engagement = Repository(Engagement).get(engagement_id)
    return signable_records.set_status(actor, engagement, new_status, expected_version=expected_version)
