"""
Payment Service — payments against approved engagements.

A payment can only be created when:
  - its engagement is ``approved``
  - ``0 < amount <= engagement.amount``
  - the treasury stays non-negative:
        sum(bank balances) - sum(paid, not yet cashed payments) - amount >= 0

Both checks block creation; nothing is written when either fails.
"""

import logging
from typing import Optional

from sqlalchemy import func

from grantdesk.core.exceptions import ValidationError
from grantdesk.models import db
from grantdesk.models.finance import PAYMENT_METHODS, BankAccount, Engagement, Payment
from grantdesk.services import signable_records
from grantdesk.services.permission_service import ensure_permission
from grantdesk.services.repository import Repository
from grantdesk.utils.helpers import parse_amount, parse_int, require_date, require_fields

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("payment_number", "description", "supplier", "invoice_number", "bank_reference")
TEXT_FIELDS = (
    "description", "check_number", "bank_reference", "invoice_number",
    "quote_reference", "delivery_note", "purchase_order_number", "control_notes",
)


# ═══════════════════════════════════════════════════════════════
# Treasury
# ═══════════════════════════════════════════════════════════════
def total_bank_balance() -> float:
    return float(db.session.query(func.coalesce(func.sum(BankAccount.balance), 0)).scalar() or 0)


def total_uncashed() -> float:
    """Payments marked paid whose cheque or transfer hasn't cleared yet."""
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.status == "paid", Payment.cashed_date.is_(None))
        .scalar()
    )
    return float(total or 0)


def treasury_summary(amount: float = 0.0) -> dict:
    bank = total_bank_balance()
    uncashed = total_uncashed()
    available = round(bank - uncashed, 2)
    return {
        "total_bank_balance": bank,
        "total_uncashed": uncashed,
        "available_before_payment": available,
        "balance_after_payment": round(available - amount, 2),
    }


def validate_payment_amount(engagement: Engagement, amount: float) -> dict:
    """Run the engagement and treasury checks; returns the treasury summary."""
    if amount <= 0:
        raise ValidationError("Le montant doit être supérieur à 0", details={"amount": "must be positive"})
    if amount > float(engagement.amount):
        raise ValidationError(
            f"Le montant dépasse le montant de l'engagement ({engagement.amount:.2f})",
            details={"amount": "exceeds engagement amount"},
        )

    summary = treasury_summary(amount)
    if summary["balance_after_payment"] < 0:
        raise ValidationError(
            "Solde de trésorerie insuffisant pour ce paiement",
            details={"treasury": summary},
        )
    return summary


# ═══════════════════════════════════════════════════════════════
# Operations
# ═══════════════════════════════════════════════════════════════
def _method(value: Optional[str]) -> str:
    method = value or "transfer"
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            "Mode de paiement invalide", details={"payment_method": list(PAYMENT_METHODS)}
        )
    return method


def list_payments(actor, **params) -> dict:
    return signable_records.list_records(actor, Payment, search_fields=SEARCH_FIELDS, **params)


def get_payment(actor, payment_id: int) -> Payment:
    return signable_records.get_record(actor, Payment, payment_id)


def create_payment(actor, data: dict) -> Payment:
    ensure_permission(actor, "payments", "create")
    require_fields(data, "engagement_id", "amount", "description", "invoice_number", "date")
    engagement = Repository(Engagement).get(parse_int(data["engagement_id"], "engagement_id"))
    if engagement.status != "approved":
        raise ValidationError(
            f"L'engagement {engagement.number} doit être approuvé avant tout paiement",
            details={"engagement_id": engagement.status},
        )
    amount = parse_amount(data["amount"])
    validate_payment_amount(engagement, amount)

    values = {
        "engagement_id": engagement.id,
        "grant_id": engagement.grant_id,
        "budget_line_id": engagement.budget_line_id,
        "sub_budget_line_id": engagement.sub_budget_line_id,
        "supplier": engagement.supplier or "",
        "amount": amount,
        "date": require_date(data["date"], "date"),
        "payment_method": _method(data.get("payment_method")),
        "invoice_amount": parse_amount(
            data.get("invoice_amount", engagement.amount), "invoice_amount", allow_zero=True
        ),
        "service_acceptance": bool(data.get("service_acceptance", False)),
        "payment_number": (data.get("payment_number") or "").strip() or None,
    }
    if not data.get("quote_reference") and engagement.quote_reference:
        values["quote_reference"] = engagement.quote_reference
    values.update({k: data[k] for k in TEXT_FIELDS if data.get(k) is not None})
    if values["payment_method"] == "check" and not values.get("check_number"):
        raise ValidationError("Le numéro de chèque est obligatoire", details={"check_number": "required"})

    payment = signable_records.create_record(actor, Payment, values, data.get("approvals"))
    db.session.commit()
    return payment


def update_payment(actor, payment_id: int, data: dict) -> Payment:
    payment = Repository(Payment).get(payment_id)
    values = {k: data[k] for k in TEXT_FIELDS if k in data}
    if "date" in data:
        values["date"] = require_date(data["date"], "date")
    if "payment_method" in data:
        values["payment_method"] = _method(data["payment_method"])
    if "service_acceptance" in data:
        values["service_acceptance"] = bool(data["service_acceptance"])
    if "invoice_amount" in data:
        values["invoice_amount"] = parse_amount(data["invoice_amount"], "invoice_amount", allow_zero=True)
    if "amount" in data:
        values["amount"] = parse_amount(data["amount"])
        signable_records.assert_editable(payment)
        validate_payment_amount(payment.engagement, values["amount"])
    signable_records.update_record(actor, payment, values, data.get("version"))
    db.session.commit()
    return payment


def delete_payment(actor, payment_id: int) -> None:
    signable_records.delete_record(actor, Repository(Payment).get(payment_id))


def sign_payment(actor, payment_id: int, slot, *, expected_version=None, observation=None):
    payment = Repository(Payment).get(payment_id)
    return signable_records.sign_record(
        actor, payment, slot, expected_version=expected_version, observation=observation
    )


def change_payment_status(actor, payment_id: int, new_status: str, *, expected_version=None):
    payment = Repository(Payment).get(payment_id)
    return signable_records.set_status(actor, payment, new_status, expected_version=expected_version)
