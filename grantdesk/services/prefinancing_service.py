"""
Prefinancing Service — cash advances and their repayment ledger.

A prefinancing lists the expenses it covers (at least one complete line:
supplier, invoice number, amount).  Once paid it is repaid through ledger
entries; the ledger total can never exceed the principal.  Moving the record
to ``repaid`` stays a manual Comptable action, allowed once nothing remains.
"""

import logging
from datetime import date

from grantdesk.core.exceptions import ValidationError
from grantdesk.models import db
from grantdesk.models.finance import (
    PREFINANCING_PURPOSES,
    BudgetLine,
    Grant,
    Prefinancing,
    PrefinancingRepayment,
)
from grantdesk.services import signable_records
from grantdesk.services.permission_service import ensure_permission
from grantdesk.services.repository import Repository
from grantdesk.utils.helpers import parse_amount, parse_int, require_date, require_fields

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("prefinancing_number", "description", "target_bank_account", "target_grant")

PURPOSE_LABELS = {
    "specific_expenses": "Dépenses spécifiques",
    "other_accounts": "Autres comptes bancaires",
    "between_grants": "Entre subventions",
}

REPAYABLE_STATUS = "paid"


def clean_expenses(raw) -> list[dict]:
    """Keep complete expense lines; at least one is required."""
    if raw is not None and not isinstance(raw, list):
        raise ValidationError("expenses doit être une liste", details={"expenses": "invalid"})
    expenses = []
    for entry in raw or []:
        if not isinstance(entry, dict):
            continue
        if not (entry.get("supplier") and entry.get("invoice_number") and entry.get("amount")):
            continue
        expenses.append({
            "supplier": str(entry["supplier"]).strip(),
            "invoice_number": str(entry["invoice_number"]).strip(),
            "amount": parse_amount(entry["amount"], "expenses.amount"),
            "description": (entry.get("description") or "").strip(),
        })
    if not expenses:
        raise ValidationError(
            "Veuillez ajouter au moins une dépense avec fournisseur, facture et montant",
            details={"expenses": "required"},
        )
    return expenses


def _values(data: dict, partial: bool = False) -> dict:
    values = {}
    if "amount" in data or not partial:
        values["amount"] = parse_amount(data.get("amount"))
    for key in ("date", "expected_repayment_date"):
        if key in data or not partial:
            values[key] = require_date(data.get(key), key)
    if "purpose" in data:
        if data["purpose"] not in PREFINANCING_PURPOSES:
            raise ValidationError("Objet invalide", details={"purpose": list(PREFINANCING_PURPOSES)})
        values["purpose"] = data["purpose"]
    for key in ("description", "target_bank_account", "target_grant"):
        if key in data:
            values[key] = data[key]
    if "expenses" in data or not partial:
        values["expenses"] = clean_expenses(data.get("expenses"))
    for key in ("budget_line_id", "sub_budget_line_id"):
        if data.get(key):
            values[key] = parse_int(data[key], key)
    if values.get("date") and values.get("expected_repayment_date") \
            and values["expected_repayment_date"] < values["date"]:
        raise ValidationError(
            "La date de remboursement prévue doit suivre la date du préfinancement",
            details={"expected_repayment_date": "before date"},
        )
    return values


# ═══════════════════════════════════════════════════════════════
# Operations
# ═══════════════════════════════════════════════════════════════
def list_prefinancings(actor, **params) -> dict:
    return signable_records.list_records(actor, Prefinancing, search_fields=SEARCH_FIELDS, **params)


def get_prefinancing(actor, prefinancing_id: int) -> Prefinancing:
    return signable_records.get_record(actor, Prefinancing, prefinancing_id)


def create_prefinancing(actor, data: dict) -> Prefinancing:
    ensure_permission(actor, "prefinancing", "create")
    require_fields(data, "grant_id", "amount", "description")
    grant = Repository(Grant).get(parse_int(data["grant_id"], "grant_id"))
    values = _values(data)
    values["grant_id"] = grant.id
    if values.get("budget_line_id"):
        line = Repository(BudgetLine).get(values["budget_line_id"])
        if line.grant_id != grant.id:
            raise ValidationError(
                "La ligne budgétaire ne correspond pas à la subvention",
                details={"budget_line_id": "mismatch"},
            )
    values["prefinancing_number"] = (data.get("prefinancing_number") or "").strip() or None
    prefinancing = signable_records.create_record(actor, Prefinancing, values, data.get("approvals"))
    db.session.commit()
    return prefinancing


def update_prefinancing(actor, prefinancing_id: int, data: dict) -> Prefinancing:
    prefinancing = Repository(Prefinancing).get(prefinancing_id)
    signable_records.update_record(actor, prefinancing, _values(data, partial=True), data.get("version"))
    db.session.commit()
    return prefinancing


def delete_prefinancing(actor, prefinancing_id: int) -> None:
    signable_records.delete_record(actor, Repository(Prefinancing).get(prefinancing_id))


def sign_prefinancing(actor, prefinancing_id: int, slot, *, expected_version=None, observation=None):
    prefinancing = Repository(Prefinancing).get(prefinancing_id)
    return signable_records.sign_record(
        actor, prefinancing, slot, expected_version=expected_version, observation=observation
    )


def change_prefinancing_status(actor, prefinancing_id: int, new_status: str, *, expected_version=None):
    prefinancing = Repository(Prefinancing).get(prefinancing_id)
    return signable_records.set_status(
        actor, prefinancing, new_status, expected_version=expected_version
    )


def add_repayment(actor, prefinancing_id: int, data: dict) -> PrefinancingRepayment:
    """Record a repayment; refused once it would exceed the remaining amount."""
    ensure_permission(actor, "prefinancing", "edit")
    prefinancing = Repository(Prefinancing).get(prefinancing_id)
    require_fields(data, "amount", "reference")
    if prefinancing.status != REPAYABLE_STATUS:
        raise ValidationError(
            f"Seul un préfinancement payé peut être remboursé (statut '{prefinancing.status}')",
            details={"status": prefinancing.status},
        )
    amount = parse_amount(data["amount"])
    remaining = prefinancing.remaining_amount
    if amount > remaining:
        raise ValidationError(
            f"Le remboursement ({amount:.2f}) dépasse le montant restant ({remaining:.2f})",
            details={"amount": "exceeds remaining", "remaining_amount": remaining},
        )
    repayment = Repository(PrefinancingRepayment).create({
        "prefinancing_id": prefinancing.id,
        "date": require_date(data.get("date") or date.today(), "date"),
        "amount": amount,
        "reference": str(data["reference"]).strip(),
    })
    db.session.commit()
    db.session.refresh(prefinancing)
    logger.info(
        "Repayment of %.2f on %s by user=%s (remaining %.2f)",
        amount, prefinancing.number, actor.id, prefinancing.remaining_amount,
        extra={"event_type": "repayment"},
    )
    return repayment
