"""
Employee Loan Service — staff advances repaid by installments.

Loans go through the same three-signature approval as payments, then the
Comptable activates them (``approved → active``).  Repayments are accepted
only on active loans and never beyond the principal; ``active → completed``
needs the loan fully repaid.
"""

import calendar
import logging
from datetime import date

from grantdesk.core.exceptions import ValidationError
from grantdesk.models import db
from grantdesk.models.finance import LOAN_FREQUENCIES, EmployeeLoan, Grant, LoanRepayment
from grantdesk.services import signable_records
from grantdesk.services.grant_service import rate
from grantdesk.services.permission_service import ensure_permission
from grantdesk.services.repository import Repository
from grantdesk.utils.helpers import parse_amount, parse_int, require_date, require_fields

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("loan_number", "employee_name", "employee_ref", "description")
FREQUENCY_MONTHS = {"monthly": 1, "quarterly": 3, "annual": 12}
FREQUENCY_LABELS = {"monthly": "Mensuel", "quarterly": "Trimestriel", "annual": "Annuel"}

REPAYABLE_STATUS = "active"


def _add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def installment_schedule(loan: EmployeeLoan) -> list[dict]:
    """Due dates and amounts; the last installment absorbs rounding."""
    step = FREQUENCY_MONTHS[loan.frequency]
    count = max(1, loan.number_of_installments)
    amount = float(loan.installment_amount or 0) or round(float(loan.amount) / count, 2)
    schedule = []
    remaining = float(loan.amount)
    for i in range(1, count + 1):
        due = amount if i < count else remaining
        due = round(min(due, remaining), 2)
        remaining = round(remaining - due, 2)
        schedule.append({"number": i, "due_date": _add_months(loan.date, step * i).isoformat(), "amount": due})
    return schedule


def repayment_progress(loan: EmployeeLoan) -> float:
    return rate(loan.total_repaid, loan.amount)


def _schedule_values(data: dict, amount: float) -> dict:
    schedule = data.get("repayment_schedule") or {}
    frequency = schedule.get("frequency", "monthly")
    if frequency not in LOAN_FREQUENCIES:
        raise ValidationError("Fréquence invalide", details={"frequency": list(LOAN_FREQUENCIES)})
    try:
        count = int(schedule.get("number_of_installments", 12))
    except (TypeError, ValueError):
        raise ValidationError(
            "Nombre d'échéances invalide", details={"number_of_installments": "invalid"}
        ) from None
    if count < 1:
        raise ValidationError(
            "Le nombre d'échéances doit être au moins 1",
            details={"number_of_installments": "must be >= 1"},
        )
    installment = schedule.get("installment_amount")
    installment = (
        parse_amount(installment, "installment_amount")
        if installment not in (None, "")
        else round(amount / count, 2)
    )
    if installment > amount:
        raise ValidationError(
            "L'échéance ne peut pas dépasser le montant du prêt",
            details={"installment_amount": "exceeds amount"},
        )
    return {"frequency": frequency, "number_of_installments": count, "installment_amount": installment}


# ═══════════════════════════════════════════════════════════════
# Operations
# ═══════════════════════════════════════════════════════════════
def list_loans(actor, **params) -> dict:
    return signable_records.list_records(actor, EmployeeLoan, search_fields=SEARCH_FIELDS, **params)


def get_loan(actor, loan_id: int) -> EmployeeLoan:
    return signable_records.get_record(actor, EmployeeLoan, loan_id)


def create_loan(actor, data: dict) -> EmployeeLoan:
    ensure_permission(actor, "employee_loans", "create")
    require_fields(data, "grant_id", "amount", "date", "expected_repayment_date")
    employee = data.get("employee") or {}
    if not employee.get("name") or not employee.get("employee_id"):
        raise ValidationError(
            "Veuillez remplir le nom et le matricule de l'employé",
            details={"employee": "name and employee_id required"},
        )
    grant = Repository(Grant).get(parse_int(data["grant_id"], "grant_id"))
    amount = parse_amount(data["amount"])
    values = {
        "grant_id": grant.id,
        "budget_line_id": data.get("budget_line_id") or None,
        "sub_budget_line_id": data.get("sub_budget_line_id") or None,
        "employee_name": str(employee["name"]).strip(),
        "employee_ref": str(employee["employee_id"]).strip(),
        "amount": amount,
        "date": require_date(data["date"], "date"),
        "expected_repayment_date": require_date(data["expected_repayment_date"], "expected_repayment_date"),
        "description": data.get("description") or "",
        "loan_number": (data.get("loan_number") or "").strip() or None,
    }
    values.update(_schedule_values(data, amount))
    loan = signable_records.create_record(actor, EmployeeLoan, values, data.get("approvals"))
    db.session.commit()
    return loan


def update_loan(actor, loan_id: int, data: dict) -> EmployeeLoan:
    loan = Repository(EmployeeLoan).get(loan_id)
    values = {}
    if "description" in data:
        values["description"] = data["description"] or ""
    for key in ("date", "expected_repayment_date"):
        if key in data:
            values[key] = require_date(data[key], key)
    amount = float(loan.amount)
    if "amount" in data:
        values["amount"] = amount = parse_amount(data["amount"])
    if "repayment_schedule" in data:
        values.update(_schedule_values(data, amount))
    employee = data.get("employee") or {}
    if employee.get("name"):
        values["employee_name"] = str(employee["name"]).strip()
    if employee.get("employee_id"):
        values["employee_ref"] = str(employee["employee_id"]).strip()
    signable_records.update_record(actor, loan, values, data.get("version"))
    db.session.commit()
    return loan


def delete_loan(actor, loan_id: int) -> None:
    signable_records.delete_record(actor, Repository(EmployeeLoan).get(loan_id))


def sign_loan(actor, loan_id: int, slot, *, expected_version=None, observation=None):
    loan = Repository(EmployeeLoan).get(loan_id)
    return signable_records.sign_record(
        actor, loan, slot, expected_version=expected_version, observation=observation
    )


def change_loan_status(actor, loan_id: int, new_status: str, *, expected_version=None):
    loan = Repository(EmployeeLoan).get(loan_id)
    return signable_records.set_status(actor, loan, new_status, expected_version=expected_version)


def add_repayment(actor, loan_id: int, data: dict) -> LoanRepayment:
    ensure_permission(actor, "employee_loans", "edit")
    loan = Repository(EmployeeLoan).get(loan_id)
    require_fields(data, "amount", "reference")
    if loan.status != REPAYABLE_STATUS:
        raise ValidationError(
            f"Seul un prêt actif peut être remboursé (statut '{loan.status}')",
            details={"status": loan.status},
        )
    amount = parse_amount(data["amount"])
    remaining = loan.remaining_amount
    if amount > remaining:
        raise ValidationError(
            f"Le remboursement ({amount:.2f}) dépasse le montant restant ({remaining:.2f})",
            details={"amount": "exceeds remaining", "remaining_amount": remaining},
        )
    repayment = Repository(LoanRepayment).create({
        "loan_id": loan.id,
        "date": require_date(data.get("date") or date.today(), "date"),
        "amount": amount,
        "reference": str(data["reference"]).strip(),
    })
    db.session.commit()
    logger.info(
        "Loan repayment of %.2f on %s by user=%s", amount, loan.number, actor.id,
        extra={"event_type": "repayment"},
    )
    return repayment
