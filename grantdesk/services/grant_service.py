"""
Grant Service — grants, budget lines, sub-budget lines, bank accounts and
bank transactions.

Ordinary CRUD plus the money arithmetic shown across the back office:
currency formatting and disbursement / engagement rates.
"""

import logging
from typing import Optional

import sqlalchemy as sa
from sqlalchemy import func

from grantdesk.core.exceptions import ValidationError
from grantdesk.models import db
from grantdesk.models.finance import (
    CURRENCIES,
    GRANT_STATUSES,
    TRANSACTION_TYPES,
    BankAccount,
    BankTransaction,
    BudgetLine,
    Engagement,
    Grant,
    Payment,
    SubBudgetLine,
)
from grantdesk.services.listing import filter_records, paginate, sort_records
from grantdesk.services.permission_service import ensure_permission
from grantdesk.services.repository import Repository
from grantdesk.utils.helpers import parse_amount, parse_date, parse_int, require_date, require_fields

logger = logging.getLogger(__name__)

grants = Repository(Grant)
budget_lines = Repository(BudgetLine)
sub_budget_lines = Repository(SubBudgetLine)
bank_accounts = Repository(BankAccount)
bank_transactions = Repository(BankTransaction)

# fr-FR grouping uses a narrow no-break space, the symbol a no-break space
_GROUP_SEP = " "
_SYMBOL_SEP = " "
_CURRENCY_SYMBOLS = {"EUR": "€", "USD": "$US", "XOF": "F CFA"}
_ZERO_DECIMAL_CURRENCIES = {"XOF"}


# ═══════════════════════════════════════════════════════════════
# Arithmetic
# ═══════════════════════════════════════════════════════════════
def format_currency(amount, currency: Optional[str] = "EUR") -> str:
    """Format like ``1 500,00 €`` (French conventions).

    XOF has no minor unit and is shown without decimals.  Without a
    currency only the number is formatted.
    """
    amount = float(amount or 0)
    decimals = 0 if currency in _ZERO_DECIMAL_CURRENCIES else 2
    sign = "-" if amount < 0 else ""
    whole, _, frac = f"{abs(amount):,.{decimals}f}".partition(".")
    number = sign + whole.replace(",", _GROUP_SEP) + ("," + frac if frac else "")
    if not currency:
        return number
    return f"{number}{_SYMBOL_SEP}{_CURRENCY_SYMBOLS.get(currency, currency)}"


def rate(part, whole) -> float:
    """Percentage of ``part`` over ``whole``, 0 when ``whole`` is 0."""
    whole = float(whole or 0)
    if whole <= 0:
        return 0.0
    return round(float(part or 0) / whole * 100, 2)


def disbursement_rate(grant_id: Optional[int] = None) -> dict:
    """Amount paid (paid or cashed payments) over amount engaged."""
    engaged_q = db.session.query(func.coalesce(func.sum(Engagement.amount), 0))
    paid_q = db.session.query(func.coalesce(func.sum(Payment.amount), 0)).filter(
        Payment.status.in_(("paid", "cashed"))
    )
    if grant_id is not None:
        engaged_q = engaged_q.filter(Engagement.grant_id == grant_id)
        paid_q = paid_q.filter(Payment.grant_id == grant_id)
    engaged = float(engaged_q.scalar() or 0)
    paid = float(paid_q.scalar() or 0)
    return {"total_engaged": engaged, "total_paid": paid, "disbursement_rate": rate(paid, engaged)}


def budget_line_rates(line) -> dict:
    return {
        "engagement_rate": rate(line.engaged_amount, line.notified_amount),
        "disbursement_rate": rate(line.spent_amount, line.notified_amount),
    }


# ═══════════════════════════════════════════════════════════════
# Grants
# ═══════════════════════════════════════════════════════════════
def _grant_values(data: dict, partial: bool = False) -> dict:
    if not partial:
        require_fields(data, "name", "reference", "total_amount")
    values = {}
    for key in ("name", "reference", "granting_organization", "description"):
        if key in data:
            values[key] = (data[key] or "").strip() if isinstance(data[key], str) else data[key]
    if "year" in data:
        values["year"] = parse_int(data["year"], "year", required=False)
    for key in ("total_amount", "planned_amount"):
        if key in data:
            values[key] = parse_amount(data[key], key, allow_zero=True)
    if "currency" in data:
        if data["currency"] not in CURRENCIES:
            raise ValidationError("Devise non supportée", details={"currency": list(CURRENCIES)})
        values["currency"] = data["currency"]
    if "status" in data:
        if data["status"] not in GRANT_STATUSES:
            raise ValidationError("Statut invalide", details={"status": list(GRANT_STATUSES)})
        values["status"] = data["status"]
    for key in ("start_date", "end_date"):
        if key in data:
            values[key] = parse_date(data[key])
    start = values.get("start_date")
    end = values.get("end_date")
    if start and end and end < start:
        raise ValidationError(
            "La date de fin doit être postérieure à la date de début",
            details={"end_date": "before start_date"},
        )
    return values


def list_grants(actor, *, search=None, status=None, sort="name", direction="asc",
                page=1, page_size=20) -> dict:
    ensure_permission(actor, "grants", "view")
    rows = filter_records(
        grants.get_all(), search_term=search, status=status,
        search_fields=("name", "reference", "granting_organization"),
    )
    rows = sort_records(
        rows, sort, direction,
        numeric_fields=("total_amount", "planned_amount", "year"),
        date_fields=("start_date", "end_date", "created_at"),
    )
    return paginate(rows, page, page_size)


def get_grant(actor, grant_id: int) -> Grant:
    ensure_permission(actor, "grants", "view")
    return grants.get(grant_id)


def create_grant(actor, data: dict) -> Grant:
    ensure_permission(actor, "grants", "create")
    grant = grants.create(_grant_values(data))
    db.session.commit()
    logger.info("Grant %s created by user=%s", grant.reference, actor.id)
    return grant


def update_grant(actor, grant_id: int, data: dict) -> Grant:
    ensure_permission(actor, "grants", "edit")
    grant = grants.get(grant_id)
    grants.update(grant, _grant_values(data, partial=True))
    db.session.commit()
    return grant


def delete_grant(actor, grant_id: int) -> None:
    ensure_permission(actor, "grants", "delete")
    grant = grants.get(grant_id)
    if Engagement.query.filter_by(grant_id=grant_id).count():
        raise ValidationError("Cette subvention a des engagements et ne peut pas être supprimée")
    grants.delete(grant)
    db.session.commit()


def grant_summary(actor, grant_id: int) -> dict:
    grant = get_grant(actor, grant_id)
    lines = BudgetLine.query.filter_by(grant_id=grant_id).all()
    planned = sum(line.planned_amount or 0 for line in lines)
    notified = sum(line.notified_amount or 0 for line in lines)
    engaged = sum(line.engaged_amount or 0 for line in lines)
    summary = disbursement_rate(grant_id)
    summary.update({
        "grant": grant.to_dict(),
        "planned_amount": planned,
        "notified_amount": notified,
        "engaged_on_lines": engaged,
        "available_amount": notified - engaged,
        "engagement_rate": rate(engaged, notified),
        "formatted": {
            "total_amount": format_currency(grant.total_amount, grant.currency),
            "total_engaged": format_currency(summary["total_engaged"], grant.currency),
            "total_paid": format_currency(summary["total_paid"], grant.currency),
        },
    })
    return summary


# ═══════════════════════════════════════════════════════════════
# Budget lines & sub-budget lines
# ═══════════════════════════════════════════════════════════════
_LINE_AMOUNTS = ("planned_amount", "notified_amount", "spent_amount")


def _line_values(data: dict, partial: bool = False) -> dict:
    if not partial:
        require_fields(data, "code", "name")
    values = {k: data[k] for k in ("code", "name", "description", "color") if k in data}
    for key in _LINE_AMOUNTS:
        if key in data:
            values[key] = parse_amount(data[key], key, allow_zero=True)
    return values


def _refresh_available(line) -> None:
    line.available_amount = round(
        float(line.notified_amount or 0) - float(line.engaged_amount or 0), 2
    )


def list_budget_lines(actor, grant_id: int) -> list[BudgetLine]:
    ensure_permission(actor, "budget_planning", "view")
    return BudgetLine.query.filter_by(grant_id=grant_id).order_by(BudgetLine.code).all()


def create_budget_line(actor, grant_id: int, data: dict) -> BudgetLine:
    ensure_permission(actor, "budget_planning", "create")
    grants.get(grant_id)
    values = _line_values(data)
    values.update(grant_id=grant_id, engaged_amount=0)
    values["available_amount"] = values.get("notified_amount", 0)
    line = budget_lines.create(values)
    db.session.commit()
    return line


def update_budget_line(actor, line_id: int, data: dict) -> BudgetLine:
    ensure_permission(actor, "budget_planning", "edit")
    line = budget_lines.get(line_id)
    budget_lines.update(line, _line_values(data, partial=True))
    _refresh_available(line)
    db.session.commit()
    return line


def delete_budget_line(actor, line_id: int) -> None:
    ensure_permission(actor, "budget_planning", "delete")
    line = budget_lines.get(line_id)
    if Engagement.query.filter_by(budget_line_id=line_id).count():
        raise ValidationError("Cette ligne budgétaire a des engagements et ne peut pas être supprimée")
    budget_lines.delete(line)
    db.session.commit()


def list_sub_budget_lines(actor, budget_line_id: int) -> list[SubBudgetLine]:
    ensure_permission(actor, "budget_planning", "view")
    return (
        SubBudgetLine.query.filter_by(budget_line_id=budget_line_id)
        .order_by(SubBudgetLine.code)
        .all()
    )


def create_sub_budget_line(actor, budget_line_id: int, data: dict) -> SubBudgetLine:
    ensure_permission(actor, "budget_planning", "create")
    parent = budget_lines.get(budget_line_id)
    values = _line_values(data)
    values.update(grant_id=parent.grant_id, budget_line_id=parent.id, engaged_amount=0)
    values["available_amount"] = values.get("notified_amount", 0)
    line = sub_budget_lines.create(values)
    db.session.commit()
    return line


def update_sub_budget_line(actor, line_id: int, data: dict) -> SubBudgetLine:
    ensure_permission(actor, "budget_planning", "edit")
    line = sub_budget_lines.get(line_id)
    sub_budget_lines.update(line, _line_values(data, partial=True))
    _refresh_available(line)
    db.session.commit()
    return line


def delete_sub_budget_line(actor, line_id: int) -> None:
    ensure_permission(actor, "budget_planning", "delete")
    line = sub_budget_lines.get(line_id)
    if Engagement.query.filter_by(sub_budget_line_id=line_id).count():
        raise ValidationError(
            "Cette sous-ligne budgétaire a des engagements et ne peut pas être supprimée"
        )
    sub_budget_lines.delete(line)
    db.session.commit()


# ═══════════════════════════════════════════════════════════════
# Bank accounts
# ═══════════════════════════════════════════════════════════════
def _account_values(data: dict, partial: bool = False) -> dict:
    if not partial:
        require_fields(data, "name", "account_number", "bank_name")
    values = {}
    for key in ("name", "account_number", "bank_name"):
        if key in data:
            values[key] = (data[key] or "").strip()
    if "balance" in data:
        values["balance"] = parse_amount(data["balance"], "balance", allow_zero=True)
    if "grant_id" in data:
        values["grant_id"] = parse_int(data["grant_id"], "grant_id", required=False)
    if "last_update_date" in data:
        values["last_update_date"] = parse_date(data["last_update_date"])
    return values


def list_bank_accounts(actor) -> list[BankAccount]:
    ensure_permission(actor, "bank_accounts", "view")
    return BankAccount.query.order_by(BankAccount.name).all()


def create_bank_account(actor, data: dict) -> BankAccount:
    ensure_permission(actor, "bank_accounts", "create")
    account = bank_accounts.create(_account_values(data))
    db.session.commit()
    logger.info("Bank account %s created by user=%s", account.account_number, actor.id)
    return account


def update_bank_account(actor, account_id: int, data: dict) -> BankAccount:
    ensure_permission(actor, "bank_accounts", "edit")
    account = bank_accounts.get(account_id)
    bank_accounts.update(account, _account_values(data, partial=True))
    db.session.commit()
    return account


def delete_bank_account(actor, account_id: int) -> None:
    ensure_permission(actor, "bank_accounts", "delete")
    bank_accounts.delete(bank_accounts.get(account_id))
    db.session.commit()


# ═══════════════════════════════════════════════════════════════
# Bank transactions
# ═══════════════════════════════════════════════════════════════
def list_bank_transactions(actor, account_id: Optional[int] = None) -> list[BankTransaction]:
    ensure_permission(actor, "bank_transactions", "view")
    query = BankTransaction.query
    if account_id is not None:
        query = query.filter(BankTransaction.account_id == account_id)
    return query.order_by(BankTransaction.date.desc(), BankTransaction.id.desc()).all()


def record_bank_transaction(actor, data: dict) -> BankTransaction:
    """Record a credit or debit and move the account balance by it.

    The balance is adjusted in SQL so concurrent transactions on one account
    all land. Debits may take the balance below zero (overdraft).
    """
    ensure_permission(actor, "bank_transactions", "create")
    require_fields(data, "account_id", "date", "description", "amount", "type")
    if data["type"] not in TRANSACTION_TYPES:
        raise ValidationError(
            "Type de transaction invalide", details={"type": list(TRANSACTION_TYPES)}
        )
    account = bank_accounts.get(parse_int(data["account_id"], "account_id"))
    amount = parse_amount(data["amount"])
    when = require_date(data["date"], "date")

    transaction = bank_transactions.create({
        "account_id": account.id,
        "date": when,
        "description": str(data["description"]).strip(),
        "amount": amount,
        "type": data["type"],
        "reference": (data.get("reference") or "").strip(),
        "created_by": actor.id,
    })
    delta = amount if data["type"] == "credit" else -amount
    db.session.execute(
        sa.update(BankAccount)
        .where(BankAccount.id == account.id)
        .values(balance=BankAccount.balance + delta, last_update_date=when)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    db.session.refresh(account)
    logger.info(
        "Bank %s of %.2f on account %s by user=%s",
        transaction.type, amount, account.account_number, actor.id,
        extra={"event_type": "bank_transaction"},
    )
    return transaction
