"""Prefinancing creation, expenses and the repayment ledger."""

import pytest
import sqlalchemy as sa

from grantdesk.core.exceptions import ValidationError
from grantdesk.models import db as _db
from grantdesk.models.finance import Prefinancing
from grantdesk.services import prefinancing_service
from grantdesk.services.prefinancing_service import add_repayment, clean_expenses
from grantdesk.services.status_lifecycle import change_status


def _mark_paid(prefinancing):
    _db.session.execute(
        sa.update(Prefinancing).where(Prefinancing.id == prefinancing.id).values(status="paid")
    )
    _db.session.commit()


def test_clean_expenses_keeps_complete_lines():
    kept = clean_expenses([
        {"supplier": "A", "invoice_number": "1", "amount": "150,50"},
        {"supplier": "B", "invoice_number": "", "amount": 20},
        "noise",
    ])
    assert kept == [{"supplier": "A", "invoice_number": "1", "amount": 150.5, "description": ""}]


def test_at_least_one_expense_is_required():
    with pytest.raises(ValidationError) as exc:
        clean_expenses([{"supplier": "A"}])
    assert exc.value.details == {"expenses": "required"}


def test_create_prefinancing(make_prefinancing):
    prefinancing = make_prefinancing()
    assert prefinancing.prefinancing_number == "PRE-2026-000001"
    assert prefinancing.status == "pending"
    assert prefinancing.remaining_amount == 10000


def test_repayment_date_must_follow_date(make_prefinancing):
    with pytest.raises(ValidationError):
        make_prefinancing(expected_repayment_date="2026-02-01")


def test_repayment_only_once_paid(make_prefinancing, accountant):
    prefinancing = make_prefinancing()
    with pytest.raises(ValidationError):
        add_repayment(accountant, prefinancing.id, {"amount": 100, "reference": "VIR-1"})


def test_repayments_cannot_exceed_principal(make_prefinancing, accountant):
    prefinancing = make_prefinancing(amount=10000)
    _mark_paid(prefinancing)

    add_repayment(accountant, prefinancing.id, {"amount": 4000, "reference": "VIR-1"})
    assert prefinancing.total_repaid == 4000
    assert prefinancing.remaining_amount == 6000

    with pytest.raises(ValidationError) as exc:
        add_repayment(accountant, prefinancing.id, {"amount": 7000, "reference": "VIR-2"})
    assert exc.value.details["remaining_amount"] == 6000
    assert len(prefinancing.repayments) == 1


def test_repaid_needs_nothing_remaining(make_prefinancing, accountant):
    prefinancing = make_prefinancing(amount=1000)
    _mark_paid(prefinancing)
    add_repayment(accountant, prefinancing.id, {"amount": 600, "reference": "VIR-1"})
    with pytest.raises(ValidationError):
        change_status(prefinancing, "repaid", accountant)

    add_repayment(accountant, prefinancing.id, {"amount": 400, "reference": "VIR-2"})
    change_status(prefinancing, "repaid", accountant)
    assert prefinancing.status == "repaid"


def test_full_path_to_paid(make_prefinancing, approve, accountant):
    prefinancing = approve(make_prefinancing())
    change_status(prefinancing, "paid", accountant)
    repayment = add_repayment(accountant, prefinancing.id, {"amount": 2500, "reference": "VIR-9"})
    assert repayment.to_dict()["amount"] == 2500


def test_update_replaces_expenses(make_prefinancing, grant_coordinator):
    prefinancing = make_prefinancing()
    updated = prefinancing_service.update_prefinancing(grant_coordinator, prefinancing.id, {
        "expenses": [{"supplier": "Traiteur", "invoice_number": "T-3", "amount": 900}],
    })
    assert updated.expenses[0]["supplier"] == "Traiteur"
