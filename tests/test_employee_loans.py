"""Employee loans: schedule, activation and repayments."""

from datetime import date
from types import SimpleNamespace

import pytest

from grantdesk.core.exceptions import ValidationError
from grantdesk.services import employee_loan_service
from grantdesk.services.employee_loan_service import (
    _add_months,
    add_repayment,
    installment_schedule,
    repayment_progress,
)
from grantdesk.services.status_lifecycle import change_status


def test_add_months_clamps_to_month_end():
    assert _add_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
    assert _add_months(date(2026, 11, 15), 3) == date(2027, 2, 15)


def test_schedule_last_installment_absorbs_rounding():
    loan = SimpleNamespace(amount=1000.0, installment_amount=333.33, number_of_installments=3,
                           frequency="monthly", date=date(2026, 1, 31))
    schedule = installment_schedule(loan)
    assert [i["amount"] for i in schedule] == [333.33, 333.33, 333.34]
    assert [i["due_date"] for i in schedule] == ["2026-02-28", "2026-03-31", "2026-04-30"]


def test_quarterly_schedule():
    loan = SimpleNamespace(amount=900.0, installment_amount=0, number_of_installments=2,
                           frequency="quarterly", date=date(2026, 1, 10))
    schedule = installment_schedule(loan)
    assert [i["due_date"] for i in schedule] == ["2026-04-10", "2026-07-10"]
    assert [i["amount"] for i in schedule] == [450.0, 450.0]


def test_create_loan_defaults_installment(make_loan):
    loan = make_loan(amount=1200)
    assert loan.loan_number == "PRET-2026-000001"
    assert loan.installment_amount == 400
    assert loan.to_dict()["employee"] == {"name": "Jean Kouassi", "employee_id": "EMP-042"}


def test_employee_identity_required(make_loan):
    with pytest.raises(ValidationError):
        make_loan(employee={"name": "Sans Matricule"})


def test_installment_cannot_exceed_amount(make_loan):
    with pytest.raises(ValidationError):
        make_loan(amount=500, repayment_schedule={"installment_amount": 800})


def test_repayments_only_on_active_loans(make_loan, approve, accountant):
    loan = approve(make_loan(amount=1200))
    with pytest.raises(ValidationError):
        add_repayment(accountant, loan.id, {"amount": 100, "reference": "RET-01"})

    change_status(loan, "active", accountant)
    add_repayment(accountant, loan.id, {"amount": 400, "reference": "RET-01"})
    assert loan.remaining_amount == 800
    assert repayment_progress(loan) == pytest.approx(33.33, abs=0.01)

    with pytest.raises(ValidationError):
        add_repayment(accountant, loan.id, {"amount": 900, "reference": "RET-02"})


def test_active_loan_cannot_be_deleted(make_loan, approve, accountant, admin):
    loan = approve(make_loan())
    change_status(loan, "active", accountant)
    with pytest.raises(ValidationError):
        employee_loan_service.delete_loan(admin, loan.id)


def test_pending_loan_can_be_deleted(make_loan, admin):
    loan = make_loan()
    employee_loan_service.delete_loan(admin, loan.id)
    assert employee_loan_service.list_loans(admin)["total"] == 0


def test_schedule_endpoint(client, make_loan, grant_coordinator, auth_header):
    loan = make_loan(amount=1200)
    res = client.get(f"/api/v1/employee-loans/{loan.id}/schedule", headers=auth_header(grant_coordinator))
    assert res.status_code == 200
    body = res.get_json()
    assert len(body["installments"]) == 3
    assert body["remaining_amount"] == 1200
    assert body["progress"] == 0
