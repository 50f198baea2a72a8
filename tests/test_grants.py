"""Grants, budget lines, bank accounts and transactions, and the money helpers."""

import pytest

from grantdesk.core.exceptions import BackendError, PermissionDeniedError, ValidationError
from grantdesk.services import grant_service, payment_service
from grantdesk.services.grant_service import budget_line_rates, format_currency, rate
from grantdesk.utils.helpers import parse_int

NNBSP = "\u202f"
NBSP = "\xa0"


class TestMoneyHelpers:
    def test_format_eur(self):
        assert format_currency(1500) == f"1{NNBSP}500,00{NBSP}€"

    def test_format_negative_usd(self):
        assert format_currency(-1234567.5, "USD") == f"-1{NNBSP}234{NNBSP}567,50{NBSP}$US"

    def test_format_xof_without_decimals(self):
        assert format_currency(250000, "XOF") == f"250{NNBSP}000{NBSP}F CFA"

    def test_format_without_currency(self):
        assert format_currency(12.5, None) == "12,50"

    def test_rate_guards_zero(self):
        assert rate(50, 0) == 0.0
        assert rate(1, 3) == 33.33


class TestParseInt:
    @pytest.mark.parametrize("value,expected", [(7, 7), ("42", 42), (" 3 ", 3), (5.0, 5)])
    def test_accepts_integers(self, value, expected):
        assert parse_int(value, "grant_id") == expected

    @pytest.mark.parametrize("value", ["abc", "1.5", 2.5, True, [1]])
    def test_rejects_the_rest(self, value):
        with pytest.raises(ValidationError) as exc:
            parse_int(value, "grant_id")
        assert exc.value.details == {"grant_id": "invalid"}

    def test_blank_is_required_unless_optional(self):
        with pytest.raises(ValidationError):
            parse_int("", "year")
        assert parse_int("", "year", required=False) is None


def test_grant_year_must_be_a_number(admin):
    with pytest.raises(ValidationError) as exc:
        grant_service.create_grant(admin, {"name": "G", "reference": "R-1", "total_amount": 10,
                                           "year": "deux mille"})
    assert exc.value.details == {"year": "invalid"}


def test_create_grant_validates_currency(admin):
    with pytest.raises(ValidationError):
        grant_service.create_grant(admin, {"name": "G", "reference": "R-1", "total_amount": 10,
                                           "currency": "GBP"})


def test_grant_dates_must_be_ordered(admin):
    with pytest.raises(ValidationError):
        grant_service.create_grant(admin, {"name": "G", "reference": "R-1", "total_amount": 10,
                                           "start_date": "2026-06-01", "end_date": "2026-01-01"})


def test_duplicate_reference_is_readable(admin):
    grant_service.create_grant(admin, {"name": "G", "reference": "R-1", "total_amount": 10})
    with pytest.raises(BackendError) as exc:
        grant_service.create_grant(admin, {"name": "H", "reference": "R-1", "total_amount": 20})
    assert exc.value.status_code == 409
    assert "R-1" in str(exc.value)


def test_grant_summary(make_engagement, budget, admin):
    make_engagement(amount=2000)
    summary = grant_service.grant_summary(admin, budget["grant"].id)
    assert summary["notified_amount"] == 10000
    assert summary["engaged_on_lines"] == 2000
    assert summary["engagement_rate"] == 20.0
    assert summary["total_paid"] == 0
    assert summary["formatted"]["total_amount"] == f"50{NNBSP}000,00{NBSP}€"


def test_budget_line_rates(budget):
    line = budget["line"]
    line.engaged_amount = 2500
    line.spent_amount = 1000
    assert budget_line_rates(line) == {"engagement_rate": 25.0, "disbursement_rate": 10.0}


def test_sub_line_inherits_grant(budget, admin):
    sub_line = grant_service.create_sub_budget_line(admin, budget["line"].id, {
        "code": "BL1.2", "name": "Carburant", "notified_amount": 800,
    })
    assert sub_line.grant_id == budget["grant"].id
    assert sub_line.available_amount == 800


def test_line_edit_recomputes_available(make_engagement, budget, admin):
    make_engagement(amount=1000)
    line = grant_service.update_sub_budget_line(admin, budget["sub_line"].id, {"notified_amount": 3000})
    assert line.available_amount == 2000


def test_line_with_engagements_cannot_be_deleted(make_engagement, budget, admin):
    make_engagement()
    with pytest.raises(ValidationError):
        grant_service.delete_sub_budget_line(admin, budget["sub_line"].id)


# ── Bank transactions ────────────────────────────────────────────────────────


def _transaction(account, **overrides):
    data = {
        "account_id": account.id,
        "date": "2026-03-01",
        "description": "Versement du bailleur",
        "amount": 500,
        "type": "credit",
        "reference": "VIR-001",
    }
    data.update(overrides)
    return data


def test_credit_raises_treasury_balance(budget, admin):
    before = payment_service.treasury_summary()["total_bank_balance"]
    grant_service.record_bank_transaction(admin, _transaction(budget["account"]))
    summary = payment_service.treasury_summary()
    assert summary["total_bank_balance"] == before + 500 == 2500
    assert budget["account"].balance == 2500
    assert budget["account"].last_update_date.isoformat() == "2026-03-01"


def test_debit_lowers_treasury_balance(budget, admin):
    grant_service.record_bank_transaction(
        admin, _transaction(budget["account"], type="debit", amount=1200)
    )
    summary = payment_service.treasury_summary(300)
    assert summary["total_bank_balance"] == 800
    assert summary["balance_after_payment"] == 500


def test_debit_may_overdraw_the_account(budget, admin):
    grant_service.record_bank_transaction(
        admin, _transaction(budget["account"], type="debit", amount=2500)
    )
    assert budget["account"].balance == -500


@pytest.mark.parametrize("overrides, field", [
    ({"type": "transfer"}, "type"),
    ({"amount": 0}, "amount"),
    ({"amount": "abc"}, "amount"),
    ({"account_id": "compte"}, "account_id"),
    ({"date": "hier"}, "date"),
])
def test_invalid_transaction_is_refused(budget, admin, overrides, field):
    with pytest.raises(ValidationError) as exc:
        grant_service.record_bank_transaction(admin, _transaction(budget["account"], **overrides))
    assert field in exc.value.details
    assert budget["account"].balance == 2000
    assert grant_service.list_bank_transactions(admin) == []


def test_transaction_needs_create_permission(budget, reader):
    with pytest.raises(PermissionDeniedError):
        grant_service.record_bank_transaction(reader, _transaction(budget["account"]))
    assert budget["account"].balance == 2000


def test_transactions_listed_per_account(budget, admin, make_user):
    other = grant_service.create_bank_account(admin, {
        "name": "Compte projet", "account_number": "FR76-0002", "bank_name": "Banque Test",
    })
    grant_service.record_bank_transaction(admin, _transaction(budget["account"]))
    grant_service.record_bank_transaction(admin, _transaction(other, description="Frais"))
    assert len(grant_service.list_bank_transactions(admin)) == 2
    listed = grant_service.list_bank_transactions(admin, account_id=other.id)
    assert [t.description for t in listed] == ["Frais"]
    consultant = make_user(role_code="CONSULTANT")
    with pytest.raises(PermissionDeniedError):
        grant_service.list_bank_transactions(consultant)


# ── API ──────────────────────────────────────────────────────────────────────


def test_duplicate_bank_account_is_409(client, budget, admin, auth_header):
    res = client.post("/api/v1/bank-accounts", headers=auth_header(admin), json={
        "name": "Doublon", "account_number": "FR76-0001", "bank_name": "Banque Test",
    })
    assert res.status_code == 409
    assert "FR76-0001" in res.get_json()["error"]


def test_currency_endpoint(client, reader, auth_header):
    res = client.get("/api/v1/format/currency?amount=1500&currency=EUR", headers=auth_header(reader))
    assert res.status_code == 200
    assert res.get_json()["formatted"] == f"1{NNBSP}500,00{NBSP}€"

    res = client.get("/api/v1/format/currency?amount=abc", headers=auth_header(reader))
    assert res.status_code == 400
    assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"


def test_budget_lines_endpoint_includes_rates(client, budget, admin, auth_header):
    res = client.get(f"/api/v1/grants/{budget['grant'].id}/budget-lines", headers=auth_header(admin))
    assert res.status_code == 200
    lines = res.get_json()
    assert lines[0]["code"] == "BL1"
    assert lines[0]["engagement_rate"] == 0.0


def test_bank_transaction_endpoint(client, budget, admin, reader, auth_header):
    payload = {
        "account_id": budget["account"].id, "date": "2026-03-02",
        "description": "Frais bancaires", "amount": 25, "type": "debit",
    }
    res = client.post("/api/v1/bank-transactions", headers=auth_header(admin), json=payload)
    assert res.status_code == 201
    body = res.get_json()
    assert body["type"] == "debit"
    assert body["balance"] == 1975

    res = client.post("/api/v1/bank-transactions", headers=auth_header(reader), json=payload)
    assert res.status_code == 403

    res = client.get(
        f"/api/v1/bank-transactions?account_id={budget['account'].id}", headers=auth_header(reader)
    )
    assert res.status_code == 200
    assert [t["description"] for t in res.get_json()] == ["Frais bancaires"]
