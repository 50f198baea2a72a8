"""
Payment rules: approved engagement, engagement ceiling and treasury balance.

Test blocks:
  1. Treasury summary
  2. Creation checks
  3. Editing
"""

import pytest

from grantdesk.core.exceptions import ValidationError
from grantdesk.models.finance import Payment
from grantdesk.services import payment_service
from grantdesk.services.status_lifecycle import change_status


@pytest.fixture()
def approved_engagement(make_engagement, approve):
    return approve(make_engagement(amount=1000))


# ── 1. Treasury summary ──────────────────────────────────────────────────────


def test_treasury_summary_before_any_payment(budget):
    summary = payment_service.treasury_summary(500)
    assert summary["total_bank_balance"] == 2000
    assert summary["total_uncashed"] == 0
    assert summary["available_before_payment"] == 2000
    assert summary["balance_after_payment"] == 1500


def test_paid_uncashed_payments_reduce_treasury(approved_engagement, make_payment, approve, accountant):
    payment = approve(make_payment(approved_engagement, amount=600))
    change_status(payment, "paid", accountant)
    assert payment_service.total_uncashed() == 600
    assert payment_service.treasury_summary(100)["balance_after_payment"] == 1300

    change_status(payment, "cashed", accountant)
    assert payment_service.total_uncashed() == 0


# ── 2. Creation checks ───────────────────────────────────────────────────────


def test_payment_within_engagement_and_treasury(approved_engagement, make_payment):
    payment = make_payment(approved_engagement, amount=500)
    assert payment.status == "pending"
    assert payment.payment_number.startswith("PAY-")
    assert payment.grant_id == approved_engagement.grant_id
    assert payment.supplier == "Papeterie Centrale"


def test_treasury_shortfall_blocks_creation(make_engagement, approve, make_payment):
    engagement = approve(make_engagement(amount=3000))
    with pytest.raises(ValidationError) as exc:
        make_payment(engagement, amount=2500)
    assert exc.value.details["treasury"]["balance_after_payment"] == -500
    assert Payment.query.count() == 0


def test_payment_cannot_exceed_engagement(approved_engagement, make_payment):
    with pytest.raises(ValidationError) as exc:
        make_payment(approved_engagement, amount=1000.01)
    assert exc.value.details == {"amount": "exceeds engagement amount"}
    assert Payment.query.count() == 0


def test_each_payment_is_checked_against_the_engagement_alone(approved_engagement, make_payment):
    make_payment(approved_engagement, amount=600)
    second = make_payment(approved_engagement, amount=500, invoice_number="FAC-002")
    assert second.status == "pending"
    assert Payment.query.count() == 2


def test_unapproved_engagement_is_refused(make_engagement, make_payment):
    with pytest.raises(ValidationError) as exc:
        make_payment(make_engagement(), amount=100)
    assert "engagement_id" in exc.value.details


def test_check_payment_needs_check_number(approved_engagement, make_payment):
    with pytest.raises(ValidationError):
        make_payment(approved_engagement, payment_method="check")
    payment = make_payment(approved_engagement, payment_method="check", check_number="CHQ-118")
    assert payment.check_number == "CHQ-118"


def test_unknown_payment_method(approved_engagement, make_payment):
    with pytest.raises(ValidationError):
        make_payment(approved_engagement, payment_method="bitcoin")


def test_required_fields(approved_engagement, make_payment):
    with pytest.raises(ValidationError) as exc:
        make_payment(approved_engagement, invoice_number="")
    assert exc.value.details == {"invoice_number": "required"}


# ── 3. Editing ───────────────────────────────────────────────────────────────


def test_amount_edit_rechecks_ceiling(approved_engagement, make_payment, grant_coordinator):
    payment = make_payment(approved_engagement, amount=500)
    with pytest.raises(ValidationError):
        payment_service.update_payment(grant_coordinator, payment.id, {"amount": 1500})
    updated = payment_service.update_payment(grant_coordinator, payment.id, {"amount": 900})
    assert updated.amount == 900
    assert updated.version == 2


def test_signed_payment_is_not_editable(approved_engagement, make_payment, grant_coordinator):
    payment = make_payment(approved_engagement)
    payment_service.sign_payment(grant_coordinator, payment.id, "supervisor1")
    with pytest.raises(ValidationError):
        payment_service.update_payment(grant_coordinator, payment.id, {"description": "modifié"})
