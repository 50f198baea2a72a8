"""
Shared pytest fixtures for the GrantDesk test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - roles: built-in roles keyed by code
    - grant_coordinator / accountant / national_coordinator / admin / reader: users
    - budget: a grant with one budget line, one sub-line and a bank account
    - make_user, auth_header, approve: helpers
    - make_engagement, make_payment, make_prefinancing, make_loan: record factories
"""

from datetime import date

import pytest

from grantdesk import create_app
from grantdesk.core.approvals import ACCOUNTANT, GRANT_COORDINATOR, NATIONAL_COORDINATOR
from grantdesk.models import db as _db
from grantdesk.models.auth import User
from grantdesk.models.finance import BankAccount, BudgetLine, Grant, SubBudgetLine
from grantdesk.services import (
    employee_loan_service,
    engagement_service,
    payment_service,
    prefinancing_service,
)
from grantdesk.services.approval_workflow import WORKFLOWS
from grantdesk.services.auth_service import ensure_default_roles
from grantdesk.services.jwt_service import generate_access_token
from grantdesk.services.permission_service import invalidate_all_cache
from grantdesk.utils.crypto import hash_password

TEST_PASSWORD = "Secret123!"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # ids are reused after each recreate; cached permission maps are keyed by user id
        invalidate_all_cache()
        yield
        invalidate_all_cache()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users ────────────────────────────────────────────────────────────────


@pytest.fixture()
def roles():
    return ensure_default_roles()


@pytest.fixture()
def make_user(roles):
    counter = {"n": 0}

    def _make(role_code="FINANCE_MANAGER", profession=None, first_name="Test", last_name=None,
              email=None, is_active=True):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            email=email or f"user{n}@grantdesk.org",
            password_hash=hash_password(TEST_PASSWORD),
            first_name=first_name,
            last_name=last_name or f"User{n}",
            profession=profession,
            role_id=roles[role_code].id,
            is_active=is_active,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def grant_coordinator(make_user):
    return make_user(profession=GRANT_COORDINATOR, first_name="Awa", last_name="Diallo")


@pytest.fixture()
def accountant(make_user):
    return make_user(profession=ACCOUNTANT, first_name="Koffi", last_name="Mensah")


@pytest.fixture()
def national_coordinator(make_user):
    return make_user(profession=NATIONAL_COORDINATOR, first_name="Marie", last_name="Traoré")


@pytest.fixture()
def admin(make_user):
    return make_user(role_code="ADMIN", first_name="Admin", last_name="Root")


@pytest.fixture()
def reader(make_user):
    return make_user(role_code="READ_ONLY", profession=GRANT_COORDINATOR, last_name="Reader")


@pytest.fixture()
def auth_header():
    def _header(user):
        token = generate_access_token(user.id, user.role.code if user.role else None)
        return {"Authorization": f"Bearer {token}"}

    return _header


# ── Budget ───────────────────────────────────────────────────────────────


@pytest.fixture()
def budget():
    """Grant (EUR) → budget line (10 000 notified) → sub-line (5 000) + bank account (2 000)."""
    grant = Grant(name="Programme Santé", reference="GR-001", granting_organization="UE",
                  total_amount=50000, planned_amount=40000, currency="EUR", status="active")
    _db.session.add(grant)
    _db.session.flush()
    line = BudgetLine(grant_id=grant.id, code="BL1", name="Fonctionnement",
                      planned_amount=10000, notified_amount=10000, engaged_amount=0,
                      available_amount=10000)
    _db.session.add(line)
    _db.session.flush()
    sub_line = SubBudgetLine(grant_id=grant.id, budget_line_id=line.id, code="BL1.1",
                             name="Fournitures", planned_amount=5000, notified_amount=5000,
                             engaged_amount=0, available_amount=5000)
    account = BankAccount(name="Compte principal", account_number="FR76-0001",
                          bank_name="Banque Test", balance=2000)
    _db.session.add_all([sub_line, account])
    _db.session.commit()
    return {"grant": grant, "line": line, "sub_line": sub_line, "account": account}


@pytest.fixture()
def make_engagement(grant_coordinator, budget):
    def _make(amount=1000, actor=None, **overrides):
        data = {
            "grant_id": budget["grant"].id,
            "budget_line_id": budget["line"].id,
            "sub_budget_line_id": budget["sub_line"].id,
            "amount": amount,
            "date": date.today().isoformat(),
            "description": "Achat de fournitures",
            "supplier": "Papeterie Centrale",
        }
        data.update(overrides)
        return engagement_service.create_engagement(actor or grant_coordinator, data)

    return _make


@pytest.fixture()
def approve(grant_coordinator, accountant, national_coordinator):
    """Run a record through all three signatures."""

    def _approve(record):
        workflow = WORKFLOWS[record.MODULE]
        for slot, signer in (
            ("supervisor1", grant_coordinator),
            ("supervisor2", accountant),
            ("finalApproval", national_coordinator),
        ):
            if not record.get_approvals().is_signed(slot):
                workflow.sign(record, slot, signer, expected_version=record.version)
        return record

    return _approve


@pytest.fixture()
def make_payment(grant_coordinator):
    def _make(engagement, amount=500, actor=None, **overrides):
        data = {
            "engagement_id": engagement.id,
            "amount": amount,
            "description": "Règlement fournisseur",
            "invoice_number": "FAC-001",
            "date": date.today().isoformat(),
        }
        data.update(overrides)
        return payment_service.create_payment(actor or grant_coordinator, data)

    return _make


@pytest.fixture()
def make_prefinancing(grant_coordinator, budget):
    def _make(amount=10000, actor=None, **overrides):
        data = {
            "grant_id": budget["grant"].id,
            "amount": amount,
            "date": "2026-03-01",
            "expected_repayment_date": "2026-09-01",
            "description": "Avance de trésorerie",
            "expenses": [{"supplier": "Imprimerie", "invoice_number": "F-77", "amount": amount}],
        }
        data.update(overrides)
        return prefinancing_service.create_prefinancing(actor or grant_coordinator, data)

    return _make


@pytest.fixture()
def make_loan(grant_coordinator, budget):
    def _make(amount=1200, actor=None, **overrides):
        data = {
            "grant_id": budget["grant"].id,
            "employee": {"name": "Jean Kouassi", "employee_id": "EMP-042"},
            "amount": amount,
            "date": "2026-01-31",
            "expected_repayment_date": "2026-12-31",
            "description": "Avance sur salaire",
            "repayment_schedule": {"frequency": "monthly", "number_of_installments": 3},
        }
        data.update(overrides)
        return employee_loan_service.create_loan(actor or grant_coordinator, data)

    return _make
