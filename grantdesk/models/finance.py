"""
Finance Models — grants, budget lines, bank accounts and signable records.

Hierarchy:
    Grant
      ├── BudgetLine ── SubBudgetLine
      │                      └── Engagement ── Payment
      ├── Prefinancing ── PrefinancingRepayment
      └── EmployeeLoan ── LoanRepayment
    BankAccount (optionally attached to a Grant) ── BankTransaction

Engagement, Payment, Prefinancing and EmployeeLoan are *signable*: they carry
an ``approvals`` JSON map (supervisor1 → supervisor2 → finalApproval), a
``status`` and an integer ``version`` used for compare-and-swap on signature
writes.  Approvals are validated before every insert/update and a signable
record past payment can never be deleted at the data layer.
"""

from datetime import datetime, timezone

from sqlalchemy import event

from grantdesk.core.approvals import Approvals, ordering_violations
from grantdesk.core.exceptions import ValidationError
from grantdesk.models import db

Amount = db.Numeric(14, 2, asdecimal=False)

GRANT_STATUSES = ("pending", "active", "completed", "suspended")
CURRENCIES = ("EUR", "USD", "XOF")

PAYMENT_STATUSES = ("pending", "approved", "paid", "cashed", "rejected")
PAYMENT_METHODS = ("check", "transfer", "cash")
PREFINANCING_STATUSES = ("pending", "approved", "paid", "repaid", "rejected")
PREFINANCING_PURPOSES = ("specific_expenses", "other_accounts", "between_grants")
ENGAGEMENT_STATUSES = ("pending", "approved", "paid", "rejected")
LOAN_STATUSES = ("pending", "approved", "active", "completed", "rejected")
LOAN_FREQUENCIES = ("monthly", "quarterly", "annual")
TRANSACTION_TYPES = ("credit", "debit")


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ═══════════════════════════════════════════════════════════════
# 1. GRANTS & BUDGET LINES
# ═══════════════════════════════════════════════════════════════
class Grant(db.Model):
    __tablename__ = "grants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    reference = db.Column(db.String(100), unique=True, nullable=False)
    granting_organization = db.Column(db.String(200), nullable=False, default="")
    year = db.Column(db.Integer)
    total_amount = db.Column(Amount, nullable=False, default=0)
    planned_amount = db.Column(Amount, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="EUR")
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)
    status = db.Column(db.String(20), nullable=False, default="active")
    description = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    budget_lines = db.relationship(
        "BudgetLine", back_populates="grant", lazy="dynamic", cascade="all, delete-orphan"
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "reference": self.reference,
            "granting_organization": self.granting_organization,
            "year": self.year,
            "total_amount": self.total_amount,
            "planned_amount": self.planned_amount,
            "currency": self.currency,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "status": self.status,
            "description": self.description,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class BudgetLine(db.Model):
    __tablename__ = "budget_lines"

    id = db.Column(db.Integer, primary_key=True)
    grant_id = db.Column(
        db.Integer, db.ForeignKey("grants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    planned_amount = db.Column(Amount, nullable=False, default=0)
    notified_amount = db.Column(Amount, nullable=False, default=0)
    engaged_amount = db.Column(Amount, nullable=False, default=0)
    spent_amount = db.Column(Amount, nullable=False, default=0)
    available_amount = db.Column(Amount, nullable=False, default=0)
    description = db.Column(db.Text)
    color = db.Column(db.String(100))

    grant = db.relationship("Grant", back_populates="budget_lines")
    sub_budget_lines = db.relationship(
        "SubBudgetLine", back_populates="budget_line", lazy="dynamic", cascade="all, delete-orphan"
    )

    __table_args__ = (db.UniqueConstraint("grant_id", "code", name="uq_budget_line_code"),)

    def to_dict(self):
        return {
            "id": self.id,
            "grant_id": self.grant_id,
            "code": self.code,
            "name": self.name,
            "planned_amount": self.planned_amount,
            "notified_amount": self.notified_amount,
            "engaged_amount": self.engaged_amount,
            "spent_amount": self.spent_amount,
            "available_amount": self.available_amount,
            "description": self.description,
            "color": self.color,
        }


class SubBudgetLine(db.Model):
    __tablename__ = "sub_budget_lines"

    id = db.Column(db.Integer, primary_key=True)
    grant_id = db.Column(
        db.Integer, db.ForeignKey("grants.id", ondelete="CASCADE"), nullable=False, index=True
    )
    budget_line_id = db.Column(
        db.Integer, db.ForeignKey("budget_lines.id", ondelete="CASCADE"), nullable=False, index=True
    )
    code = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    planned_amount = db.Column(Amount, nullable=False, default=0)
    notified_amount = db.Column(Amount, nullable=False, default=0)
    engaged_amount = db.Column(Amount, nullable=False, default=0)
    spent_amount = db.Column(Amount, nullable=False, default=0)
    available_amount = db.Column(Amount, nullable=False, default=0)
    description = db.Column(db.Text)

    budget_line = db.relationship("BudgetLine", back_populates="sub_budget_lines")

    def to_dict(self):
        return {
            "id": self.id,
            "grant_id": self.grant_id,
            "budget_line_id": self.budget_line_id,
            "code": self.code,
            "name": self.name,
            "planned_amount": self.planned_amount,
            "notified_amount": self.notified_amount,
            "engaged_amount": self.engaged_amount,
            "spent_amount": self.spent_amount,
            "available_amount": self.available_amount,
            "description": self.description,
        }


# ═══════════════════════════════════════════════════════════════
# 2. BANK ACCOUNTS
# ═══════════════════════════════════════════════════════════════
class BankAccount(db.Model):
    __tablename__ = "bank_accounts"

    id = db.Column(db.Integer, primary_key=True)
    grant_id = db.Column(db.Integer, db.ForeignKey("grants.id", ondelete="SET NULL"))
    name = db.Column(db.String(200), nullable=False)
    account_number = db.Column(db.String(100), unique=True, nullable=False)
    bank_name = db.Column(db.String(200), nullable=False, default="")
    balance = db.Column(Amount, nullable=False, default=0)
    last_update_date = db.Column(db.Date)

    def to_dict(self):
        return {
            "id": self.id,
            "grant_id": self.grant_id,
            "name": self.name,
            "account_number": self.account_number,
            "bank_name": self.bank_name,
            "balance": self.balance,
            "last_update_date": _iso(self.last_update_date),
        }


class BankTransaction(db.Model):
    """Credit or debit recorded against a bank account; moves its balance."""

    __tablename__ = "bank_transactions"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(
        db.Integer, db.ForeignKey("bank_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    date = db.Column(db.Date, nullable=False)
    description = db.Column(db.String(500), nullable=False)
    amount = db.Column(Amount, nullable=False)
    type = db.Column(db.String(10), nullable=False)
    reference = db.Column(db.String(100), nullable=False, default="")
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime, default=_utcnow)

    account = db.relationship(
        "BankAccount",
        backref=db.backref("transactions", lazy="dynamic", cascade="all, delete-orphan"),
    )

    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_bank_transaction_amount"),
        db.CheckConstraint("type IN ('credit', 'debit')", name="ck_bank_transaction_type"),
    )

    @property
    def signed_amount(self) -> float:
        return self.amount if self.type == "credit" else -self.amount

    def to_dict(self):
        return {
            "id": self.id,
            "account_id": self.account_id,
            "date": _iso(self.date),
            "description": self.description,
            "amount": self.amount,
            "type": self.type,
            "reference": self.reference,
            "created_by": self.created_by,
            "created_at": _iso(self.created_at),
        }


# ═══════════════════════════════════════════════════════════════
# 3. SIGNABLE RECORDS
# ═══════════════════════════════════════════════════════════════
class SignableMixin:
    """Columns and behaviour shared by every record going through sign-off.

    Subclasses set:
        MODULE            permission module guarding the record
        NUMBER_FIELD      attribute holding the human-readable number
        NUMBER_PREFIX     prefix used when generating numbers
        STATUSES          allowed status values
        LOCKED_STATUSES   statuses after which the record can't be deleted
    """

    MODULE = ""
    NUMBER_FIELD = ""
    NUMBER_PREFIX = ""
    STATUSES: tuple = ()
    LOCKED_STATUSES: frozenset = frozenset()

    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    approvals = db.Column(db.JSON, nullable=False, default=dict)
    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    @property
    def number(self):
        return getattr(self, self.NUMBER_FIELD)

    def get_approvals(self) -> Approvals:
        return Approvals.from_dict(self.approvals or {})

    def _signable_dict(self):
        return {
            "id": self.id,
            "number": self.number,
            "status": self.status,
            "approvals": self.approvals or {},
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


def validate_signable(target):
    """Reject malformed approvals, out-of-order signatures and unknown statuses."""
    approvals = Approvals.from_dict(target.approvals or {})
    problems = ordering_violations(approvals)
    if problems:
        raise ValidationError(
            "Signature order violated: " + "; ".join(problems),
            details={"approvals": problems},
        )
    # Column defaults are not applied yet during before_insert
    status = target.status or "pending"
    if status not in target.STATUSES:
        raise ValidationError(
            f"Invalid status '{status}'",
            details={"status": f"must be one of {list(target.STATUSES)}"},
        )


def assert_deletable(target):
    if (target.status or "pending") in target.LOCKED_STATUSES:
        raise ValidationError(
            f"{type(target).__name__} {target.number} is '{target.status}' and can no longer be deleted",
            details={"status": target.status},
        )


@event.listens_for(SignableMixin, "before_insert", propagate=True)
@event.listens_for(SignableMixin, "before_update", propagate=True)
def _validate_before_write(mapper, connection, target):
    validate_signable(target)


@event.listens_for(SignableMixin, "before_delete", propagate=True)
def _guard_delete(mapper, connection, target):
    assert_deletable(target)


class Engagement(SignableMixin, db.Model):
    __tablename__ = "engagements"

    MODULE = "engagements"
    NUMBER_FIELD = "engagement_number"
    NUMBER_PREFIX = "ENG"
    STATUSES = ENGAGEMENT_STATUSES
    LOCKED_STATUSES = frozenset({"paid"})

    id = db.Column(db.Integer, primary_key=True)
    grant_id = db.Column(db.Integer, db.ForeignKey("grants.id"), nullable=False, index=True)
    budget_line_id = db.Column(db.Integer, db.ForeignKey("budget_lines.id"), nullable=False)
    sub_budget_line_id = db.Column(db.Integer, db.ForeignKey("sub_budget_lines.id"), nullable=False)
    engagement_number = db.Column(db.String(50), unique=True, nullable=False)
    amount = db.Column(Amount, nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    supplier = db.Column(db.String(200))
    quote_reference = db.Column(db.String(100))
    invoice_number = db.Column(db.String(100))
    date = db.Column(db.Date, nullable=False)

    payments = db.relationship("Payment", back_populates="engagement", lazy="dynamic")

    def to_dict(self):
        d = self._signable_dict()
        d.update({
            "grant_id": self.grant_id,
            "budget_line_id": self.budget_line_id,
            "sub_budget_line_id": self.sub_budget_line_id,
            "engagement_number": self.engagement_number,
            "amount": self.amount,
            "description": self.description,
            "supplier": self.supplier,
            "quote_reference": self.quote_reference,
            "invoice_number": self.invoice_number,
            "date": _iso(self.date),
        })
        return d


class Payment(SignableMixin, db.Model):
    __tablename__ = "payments"

    MODULE = "payments"
    NUMBER_FIELD = "payment_number"
    NUMBER_PREFIX = "PAY"
    STATUSES = PAYMENT_STATUSES
    LOCKED_STATUSES = frozenset({"paid", "cashed"})

    id = db.Column(db.Integer, primary_key=True)
    payment_number = db.Column(db.String(50), unique=True, nullable=False)
    grant_id = db.Column(db.Integer, db.ForeignKey("grants.id"), nullable=False, index=True)
    budget_line_id = db.Column(db.Integer, db.ForeignKey("budget_lines.id"))
    sub_budget_line_id = db.Column(db.Integer, db.ForeignKey("sub_budget_lines.id"))
    engagement_id = db.Column(db.Integer, db.ForeignKey("engagements.id"), nullable=False)
    amount = db.Column(Amount, nullable=False)
    date = db.Column(db.Date, nullable=False)
    supplier = db.Column(db.String(200), nullable=False, default="")
    description = db.Column(db.Text, nullable=False, default="")
    payment_method = db.Column(db.String(20), nullable=False, default="transfer")
    check_number = db.Column(db.String(50))
    bank_reference = db.Column(db.String(100))
    invoice_number = db.Column(db.String(100), nullable=False, default="")
    invoice_amount = db.Column(Amount, nullable=False, default=0)
    quote_reference = db.Column(db.String(100))
    delivery_note = db.Column(db.String(100))
    purchase_order_number = db.Column(db.String(100))
    service_acceptance = db.Column(db.Boolean, nullable=False, default=False)
    control_notes = db.Column(db.Text)
    cashed_date = db.Column(db.Date)

    engagement = db.relationship("Engagement", back_populates="payments")

    def to_dict(self):
        d = self._signable_dict()
        d.update({
            "payment_number": self.payment_number,
            "grant_id": self.grant_id,
            "budget_line_id": self.budget_line_id,
            "sub_budget_line_id": self.sub_budget_line_id,
            "engagement_id": self.engagement_id,
            "amount": self.amount,
            "date": _iso(self.date),
            "supplier": self.supplier,
            "description": self.description,
            "payment_method": self.payment_method,
            "check_number": self.check_number,
            "bank_reference": self.bank_reference,
            "invoice_number": self.invoice_number,
            "invoice_amount": self.invoice_amount,
            "quote_reference": self.quote_reference,
            "delivery_note": self.delivery_note,
            "purchase_order_number": self.purchase_order_number,
            "service_acceptance": self.service_acceptance,
            "control_notes": self.control_notes,
            "cashed_date": _iso(self.cashed_date),
        })
        return d


class Prefinancing(SignableMixin, db.Model):
    __tablename__ = "prefinancings"

    MODULE = "prefinancing"
    NUMBER_FIELD = "prefinancing_number"
    NUMBER_PREFIX = "PRE"
    STATUSES = PREFINANCING_STATUSES
    LOCKED_STATUSES = frozenset({"paid", "repaid"})

    id = db.Column(db.Integer, primary_key=True)
    prefinancing_number = db.Column(db.String(50), unique=True, nullable=False)
    grant_id = db.Column(db.Integer, db.ForeignKey("grants.id"), nullable=False, index=True)
    budget_line_id = db.Column(db.Integer, db.ForeignKey("budget_lines.id"))
    sub_budget_line_id = db.Column(db.Integer, db.ForeignKey("sub_budget_lines.id"))
    amount = db.Column(Amount, nullable=False)
    date = db.Column(db.Date, nullable=False)
    expected_repayment_date = db.Column(db.Date, nullable=False)
    purpose = db.Column(db.String(30), nullable=False, default="specific_expenses")
    target_bank_account = db.Column(db.String(100))
    target_grant = db.Column(db.String(100))
    expenses = db.Column(db.JSON, nullable=False, default=list)
    description = db.Column(db.Text, nullable=False, default="")

    repayments = db.relationship(
        "PrefinancingRepayment",
        back_populates="prefinancing",
        order_by="PrefinancingRepayment.id",
        cascade="all, delete-orphan",
    )

    @property
    def total_repaid(self):
        return round(sum(r.amount for r in self.repayments), 2)

    @property
    def remaining_amount(self):
        return round(self.amount - self.total_repaid, 2)

    def to_dict(self):
        d = self._signable_dict()
        d.update({
            "prefinancing_number": self.prefinancing_number,
            "grant_id": self.grant_id,
            "budget_line_id": self.budget_line_id,
            "sub_budget_line_id": self.sub_budget_line_id,
            "amount": self.amount,
            "date": _iso(self.date),
            "expected_repayment_date": _iso(self.expected_repayment_date),
            "purpose": self.purpose,
            "target_bank_account": self.target_bank_account,
            "target_grant": self.target_grant,
            "expenses": self.expenses or [],
            "description": self.description,
            "repayments": [r.to_dict() for r in self.repayments],
            "total_repaid": self.total_repaid,
            "remaining_amount": self.remaining_amount,
        })
        return d


class PrefinancingRepayment(db.Model):
    __tablename__ = "prefinancing_repayments"

    id = db.Column(db.Integer, primary_key=True)
    prefinancing_id = db.Column(
        db.Integer, db.ForeignKey("prefinancings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    date = db.Column(db.Date, nullable=False)
    amount = db.Column(Amount, nullable=False)
    reference = db.Column(db.String(100), nullable=False, default="")
    created_at = db.Column(db.DateTime, default=_utcnow)

    prefinancing = db.relationship("Prefinancing", back_populates="repayments")

    def to_dict(self):
        return {
            "id": self.id,
            "date": _iso(self.date),
            "amount": self.amount,
            "reference": self.reference,
        }


class EmployeeLoan(SignableMixin, db.Model):
    __tablename__ = "employee_loans"

    MODULE = "employee_loans"
    NUMBER_FIELD = "loan_number"
    NUMBER_PREFIX = "PRET"
    STATUSES = LOAN_STATUSES
    LOCKED_STATUSES = frozenset({"active", "completed"})

    id = db.Column(db.Integer, primary_key=True)
    loan_number = db.Column(db.String(50), unique=True, nullable=False)
    grant_id = db.Column(db.Integer, db.ForeignKey("grants.id"), nullable=False, index=True)
    budget_line_id = db.Column(db.Integer, db.ForeignKey("budget_lines.id"))
    sub_budget_line_id = db.Column(db.Integer, db.ForeignKey("sub_budget_lines.id"))
    employee_name = db.Column(db.String(200), nullable=False)
    employee_ref = db.Column(db.String(50), nullable=False)
    amount = db.Column(Amount, nullable=False)
    date = db.Column(db.Date, nullable=False)
    expected_repayment_date = db.Column(db.Date, nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    installment_amount = db.Column(Amount, nullable=False, default=0)
    number_of_installments = db.Column(db.Integer, nullable=False, default=1)
    frequency = db.Column(db.String(20), nullable=False, default="monthly")

    repayments = db.relationship(
        "LoanRepayment",
        back_populates="loan",
        order_by="LoanRepayment.id",
        cascade="all, delete-orphan",
    )

    @property
    def total_repaid(self):
        return round(sum(r.amount for r in self.repayments), 2)

    @property
    def remaining_amount(self):
        return round(self.amount - self.total_repaid, 2)

    def to_dict(self):
        d = self._signable_dict()
        d.update({
            "loan_number": self.loan_number,
            "grant_id": self.grant_id,
            "budget_line_id": self.budget_line_id,
            "sub_budget_line_id": self.sub_budget_line_id,
            "employee": {"name": self.employee_name, "employee_id": self.employee_ref},
            "amount": self.amount,
            "date": _iso(self.date),
            "expected_repayment_date": _iso(self.expected_repayment_date),
            "description": self.description,
            "repayment_schedule": {
                "installment_amount": self.installment_amount,
                "number_of_installments": self.number_of_installments,
                "frequency": self.frequency,
            },
            "repayments": [r.to_dict() for r in self.repayments],
            "total_repaid": self.total_repaid,
            "remaining_amount": self.remaining_amount,
        })
        return d


class LoanRepayment(db.Model):
    __tablename__ = "loan_repayments"

    id = db.Column(db.Integer, primary_key=True)
    loan_id = db.Column(
        db.Integer, db.ForeignKey("employee_loans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    date = db.Column(db.Date, nullable=False)
    amount = db.Column(Amount, nullable=False)
    reference = db.Column(db.String(100), nullable=False, default="")
    created_at = db.Column(db.DateTime, default=_utcnow)

    loan = db.relationship("EmployeeLoan", back_populates="repayments")

    def to_dict(self):
        return {
            "id": self.id,
            "date": _iso(self.date),
            "amount": self.amount,
            "reference": self.reference,
        }


SIGNABLE_MODELS = {
    "engagements": Engagement,
    "payments": Payment,
    "prefinancing": Prefinancing,
    "employee_loans": EmployeeLoan,
}
