"""initial_schema

Roles, users, sessions and recovery tokens; grants with their budget lines,
bank accounts and the four signable record types.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

AMOUNT = sa.Numeric(14, 2)


def _signable_columns():
    return [
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("approvals", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    ]


def _line_columns():
    return [
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("planned_amount", AMOUNT, nullable=False, server_default="0"),
        sa.Column("notified_amount", AMOUNT, nullable=False, server_default="0"),
        sa.Column("engaged_amount", AMOUNT, nullable=False, server_default="0"),
        sa.Column("spent_amount", AMOUNT, nullable=False, server_default="0"),
        sa.Column("available_amount", AMOUNT, nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=True),
    ]


def upgrade():
    # ── Auth ─────────────────────────────────────────────────────────
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("color", sa.String(length=100), nullable=True),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code"),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=False),
        sa.Column("password_hash", sa.String(length=256), nullable=True),
        sa.Column("first_name", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("profession", sa.String(length=150), nullable=True),
        sa.Column("employee_id", sa.String(length=50), nullable=True),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("last_login", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
        sa.UniqueConstraint("employee_id"),
    )
    op.create_table(
        "sessions",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(length=256), nullable=False),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "recovery_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(length=256), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token_hash"),
    )
    op.create_index("ix_recovery_tokens_user_id", "recovery_tokens", ["user_id"])

    # ── Grants & budget planning ─────────────────────────────────────
    op.create_table(
        "grants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("reference", sa.String(length=100), nullable=False),
        sa.Column("granting_organization", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("year", sa.Integer(), nullable=True),
        sa.Column("total_amount", AMOUNT, nullable=False, server_default="0"),
        sa.Column("planned_amount", AMOUNT, nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="EUR"),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reference"),
    )
    op.create_table(
        "budget_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("grant_id", sa.Integer(), nullable=False),
        *_line_columns(),
        sa.Column("color", sa.String(length=100), nullable=True),
        sa.ForeignKeyConstraint(["grant_id"], ["grants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("grant_id", "code", name="uq_budget_line_code"),
    )
    op.create_index("ix_budget_lines_grant_id", "budget_lines", ["grant_id"])
    op.create_table(
        "sub_budget_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("grant_id", sa.Integer(), nullable=False),
        sa.Column("budget_line_id", sa.Integer(), nullable=False),
        *_line_columns(),
        sa.ForeignKeyConstraint(["grant_id"], ["grants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["budget_line_id"], ["budget_lines.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_sub_budget_lines_grant_id", "sub_budget_lines", ["grant_id"])
    op.create_index("ix_sub_budget_lines_budget_line_id", "sub_budget_lines", ["budget_line_id"])
    op.create_table(
        "bank_accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("grant_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("account_number", sa.String(length=100), nullable=False),
        sa.Column("bank_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("balance", AMOUNT, nullable=False, server_default="0"),
        sa.Column("last_update_date", sa.Date(), nullable=True),
        sa.ForeignKeyConstraint(["grant_id"], ["grants.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_number"),
    )

    # ── Signable records ─────────────────────────────────────────────
    op.create_table(
        "engagements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("grant_id", sa.Integer(), nullable=False),
        sa.Column("budget_line_id", sa.Integer(), nullable=False),
        sa.Column("sub_budget_line_id", sa.Integer(), nullable=False),
        sa.Column("engagement_number", sa.String(length=50), nullable=False),
        sa.Column("amount", AMOUNT, nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("supplier", sa.String(length=200), nullable=True),
        sa.Column("quote_reference", sa.String(length=100), nullable=True),
        sa.Column("invoice_number", sa.String(length=100), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        *_signable_columns(),
        sa.ForeignKeyConstraint(["grant_id"], ["grants.id"]),
        sa.ForeignKeyConstraint(["budget_line_id"], ["budget_lines.id"]),
        sa.ForeignKeyConstraint(["sub_budget_line_id"], ["sub_budget_lines.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("engagement_number"),
    )
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_number", sa.String(length=50), nullable=False),
        sa.Column("grant_id", sa.Integer(), nullable=False),
        sa.Column("budget_line_id", sa.Integer(), nullable=True),
        sa.Column("sub_budget_line_id", sa.Integer(), nullable=True),
        sa.Column("engagement_id", sa.Integer(), nullable=False),
        sa.Column("amount", AMOUNT, nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("supplier", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("payment_method", sa.String(length=20), nullable=False, server_default="transfer"),
        sa.Column("check_number", sa.String(length=50), nullable=True),
        sa.Column("bank_reference", sa.String(length=100), nullable=True),
        sa.Column("invoice_number", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("invoice_amount", AMOUNT, nullable=False, server_default="0"),
        sa.Column("quote_reference", sa.String(length=100), nullable=True),
        sa.Column("delivery_note", sa.String(length=100), nullable=True),
        sa.Column("purchase_order_number", sa.String(length=100), nullable=True),
        sa.Column("service_acceptance", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("control_notes", sa.Text(), nullable=True),
        sa.Column("cashed_date", sa.Date(), nullable=True),
        *_signable_columns(),
        sa.ForeignKeyConstraint(["grant_id"], ["grants.id"]),
        sa.ForeignKeyConstraint(["budget_line_id"], ["budget_lines.id"]),
        sa.ForeignKeyConstraint(["sub_budget_line_id"], ["sub_budget_lines.id"]),
        sa.ForeignKeyConstraint(["engagement_id"], ["engagements.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_number"),
    )
    op.create_table(
        "prefinancings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("prefinancing_number", sa.String(length=50), nullable=False),
        sa.Column("grant_id", sa.Integer(), nullable=False),
        sa.Column("budget_line_id", sa.Integer(), nullable=True),
        sa.Column("sub_budget_line_id", sa.Integer(), nullable=True),
        sa.Column("amount", AMOUNT, nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("expected_repayment_date", sa.Date(), nullable=False),
        sa.Column("purpose", sa.String(length=30), nullable=False, server_default="specific_expenses"),
        sa.Column("target_bank_account", sa.String(length=100), nullable=True),
        sa.Column("target_grant", sa.String(length=100), nullable=True),
        sa.Column("expenses", sa.JSON(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        *_signable_columns(),
        sa.ForeignKeyConstraint(["grant_id"], ["grants.id"]),
        sa.ForeignKeyConstraint(["budget_line_id"], ["budget_lines.id"]),
        sa.ForeignKeyConstraint(["sub_budget_line_id"], ["sub_budget_lines.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("prefinancing_number"),
    )
    op.create_table(
        "prefinancing_repayments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("prefinancing_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount", AMOUNT, nullable=False),
        sa.Column("reference", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["prefinancing_id"], ["prefinancings.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "employee_loans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("loan_number", sa.String(length=50), nullable=False),
        sa.Column("grant_id", sa.Integer(), nullable=False),
        sa.Column("budget_line_id", sa.Integer(), nullable=True),
        sa.Column("sub_budget_line_id", sa.Integer(), nullable=True),
        sa.Column("employee_name", sa.String(length=200), nullable=False),
        sa.Column("employee_ref", sa.String(length=50), nullable=False),
        sa.Column("amount", AMOUNT, nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("expected_repayment_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("installment_amount", AMOUNT, nullable=False, server_default="0"),
        sa.Column("number_of_installments", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("frequency", sa.String(length=20), nullable=False, server_default="monthly"),
        *_signable_columns(),
        sa.ForeignKeyConstraint(["grant_id"], ["grants.id"]),
        sa.ForeignKeyConstraint(["budget_line_id"], ["budget_lines.id"]),
        sa.ForeignKeyConstraint(["sub_budget_line_id"], ["sub_budget_lines.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("loan_number"),
    )
    op.create_table(
        "loan_repayments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("loan_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("amount", AMOUNT, nullable=False),
        sa.Column("reference", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["loan_id"], ["employee_loans.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )

    for table in ("engagements", "payments", "prefinancings", "employee_loans"):
        op.create_index(f"ix_{table}_grant_id", table, ["grant_id"])
        op.create_index(f"ix_{table}_status", table, ["status"])
    op.create_index("ix_prefinancing_repayments_prefinancing_id", "prefinancing_repayments", ["prefinancing_id"])
    op.create_index("ix_loan_repayments_loan_id", "loan_repayments", ["loan_id"])


def downgrade():
    for table in (
        "loan_repayments",
        "employee_loans",
        "prefinancing_repayments",
        "prefinancings",
        "payments",
        "engagements",
        "bank_accounts",
        "sub_budget_lines",
        "budget_lines",
        "grants",
        "recovery_tokens",
        "sessions",
        "users",
        "roles",
    ):
        op.drop_table(table)
