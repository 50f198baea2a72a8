"""bank_transactions

Credits and debits recorded against a bank account.

Revision ID: 0002_bank_transactions
Revises: 0001_initial_schema
Create Date: 2026-10-18 14:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002_bank_transactions"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "bank_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.String(length=500), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("type", sa.String(length=10), nullable=False),
        sa.Column("reference", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_bank_transaction_amount"),
        sa.CheckConstraint("type IN ('credit', 'debit')", name="ck_bank_transaction_type"),
        sa.ForeignKeyConstraint(["account_id"], ["bank_accounts.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_bank_transactions_account_id", "bank_transactions", ["account_id"])


def downgrade():
    op.drop_index("ix_bank_transactions_account_id", table_name="bank_transactions")
    op.drop_table("bank_transactions")
