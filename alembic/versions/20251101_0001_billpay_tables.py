"""billpay tables

Revision ID: 20251101_0001
Revises:
Create Date: 2025-11-01 00:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20251101_0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("auth_user_id", sa.String(64), nullable=False),
        sa.Column("username", sa.String(255), nullable=False, unique=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("first_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(255), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_auth_user_id", "users", ["auth_user_id"], unique=True)

    op.create_table(
        "internal_accounts",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("account_number", sa.String(17), nullable=False, unique=True),
        sa.Column("routing_number", sa.String(9), nullable=False, server_default="724722907"),
        sa.Column("account_type", sa.String(32), nullable=False, server_default="checking"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("balance", sa.Numeric(19, 4), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_internal_accounts_user_id", "internal_accounts", ["user_id"])

    op.create_table(
        "billpay_payees",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("business_name", sa.Text, nullable=False),
        sa.Column("email", sa.Text, nullable=False),
        sa.Column("phone", sa.Text, nullable=False),
        sa.Column("street_address", sa.Text, nullable=False),
        sa.Column("address_line_2", sa.Text, nullable=True),
        sa.Column("city", sa.Text, nullable=False),
        sa.Column("state_or_territory", sa.String(2), nullable=False),
        sa.Column("postal_code", sa.String(10), nullable=False),
        sa.Column("country", sa.Text, nullable=False, server_default="United States"),
        sa.Column("account_number", sa.String(17), nullable=False),
        sa.Column("routing_number", sa.String(9), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("routing_number", "account_number", name="uq_billpay_payee_routing_account"),
    )
    op.create_index("ix_billpay_payees_business_name", "billpay_payees", ["business_name"])

    op.create_table(
        "billpay_rules",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.Integer, sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column(
            "source_internal_id",
            sa.Integer,
            sa.ForeignKey("internal_accounts.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("payee_id", sa.Integer, sa.ForeignKey("billpay_payees.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("amount", sa.Numeric(19, 4), nullable=False),
        sa.Column("frequency", sa.Text, nullable=False),
        sa.Column("start_time", sa.DateTime, nullable=False),
        sa.Column("end_time", sa.DateTime, nullable=True),
        sa.Column("binding_state", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_billpay_rules_amount_positive"),
        sa.CheckConstraint("end_time IS NULL OR end_time > start_time", name="ck_billpay_rules_window"),
    )
    op.create_index("ix_billpay_rules_user_id", "billpay_rules", ["user_id"])
    op.create_index("ix_billpay_rules_source_internal_id", "billpay_rules", ["source_internal_id"])
    op.create_index("ix_billpay_rules_payee_id", "billpay_rules", ["payee_id"])
    op.create_index("ix_billpay_rules_binding_state", "billpay_rules", ["binding_state"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column(
            "internal_account_id",
            sa.Integer,
            sa.ForeignKey("internal_accounts.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(19, 4), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("transaction_type", sa.String(32), nullable=False),
        sa.Column("direction", sa.String(16), nullable=False),
        sa.Column(
            "bill_pay_rule_id",
            sa.Integer,
            sa.ForeignKey("billpay_rules.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("idempotency_key", sa.String(128), nullable=True),
        sa.Column("external_routing_number", sa.String(9), nullable=True),
        sa.Column("external_account_number", sa.String(17), nullable=True),
        sa.Column("external_nickname", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime, server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_transactions_internal_account_id", "transactions", ["internal_account_id"])
    op.create_index("ix_transactions_bill_pay_rule_id", "transactions", ["bill_pay_rule_id"])
    op.create_index("ix_transactions_idempotency_key", "transactions", ["idempotency_key"])


def downgrade() -> None:
    op.drop_table("transactions")
    op.drop_table("billpay_rules")
    op.drop_table("billpay_payees")
    op.drop_table("internal_accounts")
    op.drop_table("users")
