"""process_billpay_rule procedure for pg_cron

Revision ID: 20251101_0002
Revises: 20251101_0001
Create Date: 2025-11-01 00:00:01.000000
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "20251101_0002"
down_revision: Union[str, Sequence[str], None] = "20251101_0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# One cron firing of a rule: skip outside the [start, end] window or when the
# source account / payee is gone or inactive; otherwise debit the account and
# record an approved transaction, or a denied one on insufficient funds.
PROCESS_BILLPAY_RULE = """
CREATE OR REPLACE FUNCTION process_billpay_rule(p_rule_id INTEGER)
RETURNS VOID
LANGUAGE plpgsql
SECURITY DEFINER
AS $$
DECLARE
  r billpay_rules%ROWTYPE;
  acct internal_accounts%ROWTYPE;
  payee billpay_payees%ROWTYPE;
  v_now TIMESTAMP := timezone('utc', now());
  v_key TEXT;
  v_status TEXT := 'approved';
BEGIN
  SELECT * INTO r FROM billpay_rules WHERE id = p_rule_id;
  IF NOT FOUND THEN
    RAISE WARNING 'billpay rule % not found', p_rule_id;
    RETURN;
  END IF;

  IF v_now < r.start_time THEN
    RETURN;
  END IF;
  IF r.end_time IS NOT NULL AND v_now > r.end_time THEN
    RETURN;
  END IF;

  SELECT * INTO acct FROM internal_accounts WHERE id = r.source_internal_id;
  IF NOT FOUND OR NOT acct.is_active THEN
    RAISE WARNING 'source account % unavailable for billpay rule %', r.source_internal_id, p_rule_id;
    RETURN;
  END IF;

  SELECT * INTO payee FROM billpay_payees WHERE id = r.payee_id;
  IF NOT FOUND OR NOT payee.is_active THEN
    RAISE WARNING 'payee % unavailable for billpay rule %', r.payee_id, p_rule_id;
    RETURN;
  END IF;

  v_key := 'billpay_cron_' || p_rule_id || '_' || EXTRACT(EPOCH FROM v_now)::BIGINT;
  IF EXISTS (
    SELECT 1 FROM transactions t
    WHERE t.idempotency_key = v_key AND t.bill_pay_rule_id = p_rule_id
  ) THEN
    RETURN;
  END IF;

  UPDATE internal_accounts
     SET balance = balance - r.amount
   WHERE id = r.source_internal_id AND balance >= r.amount;
  IF NOT FOUND THEN
    v_status := 'denied';
    RAISE WARNING 'insufficient funds for billpay rule %', p_rule_id;
  END IF;

  INSERT INTO transactions (
    internal_account_id, amount, status, transaction_type, direction,
    bill_pay_rule_id, idempotency_key, external_routing_number,
    external_account_number, external_nickname, created_at
  ) VALUES (
    r.source_internal_id, -r.amount, v_status, 'billpay', 'outbound',
    p_rule_id, v_key, payee.routing_number,
    payee.account_number, payee.business_name, v_now
  );
END;
$$;
"""


def upgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name != "postgresql":
        # SQLite development uses the in-memory scheduler; nothing ever fires
        return
    op.execute("CREATE EXTENSION IF NOT EXISTS pg_cron")
    op.execute(PROCESS_BILLPAY_RULE)


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name != "postgresql":
        return
    op.execute("DROP FUNCTION IF EXISTS process_billpay_rule(INTEGER)")
