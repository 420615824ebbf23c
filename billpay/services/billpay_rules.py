"""Bill-pay rule lifecycle.

A rule row and its cron job (see ``billpay.services.scheduler``) live in two
systems with no shared transaction. The row is always written first and is
the source of truth for the HTTP response; the job is created or replaced
afterwards and any scheduler failure is recorded on the row as
``binding_state="unbound"`` for the reconciliation pass instead of being
raised to the caller.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from billpay.errors import Forbidden, InvalidRequest, NotFound
from billpay.orm_models import (
    BINDING_BOUND,
    BINDING_PENDING,
    BINDING_UNBOUND,
    BillPayPayee,
    BillPayRule,
    InternalAccount,
    User,
)
from billpay.schemas.billpay import RuleCreate, RuleUpdate
from billpay.services.billpay_payees import find_or_create_payee
from billpay.services.scheduler import JobScheduler, bind_rule, job_name, unbind_rule
from billpay.utils.time import naive_utc_now, utc_iso

log = logging.getLogger(__name__)

START_IN_PAST = "Start time must be in the future."
END_BEFORE_START = "End time must be after start time."


def cents_to_dollars(cents: int) -> Decimal:
    return Decimal(int(cents)) / Decimal(100)


def check_time_window(
    start_time: Optional[datetime],
    end_time: Optional[datetime],
    now: datetime,
    start_supplied: bool = True,
) -> None:
    """Validate a (start, end) window; all values naive UTC.

    The future-start rule only applies to a start time the caller supplied,
    so an untouched stored start time that has since passed stays valid.
    """
    if start_supplied and start_time is not None and start_time <= now:
        raise InvalidRequest(START_IN_PAST)
    if end_time is not None and start_time is not None and end_time <= start_time:
        raise InvalidRequest(END_BEFORE_START)


def _owned_active_account(db: Session, user: User, account_id: int) -> InternalAccount:
    account = (
        db.query(InternalAccount)
        .filter(InternalAccount.id == account_id, InternalAccount.user_id == user.id)
        .first()
    )
    if not account:
        raise NotFound("Source account not found or does not belong to user")
    if not account.is_active:
        raise InvalidRequest("Source account is inactive")
    return account


def _existing_payee(db: Session, payee_id: int) -> BillPayPayee:
    payee = db.get(BillPayPayee, payee_id)
    if not payee:
        raise NotFound("Payee not found")
    return payee


def get_owned_rule(db: Session, user: User, rule_id: int, action: str = "access") -> BillPayRule:
    rule = db.get(BillPayRule, rule_id)
    if not rule:
        raise NotFound("Billpay rule not found")
    if rule.user_id != user.id:
        raise Forbidden(f"Forbidden: You do not have permission to {action} this rule")
    return rule


def list_rules(db: Session, user: User) -> List[BillPayRule]:
    return (
        db.query(BillPayRule)
        .filter(BillPayRule.user_id == user.id)
        .order_by(BillPayRule.id.desc())
        .all()
    )


def _bind(db: Session, scheduler: JobScheduler, rule: BillPayRule, frequency: str) -> None:
    """Create the rule's job and record the outcome on the row."""
    try:
        bind_rule(scheduler, rule.id, frequency)
        rule.binding_state = BINDING_BOUND
    except Exception:
        log.error(
            "Failed to schedule cron job %s for rule %s", job_name(rule.id), rule.id, exc_info=True
        )
        rule.binding_state = BINDING_UNBOUND
    db.commit()


def create_rule(
    db: Session,
    scheduler: JobScheduler,
    user: User,
    data: RuleCreate,
    now: Optional[datetime] = None,
) -> BillPayRule:
    account = _owned_active_account(db, user, data.source_account_id)
    check_time_window(data.start_time, data.end_time, now or naive_utc_now())

    if data.payee_id is not None:
        payee = _existing_payee(db, data.payee_id)
    else:
        payee, _created = find_or_create_payee(db, data.payee, commit=False)

    rule = BillPayRule(
        user_id=user.id,
        source_internal_id=account.id,
        payee_id=payee.id,
        amount=cents_to_dollars(data.amount),
        frequency=data.frequency,
        start_time=data.start_time,
        end_time=data.end_time,
        binding_state=BINDING_PENDING,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)

    _bind(db, scheduler, rule, rule.frequency)
    return rule


def update_rule(
    db: Session,
    scheduler: JobScheduler,
    user: User,
    rule: BillPayRule,
    patch: RuleUpdate,
    now: Optional[datetime] = None,
) -> BillPayRule:
    """Apply ``patch`` to an owned rule; rebind its job only if the frequency changed."""
    if patch.touched("source_account_id"):
        _owned_active_account(db, user, patch.source_account_id)
    if patch.touched("payee_id"):
        _existing_payee(db, patch.payee_id)

    start_time = patch.start_time if patch.touched("start_time") else rule.start_time
    end_time = patch.end_time if patch.touched("end_time") else rule.end_time
    check_time_window(
        start_time, end_time, now or naive_utc_now(), start_supplied=patch.touched("start_time")
    )

    frequency_changed = patch.touched("frequency") and patch.frequency != rule.frequency

    if patch.touched("source_account_id"):
        rule.source_internal_id = patch.source_account_id
    if patch.touched("payee_id"):
        rule.payee_id = patch.payee_id
    if patch.touched("amount"):
        rule.amount = cents_to_dollars(patch.amount)
    if patch.touched("frequency"):
        rule.frequency = patch.frequency
    if patch.touched("start_time"):
        rule.start_time = start_time
    if patch.touched("end_time"):
        rule.end_time = end_time
    if frequency_changed:
        rule.binding_state = BINDING_PENDING
    db.commit()
    db.refresh(rule)

    if frequency_changed:
        unbind_rule(scheduler, rule.id)
        _bind(db, scheduler, rule, rule.frequency)
    return rule


def delete_rule(db: Session, scheduler: JobScheduler, rule: BillPayRule) -> None:
    """Remove the job first, then the row.

    If the row delete fails after the job is gone, what remains is a jobless
    rule (repaired by reconciliation) rather than a job firing for a missing row.
    """
    unbind_rule(scheduler, rule.id)
    db.delete(rule)
    db.commit()


def rule_to_dict(r: BillPayRule) -> Dict[str, Any]:
    return {
        "id": r.id,
        "user_id": r.user_id,
        "source_internal_id": r.source_internal_id,
        "payee_id": r.payee_id,
        "amount": float(r.amount),
        "frequency": r.frequency,
        "start_time": utc_iso(r.start_time),
        "end_time": utc_iso(r.end_time) if r.end_time else None,
        "binding_state": r.binding_state,
    }
