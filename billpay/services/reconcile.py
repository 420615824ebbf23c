"""Repair drift between rule rows and their scheduler jobs.

Rule writes commit before the scheduler is called, so a crash or a scheduler
outage can leave a rule without a job (or with a stale one), and a failed row
delete can leave a job behind. One pass fixes both directions.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Callable

from sqlalchemy.orm import Session

from billpay.metrics import reconcile_orphans, reconcile_rebinds
from billpay.orm_models import BINDING_BOUND, BINDING_UNBOUND, BillPayRule
from billpay.services.scheduler import (
    JOB_PREFIX,
    JobScheduler,
    bind_rule,
    job_name,
    rule_id_from_job,
    unbind_rule,
)

log = logging.getLogger("billpay.reconcile")


@dataclass
class ReconcileReport:
    checked: int = 0
    rebound: int = 0
    failed: int = 0
    orphans_removed: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def _needs_rebind(rule: BillPayRule, jobs: dict) -> bool:
    if rule.binding_state != BINDING_BOUND:
        return True
    schedule = jobs.get(job_name(rule.id))
    return schedule is None or schedule.strip() != rule.frequency.strip()


def reconcile_bindings(db: Session, scheduler: JobScheduler) -> ReconcileReport:
    report = ReconcileReport()
    jobs = scheduler.list_jobs(JOB_PREFIX)

    rules = db.query(BillPayRule).order_by(BillPayRule.id.asc()).all()
    known_ids = set()
    for rule in rules:
        report.checked += 1
        known_ids.add(rule.id)
        if not _needs_rebind(rule, jobs):
            continue
        if job_name(rule.id) in jobs:
            unbind_rule(scheduler, rule.id)
        try:
            bind_rule(scheduler, rule.id, rule.frequency)
        except Exception as e:
            log.warning("reconcile: rebind of rule %s failed: %s", rule.id, e)
            rule.binding_state = BINDING_UNBOUND
            report.failed += 1
            reconcile_rebinds.labels(outcome="error").inc()
        else:
            rule.binding_state = BINDING_BOUND
            report.rebound += 1
            reconcile_rebinds.labels(outcome="ok").inc()
        db.commit()

    for name in jobs:
        rid = rule_id_from_job(name)
        if rid is None or rid in known_ids:
            continue
        if unbind_rule(scheduler, rid):
            report.orphans_removed += 1
            reconcile_orphans.inc()

    if report.rebound or report.failed or report.orphans_removed:
        log.info("reconcile: %s", report.as_dict())
    return report


def _reconcile_once(session_factory: Callable[[], Session], scheduler: JobScheduler) -> ReconcileReport:
    with session_factory() as db:
        return reconcile_bindings(db, scheduler)


async def reconcile_loop(
    session_factory: Callable[[], Session],
    scheduler: JobScheduler,
    interval_seconds: int = 900,
) -> None:
    """Background task: run a reconciliation pass every ``interval_seconds``."""
    if interval_seconds < 1:
        interval_seconds = 1
    while True:
        try:
            await asyncio.to_thread(_reconcile_once, session_factory, scheduler)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("reconcile: pass failed: %s", e)
        await asyncio.sleep(interval_seconds)
