import asyncio
import threading
from datetime import datetime
from decimal import Decimal

import pytest

from billpay.orm_models import BillPayRule
from billpay.services import reconcile
from billpay.services.reconcile import ReconcileReport, reconcile_bindings


@pytest.fixture
def make_rule(db_session, seed):
    def _make(frequency="0 9 * * *", state="bound"):
        rule = BillPayRule(
            user_id=seed.alice.id,
            source_internal_id=seed.checking.id,
            payee_id=seed.payee.id,
            amount=Decimal("10"),
            frequency=frequency,
            start_time=datetime(2030, 1, 1, 9, 0),
            binding_state=state,
        )
        db_session.add(rule)
        db_session.commit()
        return rule

    return _make


def test_healthy_rule_is_left_alone(db_session, scheduler, make_rule):
    rule = make_rule()
    scheduler.jobs[f"billpay_rule_{rule.id}"] = "0 9 * * *"
    report = reconcile_bindings(db_session, scheduler)
    assert report.as_dict() == {"checked": 1, "rebound": 0, "failed": 0, "orphans_removed": 0}
    assert scheduler.calls == []


def test_unbound_rule_is_rebound(db_session, scheduler, make_rule):
    rule = make_rule(state="unbound")
    report = reconcile_bindings(db_session, scheduler)
    assert report.rebound == 1
    assert scheduler.ops() == ["schedule"]
    db_session.refresh(rule)
    assert rule.binding_state == "bound"
    assert scheduler.jobs == {f"billpay_rule_{rule.id}": "0 9 * * *"}


def test_bound_rule_with_missing_job_is_rebound(db_session, scheduler, make_rule):
    rule = make_rule()
    report = reconcile_bindings(db_session, scheduler)
    assert report.rebound == 1
    assert f"billpay_rule_{rule.id}" in scheduler.jobs


def test_stale_schedule_is_replaced(db_session, scheduler, make_rule):
    rule = make_rule(frequency="0 9 * * 1")
    name = f"billpay_rule_{rule.id}"
    scheduler.jobs[name] = "0 9 * * *"
    reconcile_bindings(db_session, scheduler)
    assert scheduler.ops() == ["unschedule", "schedule"]
    assert scheduler.jobs[name] == "0 9 * * 1"


def test_orphan_jobs_are_removed(db_session, scheduler, make_rule):
    rule = make_rule()
    scheduler.jobs[f"billpay_rule_{rule.id}"] = "0 9 * * *"
    scheduler.jobs["billpay_rule_9999"] = "*/5 * * * *"
    scheduler.jobs["unrelated_job"] = "0 0 * * *"
    report = reconcile_bindings(db_session, scheduler)
    assert report.orphans_removed == 1
    assert "billpay_rule_9999" not in scheduler.jobs
    assert "unrelated_job" in scheduler.jobs


def test_failed_rebind_is_counted(db_session, scheduler, make_rule):
    rule = make_rule(state="pending")
    scheduler.fail_schedule = True
    report = reconcile_bindings(db_session, scheduler)
    assert report.failed == 1
    assert report.rebound == 0
    db_session.refresh(rule)
    assert rule.binding_state == "unbound"


def test_loop_survives_a_failed_pass_and_stops_on_cancel(monkeypatch, caplog):
    caplog.set_level("WARNING", logger="billpay.reconcile")
    calls = []
    second_pass = threading.Event()

    def flaky_once(session_factory, scheduler):
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("database unavailable")
        second_pass.set()
        return ReconcileReport()

    real_sleep = asyncio.sleep

    async def no_wait(_seconds):
        await real_sleep(0)

    monkeypatch.setattr(reconcile, "_reconcile_once", flaky_once)
    monkeypatch.setattr(reconcile.asyncio, "sleep", no_wait)

    async def drive():
        task = asyncio.create_task(reconcile.reconcile_loop(lambda: None, None, 60))
        while not second_pass.is_set():
            await real_sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(drive())
    assert len(calls) >= 2
    assert "reconcile: pass failed: database unavailable" in caplog.text
