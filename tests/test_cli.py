import json
import sys
from datetime import datetime
from decimal import Decimal

import pytest

from billpay import cli
from billpay.db import make_engine, make_session_factory
from billpay.orm_models import BillPayPayee, BillPayRule, InternalAccount, User
from tests.helpers.fake_scheduler import RecordingScheduler


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("DATABASE_URL", url)
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("SCHEDULER_BACKEND", "memory")
    monkeypatch.chdir(tmp_path)
    return url


def _run(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["billpay", *argv])
    cli.main()


def _seed_unbound_rule(url):
    engine = make_engine(url)
    try:
        with make_session_factory(engine)() as db:
            user = User(auth_user_id="auth-cli", username="cli", email="cli@example.com")
            db.add(user)
            db.flush()
            account = InternalAccount(user_id=user.id, account_number="30000000001")
            payee = BillPayPayee(
                business_name="Gas Co",
                email="billing@gasco.example",
                phone="555-0123",
                street_address="2 Pipe Rd",
                city="Springfield",
                state_or_territory="IL",
                postal_code="62701",
                account_number="11112222",
                routing_number="021000021",
            )
            db.add_all([account, payee])
            db.flush()
            db.add(
                BillPayRule(
                    user_id=user.id,
                    source_internal_id=account.id,
                    payee_id=payee.id,
                    amount=Decimal("25"),
                    frequency="0 8 1 * *",
                    start_time=datetime(2030, 1, 1, 8, 0),
                    binding_state="unbound",
                )
            )
            db.commit()
    finally:
        engine.dispose()


def _last_json(capsys):
    out = capsys.readouterr().out.strip().splitlines()
    return json.loads(out[-1])


def test_reconcile_rebinds_and_prints_report(db_url, monkeypatch, capsys):
    _run(monkeypatch, "init-db")
    _seed_unbound_rule(db_url)
    capsys.readouterr()

    _run(monkeypatch, "reconcile")
    assert _last_json(capsys) == {"checked": 1, "rebound": 1, "failed": 0, "orphans_removed": 0}


def test_reconcile_exits_2_when_a_rebind_fails(db_url, monkeypatch, capsys):
    _run(monkeypatch, "init-db")
    _seed_unbound_rule(db_url)
    capsys.readouterr()

    down = RecordingScheduler()
    down.fail_schedule = True
    monkeypatch.setattr(cli, "build_scheduler", lambda backend, engine: down)

    with pytest.raises(SystemExit) as ei:
        _run(monkeypatch, "reconcile")
    assert ei.value.code == 2
    report = _last_json(capsys)
    assert report["failed"] == 1
    assert report["rebound"] == 0
    assert down.ops() == ["schedule"]


def test_no_command_prints_help_and_exits_1(monkeypatch, capsys):
    with pytest.raises(SystemExit) as ei:
        _run(monkeypatch)
    assert ei.value.code == 1
    assert "reconcile" in capsys.readouterr().out
