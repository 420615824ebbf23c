"""Named cron jobs that execute bill-pay rules.

Each rule owns exactly one job, ``billpay_rule_<id>``, whose command calls the
``process_billpay_rule`` stored procedure. The job has no identity of its own
in our tables: it is always addressed by name, so "rescheduling" means
unschedule-then-schedule.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Protocol

from sqlalchemy import text
from sqlalchemy.engine import Engine

from billpay.metrics import scheduler_calls

log = logging.getLogger(__name__)

JOB_PREFIX = "billpay_rule_"


def job_name(rule_id: int) -> str:
    return f"{JOB_PREFIX}{int(rule_id)}"


def job_command(rule_id: int) -> str:
    return f"SELECT process_billpay_rule({int(rule_id)})"


def rule_id_from_job(name: str) -> int | None:
    if not name.startswith(JOB_PREFIX):
        return None
    tail = name[len(JOB_PREFIX):]
    return int(tail) if tail.isdigit() else None


class SchedulerError(Exception):
    pass


class JobScheduler(Protocol):
    def schedule(self, name: str, cron_expression: str, command: str) -> None: ...

    def unschedule(self, name: str) -> None: ...

    def list_jobs(self, prefix: str = JOB_PREFIX) -> Dict[str, str]: ...


class PgCronScheduler:
    """pg_cron backed scheduler.

    Every call runs on its own connection and transaction so a cron failure
    never rolls back (or is rolled back with) the caller's ORM session.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def schedule(self, name: str, cron_expression: str, command: str) -> None:
        # cron.schedule upserts by job name
        with self.engine.begin() as conn:
            conn.execute(
                text("SELECT cron.schedule(:name, :schedule, :command)"),
                {"name": name, "schedule": cron_expression, "command": command},
            )

    def unschedule(self, name: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(text("SELECT cron.unschedule(CAST(:name AS text))"), {"name": name})

    def list_jobs(self, prefix: str = JOB_PREFIX) -> Dict[str, str]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text("SELECT jobname, schedule FROM cron.job WHERE jobname LIKE :pattern"),
                {"pattern": f"{prefix}%"},
            ).all()
        return {str(r[0]): str(r[1]) for r in rows}


class InMemoryScheduler:
    """Process-local job table for SQLite development, where pg_cron is absent.

    Jobs are recorded but never fire.
    """

    def __init__(self):
        self._jobs: Dict[str, tuple[str, str]] = {}
        self._lock = threading.Lock()

    def schedule(self, name: str, cron_expression: str, command: str) -> None:
        with self._lock:
            self._jobs[name] = (cron_expression, command)

    def unschedule(self, name: str) -> None:
        with self._lock:
            if name not in self._jobs:
                raise SchedulerError(f"could not find valid entry for job '{name}'")
            del self._jobs[name]

    def list_jobs(self, prefix: str = JOB_PREFIX) -> Dict[str, str]:
        with self._lock:
            return {n: sched for n, (sched, _cmd) in self._jobs.items() if n.startswith(prefix)}


def build_scheduler(backend: str, engine: Engine) -> JobScheduler:
    if backend == "pg_cron":
        return PgCronScheduler(engine)
    if backend == "memory":
        return InMemoryScheduler()
    raise ValueError(f"unknown scheduler backend: {backend!r}")


def bind_rule(scheduler: JobScheduler, rule_id: int, frequency: str) -> None:
    """Create the rule's job. Raises whatever the scheduler raised."""
    name = job_name(rule_id)
    try:
        scheduler.schedule(name, frequency, job_command(rule_id))
    except Exception:
        scheduler_calls.labels(op="schedule", outcome="error").inc()
        raise
    scheduler_calls.labels(op="schedule", outcome="ok").inc()
    log.info("scheduled %s (%s)", name, frequency)


def unbind_rule(scheduler: JobScheduler, rule_id: int) -> bool:
    """Remove the rule's job, best effort.

    A missing job is not an error worth surfacing: the next unschedule of the
    same name is a no-op either way. Returns False when the call failed.
    """
    name = job_name(rule_id)
    try:
        scheduler.unschedule(name)
    except Exception as e:
        scheduler_calls.labels(op="unschedule", outcome="error").inc()
        log.warning("failed to unschedule cron job %s: %s", name, e)
        return False
    scheduler_calls.labels(op="unschedule", outcome="ok").inc()
    return True
