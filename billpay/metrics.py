"""Prometheus metrics for the scheduler binding and reconciliation."""

from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

scheduler_calls = Counter(
    "billpay_scheduler_calls_total",
    "Calls made to the external job scheduler",
    labelnames=("op", "outcome"),  # op: schedule | unschedule; outcome: ok | error
)

reconcile_rebinds = Counter(
    "billpay_reconcile_rebinds_total",
    "Rule bindings repaired by the reconciliation pass",
    labelnames=("outcome",),
)

reconcile_orphans = Counter(
    "billpay_reconcile_orphans_removed_total",
    "Scheduler jobs removed because their rule no longer exists",
)

metrics_router = APIRouter()


@metrics_router.get("/metrics")
async def metrics() -> Response:  # pragma: no cover simple exposition
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "scheduler_calls",
    "reconcile_rebinds",
    "reconcile_orphans",
    "metrics_router",
]
