import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from billpay.db import get_db
from billpay.deps import get_scheduler, parse_rule_id, read_body
from billpay.errors import BillPayError
from billpay.orm_models import User
from billpay.schemas.billpay import RuleCreate, RuleUpdate
from billpay.services import billpay_rules as svc
from billpay.services.scheduler import JobScheduler
from billpay.utils.auth import get_current_user

log = logging.getLogger(__name__)

router = APIRouter(prefix="/billpay/rules", tags=["billpay"])


def _failure(action: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "error": {"message": f"Failed to {action} billpay rule", "details": str(exc)}
        },
    )


@router.get("", response_model=dict)
def list_rules(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"rules": [svc.rule_to_dict(r) for r in svc.list_rules(db, user)]}


@router.post("", status_code=201, response_model=dict)
async def create_rule(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    scheduler: JobScheduler = Depends(get_scheduler),
):
    data = await read_body(request, RuleCreate)
    try:
        rule = svc.create_rule(db, scheduler, user, data)
        return {"rule": svc.rule_to_dict(rule)}
    except BillPayError:
        raise
    except Exception as e:
        db.rollback()
        log.exception("Error creating billpay rule")
        return _failure("create", e)


@router.put("/{rule_id}", response_model=dict)
async def update_rule(
    rule_id: str,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    scheduler: JobScheduler = Depends(get_scheduler),
):
    rule = svc.get_owned_rule(db, user, parse_rule_id(rule_id), action="update")
    patch = await read_body(request, RuleUpdate)
    try:
        rule = svc.update_rule(db, scheduler, user, rule, patch)
        return {"rule": svc.rule_to_dict(rule)}
    except BillPayError:
        raise
    except Exception as e:
        db.rollback()
        log.exception("Error updating billpay rule %s", rule_id)
        return _failure("update", e)


@router.delete("/{rule_id}", response_model=dict)
def delete_rule(
    rule_id: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    scheduler: JobScheduler = Depends(get_scheduler),
):
    rule = svc.get_owned_rule(db, user, parse_rule_id(rule_id), action="delete")
    try:
        svc.delete_rule(db, scheduler, rule)
    except Exception as e:
        db.rollback()
        log.exception("Error deleting billpay rule %s", rule_id)
        return _failure("delete", e)
    return {"message": "Billpay rule deleted successfully"}
