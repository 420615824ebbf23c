from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from billpay.db import get_db
from billpay.deps import read_body
from billpay.orm_models import User
from billpay.schemas.billpay import PayeeIn
from billpay.services.billpay_payees import find_or_create_payee, list_payees, payee_to_dict
from billpay.utils.auth import get_current_user

router = APIRouter(prefix="/billpay/payees", tags=["billpay"])


@router.get("", response_model=dict)
def get_payees(
    business_name: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"payees": [payee_to_dict(p) for p in list_payees(db, business_name)]}


@router.post("")
async def create_payee(
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    data = await read_body(request, PayeeIn)
    payee, created = find_or_create_payee(db, data)
    # An existing (routing, account) pair is returned as-is, not a conflict
    return JSONResponse(
        status_code=201 if created else 200,
        content={"payee": payee_to_dict(payee)},
    )
