from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billpay.orm_models import BillPayPayee
from billpay.schemas.billpay import PayeeIn


def list_payees(db: Session, business_name: Optional[str] = None) -> List[BillPayPayee]:
    """All payees (shared across users), optionally filtered by name substring."""
    q = db.query(BillPayPayee)
    if business_name:
        q = q.filter(BillPayPayee.business_name.ilike(f"%{business_name.strip()}%"))
    return q.order_by(BillPayPayee.business_name.asc()).all()


def _find_payee(db: Session, routing_number: str, account_number: str) -> Optional[BillPayPayee]:
    return (
        db.query(BillPayPayee)
        .filter(
            BillPayPayee.routing_number == routing_number,
            BillPayPayee.account_number == account_number,
        )
        .first()
    )


def find_or_create_payee(
    db: Session, data: PayeeIn, commit: bool = True
) -> Tuple[BillPayPayee, bool]:
    """Return the payee for (routing, account), creating it when missing.

    External accounts are not validated; any routing/account pair is accepted.
    With ``commit=False`` the new row is only flushed so the caller can keep
    it in its own transaction.

    A concurrent insert of the same pair loses on the unique constraint; the
    transaction is rolled back and the winner's row returned.
    """
    existing = _find_payee(db, data.routing_number, data.account_number)
    if existing:
        return existing, False
    payee = BillPayPayee(
        business_name=data.business_name,
        email=data.email,
        phone=data.phone,
        street_address=data.street_address,
        address_line_2=data.address_line_2 or None,
        city=data.city,
        state_or_territory=data.state_or_territory,
        postal_code=data.postal_code,
        country=data.country,
        account_number=data.account_number,
        routing_number=data.routing_number,
        is_active=True,
    )
    db.add(payee)
    try:
        if commit:
            db.commit()
            db.refresh(payee)
        else:
            db.flush()
    except IntegrityError:
        db.rollback()
        existing = _find_payee(db, data.routing_number, data.account_number)
        if existing is None:
            raise
        return existing, False
    return payee, True


def payee_to_dict(p: BillPayPayee) -> Dict[str, Any]:
    return {
        "id": p.id,
        "business_name": p.business_name,
        "email": p.email,
        "phone": p.phone,
        "street_address": p.street_address,
        "address_line_2": p.address_line_2,
        "city": p.city,
        "state_or_territory": p.state_or_territory,
        "postal_code": p.postal_code,
        "country": p.country,
        "account_number": p.account_number,
        "routing_number": p.routing_number,
        "is_active": bool(p.is_active),
    }
