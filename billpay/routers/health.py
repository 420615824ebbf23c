from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from billpay.db import get_db

router = APIRouter(tags=["health"])


def _db_ping(db: Session) -> bool:
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


@router.get("/healthz")
def healthz():
    return {"ok": True}


@router.get("/ready")
def ready(db: Session = Depends(get_db)):
    db_ok = _db_ping(db)
    return JSONResponse(status_code=200 if db_ok else 503, content={"ok": db_ok, "db": db_ok})
