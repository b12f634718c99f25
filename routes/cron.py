# routes/cron.py

import hmac

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

import schemas
from config import settings
from database import get_db
from jobs import price_drop

router = APIRouter(prefix="/api/cron", tags=["Scheduled Jobs"])


def _check_secret(expected: str, given: str):
    if not expected or not hmac.compare_digest(expected, given or ""):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/monthly-price-drop", response_model=schemas.JobResult)
def monthly_price_drop(secret: str = Query(""), db: Session = Depends(get_db)):
    _check_secret(settings.monthly_drop_cron_secret, secret)
    return {"ok": True, "updated": price_drop.run_monthly_price_drop(db)}


@router.post("/barn-burner/tick", response_model=schemas.JobResult)
def barn_burner_tick(secret: str = Query(""), db: Session = Depends(get_db)):
    _check_secret(settings.barn_burner_cron_secret, secret)
    return {"ok": True, "updated": price_drop.run_barn_burner_tick(db)}
