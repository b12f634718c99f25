# routes/square.py
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from auth import require_admin
from config import settings
from database import SessionLocal
from services import pos_sync_runner

router = APIRouter(prefix="/api/square", tags=["POS Sync"], dependencies=[Depends(require_admin)])


@router.post("/sync-products", status_code=202)
def trigger_catalog_sync(background_tasks: BackgroundTasks) -> Dict[str, Any]:
    """
    Pushes the active catalog (and tracked stock counts) to the POS in the background.
    """
    if not settings.square_access_token:
        raise HTTPException(status_code=503, detail="Square is not configured")
    background_tasks.add_task(pos_sync_runner.run_catalog_sync, SessionLocal)
    return {"status": "ok", "message": "POS catalog sync started in the background."}
