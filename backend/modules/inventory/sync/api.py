from __future__ import annotations
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from core.security import require_board
from .service import InventorySyncService

logger = logging.getLogger(__name__)
router = APIRouter()


def _svc() -> InventorySyncService:
    return InventorySyncService()


@router.post("/sync")
def sync_inventory(user=Depends(require_board)):
    """Run the EasyVerein -> inventory_items mirror sync now"""
    result = _svc().run(user_id=user["id"])
    if result.success:
        return result.model_dump(exclude_none=True)
    status_code = 207 if result.error_kind == "partial_failure" else 502
    return JSONResponse(status_code=status_code, content=result.model_dump(exclude_none=True))
