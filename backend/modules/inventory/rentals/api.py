from __future__ import annotations
from datetime import date
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from common.deps import get_current_user
from common.dto import ActionResult
from core.security import BOARD_ROLES, require_board
from .schemas import CheckInIn, CheckoutIn, RentalRequestIn, VerifyReturnIn
from .service import RentalWorkflowService

logger = logging.getLogger(__name__)
router = APIRouter()

# error_kind -> HTTP status for failed workflow results
_STATUS_BY_KIND = {
    "validation_error": 422,
    "insufficient_stock": 409,
    "invalid_state": 409,
    "not_found": 404,
    "not_configured": 503,
}


def _svc() -> RentalWorkflowService:
    return RentalWorkflowService()


def _respond(result: ActionResult):
    if result.success:
        return result.model_dump(exclude_none=True)
    return JSONResponse(
        status_code=_STATUS_BY_KIND.get(result.error_kind, 502),
        content=result.model_dump(exclude_none=True),
    )


def _admin_name(user: dict) -> str:
    return user.get("name") or user.get("email") or str(user.get("id"))


@router.get("/health")
def rentals_health():
    return {"status": "Inventory rentals module ready"}


# ---- Items ----
@router.get("/items")
def list_items(search: str = None, user=Depends(get_current_user)):
    """EasyVerein items with currently free units"""
    return {"items": _svc().list_items(search=search)}


@router.get("/items/mine")
def my_assigned_items(user=Depends(get_current_user)):
    return {"items": _svc().my_assigned_items(email=user.get("email", ""), name=user.get("name", ""))}


@router.get("/items/{item_id}/availability")
def item_availability(item_id: str, start_date: date, end_date: date, user=Depends(get_current_user)):
    return _respond(_svc().check_availability(item_id, start_date, end_date))


# ---- Requests ----
@router.post("/requests")
def submit_request(body: RentalRequestIn, user=Depends(get_current_user)):
    result = _svc().submit_request(
        user_id=user["id"],
        item_id=body.item_id,
        quantity=body.quantity,
        start_date=body.start_date,
        end_date=body.end_date,
        purpose=body.purpose,
    )
    return _respond(result)


@router.get("/requests/mine")
def my_requests(user=Depends(get_current_user)):
    return {"requests": _svc().list_user_rentals(user["id"])}


@router.post("/requests/{request_id}/approve")
def approve_request(request_id: int, user=Depends(require_board)):
    return _respond(_svc().approve(request_id, admin_name=_admin_name(user)))


@router.post("/requests/{request_id}/reject")
def reject_request(request_id: int, user=Depends(require_board)):
    return _respond(_svc().reject(request_id, admin_name=_admin_name(user)))


@router.post("/requests/{request_id}/request-return")
def request_return(request_id: int, user=Depends(get_current_user)):
    # Board members may announce a return on behalf of the borrower
    owner = None if user.get("role") in BOARD_ROLES else user["id"]
    return _respond(_svc().request_return(request_id, user_id=owner))


@router.post("/requests/{request_id}/verify-return")
def verify_return(request_id: int, body: VerifyReturnIn, user=Depends(require_board)):
    result = _svc().verify_return(
        request_id,
        admin_name=_admin_name(user),
        condition=body.condition,
        notes=body.notes,
    )
    return _respond(result)


@router.post("/requests/{request_id}/check-in")
def check_in(request_id: int, body: CheckInIn = None, user=Depends(require_board)):
    body = body or CheckInIn()
    return _respond(_svc().check_in(request_id, condition=body.condition, notes=body.notes))


# ---- Direct checkout ----
@router.post("/checkout")
def checkout(body: CheckoutIn, user=Depends(get_current_user)):
    result = _svc().checkout(
        item_id=body.item_id,
        user_id=user["id"],
        quantity=body.quantity,
        purpose=body.purpose,
        destination=body.destination,
        expected_return_date=body.expected_return_date.isoformat() if body.expected_return_date else None,
        start_date=body.start_date.isoformat() if body.start_date else None,
        member_id=body.member_id,
    )
    return _respond(result)


# ---- Board views ----
@router.get("/returns/pending")
def pending_returns(user=Depends(require_board)):
    return {"returns": _svc().list_pending_returns()}
