from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


# Inputs
class RentalRequestIn(BaseModel):
    item_id: str
    quantity: int = Field(ge=1)
    start_date: date
    end_date: date
    purpose: str = ""


class VerifyReturnIn(BaseModel):
    condition: str = Field(min_length=1)  # e.g. "funktionsfähig", "beschädigt"
    notes: str = ""


class CheckoutIn(BaseModel):
    item_id: str
    quantity: int = Field(ge=1)
    purpose: str = ""
    destination: str = ""
    expected_return_date: Optional[date] = None
    start_date: Optional[date] = None
    member_id: Optional[int] = None  # EasyVerein member, defaults to the caller


class CheckInIn(BaseModel):
    condition: Optional[str] = None
    notes: Optional[str] = None
